"""
Steam Deck Node Exporter Configuration - Installer settings

All values have Steam Deck defaults. An optional YAML file (path given
directly or through DECK_EXPORTER_CONFIG) can override any of them, which
is how tests and non-standard setups point the installer elsewhere.
"""

import os
import logging
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "DECK_EXPORTER_CONFIG"

# Download tools understood by downloads.make_fetcher()
DOWNLOAD_TOOLS = ("wget", "curl", "requests")

# Fields holding filesystem paths; "~" is expanded on load
_PATH_FIELDS = (
    "target_dir",
    "service_file",
    "systemd_user_dir",
    "log_file",
    "space_check_path",
    "work_root",
)

# Numeric fields and the types a YAML value may have for them
_INT_FIELDS = ("max_retries", "required_space_mb", "metrics_port")
_FLOAT_FIELDS = ("download_timeout", "retry_delay")


def _is_number(value: Any, types: tuple) -> bool:
    # bool is an int subclass but "max_retries: yes" is never meant as 1
    return isinstance(value, types) and not isinstance(value, bool)


@dataclass(frozen=True)
class InstallerConfig:
    """Everything the provisioner needs to know, fixed for the whole run."""

    # Release
    node_exporter_version: str = "1.8.0"
    release_base_url: str = "https://github.com/prometheus/node_exporter/releases/download"
    platform_suffix: str = "linux-amd64"
    checksum_file: str = "sha256sums.txt"

    # Paths
    target_dir: str = "/home/deck/node_exporter"
    service_file: str = "/home/deck/steamdeck-node-exporter.service"
    systemd_user_dir: str = "/home/deck/.config/systemd/user"
    log_file: str = "/home/deck/node_exporter_setup.log"
    space_check_path: str = "/home"
    work_root: Optional[str] = None  # parent of the temp dir; None = system default

    # Download
    download_tool: str = "wget"
    download_timeout: float = 60.0  # seconds, requests backend only
    max_retries: int = 3
    retry_delay: float = 1.0

    # Environment expectations
    required_space_mb: int = 50
    expected_os: str = "Linux"
    expected_arch: str = "x86_64"
    service_manager_process: str = "systemd"
    expected_user: str = "deck"

    metrics_port: int = 9100

    def __post_init__(self):
        for name in _INT_FIELDS:
            if not _is_number(getattr(self, name), (int,)):
                raise ValueError(f"{name} must be a whole number, got {getattr(self, name)!r}")
        for name in _FLOAT_FIELDS:
            value = getattr(self, name)
            if not _is_number(value, (int, float)):
                raise ValueError(f"{name} must be a number of seconds, got {value!r}")
            if value < 0:
                raise ValueError(f"{name} cannot be negative")
        if self.download_timeout == 0:
            raise ValueError("download_timeout must be greater than zero")
        if not 1 <= self.metrics_port <= 65535:
            raise ValueError(f"metrics_port {self.metrics_port} is out of range")
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if self.required_space_mb < 0:
            raise ValueError("required_space_mb cannot be negative")
        if self.download_tool not in DOWNLOAD_TOOLS:
            raise ValueError(
                f"Unsupported download_tool '{self.download_tool}' "
                f"(expected one of: {', '.join(DOWNLOAD_TOOLS)})"
            )

    # ============ Derived values ============

    @property
    def release_dir_name(self) -> str:
        """Top-level folder inside the release tarball."""
        return f"node_exporter-{self.node_exporter_version}.{self.platform_suffix}"

    @property
    def tarball_name(self) -> str:
        return f"{self.release_dir_name}.tar.gz"

    @property
    def download_url(self) -> str:
        return f"{self.release_base_url}/v{self.node_exporter_version}/{self.tarball_name}"

    @property
    def checksum_url(self) -> str:
        return f"{self.release_base_url}/v{self.node_exporter_version}/{self.checksum_file}"

    @property
    def unit_name(self) -> str:
        """systemd unit name, taken from the unit file's name."""
        return Path(self.service_file).name

    @property
    def metrics_url(self) -> str:
        return f"http://localhost:{self.metrics_port}/metrics"

    # ============ Loading ============

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InstallerConfig":
        """Create a config from a mapping of overrides."""
        if not data:
            return cls()

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown config keys: {', '.join(unknown)}")

        values = dict(data)
        for key in _PATH_FIELDS:
            if values.get(key) is not None:
                values[key] = os.path.expanduser(str(values[key]))

        return cls(**values)

    @classmethod
    def load(cls, path: Optional[Union[str, Path]] = None) -> "InstallerConfig":
        """Load overrides from a YAML file.

        The file comes from ``path`` or the DECK_EXPORTER_CONFIG environment
        variable. Without either (or if the file does not exist) the Steam
        Deck defaults are returned.
        """
        if path is None:
            path = os.environ.get(CONFIG_ENV_VAR)
        if not path:
            return cls()

        config_path = Path(path).expanduser()
        if not config_path.exists():
            logger.debug(f"Config file {config_path} not found, using defaults")
            return cls()

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Config file {config_path} must contain a mapping")

        logger.debug(f"Loaded config overrides from {config_path}")
        return cls.from_dict(data)

    def with_overrides(self, **changes: Any) -> "InstallerConfig":
        """Return a copy with some fields replaced."""
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {f.name: getattr(self, f.name) for f in fields(self)}
