"""
Steam Deck Node Exporter Installer - Extract, back up and install node_exporter

The release tarball unpacks into node_exporter-<version>.linux-amd64/, whose
contents end up directly under the target directory. An existing target is
renamed to <target>_backup_<timestamp>; backups are never removed.
"""

import logging
import os
import shutil
import tarfile
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import requests

from .config import InstallerConfig
from .downloads import tarball_path
from .results import FailureKind, StepResult

logger = logging.getLogger(__name__)

BACKUP_TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"


def _is_within(base: Path, candidate: Path) -> bool:
    base = base.resolve()
    try:
        candidate.resolve().relative_to(base)
    except ValueError:
        return False
    return True


class ExporterInstaller:
    """Install a downloaded node_exporter release into the target directory."""

    def __init__(
        self,
        config: InstallerConfig,
        workdir: Path,
        now: Callable[[], datetime] = datetime.now,
    ):
        self.config = config
        self.workdir = Path(workdir)
        self.target_dir = Path(config.target_dir)
        self._now = now

    @property
    def extracted_dir(self) -> Path:
        return self.workdir / self.config.release_dir_name

    # ============ Extract ============

    def extract(self) -> StepResult:
        """Unpack the tarball into the working directory."""
        logger.info("Extracting node_exporter...")
        tarball = tarball_path(self.config, self.workdir)

        try:
            with tarfile.open(tarball, "r:gz") as tar:
                for member in tar.getmembers():
                    if not self._is_safe_member(member):
                        return StepResult.failure(
                            FailureKind.FILESYSTEM,
                            f"Extraction failed: unsafe path in archive: {member.name}",
                        )
                if hasattr(tarfile, "data_filter"):
                    tar.extractall(self.workdir, filter="data")
                else:
                    tar.extractall(self.workdir)
        except (tarfile.TarError, OSError) as e:
            return StepResult.failure(FailureKind.FILESYSTEM, f"Extraction failed: {e}")

        if not self.extracted_dir.is_dir():
            return StepResult.failure(
                FailureKind.FILESYSTEM,
                f"Extraction failed: {self.config.release_dir_name}/ not found in archive.",
            )

        logger.info("Extraction successful.")
        return StepResult.success()

    def _is_safe_member(self, member: tarfile.TarInfo) -> bool:
        """Member and, for links, its target must stay inside the workdir."""
        path = self.workdir / member.name
        if not _is_within(self.workdir, path):
            return False
        if member.issym():
            # symlink targets are relative to the link's own directory
            return _is_within(self.workdir, path.parent / member.linkname)
        if member.islnk():
            return _is_within(self.workdir, self.workdir / member.linkname)
        return True

    # ============ Backup ============

    def backup_path(self) -> Path:
        """Where the current install would be moved to right now."""
        stamp = self._now().strftime(BACKUP_TIMESTAMP_FORMAT)
        candidate = self.target_dir.with_name(f"{self.target_dir.name}_backup_{stamp}")
        counter = 1
        # Two runs within the same second must not overwrite each other
        while candidate.exists():
            candidate = self.target_dir.with_name(
                f"{self.target_dir.name}_backup_{stamp}-{counter}"
            )
            counter += 1
        return candidate

    def backup_existing(self) -> StepResult:
        """Rename an existing install out of the way. No-op if there is none."""
        if not self.target_dir.is_dir():
            return StepResult.success()

        logger.info("Backing up existing node_exporter installation...")
        destination = self.backup_path()
        try:
            os.rename(self.target_dir, destination)
        except OSError as e:
            return StepResult.failure(FailureKind.FILESYSTEM, f"Backup failed: {e}")

        logger.info(f"Backup successful: {destination}")
        return StepResult.success(str(destination))

    # ============ Install ============

    def install(self) -> StepResult:
        """Move the extracted release into the target directory."""
        logger.info("Moving node_exporter to target directory...")
        try:
            self.target_dir.mkdir(parents=True, exist_ok=True)
            for entry in sorted(self.extracted_dir.iterdir()):
                shutil.move(str(entry), str(self.target_dir / entry.name))
        except (OSError, shutil.Error) as e:
            return StepResult.failure(FailureKind.FILESYSTEM, f"Move failed: {e}")

        logger.info("Move successful.")
        try:
            tarball_path(self.config, self.workdir).unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove downloaded archive: {e}")
        return StepResult.success()


def list_backups(config: InstallerConfig):
    """Backup directories left by earlier runs, oldest first."""
    target = Path(config.target_dir)
    if not target.parent.is_dir():
        return []
    prefix = f"{target.name}_backup_"
    return sorted(
        p for p in target.parent.iterdir()
        if p.is_dir() and p.name.startswith(prefix)
    )


def installed_binary(config: InstallerConfig) -> Optional[Path]:
    """Path of the installed node_exporter binary, if present."""
    binary = Path(config.target_dir) / "node_exporter"
    return binary if binary.is_file() else None


def check_metrics_endpoint(config: InstallerConfig, timeout: float = 3.0) -> Dict[str, Any]:
    """Check if node_exporter answers on its metrics URL."""
    try:
        resp = requests.get(config.metrics_url, timeout=timeout)
        return {"running": resp.ok, "status_code": resp.status_code, "url": config.metrics_url}
    except requests.exceptions.RequestException as e:
        return {"running": False, "error": str(e), "url": config.metrics_url}
