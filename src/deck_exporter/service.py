"""
Steam Deck Node Exporter Service - systemd --user unit management
"""

import logging
import shutil
from pathlib import Path
from typing import List

from .config import InstallerConfig
from .results import FailureKind, StepResult
from .shell import run_cmd

logger = logging.getLogger(__name__)

SYSTEMCTL_TIMEOUT = 60


class ServiceManager:
    """Install, enable and start the node_exporter user unit."""

    def __init__(self, config: InstallerConfig):
        self.config = config
        self.unit_name = config.unit_name
        self.user_dir = Path(config.systemd_user_dir)

    @property
    def installed_unit(self) -> Path:
        return self.user_dir / self.unit_name

    def _systemctl(self, *args: str):
        cmd: List[str] = ["systemctl", "--user", *args]
        return run_cmd(cmd, timeout=SYSTEMCTL_TIMEOUT)

    def _fail(self, message: str) -> StepResult:
        return StepResult.failure(FailureKind.SERVICE, message)

    # ============ Registration ============

    def install_unit(self) -> StepResult:
        """Copy the unit file into the user systemd directory."""
        logger.info("Copying systemd service config file...")
        try:
            self.user_dir.mkdir(parents=True, exist_ok=True)
            shutil.copy(self.config.service_file, self.installed_unit)
        except OSError as e:
            return StepResult.failure(FailureKind.FILESYSTEM, f"Copy failed: {e}")

        logger.info("Copy successful.")
        return StepResult.success()

    def daemon_reload(self) -> bool:
        """Make the user manager pick up unit file changes. Failure is only a warning."""
        success, output = self._systemctl("daemon-reload")
        if not success:
            logger.warning(f"systemctl --user daemon-reload failed: {output.strip()}")
        return success

    def enable(self) -> StepResult:
        logger.info("Enabling systemd service...")
        success, output = self._systemctl("enable", self.unit_name)
        if not success:
            return self._fail(f"Service enabling failed. {output.strip()}".strip())
        logger.info("Service enabled successfully.")
        return StepResult.success()

    # ============ Activation ============

    def is_active(self) -> bool:
        success, _ = self._systemctl("is-active", "--quiet", self.unit_name)
        return success

    def state(self) -> str:
        """Unit state as reported by is-active (active, inactive, failed, ...)."""
        _, output = self._systemctl("is-active", self.unit_name)
        return output.strip().splitlines()[0] if output.strip() else "unknown"

    def start(self) -> StepResult:
        logger.info("Starting systemd service...")
        success, output = self._systemctl("start", self.unit_name)
        if not success:
            return self._fail(f"Service start failed. {output.strip()}".strip())
        logger.info("Service started successfully.")
        return StepResult.success()

    def ensure_running(self) -> StepResult:
        """Start the unit unless it is already active."""
        logger.info("Checking if the service is already running...")
        if self.is_active():
            logger.info("Service is already running.")
            return StepResult.success("already running")
        return self.start()

    # ============ Removal ============

    def uninstall(self) -> List[str]:
        """Stop, disable and remove the unit. Returns warnings for steps that failed."""
        warnings = []

        for action in ("stop", "disable"):
            success, output = self._systemctl(action, self.unit_name)
            if not success:
                warnings.append(f"{action} failed: {output.strip() or 'non-zero exit'}")

        if self.installed_unit.exists():
            try:
                self.installed_unit.unlink()
            except OSError as e:
                warnings.append(f"Could not remove {self.installed_unit}: {e}")

        if not self.daemon_reload():
            warnings.append("daemon-reload failed")
        return warnings

    def management_hints(self) -> List[str]:
        """systemctl commands for managing the unit by hand."""
        return [
            "To check the status of the service:",
            f"systemctl --user status {self.unit_name}",
            "",
            "To stop the service:",
            f"systemctl --user stop {self.unit_name}",
            "",
            "To disable the service from starting on boot:",
            f"systemctl --user disable {self.unit_name}",
        ]
