"""
Steam Deck Node Exporter Prerequisites - Environment checks before installing

Nothing here changes the system. The checks run in a fixed order and the
first unmet one stops the run.
"""

import getpass
import logging
import os
import platform
import shutil
from typing import Callable, List, Tuple

from .config import InstallerConfig
from .results import FailureKind, StepResult
from .shell import run_cmd

logger = logging.getLogger(__name__)

STEAMDECK_HINT = "This script intended for use directly on Steamdeck."


class PreconditionChecker:
    """Verify the host can take a node_exporter install."""

    def __init__(self, config: InstallerConfig):
        self.config = config

    def _fail(self, message: str) -> StepResult:
        return StepResult.failure(FailureKind.PRECONDITION, message)

    # ============ Tools & files ============

    def check_download_tool(self) -> StepResult:
        """Check the configured download tool is on PATH."""
        tool = self.config.download_tool
        if tool == "requests":
            # Built-in HTTP client, nothing to look up
            return StepResult.success()
        if shutil.which(tool) is None:
            return self._fail(f"Error: {tool} is not installed. Please install {tool} and try again.")
        return StepResult.success()

    def check_service_file(self) -> StepResult:
        """Check the systemd unit to install exists."""
        if not os.path.isfile(self.config.service_file):
            return self._fail(f"Error: Systemd service file {self.config.service_file} not found.")
        return StepResult.success()

    # ============ Disk ============

    def available_space_mb(self) -> int:
        """Free space (MB) available to unprivileged users on the install volume."""
        usage = shutil.disk_usage(self.config.space_check_path)
        return usage.free // (1024 * 1024)

    def check_disk_space(self) -> StepResult:
        required = self.config.required_space_mb
        try:
            available = self.available_space_mb()
        except OSError as e:
            return self._fail(f"Error: Cannot read disk usage for {self.config.space_check_path}: {e}")

        if available < required:
            return self._fail(
                f"Error: Not enough disk space. At least {required}MB required "
                f"({available}MB available)."
            )
        return StepResult.success()

    # ============ Host identity ============

    def check_os(self) -> StepResult:
        if platform.system() != self.config.expected_os:
            return self._fail(
                f"Error: Detected host OS not {self.config.expected_os}. {STEAMDECK_HINT}"
            )
        return StepResult.success()

    def check_arch(self) -> StepResult:
        if platform.machine() != self.config.expected_arch:
            return self._fail(
                f"Error: Detected architecture not {self.config.expected_arch} (amd64). {STEAMDECK_HINT}"
            )
        return StepResult.success()

    def check_service_manager(self) -> StepResult:
        """Check systemd is running (pidof finds its process)."""
        process = self.config.service_manager_process
        success, _ = run_cmd(["pidof", process], timeout=10)
        if not success:
            return self._fail(f"Error: {process} is not running. {STEAMDECK_HINT}")
        return StepResult.success()

    # ============ All checks ============

    def checks(self) -> List[Tuple[str, Callable[[], StepResult]]]:
        """Checks in the order they run: cheap lookups first, host probes last."""
        return [
            ("download tool", self.check_download_tool),
            ("service file", self.check_service_file),
            ("disk space", self.check_disk_space),
            ("host OS", self.check_os),
            ("architecture", self.check_arch),
            ("service manager", self.check_service_manager),
        ]

    def run_all(self) -> StepResult:
        """Run every check, stopping at the first failure."""
        for name, check in self.checks():
            result = check()
            if not result.ok:
                return result
            logger.debug(f"Precondition ok: {name}")
        return StepResult.success()


def current_user() -> str:
    """Name of the invoking account, or an empty string if it cannot be found."""
    user = os.environ.get("USER")
    if user:
        return user
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        # no login variables and no passwd entry for this uid
        return ""


def check_user(config: InstallerConfig) -> bool:
    """Warn (never fail) when not running as the expected account."""
    if current_user() != config.expected_user:
        logger.warning(f"Warning: This script should be run as the '{config.expected_user}' user.")
        return False
    return True
