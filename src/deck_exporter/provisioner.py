"""
Steam Deck Node Exporter Provisioner - The install sequence, start to finish

Preconditions -> download (with retries) -> checksum -> extract -> backup ->
install -> user advisory -> register unit -> start unit -> report.

Every step returns a StepResult; the first failure ends the run. The
temporary download directory only lives for the download/install stage and
is removed on every way out of it, including Ctrl-C and SIGTERM.
"""

import logging
import signal
import tempfile
import threading
import time
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from .config import InstallerConfig
from .downloads import download_release, make_fetcher, verify_checksum
from .exporters import ExporterInstaller
from .prerequisites import PreconditionChecker, check_user
from .results import FailureKind, StepResult
from .service import ServiceManager

logger = logging.getLogger(__name__)


class ProvisioningInterrupted(Exception):
    """Raised inside the run when SIGTERM arrives."""


@contextmanager
def sigterm_as_exception():
    """Turn SIGTERM into ProvisioningInterrupted while the block runs."""
    if threading.current_thread() is not threading.main_thread():
        # signal handlers can only be set from the main thread
        yield
        return

    def _handler(signum, frame):
        raise ProvisioningInterrupted(signal.Signals(signum).name)

    previous = signal.signal(signal.SIGTERM, _handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGTERM, previous)


class Provisioner:
    """Run the node_exporter install for one configuration."""

    def __init__(
        self,
        config: InstallerConfig,
        fetcher=None,
        sleep: Callable[[float], None] = time.sleep,
        now: Callable[[], datetime] = datetime.now,
    ):
        self.config = config
        self.fetcher = fetcher or make_fetcher(config)
        self.sleep = sleep
        self.now = now
        self.workdir: Optional[Path] = None

    def run(self) -> StepResult:
        """Run every step. Never raises for expected failures or interrupts."""
        with sigterm_as_exception():
            try:
                result = self._run_steps()
            except (KeyboardInterrupt, ProvisioningInterrupted):
                logger.error("Installation interrupted. Cleaning up...")
                return StepResult.failure(FailureKind.INTERRUPTED, "Installation interrupted.")

        if not result.ok:
            logger.error(result.message)
        return result

    def _run_steps(self) -> StepResult:
        result = PreconditionChecker(self.config).run_all()
        if not result.ok:
            return result

        logger.info("Starting Prometheus Node Exporter setup on SteamDeck.")

        result = self.fetch_and_install()
        if not result.ok:
            return result

        check_user(self.config)

        result = self.activate_service()
        if not result.ok:
            return result

        self.report()
        return StepResult.success()

    # ============ Download & install ============

    def _workspace(self):
        work_root = self.config.work_root
        if work_root:
            Path(work_root).mkdir(parents=True, exist_ok=True)
        return tempfile.TemporaryDirectory(prefix="node_exporter-", dir=work_root)

    def fetch_and_install(self) -> StepResult:
        """Download, verify, extract and install inside a throwaway directory."""
        try:
            workspace = self._workspace()
        except OSError as e:
            return StepResult.failure(FailureKind.FILESYSTEM, f"Cannot create temporary directory: {e}")

        with workspace as tmp:
            self.workdir = Path(tmp)
            installer = ExporterInstaller(self.config, self.workdir, now=self.now)
            steps = [
                lambda: download_release(self.config, self.workdir, self.fetcher, sleep=self.sleep),
                lambda: verify_checksum(self.config, self.workdir),
                installer.extract,
                installer.backup_existing,
                installer.install,
            ]
            for step in steps:
                result = step()
                if not result.ok:
                    return result

        return StepResult.success()

    # ============ Service ============

    def activate_service(self) -> StepResult:
        """Register, enable and start the user unit. Does not undo the install on failure."""
        service = ServiceManager(self.config)

        result = service.install_unit()
        if not result.ok:
            return result

        service.daemon_reload()

        result = service.enable()
        if not result.ok:
            return result

        return service.ensure_running()

    def report(self):
        logger.info(f"Setup completed. Metrics endpoint active at {self.config.metrics_url}")
        # one record, so the hints read as a single block in the log
        hints = ServiceManager(self.config).management_hints()
        logger.info("\n" + "\n".join(hints) + "\n")


def run_install(config: InstallerConfig, fetcher=None) -> int:
    """Run the install and map the outcome to a process exit code."""
    result = Provisioner(config, fetcher=fetcher).run()
    return 0 if result.ok else 1
