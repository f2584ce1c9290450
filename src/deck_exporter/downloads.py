"""
Steam Deck Node Exporter Downloads - Fetch the release and verify its checksum

Two files are fetched per attempt: the release tarball and the published
sha256sums.txt. An attempt only counts when both fetches succeed.
"""

import hashlib
import logging
import time
from pathlib import Path
from typing import Callable, Dict, Optional

import requests

from .config import InstallerConfig
from .results import FailureKind, StepResult
from .shell import run_cmd

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


def _remove_partial(dest: Path):
    try:
        dest.unlink()
    except FileNotFoundError:
        pass


class CommandFetcher:
    """Download with an external tool (wget or curl)."""

    def __init__(self, tool: str = "wget", timeout: Optional[float] = None):
        if tool not in ("wget", "curl"):
            raise ValueError(f"Unsupported download tool: {tool}")
        self.tool = tool
        self.timeout = timeout

    def command(self, url: str, dest: Path):
        if self.tool == "wget":
            return ["wget", "-q", "-O", str(dest), url]
        return ["curl", "-fsSL", "-o", str(dest), url]

    def fetch(self, url: str, dest: Path) -> StepResult:
        success, output = run_cmd(self.command(url, dest), timeout=self.timeout)
        if not success:
            _remove_partial(dest)
            detail = output.strip().splitlines()[-1] if output.strip() else "non-zero exit"
            return StepResult.failure(FailureKind.NETWORK, f"{self.tool} failed for {url}: {detail}")
        return StepResult.success()


class HttpFetcher:
    """Download with requests, streaming the body to disk."""

    def __init__(self, session: Optional[requests.Session] = None, timeout: float = 60.0):
        self.session = session or requests.Session()
        self.timeout = timeout

    def fetch(self, url: str, dest: Path) -> StepResult:
        try:
            with self.session.get(url, stream=True, timeout=self.timeout) as resp:
                resp.raise_for_status()
                with open(dest, "wb") as f:
                    for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                        if chunk:
                            f.write(chunk)
        except requests.exceptions.RequestException as e:
            _remove_partial(dest)
            return StepResult.failure(FailureKind.NETWORK, f"GET {url} failed: {e}")
        except OSError as e:
            _remove_partial(dest)
            return StepResult.failure(FailureKind.FILESYSTEM, f"Cannot write {dest}: {e}")
        return StepResult.success()


def make_fetcher(config: InstallerConfig):
    """Build the fetcher selected by config.download_tool."""
    if config.download_tool == "requests":
        return HttpFetcher(timeout=config.download_timeout)
    return CommandFetcher(config.download_tool)


def tarball_path(config: InstallerConfig, workdir: Path) -> Path:
    return Path(workdir) / config.tarball_name


def manifest_path(config: InstallerConfig, workdir: Path) -> Path:
    return Path(workdir) / config.checksum_file


# ============ Download ============

def download_release(
    config: InstallerConfig,
    workdir: Path,
    fetcher,
    sleep: Callable[[float], None] = time.sleep,
) -> StepResult:
    """Fetch tarball + manifest into workdir, retrying up to config.max_retries times."""
    targets = [
        (config.download_url, tarball_path(config, workdir)),
        (config.checksum_url, manifest_path(config, workdir)),
    ]

    for attempt in range(1, config.max_retries + 1):
        logger.info(f"Downloading node_exporter (attempt {attempt})...")

        failures = []
        for url, dest in targets:
            result = fetcher.fetch(url, dest)
            if not result.ok:
                failures.append(result)

        if not failures:
            logger.info("Download successful.")
            return StepResult.success()

        for failure in failures:
            logger.warning(failure.message)

        if attempt < config.max_retries:
            logger.info("Download failed. Retrying...")
            sleep(config.retry_delay)

    return StepResult.failure(
        FailureKind.NETWORK,
        f"Download failed after {config.max_retries} attempts.",
    )


# ============ Integrity ============

def sha256_file(path: Path) -> str:
    """Hex SHA-256 digest of a file."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def parse_manifest(text: str) -> Dict[str, str]:
    """Parse sha256sum output into {filename: digest}.

    Lines look like ``<digest>  <filename>`` (or ``<digest> *<filename>`` in
    binary mode). Anything else is ignored.
    """
    entries: Dict[str, str] = {}
    for line in text.splitlines():
        parts = line.strip().split(None, 1)
        if len(parts) != 2:
            continue
        digest, filename = parts
        if len(digest) != 64 or not all(c in "0123456789abcdefABCDEF" for c in digest):
            continue
        entries[filename.strip().lstrip("*")] = digest.lower()
    return entries


def verify_checksum(config: InstallerConfig, workdir: Path) -> StepResult:
    """Check the tarball digest against its own entry in the manifest."""
    logger.info("Verifying download integrity...")

    tarball = tarball_path(config, workdir)
    try:
        actual = sha256_file(tarball)
        manifest = manifest_path(config, workdir).read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        return StepResult.failure(
            FailureKind.INTEGRITY, f"Download integrity verification failed: {e}"
        )

    expected = parse_manifest(manifest).get(config.tarball_name)
    if expected is None:
        return StepResult.failure(
            FailureKind.INTEGRITY,
            f"Download integrity verification failed: {config.tarball_name} not listed in {config.checksum_file}.",
        )
    if expected != actual:
        return StepResult.failure(
            FailureKind.INTEGRITY,
            f"Download integrity verification failed: expected {expected}, got {actual}.",
        )

    logger.info("Download integrity verified.")
    return StepResult.success()
