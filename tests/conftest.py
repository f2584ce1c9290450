"""Pytest fixtures and utilities for deck_exporter tests."""

import hashlib
import io
import logging
import subprocess
import tarfile
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List

import pytest

from deck_exporter.config import InstallerConfig
from deck_exporter.logging_setup import reset_logging
from deck_exporter.results import FailureKind, StepResult

BINARY_CONTENT = b"#!/bin/sh\necho node_exporter\n"


@dataclass
class Release:
    tarball: bytes
    manifest: bytes
    digest: str


def build_tarball(release_dir: str, files: Dict[str, bytes]) -> bytes:
    """Build an in-memory .tar.gz with files under release_dir/."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        info = tarfile.TarInfo(release_dir)
        info.type = tarfile.DIRTYPE
        info.mode = 0o755
        tar.addfile(info)
        for name, content in files.items():
            info = tarfile.TarInfo(f"{release_dir}/{name}")
            info.size = len(content)
            info.mode = 0o755 if name == "node_exporter" else 0o644
            tar.addfile(info, io.BytesIO(content))
    return buf.getvalue()


def build_manifest(entries: Dict[str, str]) -> bytes:
    return "".join(f"{digest}  {name}\n" for name, digest in entries.items()).encode()


class FakeFetcher:
    """Fetcher serving canned content per URL, recording every call."""

    def __init__(self, files: Dict[str, bytes], failing: List[str] = None):
        self.files = files
        self.failing = set(failing or [])
        self.calls: List[tuple] = []

    def fetch(self, url: str, dest: Path) -> StepResult:
        self.calls.append((url, Path(dest)))
        if url in self.failing or url not in self.files:
            return StepResult.failure(FailureKind.NETWORK, f"GET {url} failed: 404")
        Path(dest).write_bytes(self.files[url])
        return StepResult.success()

    @property
    def workdirs(self):
        return {dest.parent for _, dest in self.calls}


class FakeSystem:
    """Stand-in for subprocess.run covering pidof, wget and systemctl --user."""

    def __init__(self, files: Dict[str, bytes]):
        self.files = files
        self.calls: List[List[str]] = []
        self.fail = set()
        self.active = False

    def _result(self, cmd, returncode=0, stdout="", stderr=""):
        return subprocess.CompletedProcess(cmd, returncode, stdout=stdout, stderr=stderr)

    def __call__(self, cmd, **kwargs):
        cmd = list(cmd)
        self.calls.append(cmd)
        name = cmd[0]

        if name == "pidof":
            if "pidof" in self.fail:
                return self._result(cmd, 1)
            return self._result(cmd, 0, stdout="1\n")

        if name == "wget":
            dest, url = cmd[3], cmd[4]
            if "wget" in self.fail or url not in self.files:
                return self._result(cmd, 8, stderr="ERROR 404: Not Found.")
            Path(dest).write_bytes(self.files[url])
            return self._result(cmd)

        if name == "systemctl":
            action = cmd[2]
            if action in self.fail:
                return self._result(cmd, 1, stderr=f"Failed to {action} unit.")
            if action == "is-active":
                if self.active:
                    return self._result(cmd, 0, stdout="active\n")
                return self._result(cmd, 3, stdout="inactive\n")
            if action == "start":
                self.active = True
            elif action == "stop":
                self.active = False
            return self._result(cmd)

        raise AssertionError(f"Unexpected command: {cmd}")

    def systemctl_actions(self) -> List[str]:
        return [c[2] for c in self.calls if c[0] == "systemctl"]

    def wget_calls(self) -> List[List[str]]:
        return [c for c in self.calls if c[0] == "wget"]


@pytest.fixture(autouse=True)
def deck_logging(caplog):
    """Capture deck_exporter INFO logs and drop handlers installed by a test."""
    caplog.set_level(logging.INFO, logger="deck_exporter")
    yield
    reset_logging()


@pytest.fixture
def deck_home(tmp_path: Path) -> Path:
    """A fake /home/deck with the unit file in place."""
    home = tmp_path / "home" / "deck"
    home.mkdir(parents=True)
    (home / "steamdeck-node-exporter.service").write_text(
        "[Service]\nExecStart=%h/node_exporter/node_exporter\n"
    )
    return home


@pytest.fixture
def config(deck_home: Path, tmp_path: Path) -> InstallerConfig:
    return InstallerConfig(
        target_dir=str(deck_home / "node_exporter"),
        service_file=str(deck_home / "steamdeck-node-exporter.service"),
        systemd_user_dir=str(deck_home / ".config" / "systemd" / "user"),
        log_file=str(deck_home / "node_exporter_setup.log"),
        space_check_path=str(tmp_path),
        work_root=str(tmp_path / "work"),
        required_space_mb=1,
        retry_delay=0,
    )


@pytest.fixture
def release(config: InstallerConfig) -> Release:
    tarball = build_tarball(
        config.release_dir_name,
        {
            "node_exporter": BINARY_CONTENT,
            "LICENSE": b"Apache License 2.0\n",
            "NOTICE": b"node_exporter notice\n",
        },
    )
    digest = hashlib.sha256(tarball).hexdigest()
    manifest = build_manifest({
        f"node_exporter-{config.node_exporter_version}.darwin-amd64.tar.gz": "a" * 64,
        config.tarball_name: digest,
        f"node_exporter-{config.node_exporter_version}.linux-arm64.tar.gz": "b" * 64,
    })
    return Release(tarball=tarball, manifest=manifest, digest=digest)


@pytest.fixture
def fake_fetcher(config: InstallerConfig, release: Release) -> FakeFetcher:
    return FakeFetcher({
        config.download_url: release.tarball,
        config.checksum_url: release.manifest,
    })


@pytest.fixture
def fake_system(config: InstallerConfig, release: Release) -> FakeSystem:
    return FakeSystem({
        config.download_url: release.tarball,
        config.checksum_url: release.manifest,
    })


@pytest.fixture
def deck_host(fake_system: FakeSystem, monkeypatch) -> FakeSystem:
    """Make this machine look like a Steam Deck with systemd running."""
    monkeypatch.setattr("deck_exporter.prerequisites.platform.system", lambda: "Linux")
    monkeypatch.setattr("deck_exporter.prerequisites.platform.machine", lambda: "x86_64")
    monkeypatch.setattr("deck_exporter.prerequisites.shutil.which", lambda name: f"/usr/bin/{name}")
    monkeypatch.setattr("deck_exporter.shell.subprocess.run", fake_system)
    monkeypatch.setenv("USER", "deck")
    return fake_system
