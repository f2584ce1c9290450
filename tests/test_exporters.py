"""Tests for extracting, backing up and installing the release."""

import io
import tarfile
from datetime import datetime
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import requests

from deck_exporter.downloads import tarball_path
from deck_exporter.exporters import (
    ExporterInstaller,
    check_metrics_endpoint,
    installed_binary,
    list_backups,
)
from deck_exporter.results import FailureKind

from .conftest import BINARY_CONTENT, build_tarball

FIXED_NOW = datetime(2024, 5, 1, 12, 30, 45)


@pytest.fixture
def workdir(tmp_path: Path) -> Path:
    path = tmp_path / "work"
    path.mkdir()
    return path


@pytest.fixture
def installer(config, workdir, release) -> ExporterInstaller:
    tarball_path(config, workdir).write_bytes(release.tarball)
    return ExporterInstaller(config, workdir, now=lambda: FIXED_NOW)


class TestExtract:

    def test_extracts_release_dir(self, installer, config, workdir):
        result = installer.extract()
        assert result.ok
        assert (workdir / config.release_dir_name / "node_exporter").read_bytes() == BINARY_CONTENT

    def test_corrupt_archive(self, installer, config, workdir):
        tarball_path(config, workdir).write_bytes(b"this is not a tarball")
        result = installer.extract()
        assert not result.ok
        assert result.kind is FailureKind.FILESYSTEM
        assert result.message.startswith("Extraction failed")

    def test_missing_release_dir(self, installer, config, workdir):
        tarball_path(config, workdir).write_bytes(build_tarball("something-else", {"x": b"1"}))
        result = installer.extract()
        assert not result.ok
        assert config.release_dir_name in result.message

    def test_rejects_path_traversal(self, installer, config, workdir):
        buf = io.BytesIO()
        with tarfile.open(fileobj=buf, mode="w:gz") as tar:
            info = tarfile.TarInfo("../escaped")
            info.size = 4
            tar.addfile(info, io.BytesIO(b"evil"))
        tarball_path(config, workdir).write_bytes(buf.getvalue())

        result = installer.extract()
        assert not result.ok
        assert "unsafe path" in result.message
        assert not (workdir.parent / "escaped").exists()

    @pytest.mark.parametrize("kind, linkname", [
        (tarfile.SYMTYPE, "../../outside"),
        (tarfile.SYMTYPE, "/etc"),
        (tarfile.LNKTYPE, "../outside"),
    ])
    def test_rejects_links_leaving_workdir(self, installer, config, workdir, kind, linkname):
        buf = io.BytesIO()
        with tarfile.open(fileobj=buf, mode="w:gz") as tar:
            link = tarfile.TarInfo(f"{config.release_dir_name}/link")
            link.type = kind
            link.linkname = linkname
            tar.addfile(link)
            info = tarfile.TarInfo(f"{config.release_dir_name}/link/written")
            info.size = 4
            tar.addfile(info, io.BytesIO(b"evil"))
        tarball_path(config, workdir).write_bytes(buf.getvalue())

        result = installer.extract()
        assert not result.ok
        assert "unsafe path" in result.message
        assert f"{config.release_dir_name}/link" in result.message
        assert not (workdir.parent.parent / "outside").exists()

    def test_allows_links_inside_release(self, installer, config, workdir):
        buf = io.BytesIO()
        with tarfile.open(fileobj=buf, mode="w:gz") as tar:
            info = tarfile.TarInfo(f"{config.release_dir_name}/node_exporter")
            info.size = len(BINARY_CONTENT)
            tar.addfile(info, io.BytesIO(BINARY_CONTENT))
            link = tarfile.TarInfo(f"{config.release_dir_name}/current")
            link.type = tarfile.SYMTYPE
            link.linkname = "node_exporter"
            tar.addfile(link)
        tarball_path(config, workdir).write_bytes(buf.getvalue())

        assert installer.extract().ok
        assert (workdir / config.release_dir_name / "current").is_symlink()


class TestBackup:

    def test_no_existing_install(self, installer, config):
        result = installer.backup_existing()
        assert result.ok
        assert list_backups(config) == []

    def test_renames_with_timestamp(self, installer, config):
        target = Path(config.target_dir)
        target.mkdir()
        (target / "node_exporter").write_text("old")

        result = installer.backup_existing()
        assert result.ok

        backup = target.with_name("node_exporter_backup_20240501123045")
        assert result.message == str(backup)
        assert (backup / "node_exporter").read_text() == "old"
        assert not target.exists()

    def test_same_second_does_not_overwrite(self, installer, config):
        target = Path(config.target_dir)
        taken = target.with_name("node_exporter_backup_20240501123045")
        taken.mkdir()
        target.mkdir()

        result = installer.backup_existing()
        assert result.ok
        assert result.message == str(taken) + "-1"
        assert taken.is_dir()

    def test_rename_failure(self, installer, config, monkeypatch):
        Path(config.target_dir).mkdir()

        def fail_rename(src, dst):
            raise PermissionError("read-only file system")

        monkeypatch.setattr("deck_exporter.exporters.os.rename", fail_rename)
        result = installer.backup_existing()
        assert not result.ok
        assert result.kind is FailureKind.FILESYSTEM
        assert "Backup failed" in result.message


class TestInstall:

    def test_moves_contents_into_target(self, installer, config, workdir):
        installer.extract()
        result = installer.install()
        assert result.ok

        target = Path(config.target_dir)
        assert sorted(p.name for p in target.iterdir()) == ["LICENSE", "NOTICE", "node_exporter"]
        assert installed_binary(config) == target / "node_exporter"
        # archive removed, extracted folder emptied
        assert not tarball_path(config, workdir).exists()
        assert list((workdir / config.release_dir_name).iterdir()) == []

    def test_move_failure(self, installer, config, monkeypatch):
        installer.extract()

        def fail_move(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr("deck_exporter.exporters.shutil.move", fail_move)
        result = installer.install()
        assert not result.ok
        assert result.message == "Move failed: disk full"

    def test_missing_extracted_dir(self, installer):
        result = installer.install()
        assert not result.ok
        assert result.kind is FailureKind.FILESYSTEM


class TestHelpers:

    def test_list_backups_sorted(self, config):
        parent = Path(config.target_dir).parent
        for stamp in ("20240502000000", "20240501000000"):
            (parent / f"node_exporter_backup_{stamp}").mkdir()
        (parent / "unrelated").mkdir()

        names = [p.name for p in list_backups(config)]
        assert names == [
            "node_exporter_backup_20240501000000",
            "node_exporter_backup_20240502000000",
        ]

    def test_installed_binary_absent(self, config):
        assert installed_binary(config) is None

    def test_metrics_endpoint_up(self, config, monkeypatch):
        get = MagicMock(return_value=MagicMock(ok=True, status_code=200))
        monkeypatch.setattr("deck_exporter.exporters.requests.get", get)
        status = check_metrics_endpoint(config)
        assert status["running"] is True
        get.assert_called_once_with("http://localhost:9100/metrics", timeout=3.0)

    def test_metrics_endpoint_down(self, config, monkeypatch):
        monkeypatch.setattr(
            "deck_exporter.exporters.requests.get",
            MagicMock(side_effect=requests.exceptions.ConnectionError("refused")),
        )
        status = check_metrics_endpoint(config)
        assert status["running"] is False
        assert "refused" in status["error"]
