"""Tests for the loghub-flatten command line entry point."""

import io
import os
import tarfile
import zipfile
from pathlib import Path
from unittest.mock import patch

import pytest

from loghub_flatten import cli
from loghub_flatten.config import LogFlattenConfig, FlattenConfig


@pytest.fixture(autouse=True)
def no_logging_setup():
    """Keep the test runner's logging handlers in place."""
    with patch.object(cli, "setup_logging") as mock_setup:
        yield mock_setup


@pytest.fixture
def isolated_config(tmp_path, monkeypatch):
    """Prevent user config files and environment from leaking into tests."""
    config_home = tmp_path / "config_home"
    monkeypatch.setattr(
        "loghub_flatten.config_loader.platformdirs.user_config_dir",
        lambda **kwargs: str(config_home),
    )
    for key in list(os.environ):
        if key.startswith("LOGHUB_FLATTEN_"):
            monkeypatch.delenv(key)
    return config_home


def write_tar_gz(path: Path, name: str, data: bytes) -> None:
    with tarfile.open(path, 'w:gz') as tf:
        info = tarfile.TarInfo(name=name)
        info.size = len(data)
        tf.addfile(info, io.BytesIO(data))


@pytest.fixture
def workdir(tmp_path, monkeypatch, isolated_config):
    """Current working directory holding a couple of archives."""
    work = tmp_path / "work"
    work.mkdir()
    write_tar_gz(work / "Spark.tar.gz", "Spark/logs/a.log", b"s1\ns2\n")
    with zipfile.ZipFile(work / "Android_v2.zip", 'w') as zf:
        zf.writestr("Android/a.log", "a")
        zf.writestr("Android/b.log", "b")
    monkeypatch.chdir(work)
    return work


class TestMain:
    """Tests for cli.main()."""

    def test_processes_current_directory(self, workdir):
        assert cli.main([]) == 0

        assert (workdir / "Spark_logs.txt").read_bytes() == b"s1\ns2\n"
        assert (workdir / "Android_v2_logs.txt").read_bytes() == b"a\nb\n"

    def test_second_run_is_byte_identical(self, workdir):
        assert cli.main([]) == 0
        first = (workdir / "Spark_logs.txt").read_bytes()

        assert cli.main([]) == 0

        assert (workdir / "Spark_logs.txt").read_bytes() == first

    def test_corrupted_archive_returns_nonzero(self, workdir):
        (workdir / "Zzz_broken.tar.gz").write_bytes(b"garbage, not gzip")

        assert cli.main([]) == 1

        # Archives sorted before the broken one were written and kept
        assert (workdir / "Android_v2_logs.txt").exists()
        assert (workdir / "Spark_logs.txt").exists()

    def test_source_dir_option(self, tmp_path, workdir):
        other = tmp_path / "other"
        other.mkdir()
        write_tar_gz(other / "HDFS.tar.gz", "hdfs.log", b"h\n")

        assert cli.main(["--source-dir", str(other)]) == 0

        assert (other / "HDFS_logs.txt").read_bytes() == b"h\n"
        assert not (workdir / "Spark_logs.txt").exists()

    def test_missing_source_dir(self, tmp_path, workdir):
        assert cli.main(["--source-dir", str(tmp_path / "missing")]) == 1

    def test_config_file(self, tmp_path, workdir, no_logging_setup):
        config_file = tmp_path / "custom.toml"
        config_file.write_text(
            '[logging]\nlevel = "debug"\nformat = "json"\n\n'
            '[flatten]\noutput_suffix = "_flat.txt"\n'
        )

        assert cli.main(["--config", str(config_file)]) == 0

        assert (workdir / "Spark_flat.txt").exists()
        no_logging_setup.assert_called_once_with(
            level="DEBUG",
            format="json",
            log_file=None,
            max_file_size_mb=10,
            backup_count=5,
        )

    def test_missing_config_file(self, tmp_path, workdir):
        assert cli.main(["--config", str(tmp_path / "nope.toml")]) == 1

    def test_invalid_config_file(self, tmp_path, workdir):
        config_file = tmp_path / "bad.toml"
        config_file.write_text('[flatten]\nunknown_key = 1\n')

        assert cli.main(["--config", str(config_file)]) == 1

    def test_log_level_option(self, workdir, no_logging_setup):
        assert cli.main(["--log-level", "warning"]) == 0

        assert no_logging_setup.call_args.kwargs["level"] == "WARNING"

    def test_environment_override(self, tmp_path, workdir, monkeypatch):
        other = tmp_path / "env_source"
        other.mkdir()
        write_tar_gz(other / "BGL.tar.gz", "bgl.log", b"b\n")
        monkeypatch.setenv("LOGHUB_FLATTEN_FLATTEN__SOURCE_DIR", str(other))

        assert cli.main([]) == 0

        assert (other / "BGL_logs.txt").exists()

    def test_numeric_directory_name_from_environment(self, workdir, monkeypatch):
        numeric = workdir / "2024"
        numeric.mkdir()
        write_tar_gz(numeric / "Linux.tar.gz", "linux.log", b"l\n")
        monkeypatch.setenv("LOGHUB_FLATTEN_FLATTEN__SOURCE_DIR", "2024")

        assert cli.main([]) == 0

        assert (numeric / "Linux_logs.txt").read_bytes() == b"l\n"


class TestFlattenCommand:
    """Tests for flatten_command()."""

    def test_uses_config_source_dir(self, tmp_path):
        write_tar_gz(tmp_path / "Mac.tar.gz", "mac.log", b"m\n")
        config = LogFlattenConfig(flatten=FlattenConfig(source_dir=str(tmp_path)))

        assert cli.flatten_command(config) == 0
        assert (tmp_path / "Mac_logs.txt").read_bytes() == b"m\n"

    def test_override_wins(self, tmp_path):
        elsewhere = tmp_path / "elsewhere"
        elsewhere.mkdir()
        write_tar_gz(elsewhere / "Mac.tar.gz", "mac.log", b"m\n")
        config = LogFlattenConfig(flatten=FlattenConfig(source_dir=str(tmp_path / "missing")))

        assert cli.flatten_command(config, source_dir_override=elsewhere) == 0

    def test_unexpected_error_returns_nonzero(self, tmp_path):
        config = LogFlattenConfig(flatten=FlattenConfig(source_dir=str(tmp_path)))

        with patch.object(cli.LogFlattener, "run", side_effect=ValueError("boom")):
            assert cli.flatten_command(config) == 1
