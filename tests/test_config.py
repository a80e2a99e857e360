import pytest

from parallax.config import Config, ValidationError, is_dir, is_executable


def test_is_dir_accepts_directory(tmp_path):
    assert is_dir(str(tmp_path)) is None


def test_is_dir_rejects_file(tmp_path):
    f = tmp_path / "f"
    f.write_text("x")
    with pytest.raises(ValidationError, match="is not a directory"):
        is_dir(str(f))


def test_is_dir_missing(tmp_path):
    with pytest.raises(ValidationError, match="stat"):
        is_dir(str(tmp_path / "missing"))


def test_is_executable_ok(tmp_path):
    f = tmp_path / "bin"
    f.write_text("#!/bin/sh\n")
    f.chmod(0o755)
    assert is_executable(str(f)) is None


def test_is_executable_not_exec(tmp_path):
    f = tmp_path / "bin"
    f.write_text("x")
    f.chmod(0o644)
    with pytest.raises(ValidationError, match="is not executable"):
        is_executable(str(f))


def test_is_executable_directory(tmp_path):
    with pytest.raises(ValidationError, match="is a directory, not an executable"):
        is_executable(str(tmp_path))


def test_config_default_opts_empty():
    cfg = Config("a", "b", "c", "img")
    assert cfg.mksquashfs_opts == []
    assert cfg.image == "img"