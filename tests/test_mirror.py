import os
import shutil
import subprocess
from pathlib import Path
from unittest import mock

import pytest

from parallax.mirror import Mirror, MirrorError


def fake_rsync(cmd, **kwargs):
    src, dst = Path(cmd[-2]), Path(cmd[-1])
    if "--delete" in cmd:
        for entry in dst.iterdir():
            if entry.name == "squash":
                continue
            if entry.is_dir() and not entry.is_symlink():
                shutil.rmtree(entry)
            else:
                entry.unlink()
    ignore = lambda d, names: ["squash"] if Path(d) == src else []
    shutil.copytree(src, dst, symlinks=True, dirs_exist_ok=True, ignore=ignore)
    return subprocess.CompletedProcess(cmd, 0, stdout=b"")


def failing_rsync(cmd, **kwargs):
    return subprocess.CompletedProcess(cmd, 23, stdout=b"boom")


@pytest.fixture
def storage(tmp_path):
    d = tmp_path / "ro"
    d.mkdir()
    (d / "data.txt").write_text("orig")
    (d / "squash").mkdir()
    (d / "squash" / "x.squash").write_text("sq")
    return d


@mock.patch("parallax.mirror.subprocess.run", side_effect=fake_rsync)
def test_mirror_round_trip(run, storage):
    with Mirror(storage) as mp:
        assert (Path(mp) / "data.txt").read_text() == "orig"
        assert os.path.islink(os.path.join(mp, "squash"))
        (Path(mp) / "new.txt").write_text("added")
        (Path(mp) / "data.txt").unlink()
    assert (storage / "new.txt").read_text() == "added"
    assert not (storage / "data.txt").exists()
    assert (storage / "squash" / "x.squash").read_text() == "sq"
    assert not os.path.exists(mp)


@mock.patch("parallax.mirror.subprocess.run", side_effect=fake_rsync)
def test_mirror_creates_missing_squash(run, tmp_path):
    d = tmp_path / "empty"
    d.mkdir()
    m = Mirror(d)
    m.create()
    assert (d / "squash").is_dir()
    m.sync_back()
    assert m.path is None


@mock.patch("parallax.mirror.subprocess.run", side_effect=failing_rsync)
def test_mirror_initial_failure(run, storage):
    with pytest.raises(MirrorError, match="Initial rsync failed"):
        Mirror(storage).create()


def test_sync_back_without_create(storage):
    with pytest.raises(MirrorError):
        Mirror(storage).sync_back()