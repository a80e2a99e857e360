import os
import sys
from pathlib import Path

import pytest

from parallax.config import Config
from parallax.imageutil import ImageNotFoundError
from parallax.rmi import RoImage, get_image_rmi, run_rmi
from parallax.store import Store

NAME = "docker.io/library/alpine:3.18"

FAKE_RSYNC = """\
import os, shutil, sys
args = sys.argv[1:]
delete = "--delete" in args
src, dst = [a for a in args if not a.startswith("-")]
src = src.rstrip("/")
dst = dst.rstrip("/")
os.makedirs(dst, exist_ok=True)
if delete:
    for entry in os.listdir(dst):
        if entry == "squash":
            continue
        path = os.path.join(dst, entry)
        if os.path.isdir(path) and not os.path.islink(path):
            shutil.rmtree(path)
        else:
            os.remove(path)
def ignore(directory, names):
    return [n for n in names if n == "squash"
            and os.path.isdir(os.path.join(directory, n))
            and not os.path.islink(os.path.join(directory, n))]
shutil.copytree(src, dst, symlinks=True, dirs_exist_ok=True, ignore=ignore)
"""


@pytest.fixture
def fake_rsync(tmp_path, monkeypatch):
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    script = bin_dir / "rsync"
    script.write_text(f"#!{sys.executable}\n{FAKE_RSYNC}")
    script.chmod(0o755)
    monkeypatch.setenv("PATH", str(bin_dir) + os.pathsep + os.environ.get("PATH", ""))
    return script


def _seed_ro(ro_root: Path, work: Path, name: str = NAME):
    rootfs = work / "rootfs"
    rootfs.mkdir(parents=True)
    (rootfs / ".marker").write_text("x")
    store = Store(ro_root, work / "run")
    layer = store.put_layer(rootfs, "sha256:" + "c" * 64, 1)
    img = store.create_image([name], layer.id, [], "", "sha256:" + "d" * 64)
    link = (ro_root / "overlay" / layer.id / "link").read_text()
    (ro_root / "squash").mkdir()
    (ro_root / "squash" / f"{link}.squash").write_bytes(b"hsqs")
    os.symlink(
        os.path.join("..", "..", "squash", f"{link}.squash"),
        ro_root / "overlay" / "l" / f"{link}.squash",
    )
    store.shutdown()
    return img, link


def _config(tmp_path, ro_root, image=NAME):
    return Config(
        podman_root=str(tmp_path),
        ro_storage_path=str(ro_root),
        mksquashfs_path="/usr/bin/mksquashfs",
        image=image,
    )


def test_get_image_rmi_reads_link(tmp_path):
    ro = tmp_path / "ro"
    img, link = _seed_ro(ro, tmp_path / "seed")
    store = Store(ro, tmp_path / "run")
    found = get_image_rmi(store, ro, NAME, {})
    assert found == RoImage(id=img.id, top_layer=img.top_layer, link=link)


def test_get_image_rmi_short_name_alias(tmp_path):
    ro = tmp_path / "ro"
    img, _ = _seed_ro(ro, tmp_path / "seed")
    store = Store(ro, tmp_path / "run")
    found = get_image_rmi(store, ro, "alpine:3.18", {"alpine": "docker.io/library/alpine"})
    assert found.id == img.id


def test_get_image_rmi_missing_image(tmp_path):
    store = Store(tmp_path / "ro", tmp_path / "run")
    with pytest.raises(ImageNotFoundError):
        get_image_rmi(store, tmp_path / "ro", NAME, {})


def test_get_image_rmi_missing_link_file(tmp_path):
    ro = tmp_path / "ro"
    img, _ = _seed_ro(ro, tmp_path / "seed")
    (ro / "overlay" / img.top_layer / "link").unlink()
    store = Store(ro, tmp_path / "run")
    with pytest.raises(FileNotFoundError):
        get_image_rmi(store, ro, NAME, {})


def test_run_rmi_removes_image_and_side_cars(tmp_path, fake_rsync):
    ro = tmp_path / "ro"
    img, link = _seed_ro(ro, tmp_path / "seed")
    assert run_rmi(_config(tmp_path, ro)) is None

    store = Store(ro, tmp_path / "check-run")
    assert store.images() == []
    assert not (ro / "squash" / f"{link}.squash").exists()
    assert not os.path.lexists(ro / "overlay" / "l" / f"{link}.squash")
    assert not (ro / "overlay" / img.top_layer).exists()
    assert (ro / "squash").is_dir()


def test_run_rmi_unknown_image_leaves_storage(tmp_path, fake_rsync):
    ro = tmp_path / "ro"
    img, link = _seed_ro(ro, tmp_path / "seed")
    assert run_rmi(_config(tmp_path, ro, "example.org/other:1")) is None

    store = Store(ro, tmp_path / "check-run")
    assert [i.id for i in store.images()] == [img.id]
    assert (ro / "squash" / f"{link}.squash").read_bytes() == b"hsqs"
    assert os.path.lexists(ro / "overlay" / "l" / f"{link}.squash")