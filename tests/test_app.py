import logging
import os
import sys

import pytest

from parallax.app import configure_logging, main

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

FAKE_MKSQUASHFS = """\
import sys
open(sys.argv[2], "wb").close()
"""


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def env(tmp_path, monkeypatch):
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    for name, body in (("rsync", FAKE_RSYNC), ("mksquashfs", FAKE_MKSQUASHFS)):
        script = bin_dir / name
        script.write_text(f"#!{sys.executable}\n{body}")
        script.chmod(0o755)
    monkeypatch.setenv("PATH", str(bin_dir) + os.pathsep + os.environ.get("PATH", ""))
    podman = tmp_path / "podman"
    ro = tmp_path / "ro"
    podman.mkdir()
    ro.mkdir()
    return [
        "--podmanRoot", str(podman),
        "--roStoragePath", str(ro),
        "--mksquashfsPath", str(bin_dir / "mksquashfs"),
    ]


def test_version_exits_zero(capsys):
    with pytest.raises(SystemExit) as info:
        main(["--version"])
    assert info.value.code == 0
    assert capsys.readouterr().out == "Parallax version 1.0.0\n"


def test_no_operation_is_usage_error(capsys):
    assert main(["--image", "alpine"]) == 2
    err = capsys.readouterr().err
    assert "Must specify either -migrate or -rmi" in err
    assert "Usage:" in err


def test_both_operations_is_usage_error(capsys):
    assert main(["--migrate", "--rmi", "--image", "alpine"]) == 2
    assert "Must specify either -migrate or -rmi" in capsys.readouterr().err


def test_missing_image_is_usage_error(capsys):
    assert main(["--rmi"]) == 2
    assert "Must specify -image image" in capsys.readouterr().err


def test_invalid_log_level(env, capsys):
    assert main(["--rmi", "--image", "alpine", "--log-level", "loud", *env]) == 2
    assert 'Invalid log level "loud"' in capsys.readouterr().err


def test_configure_logging_sets_level():
    configure_logging(logging.WARNING)
    assert logging.getLogger().level == logging.WARNING


def test_failed_migration_returns_one(env, capsys):
    assert main(["--migrate", "--image", "example.org/none:1", *env]) == 1
    assert "Migration failed for image 'example.org/none:1'" in capsys.readouterr().out


def test_rmi_of_unknown_image_succeeds(env, capsys):
    assert main(["--rmi", "--image", "example.org/none:1", *env]) == 0
    assert "Could not locate image example.org/none:1" in capsys.readouterr().out