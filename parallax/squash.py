"""Squash side-car files that sit next to overlay layers."""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path

from .config import Config

log = logging.getLogger(__name__)


class SquashError(Exception):
    """Raised when a squash file cannot be built, linked or removed."""


def default_mksquashfs_flags() -> list[str]:
    """Flags passed to mksquashfs when the user gives none."""
    return [
        "-noappend",
        "-comp", "zstd",
        "-Xcompression-level", "1",
        "-noD", "-no-xattrs",
        "-e", "security.capability",
    ]


def build_squash(src_dir, squash_path, mksquashfs_path, opts=None) -> None:
    """Run mksquashfs on ``src_dir`` writing ``squash_path``."""
    flags = list(opts) if opts else default_mksquashfs_flags()
    try:
        result = subprocess.run(
            [str(mksquashfs_path), str(src_dir), str(squash_path), *flags],
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
        )
    except OSError as err:
        raise SquashError(f"mksquashfs: {err}") from err
    if result.returncode != 0:
        out = (result.stdout or b"").decode(errors="replace")
        raise SquashError(f"mksquashfs: exit status {result.returncode}\n{out}")


def ensure_symlink(target, linkname) -> None:
    """Create ``linkname`` pointing at ``target`` unless something is already there."""
    try:
        os.lstat(linkname)
        return
    except FileNotFoundError:
        pass
    os.symlink(target, linkname)


def create_squash_sidecar(src_dir, link: str, config: Config) -> None:
    """Build the squash file for ``link`` if missing and link it into ``overlay/l``."""
    root = Path(config.ro_storage_path)
    squash_path = root / "squash" / f"{link}.squash"
    log.info("Building squash file")
    if not os.path.lexists(squash_path):
        build_squash(src_dir, squash_path, config.mksquashfs_path, config.mksquashfs_opts)

    log.info("Symlinking squash")
    l_dir = root / "overlay" / "l"
    l_dir.mkdir(parents=True, exist_ok=True)
    ensure_symlink(
        os.path.join("..", "..", "squash", f"{link}.squash"),
        l_dir / f"{link}.squash",
    )


def remove_squash_files(ro_storage_path, link: str) -> None:
    """Remove the ``overlay/l`` symlink and the squash file; missing ones are fine."""
    root = Path(ro_storage_path)
    for path in (root / "overlay" / "l" / f"{link}.squash", root / "squash" / f"{link}.squash"):
        try:
            path.unlink()
        except FileNotFoundError:
            continue
        except OSError as err:
            raise SquashError(f"removing {path}: {err}") from err


def read_overlay_link(ro_storage_path, layer_id: str) -> str:
    """The short overlay link name recorded for ``layer_id``."""
    path = Path(ro_storage_path) / "overlay" / layer_id / "link"
    try:
        return path.read_text().strip()
    except OSError as err:
        raise SquashError(f"read overlay link: {err}") from err


def is_migrated(ro_storage_path, top_layer: str) -> bool:
    """True if ``top_layer`` has both its squash file and its ``overlay/l`` side-car."""
    root = Path(ro_storage_path)
    try:
        link = (root / "overlay" / top_layer / "link").read_text().strip()
    except FileNotFoundError:
        return False
    log.debug("Found top layer link: %s", link)
    for path in (root / "overlay" / "l" / f"{link}.squash", root / "squash" / f"{link}.squash"):
        try:
            os.stat(path)
        except FileNotFoundError:
            return False
    return True