"""A writable rsync mirror of a possibly networked storage directory."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tempfile

log = logging.getLogger(__name__)


class MirrorError(Exception):
    """Raised when creating or syncing back a mirror fails."""


def _rsync(*args: str) -> None:
    result = subprocess.run(
        ["rsync", "-a", "--exclude=squash/", *args],
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
    )
    if result.returncode != 0:
        out = (result.stdout or b"").decode(errors="replace")
        raise MirrorError(f"rsync exited with status {result.returncode}\n{out}")


class Mirror:
    """Temporary copy of ``src_dir`` (except ``squash/``) that is pushed back on exit.

    The mirror's ``squash`` entry is a symlink to the real ``squash`` directory.
    """

    def __init__(self, src_dir):
        self.src_dir = str(src_dir)
        self.path: str | None = None

    def create(self) -> str:
        log.info("Mirror: creating temp dir for %r", self.src_dir)
        mp = tempfile.mkdtemp(prefix="rsync-mirror-")
        src_path = os.path.normpath(self.src_dir) + os.sep
        mirror_path = os.path.normpath(mp) + os.sep
        log.info("Mirror: rsync from %s to %s (no squash/)", src_path, mirror_path)
        try:
            _rsync(src_path, mirror_path)
        except MirrorError as err:
            shutil.rmtree(mp, ignore_errors=True)
            raise MirrorError(f"Initial rsync failed: {err}") from err

        real_squash = os.path.join(self.src_dir, "squash")
        link_name = os.path.join(mp, "squash")
        log.info("Mirror: creating squash symlink %s to %s", link_name, real_squash)
        try:
            os.makedirs(real_squash, 0o755, exist_ok=True)
            os.symlink(real_squash, link_name)
        except OSError as err:
            shutil.rmtree(mp, ignore_errors=True)
            raise MirrorError(f"Squash symlink failed: {err}") from err
        self.path = mp
        return mp

    def sync_back(self) -> None:
        if self.path is None:
            raise MirrorError("mirror was not created")
        mp = self.path
        log.info("Mirror-cleanup: remove mirror's squash symlink")
        try:
            os.remove(os.path.join(mp, "squash"))
        except OSError as err:
            raise MirrorError(f"Failed to remove squash symlink: {err}") from err
        mirror_path = os.path.normpath(mp) + os.sep
        src_path = os.path.normpath(self.src_dir) + os.sep
        log.info("Mirror-cleanup: rsync back from %s to %s (excluding squash/)", mirror_path, src_path)
        try:
            _rsync("--delete", mirror_path, src_path)
        except MirrorError as err:
            raise MirrorError(f"rsync back failed: {err}") from err
        try:
            shutil.rmtree(mp)
        except OSError as err:
            raise MirrorError(f"failed to remove temp dir {mp!r}: {err}") from err
        self.path = None

    def __enter__(self) -> str:
        return self.create()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.sync_back()