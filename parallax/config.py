"""Run configuration and filesystem checks for command-line arguments."""

from __future__ import annotations

import os
import stat
from dataclasses import dataclass, field


class ValidationError(ValueError):
    """Raised when a configured path does not meet its requirements."""


@dataclass
class Config:
    """Settings for one migration or removal run."""

    podman_root: str
    ro_storage_path: str
    mksquashfs_path: str
    image: str
    mksquashfs_opts: list[str] = field(default_factory=list)


def _stat(path: str) -> os.stat_result:
    try:
        return os.stat(path)
    except OSError as err:
        raise ValidationError(f"stat {path}: {err.strerror or err}") from err


def is_dir(path: str) -> None:
    """Raise ValidationError unless ``path`` is an existing directory."""
    info = _stat(path)
    if not stat.S_ISDIR(info.st_mode):
        raise ValidationError(f"{path} is not a directory")


def is_executable(path: str) -> None:
    """Raise ValidationError unless ``path`` is a file with an execute bit set."""
    info = _stat(path)
    if stat.S_ISDIR(info.st_mode):
        raise ValidationError(f"{path} is a directory, not an executable")
    if info.st_mode & 0o111 == 0:
        raise ValidationError(f"{path} is not executable")