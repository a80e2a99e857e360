"""Command-line parsing and validation."""

from __future__ import annotations

import argparse
import enum
import logging
import shlex
import sys
from dataclasses import dataclass

from .config import Config, ValidationError, is_dir, is_executable

VERSION = "1.0.0"

# name, default, help, is_bool
_FLAGS = [
    ("migrate", False, "Migrates an image", True),
    ("rmi", False, "Removes an image", True),
    ("image", "", "the name (:tag) of the image to remove", False),
    ("podmanRoot", "/var/lib/containers/storage", "Path to Podman root storage directory", False),
    ("roStoragePath", "/mnt/nfs/podman", "Path to read-only storage location", False),
    ("mksquashfsPath", "/usr/bin/mksquashfs", "Path to mksquashfs binary", False),
    ("mksquashfs-opts", "", "Parameters for mksquashfs", False),
    ("log-level", "info", "Logging level (debug, info, warn, error, fatal, panic)", False),
    ("version", False, "Print version", True),
]

_LEVELS = {
    "panic": logging.CRITICAL,
    "fatal": logging.CRITICAL,
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
    "trace": logging.DEBUG,
}


class UsageError(Exception):
    """Raised when the command line is invalid."""


class Operation(enum.Enum):
    UNKNOWN = 0
    MIGRATE = 1
    RMI = 2


@dataclass
class Cli:
    config: Config
    op: Operation
    log_level: int
    show_usage: bool = False


class _Parser(argparse.ArgumentParser):
    def error(self, message):
        raise UsageError(message)


def build_parser() -> argparse.ArgumentParser:
    parser = _Parser(prog="parallax", add_help=False, allow_abbrev=False)
    parser.add_argument("-h", "-help", "--help", dest="help", action="store_true")
    for name, default, text, is_bool in _FLAGS:
        dest = name.replace("-", "_")
        if is_bool:
            parser.add_argument(f"-{name}", f"--{name}", dest=dest, action="store_true", help=text)
        else:
            parser.add_argument(f"-{name}", f"--{name}", dest=dest, default=default, help=text)
    return parser


def usage_text() -> str:
    lines = [
        "",
        "Parallax",
        "OCI image migration tool for Podman on HPC systems",
        "",
        "Usage:",
        "  parallax --migrate --image <image[:tag]> [options]",
        "  parallax --rmi     --image <image[:tag]> [options]",
        "",
        "Options:",
    ]
    for name, default, text, is_bool in _FLAGS:
        line = f"  --{name}\t{text}"
        shown = "false" if is_bool else default
        if shown not in ("", "false"):
            line += f' (default "{shown}")'
        lines.append(line)
    lines += [
        "",
        "Examples:",
        "  parallax --migrate --image ubuntu:latest",
        "  parallax --rmi     --image alpine:3.18",
        "",
        "",
    ]
    return "\n".join(lines)


def parse_and_validate(argv=None) -> Cli:
    """Parse arguments into a Cli; raises UsageError, or exits after ``--version``."""
    args = build_parser().parse_args(sys.argv[1:] if argv is None else argv)
    if args.help:
        raise UsageError("flag: help requested")
    if args.version:
        print(f"Parallax version {VERSION}")
        raise SystemExit(0)
    if args.migrate == args.rmi:
        raise UsageError("Must specify either -migrate or -rmi")
    if not args.image:
        raise UsageError("Must specify -image image (e.g. -image ubuntu:latest)")

    checks = [
        (is_dir, args.podmanRoot, "podmanRoot. Podman root directory"),
        (is_dir, args.roStoragePath, "roStoragePath. Read-only storage path"),
        (is_executable, args.mksquashfsPath, "mksquashfsPath. mksquashfs binary"),
    ]
    for check, path, label in checks:
        try:
            check(path)
        except ValidationError as err:
            raise UsageError(f"{label}: {err}") from err

    level = _LEVELS.get(args.log_level.lower())
    if level is None:
        raise UsageError(f'Invalid log level "{args.log_level}"')

    opts: list[str] = []
    if args.mksquashfs_opts:
        try:
            opts = shlex.split(args.mksquashfs_opts)
        except ValueError as err:
            raise UsageError(f"invalid mksquashfs-opts: {err}") from err

    return Cli(
        config=Config(
            podman_root=args.podmanRoot,
            ro_storage_path=args.roStoragePath,
            mksquashfs_path=args.mksquashfsPath,
            image=args.image,
            mksquashfs_opts=opts,
        ),
        op=Operation.MIGRATE if args.migrate else Operation.RMI,
        log_level=level,
    )