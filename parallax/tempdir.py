"""Temporary directories that can be kept for inspection."""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager

log = logging.getLogger(__name__)

KEEP_ENV = "PARALLAX_KEEP_TMP"


def keep_temp() -> bool:
    """Whether temporary directories should be left behind on cleanup."""
    return os.environ.get(KEEP_ENV, "") != ""


@contextmanager
def temp_dir(prefix: str) -> Iterator[str]:
    """Create a temporary directory; ``*`` in ``prefix`` marks the random part."""
    head, _, tail = prefix.partition("*")
    path = tempfile.mkdtemp(prefix=head, suffix=tail)
    log.debug("Created temp dir %s", path)
    try:
        yield path
    finally:
        if keep_temp():
            log.info("PARALLAX KEEP_TMP set - keeping %s", path)
        else:
            shutil.rmtree(path, ignore_errors=True)