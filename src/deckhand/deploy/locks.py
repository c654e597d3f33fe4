"""File locks shared by every deckhand process using one state directory.

Each ``deckhand`` command is its own process, so thread locks alone cannot
keep two releases of an environment apart. These locks use ``fcntl.flock``
and are released by the kernel if the holder dies.
"""

from __future__ import annotations

import fcntl
import logging
import os
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

from deckhand.config.defaults import LOCK_DIRNAME

logger = logging.getLogger(__name__)


def environment_lock_path(state_dir: str | Path, environment: str) -> Path:
    """Return the lock file that serializes transactions on ``environment``."""
    return Path(state_dir) / LOCK_DIRNAME / f"{environment}.lock"


@contextmanager
def file_lock(lock_path: Path) -> Generator[None, None, None]:
    """Hold an exclusive lock on ``lock_path`` for the duration of the block.

    Blocks until every other holder, in this process or another, has
    released it. Not reentrant: a second acquisition from the same thread
    deadlocks.

    Yields:
        None once the lock is held
    """
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    lock_path.touch(exist_ok=True)

    lock_fd = os.open(str(lock_path), os.O_RDWR)
    try:
        try:
            fcntl.flock(lock_fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            logger.info(f"Waiting for {lock_path} held by another deckhand process")
            fcntl.flock(lock_fd, fcntl.LOCK_EX)
        yield
    finally:
        fcntl.flock(lock_fd, fcntl.LOCK_UN)
        os.close(lock_fd)
