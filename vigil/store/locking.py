"""Cross-process file locks.

Every process sharing a storage root (API workers, the CLI, the maintenance
scheduler) serialises on the same lock file, so a check-and-replace done
under :func:`file_lock` is atomic across processes, not just threads.
"""

from __future__ import annotations

import os
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator


@contextmanager
def file_lock(lock_path: str | Path, timeout: float = 10.0) -> Iterator[None]:
    """Hold an exclusive OS lock on *lock_path* for the duration of the block.

    Raises :class:`TimeoutError` if the lock is not acquired within *timeout*
    seconds.
    """
    lock_path = str(lock_path)
    start = time.monotonic()

    if os.name == "nt":
        import msvcrt

        with open(lock_path, "a+b") as f:
            while True:
                try:
                    msvcrt.locking(f.fileno(), msvcrt.LK_NBLCK, 1)
                    break
                except OSError:
                    if time.monotonic() - start > timeout:
                        raise TimeoutError(f"Failed to acquire lock: {lock_path}")
                    time.sleep(0.005)
            try:
                yield
            finally:
                f.seek(0)
                msvcrt.locking(f.fileno(), msvcrt.LK_UNLCK, 1)
    else:
        import fcntl

        with open(lock_path, "a+") as f:
            while True:
                try:
                    fcntl.flock(f.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    if time.monotonic() - start > timeout:
                        raise TimeoutError(f"Failed to acquire lock: {lock_path}")
                    time.sleep(0.001)
            try:
                yield
            finally:
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)
