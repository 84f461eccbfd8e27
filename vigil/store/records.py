"""File-based keyed records with optimistic concurrency.

Each key is one JSON document under the store directory::

    {"version": 3, "data": {...}}

Writers read a document, compute the new state without holding any lock,
then commit with :meth:`KeyedRecordStore.compare_and_set`, which succeeds
only if the on-disk version is still the one that was read. Conflicting
writers retry the whole read-modify-write. Commits replace the file
atomically, so readers never observe a half-written document.

Locks are held only for the version check plus the file replace. Keys hash
onto one of 256 lock stripes; each stripe is a thread lock plus an OS file
lock under ``.locks/``, so processes sharing the directory commit through
the same critical section.
"""

from __future__ import annotations

import copy
import hashlib
import json
import logging
import os
import random
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterator, Optional, TypeVar
from urllib.parse import quote, unquote

from vigil.errors import ContentionError
from vigil.store.locking import file_lock

logger = logging.getLogger(__name__)

T = TypeVar("T")

LOCK_STRIPES = 256


@dataclass
class VersionedRecord:
    """A snapshot of one key. ``version`` is 0 when the key does not exist."""

    key: str
    version: int = 0
    data: Optional[dict[str, Any]] = None

    @property
    def exists(self) -> bool:
        return self.data is not None


# Result of a transaction body: (new data or None for "no write", return value)
Mutation = tuple[Optional[dict[str, Any]], T]


class KeyedRecordStore:
    """Versioned JSON documents keyed by string, one file per key."""

    def __init__(self, base_dir: str | Path, max_attempts: int = 25) -> None:
        self._base = Path(base_dir)
        self._base.mkdir(parents=True, exist_ok=True)
        self._locks_dir = self._base / ".locks"
        self._locks_dir.mkdir(exist_ok=True)
        self.max_attempts = max_attempts
        self._stripe_locks = [threading.Lock() for _ in range(LOCK_STRIPES)]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _path(self, key: str) -> Path:
        return self._base / f"{quote(key, safe='')}.json"

    @contextmanager
    def _locked(self, key: str) -> Iterator[None]:
        stripe = int(hashlib.sha1(key.encode("utf-8")).hexdigest(), 16) % LOCK_STRIPES
        with self._stripe_locks[stripe], file_lock(self._locks_dir / f"{stripe:02x}.lock"):
            yield

    @staticmethod
    def _load(path: Path) -> tuple[int, Optional[dict[str, Any]]]:
        try:
            doc = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return 0, None
        except (json.JSONDecodeError, OSError):
            logger.warning("Ignoring unreadable record file %s", path)
            return 0, None
        return int(doc.get("version", 0)), doc.get("data")

    def _write(self, path: Path, version: int, data: dict[str, Any]) -> None:
        tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex[:8]}.tmp")
        tmp.write_text(
            json.dumps({"version": version, "data": data}, default=str),
            encoding="utf-8",
        )
        os.replace(tmp, path)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def read(self, key: str) -> VersionedRecord:
        """Return a snapshot of *key* (version 0 and no data when absent)."""
        version, data = self._load(self._path(key))
        return VersionedRecord(key=key, version=version, data=data)

    def get(self, key: str) -> Optional[dict[str, Any]]:
        """Return the data stored under *key*, or ``None``."""
        return self.read(key).data

    def compare_and_set(self, key: str, expected_version: int, data: dict[str, Any]) -> bool:
        """Write *data* if *key* is still at *expected_version*.

        Returns ``False`` on a version conflict; the caller should re-read.
        """
        path = self._path(key)
        with self._locked(key):
            current_version, _ = self._load(path)
            if current_version != expected_version:
                return False
            self._write(path, expected_version + 1, data)
            return True

    def delete_if_version(self, key: str, expected_version: int) -> bool:
        """Delete *key* if it is still at *expected_version*.

        Deleting an already-missing key returns ``False`` and is not an error.
        """
        path = self._path(key)
        with self._locked(key):
            current_version, data = self._load(path)
            if data is None or current_version != expected_version:
                return False
            path.unlink(missing_ok=True)
            return True

    def update(
        self,
        key: str,
        fn: Callable[[Optional[dict[str, Any]]], Mutation],
        max_attempts: Optional[int] = None,
    ) -> T:
        """Run an atomic read-modify-write on *key*.

        *fn* receives a private copy of the current data (``None`` if the key
        is absent) and returns ``(new_data, result)``. When ``new_data`` is
        ``None`` nothing is written. *fn* may run several times and must not
        have side effects; exceptions raised by *fn* abort the update.

        Raises :class:`ContentionError` once *max_attempts* commits conflict.
        """
        attempts = max_attempts or self.max_attempts
        for attempt in range(1, attempts + 1):
            snapshot = self.read(key)
            new_data, result = fn(copy.deepcopy(snapshot.data))
            if new_data is None:
                return result
            if self.compare_and_set(key, snapshot.version, new_data):
                return result
            logger.debug("Write conflict on %s (attempt %d/%d)", key, attempt, attempts)
            time.sleep(random.uniform(0, 0.001 * attempt))
        raise ContentionError(key, attempts)

    def keys(self) -> list[str]:
        """Return every stored key, sorted."""
        return sorted(unquote(p.stem) for p in self._base.glob("*.json"))

    def iter_records(self) -> Iterator[VersionedRecord]:
        """Yield a snapshot of every stored key."""
        for key in self.keys():
            record = self.read(key)
            if record.exists:
                yield record

    def __len__(self) -> int:
        return len(self.keys())
