"""Storage primitives.

- :class:`KeyedRecordStore`: one versioned JSON document per key with
  atomic compare-and-set and retrying read-modify-write.
- :class:`EventLog`: append-only, day-partitioned JSONL log.
"""

from vigil.store.events import EventLog
from vigil.store.records import KeyedRecordStore, VersionedRecord

__all__ = ["EventLog", "KeyedRecordStore", "VersionedRecord"]
