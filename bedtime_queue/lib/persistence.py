# Bedtime Queue
# Copyright (C) 2026 Bedtime Queue contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Persistence adapter — the queue's ordered id list in a durable key/value file.

The on-disk format is one JSON object mapping keys to *string* values, the
same shape a browser's localStorage has.  The queue lives under a single
versioned key (``bedtime-queue-v1``) whose value is a JSON array of story ids.

Nothing in here raises to the caller: corrupt or missing data falls back to
a safe default, failed writes are logged and dropped.
"""

import json
import logging
import os
import tempfile

log = logging.getLogger(__name__)

DEFAULT_KEY = "bedtime-queue-v1"
DEFAULT_SEED_COUNT = 12


class KeyValueStore:
    """String key/value pairs in a JSON file.  Writes are atomic (tmp + rename)."""

    def __init__(self, path: str):
        self.path = os.path.expanduser(path)

    def _read_all(self) -> dict:
        try:
            with open(self.path) as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as e:
            log.warning("Store %s unreadable, treating as empty: %s", self.path, e)
            return {}
        if not isinstance(data, dict):
            log.warning("Store %s is not a JSON object, treating as empty", self.path)
            return {}
        return data

    def get(self, key: str) -> str | None:
        value = self._read_all().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str):
        data = self._read_all()
        data[key] = value
        self._write_all(data)

    def _write_all(self, data: dict):
        directory = os.path.dirname(self.path) or "."
        os.makedirs(directory, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=directory, prefix=".store-", suffix=".json")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f)
            os.replace(tmp, self.path)
        except BaseException:
            try:
                os.unlink(tmp)
            except OSError:
                pass
            raise


class QueuePersistence:
    """Load/save the queue's id order under one versioned key."""

    def __init__(self, store: KeyValueStore, key: str = DEFAULT_KEY,
                 seed_count: int = DEFAULT_SEED_COUNT):
        self.store = store
        self.key = key
        self.seed_count = seed_count

    def load_ids(self) -> list[str] | None:
        """Raw persisted id list, or None when absent/corrupt."""
        try:
            raw = self.store.get(self.key)
        except Exception as e:
            log.warning("Queue load failed: %s", e)
            return None
        if raw is None:
            return None
        try:
            ids = json.loads(raw)
        except (TypeError, ValueError) as e:
            log.warning("Persisted queue is not valid JSON, ignoring: %s", e)
            return None
        if not isinstance(ids, list):
            log.warning("Persisted queue is not a list, ignoring")
            return None
        return [str(i) for i in ids if i is not None and not isinstance(i, (dict, list))]

    def load(self, library: list) -> tuple[list[str], bool]:
        """Resolve the persisted order against the current library.

        Returns ``(ids, seeded)``.  Ids with no library entry are dropped.  When
        nothing usable survives, the first ``seed_count`` library stories are
        used instead and ``seeded`` is True (the caller should persist them).
        """
        known = {s.id for s in library}
        ids = self.load_ids()
        if ids:
            seen = set()
            kept = []
            for sid in ids:
                if sid in known and sid not in seen:
                    seen.add(sid)
                    kept.append(sid)
            dropped = len(ids) - len(kept)
            if dropped:
                log.info("Dropped %d stale id(s) from persisted queue", dropped)
            if kept:
                return kept, False
        seeded = [s.id for s in library[:self.seed_count]]
        if seeded:
            log.info("Seeding queue with first %d library stories", len(seeded))
        return seeded, bool(seeded)

    def save(self, ids: list[str]) -> bool:
        """Fire-and-forget write.  Returns False (after logging) on failure."""
        try:
            self.store.set(self.key, json.dumps(list(ids)))
            return True
        except Exception as e:
            log.warning("Queue persist failed: %s", e)
            return False
