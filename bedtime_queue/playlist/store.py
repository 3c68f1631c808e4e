# Bedtime Queue
# Copyright (C) 2026 Bedtime Queue contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""
QueueStore — the ordered playlist of stories.

Position is implicit (list order) and ids are unique.  The "current" entry is
tracked by id, not by index, so that reorders, removals and reconciles that
land while a network call is pending can never leave ``current_index``
pointing at the wrong story or out of bounds.

Every mutation persists the new id order (fire-and-forget) and publishes
``(reason, store)`` on ``changes``.
"""

import logging

from ..lib.events import Observable
from .models import StoryRef, story_id
from .reorder import normalize_order

log = logging.getLogger(__name__)


class QueueStore:
    def __init__(self, persistence=None):
        self.persistence = persistence
        self.changes = Observable("queue")
        self._entries: list[StoryRef] = []
        self._current_id: str | None = None

    # ── Read side ──

    @property
    def entries(self) -> list[StoryRef]:
        return list(self._entries)

    def ids(self) -> list[str]:
        return [e.id for e in self._entries]

    def __len__(self):
        return len(self._entries)

    def __iter__(self):
        return iter(list(self._entries))

    def __contains__(self, sid):
        return self.index_of(sid) != -1

    def index_of(self, sid) -> int:
        sid = story_id(sid)
        for i, entry in enumerate(self._entries):
            if entry.id == sid:
                return i
        return -1

    def get(self, sid) -> StoryRef | None:
        i = self.index_of(sid)
        return self._entries[i] if i != -1 else None

    def entry_at(self, index: int) -> StoryRef | None:
        if 0 <= index < len(self._entries):
            return self._entries[index]
        return None

    def is_playable(self, index: int) -> bool:
        entry = self.entry_at(index)
        return entry is not None and entry.playable

    @property
    def current_id(self) -> str | None:
        return self._current_id

    @property
    def current_index(self) -> int:
        """Index of the current entry, re-resolved by id; -1 when there is none."""
        if self._current_id is None:
            return -1
        return self.index_of(self._current_id)

    @property
    def current(self) -> StoryRef | None:
        return self.entry_at(self.current_index)

    # ── Current selection ──

    def set_current(self, index: int):
        """Make the entry at *index* current; -1 (or out of range) clears it."""
        entry = self.entry_at(index)
        new_id = entry.id if entry else None
        if new_id != self._current_id:
            self._current_id = new_id
            self.changes.publish("current", self)

    def clear_current(self):
        self.set_current(-1)

    # ── Mutations ──

    def load(self, stories: list[StoryRef]):
        """Replace the whole queue (startup).  Duplicates keep their first position."""
        seen = set()
        entries = []
        for story in stories:
            if story.id not in seen:
                seen.add(story.id)
                entries.append(story)
        self._entries = entries
        if self._current_id is not None and self._current_id not in seen:
            self._current_id = None
        self._persist()
        self.changes.publish("load", self)

    def add(self, story: StoryRef) -> bool:
        """Append *story* unless its id is already queued."""
        if story.id in self:
            return False
        self._entries.append(story)
        self._persist()
        self.changes.publish("add", self)
        return True

    def remove(self, sid) -> bool:
        """Remove an entry.  If it was current, the entry before it becomes current."""
        index = self.index_of(sid)
        if index == -1:
            return False
        was_current = self._entries[index].id == self._current_id
        del self._entries[index]
        if was_current:
            self._current_id = self._entries[index - 1].id if index > 0 else None
        self._persist()
        self.changes.publish("remove", self)
        return True

    def reorder(self, new_ids: list) -> bool:
        """Apply a new order.  The id-set is normalised to the current one."""
        current = self.ids()
        ordered = normalize_order([story_id(i) for i in new_ids], current)
        if ordered != [story_id(i) for i in new_ids]:
            log.info("Reorder request normalised (%d requested, %d queued)",
                     len(new_ids), len(current))
        if ordered == current:
            return False
        by_id = {e.id: e for e in self._entries}
        self._entries = [by_id[sid] for sid in ordered]
        self._persist()
        self.changes.publish("reorder", self)
        return True

    def clear(self):
        self._entries = []
        self._current_id = None
        self._persist()
        self.changes.publish("clear", self)

    def reconcile(self, latest: list[StoryRef]) -> bool:
        """Refresh entries from the library without moving them.

        Entries whose record changed (audio became available, text edited) are
        replaced in place; entries whose id no longer exists are dropped.
        Returns True when anything changed.
        """
        by_id = {s.id: s for s in latest}
        changed = False
        kept = []
        current_fallback = None
        current_lost = False
        for entry in self._entries:
            fresh = by_id.get(entry.id)
            if fresh is None:
                changed = True
                if entry.id == self._current_id:
                    current_lost = True
                    current_fallback = kept[-1].id if kept else None
                continue
            if fresh != entry:
                changed = True
                kept.append(fresh)
            else:
                kept.append(entry)
        if not changed:
            return False
        dropped = len(self._entries) - len(kept)
        self._entries = kept
        if current_lost:
            self._current_id = current_fallback
        if dropped:
            log.info("Reconcile dropped %d deleted stor%s", dropped, "y" if dropped == 1 else "ies")
            self._persist()
        self.changes.publish("reconcile", self)
        return True

    def _persist(self):
        if self.persistence is not None:
            self.persistence.save(self.ids())
