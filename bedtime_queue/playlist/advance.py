# Bedtime Queue
# Copyright (C) 2026 Bedtime Queue contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""
AdvancePolicy — which entry plays next.

States are derived from the store: IDLE when there is no current entry,
ACTIVE otherwise.  ``play_at``, ``next`` and ``prev`` pick a target and make
it current (or clear it); they never touch audio.  Whoever executes the
selection (local player or remote device) asks the policy first.

Playability is always read from the live store, never cached: a story whose
audio finished generating a moment ago is a valid target on the very next
call.
"""

import logging
import random

from .models import Phase
from .store import QueueStore

log = logging.getLogger(__name__)

FORWARD = 1
BACKWARD = -1


class AdvancePolicy:
    def __init__(self, store: QueueStore, shuffle: bool = False, repeat_all: bool = True,
                 rng: random.Random | None = None):
        self.store = store
        self.shuffle = shuffle
        self.repeat_all = repeat_all
        self._rng = rng or random.Random()

    @property
    def phase(self) -> Phase:
        return Phase.IDLE if self.store.current_index == -1 else Phase.ACTIVE

    def playable_indices(self) -> list[int]:
        return [i for i in range(len(self.store)) if self.store.is_playable(i)]

    # ── Selection (pure) ──

    def select_from(self, index: int, direction: int = FORWARD) -> int | None:
        """Target after *index* in *direction*.

        Returns an index, -1 for "go idle", or None for "stay where you are"
        (shuffle with no other playable entry).
        """
        if self.shuffle:
            candidates = [i for i in self.playable_indices() if i != index]
            if not candidates:
                return None
            return self._rng.choice(candidates)

        size = len(self.store)
        step = FORWARD if direction >= 0 else BACKWARD
        i = index + step
        while 0 <= i < size:
            if self.store.is_playable(i):
                return i
            i += step

        if self.repeat_all:
            i = 0 if step == FORWARD else size - 1
            while 0 <= i < size:
                if self.store.is_playable(i):
                    return i
                i += step
        return -1

    # ── Transitions ──

    def play_at(self, index: int, direction: int = FORWARD) -> int:
        """Select *index*, or the next playable entry after it if it has no audio.

        Returns the new current index, or -1 (IDLE) when nothing is playable.
        An out-of-range index leaves the state untouched and returns the
        current index.
        """
        if self.store.entry_at(index) is None:
            return self.store.current_index
        if self.store.is_playable(index):
            target = index
        else:
            log.info("Entry %d has no audio, skipping", index)
            target = self.select_from(index, direction)
            if target is None:
                # Nothing else is playable under shuffle; keep the current selection
                target = self.store.current_index
        return self._apply(target)

    def next(self) -> int | None:
        """Advance forward.  Returns the new current index (-1 = IDLE), or None
        when nothing changed (shuffle with no other playable entry)."""
        return self._advance(FORWARD)

    def prev(self) -> int | None:
        return self._advance(BACKWARD)

    def _advance(self, direction: int) -> int | None:
        if len(self.store) == 0:
            return self._apply(-1)
        target = self.select_from(self.store.current_index, direction)
        if target is None:
            return None
        return self._apply(target)

    def _apply(self, target: int) -> int:
        self.store.set_current(target)
        return self.store.current_index
