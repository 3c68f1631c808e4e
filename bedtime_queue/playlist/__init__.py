# Bedtime Queue
# Copyright (C) 2026 Bedtime Queue contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Playlist — the queue itself, independent of where audio plays.

  models.py   — StoryRef, PlaybackState, RemoteStatus, Phase
  store.py    — ordered, id-unique queue with current-entry tracking
  advance.py  — shuffle/repeat-aware next/prev selection
  reorder.py  — drag outcome -> new id order
"""

from .advance import AdvancePolicy
from .models import Phase, PlaybackState, RemoteStatus, StoryRef
from .reorder import move_id
from .store import QueueStore

__all__ = [
    "AdvancePolicy",
    "Phase",
    "PlaybackState",
    "QueueStore",
    "RemoteStatus",
    "StoryRef",
    "move_id",
]
