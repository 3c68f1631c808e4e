# Bedtime Queue
# Copyright (C) 2026 Bedtime Queue contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Drag reorder: turn a (source, target) drag outcome into a new id order.

The pointer/gesture layer lives in the UI; all it reports is which entry was
dropped onto which.  ``move_id`` is the whole engine.
"""


def move_id(ids: list[str], source_id, target_id) -> list[str]:
    """Move *source_id* to *target_id*'s former position.

    All other entries keep their relative order.  A drag onto itself, or with
    either id missing, returns the input order unchanged (as a new list).
    """
    ordered = list(ids)
    if source_id == target_id:
        return ordered
    try:
        old_index = ordered.index(source_id)
        new_index = ordered.index(target_id)
    except ValueError:
        return ordered
    ordered.insert(new_index, ordered.pop(old_index))
    return ordered


def normalize_order(requested: list[str], current: list[str]) -> list[str]:
    """Make *requested* a permutation of *current*.

    Unknown and duplicate ids are dropped; current ids the request left out
    (e.g. added while a drag was in progress) are appended in their current
    relative order.  The id-set never changes.
    """
    valid = set(current)
    seen = set()
    result = []
    for sid in requested:
        if sid in valid and sid not in seen:
            seen.add(sid)
            result.append(sid)
    result.extend(sid for sid in current if sid not in seen)
    return result
