# Bedtime Queue
# Copyright (C) 2026 Bedtime Queue contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Observable — minimal publish/subscribe for in-process state observers.

The playback bar, the list view and the WebSocket broadcaster all watch the
same queue; each subscribes a callback instead of sharing mutable globals.

Usage:
    changes = Observable("queue")
    unsubscribe = changes.subscribe(lambda reason, snapshot: ...)
    changes.publish("reorder", snapshot)
    unsubscribe()
"""

import logging

log = logging.getLogger(__name__)


class Observable:
    """Fan-out of synchronous callbacks.  A failing subscriber is logged and skipped."""

    def __init__(self, name: str = ""):
        self.name = name
        self._subscribers: list = []

    def subscribe(self, callback):
        """Register *callback*; returns a zero-arg function that unsubscribes it."""
        self._subscribers.append(callback)

        def _unsubscribe():
            self.unsubscribe(callback)

        return _unsubscribe

    def unsubscribe(self, callback):
        try:
            self._subscribers.remove(callback)
        except ValueError:
            pass

    def publish(self, *args, **kwargs):
        # Iterate over a copy so callbacks may unsubscribe themselves
        for callback in list(self._subscribers):
            try:
                callback(*args, **kwargs)
            except Exception as e:
                log.warning("%s observer %r failed: %s", self.name or "event", callback, e)

    def __len__(self):
        return len(self._subscribers)
