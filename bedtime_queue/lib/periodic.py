# Bedtime Queue
# Copyright (C) 2026 Bedtime Queue contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Cancellable, resumable periodic task for asyncio services.

Runs an async callback every *interval* seconds until stopped.  Unlike a
fire-once timer it can be torn down and re-armed any number of times, which
is what the visibility-gated status poller needs.

Usage:
    poller = PeriodicTask(client.refresh_status, interval=5, name="remote-status")
    poller.start()             # immediate call, then every 5s
    poller.stop()              # synchronous cancel
    poller.start()             # re-arm
    await poller.aclose()      # cancel and wait (shutdown)
"""

import asyncio
import logging

log = logging.getLogger(__name__)


class PeriodicTask:
    def __init__(self, callback, interval: float, name: str = "periodic"):
        self.callback = callback
        self.interval = interval
        self.name = name
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, immediate: bool = True) -> bool:
        """Arm the loop.  Returns False if it is already running."""
        if self.running:
            return False
        self._task = asyncio.create_task(self._loop(immediate))
        log.info("%s started (interval=%ss)", self.name, self.interval)
        return True

    def stop(self) -> bool:
        """Cancel the loop without waiting.  Returns False if it was not running."""
        task, self._task = self._task, None
        if task is None or task.done():
            return False
        task.cancel()
        log.info("%s stopped", self.name)
        return True

    async def aclose(self):
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _loop(self, immediate: bool):
        if immediate:
            await self._tick()
        while True:
            await asyncio.sleep(self.interval)
            await self._tick()

    async def _tick(self):
        # A slow callback delays the next tick; ticks never overlap
        try:
            await self.callback()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error("%s callback failed: %s", self.name, e)
