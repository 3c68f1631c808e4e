# Bedtime Queue
# Copyright (C) 2026 Bedtime Queue contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""
RemoteSyncClient — mirrors playback onto a separate device over HTTP.

Device control API (JSON):
  GET  /api/play/status   — {"playing": bool, "storyId": str?}
  POST /api/play/{id}     — start playback of a story
  POST /api/play/stop     — stop playback

The device is an independently clocked peer, so every command is followed
by a status refresh instead of assuming success; the published status only
ever comes from the device itself.  Failures are logged and swallowed: the
last known status stays put and the next successful poll corrects it.

Only one command is in flight at a time.  A ``toggle`` that arrives while
another is pending is dropped, not queued.

Polling runs on a ``PeriodicTask`` that ``set_visible(False)`` tears down and
``set_visible(True)`` re-arms with an immediate refresh.
"""

import asyncio
import logging

import aiohttp

from ..lib.config import cfg
from ..lib.events import Observable
from ..lib.periodic import PeriodicTask
from ..playlist.models import RemoteStatus, story_id

log = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:3001"
DEFAULT_POLL_INTERVAL = 5


class RemoteSyncClient:
    def __init__(self, base_url: str | None = None, poll_interval: float | None = None,
                 session: aiohttp.ClientSession | None = None,
                 request_timeout: float | None = None):
        self.base_url = (base_url or cfg("remote", "base_url", default=DEFAULT_BASE_URL)).rstrip("/")
        if poll_interval is None:
            poll_interval = cfg("remote", "poll_interval", default=DEFAULT_POLL_INTERVAL)
        if request_timeout is None:
            request_timeout = cfg("remote", "request_timeout")
        # total=None: a hung request just delays the next poll
        self._timeout = aiohttp.ClientTimeout(total=request_timeout)
        self._http_session = session
        self._owns_session = session is None
        self.status = RemoteStatus()
        self.changes = Observable("remote-status")
        self.busy = False
        self.visible = True
        self.poller = PeriodicTask(self.refresh_status, poll_interval, name="remote-status-poll")

    # ── Lifecycle ──

    async def start(self):
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession(timeout=self._timeout)
        if self.visible:
            self.poller.start()
        log.info("Remote device sync -> %s", self.base_url)

    async def close(self):
        await self.poller.aclose()
        if self._http_session and self._owns_session:
            await self._http_session.close()
        self._http_session = None

    def set_visible(self, visible: bool):
        """Gate polling on UI visibility.  Cancels synchronously when hidden."""
        self.visible = bool(visible)
        if self.visible:
            if self._http_session is not None:
                self.poller.start(immediate=True)
        else:
            self.poller.stop()

    # ── Status ──

    async def refresh_status(self) -> RemoteStatus | None:
        data = await self._request("GET", "/api/play/status")
        if not isinstance(data, dict):
            return None
        status = RemoteStatus.from_api(data)
        changed = status != self.status
        self.status = status
        if changed:
            log.info("Remote status: playing=%s story=%s", status.playing, status.story_id)
        self.changes.publish(status)
        return status

    # ── Commands ──

    async def toggle(self, sid) -> bool:
        """Stop *sid* if the device is playing it, otherwise start it.

        With *sid* None the device is stopped if it is playing anything.

        Returns False when dropped because another command is still pending.
        """
        if self.busy:
            log.debug("Remote busy, dropping toggle for %s", sid)
            return False
        self.busy = True
        try:
            sid = story_id(sid)
            # No id: stop whatever the device is playing
            if self.status.is_playing(sid) or (sid is None and self.status.playing):
                await self._request("POST", "/api/play/stop")
            elif sid is None:
                log.info("Remote toggle without a story while the device is idle")
            else:
                await self._request("POST", f"/api/play/{sid}")
            await self.refresh_status()
        finally:
            self.busy = False
        return True

    async def stop(self) -> bool:
        if self.busy:
            log.debug("Remote busy, dropping stop")
            return False
        self.busy = True
        try:
            await self._request("POST", "/api/play/stop")
            await self.refresh_status()
        finally:
            self.busy = False
        return True

    def get_status(self) -> dict:
        status = self.status.to_dict()
        status.update({
            "busy": self.busy,
            "polling": self.poller.running,
            "device": self.base_url,
        })
        return status

    # ── HTTP helper ──

    async def _request(self, method: str, path: str):
        """Issue a request; return the decoded JSON body ({} if none) or None on failure."""
        if self._http_session is None:
            log.warning("Remote session not started, skipping %s %s", method, path)
            return None
        url = f"{self.base_url}{path}"
        try:
            async with self._http_session.request(method, url, timeout=self._timeout) as resp:
                resp.raise_for_status()
                try:
                    data = await resp.json(content_type=None)
                except ValueError:
                    return {}
                return data if data is not None else {}
        except asyncio.CancelledError:
            raise
        except aiohttp.ClientError as e:
            log.warning("Remote %s %s failed: %s", method, path, e)
        except asyncio.TimeoutError:
            log.warning("Remote %s %s timed out", method, path)
        except Exception as e:
            log.error("Remote %s %s unexpected error: %s", method, path, e)
        return None
