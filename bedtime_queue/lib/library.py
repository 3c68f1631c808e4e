# Bedtime Queue
# Copyright (C) 2026 Bedtime Queue contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""
StoryLibrary — client for the story backend that owns the records.

Backend API (JSON):
  GET    /api/stories                 — all stories, newest first
  PUT    /api/stories/{id}            — {storyText, storyType, customTopic}
  PATCH  /api/stories/{id}/favorite   — {isFavorite}
  GET    /audio/{file_name}           — the generated recording

Optional server-side queue mirror (``library.sync_queue``):
  PUT    /api/queue                   — {ids}
  POST   /api/queue/add               — {id}
  DELETE /api/queue/{id}

The queue only reads from here; generation and TTS happen elsewhere and show
up as an ``audio`` file on the next listing.
"""

import asyncio
import logging
import urllib.parse

import aiohttp

from .config import cfg
from ..playlist.models import StoryRef

log = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:3001"


class StoryLibrary:
    def __init__(self, base_url: str | None = None, session: aiohttp.ClientSession | None = None,
                 sync_queue: bool | None = None):
        self.base_url = (base_url or cfg("library", "base_url", default=DEFAULT_BASE_URL)).rstrip("/")
        if sync_queue is None:
            sync_queue = bool(cfg("library", "sync_queue", default=False))
        self.sync_queue = sync_queue
        self._http_session = session
        self._owns_session = session is None

    async def start(self):
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=10),
                headers={"User-Agent": "BedtimeQueue/1.0"},
            )

    async def close(self):
        if self._http_session and self._owns_session:
            await self._http_session.close()
        self._http_session = None

    # ── Collaborator interface ──

    def playable_url(self, audio_ref: str | None) -> str | None:
        """Turn a story's audio reference into a URL the player can open."""
        if not audio_ref:
            return None
        if "://" in audio_ref:
            return audio_ref
        if audio_ref.startswith("/"):
            return f"{self.base_url}{audio_ref}"
        return f"{self.base_url}/audio/{urllib.parse.quote(audio_ref)}"

    async def list_stories(self) -> list[StoryRef] | None:
        """All library stories, or None if the backend could not be reached."""
        data = await self._request("GET", "/api/stories")
        if data is None:
            return None
        if not isinstance(data, list):
            log.warning("Unexpected /api/stories payload: %s", type(data).__name__)
            return None
        stories = []
        for item in data:
            if isinstance(item, dict) and item.get("id") is not None:
                stories.append(StoryRef.from_api(item))
        return stories

    async def update_story(self, story: StoryRef, patch: dict) -> StoryRef | None:
        """Edit text/type/topic.  Returns the updated record, or None on failure."""
        body = {
            "storyText": patch.get("text", story.text),
            "storyType": patch.get("story_type", story.story_type),
            "customTopic": patch.get("custom_topic", story.custom_topic),
        }
        data = await self._request("PUT", f"/api/stories/{story.id}", json=body)
        if not isinstance(data, dict) or data.get("id") is None:
            return None
        updated = StoryRef.from_api(data)
        # PUT echoes the bare story row; keep the audio we already know about
        if not updated.audio_ref and story.audio_ref:
            updated = updated.with_patch(audio_ref=story.audio_ref)
        return updated

    async def toggle_favorite(self, story: StoryRef) -> bool | None:
        """Flip the favorite flag.  Returns the new value, or None on failure."""
        wanted = not story.is_favorite
        data = await self._request("PATCH", f"/api/stories/{story.id}/favorite",
                                   json={"isFavorite": wanted})
        if data is None:
            return None
        return wanted

    # ── Server-side queue mirror (best effort) ──

    async def sync_set_queue(self, ids: list[str]):
        if self.sync_queue:
            await self._request("PUT", "/api/queue", json={"ids": list(ids)})

    async def sync_add(self, sid: str):
        if self.sync_queue:
            await self._request("POST", "/api/queue/add", json={"id": sid})

    async def sync_remove(self, sid: str):
        if self.sync_queue:
            await self._request("DELETE", f"/api/queue/{sid}")

    # ── HTTP helper ──

    async def _request(self, method: str, path: str, json=None):
        if self._http_session is None:
            log.warning("Library session not started, skipping %s %s", method, path)
            return None
        try:
            async with self._http_session.request(
                method, f"{self.base_url}{path}", json=json
            ) as resp:
                resp.raise_for_status()
                data = await resp.json(content_type=None)
                return data if data is not None else {}
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            log.warning("Library %s %s timed out", method, path)
        except aiohttp.ClientError as e:
            log.warning("Library %s %s failed: %s", method, path, e)
        except ValueError as e:
            log.warning("Library %s %s returned invalid JSON: %s", method, path, e)
        return None
