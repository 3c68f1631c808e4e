# Bedtime Queue
# Copyright (C) 2026 Bedtime Queue contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""
QueueOrchestrator — one playlist, two places to play it.

Wires the queue store, the advance policy, the local player and the remote
device client together:

    command → QueueStore mutation → persistence write
            → (if playback affected) LocalPlayer / RemoteSyncClient
    local "ended" / remote poll → AdvancePolicy → next QueueStore read

The advance policy does not care where audio plays.  Local and remote
stepping both go through it; only the execution differs (``LocalPlayer.play``
versus ``RemoteSyncClient.toggle``).

Everything observable is published as ``(reason, snapshot)`` on ``changes``.
"""

import logging

from .lib.config import cfg
from .lib.events import Observable
from .lib.periodic import PeriodicTask
from .playlist.advance import AdvancePolicy
from .playlist.models import Phase, StoryRef, story_id
from .playlist.reorder import move_id
from .playlist.store import QueueStore

log = logging.getLogger(__name__)

DEFAULT_LIBRARY_REFRESH = 30


class QueueOrchestrator:
    def __init__(self, library, persistence, local, remote,
                 shuffle: bool | None = None, repeat_all: bool | None = None,
                 rng=None, library_refresh: float | None = None):
        self.library = library
        self.local = local
        self.remote = remote
        if shuffle is None:
            shuffle = bool(cfg("queue", "shuffle", default=False))
        if repeat_all is None:
            repeat_all = bool(cfg("queue", "repeat_all", default=True))
        if library_refresh is None:
            library_refresh = cfg("library", "refresh_interval", default=DEFAULT_LIBRARY_REFRESH)

        self.store = QueueStore(persistence)
        self.policy = AdvancePolicy(self.store, shuffle=shuffle, repeat_all=repeat_all, rng=rng)
        self.persistence = persistence
        self.changes = Observable("orchestrator")
        self.library_refresher = PeriodicTask(self.refresh_library, library_refresh,
                                              name="library-refresh")

        self._library: list[StoryRef] = []
        self._advancing = 0
        self._failures = 0

        self.local.on_ended = self._on_local_ended
        self.store.changes.subscribe(lambda reason, _store: self._publish(reason))
        self.local.changes.subscribe(lambda _state: self._publish("playback"))
        self.remote.changes.subscribe(lambda _status: self._publish("remote"))

    # ── Lifecycle ──

    async def start(self):
        await self.library.start()
        await self.load()
        await self.remote.start()
        self.library_refresher.start(immediate=False)

    async def close(self):
        await self.library_refresher.aclose()
        await self.local.stop()
        await self.remote.close()
        await self.library.close()

    async def load(self):
        """Restore the persisted order (or seed it) against the current library."""
        stories = await self.library.list_stories()
        if stories is None:
            log.warning("Library unavailable at load, starting with an empty queue")
            stories = []
        self._library = stories
        ids, seeded = self.persistence.load(stories)
        by_id = {s.id: s for s in stories}
        self.store.load([by_id[sid] for sid in ids])
        log.info("Queue loaded: %d entries%s", len(self.store), " (seeded)" if seeded else "")
        if seeded:
            await self.library.sync_set_queue(self.store.ids())

    async def refresh_library(self) -> bool:
        """Reconcile queued entries with the latest library records."""
        stories = await self.library.list_stories()
        if stories is None:
            return False
        self._library = stories
        return self.store.reconcile(stories)

    # ── Queue mutations ──

    def find_story(self, sid) -> StoryRef | None:
        sid = story_id(sid)
        for story in self._library:
            if story.id == sid:
                return story
        return self.store.get(sid)

    def library_candidates(self, search: str = "") -> list[StoryRef]:
        """Library stories not yet queued, filtered by a case-insensitive search."""
        needle = (search or "").strip().lower()
        queued = set(self.store.ids())
        result = []
        for story in self._library:
            if story.id in queued:
                continue
            if needle:
                haystack = " ".join(filter(None, (story.text, story.custom_topic, story.story_type)))
                if needle not in haystack.lower():
                    continue
            result.append(story)
        return result

    async def add(self, sid) -> bool:
        story = self.find_story(sid)
        if story is None:
            log.warning("Cannot queue unknown story %s", sid)
            return False
        if not self.store.add(story):
            return False
        await self.library.sync_add(story.id)
        return True

    async def remove(self, sid) -> bool:
        if not self.store.remove(sid):
            return False
        await self.library.sync_remove(story_id(sid))
        return True

    async def move(self, source_id, target_id) -> bool:
        """Apply a drag outcome: *source_id* dropped onto *target_id*."""
        ids = move_id(self.store.ids(), story_id(source_id), story_id(target_id))
        return await self.reorder(ids)

    async def reorder(self, ids) -> bool:
        if not self.store.reorder(ids):
            return False
        await self.library.sync_set_queue(self.store.ids())
        return True

    async def clear(self):
        self.store.clear()
        await self.local.stop()
        await self.library.sync_set_queue([])

    # ── Local playback ──

    async def play_at(self, index: int) -> int:
        self._failures = 0
        return await self._execute(self.policy.play_at(int(index)))

    async def next(self) -> int | None:
        return await self._execute(self.policy.next())

    async def prev(self) -> int | None:
        return await self._execute(self.policy.prev())

    async def stop(self):
        await self.local.stop()
        self.store.clear_current()

    async def toggle_play(self):
        """Pause/resume the current story, or start from the top when idle."""
        state = self.local.state
        if state.is_playing:
            await self.local.pause()
        elif state.is_paused:
            await self.local.resume()
        else:
            index = self.store.current_index
            await self.play_at(index if index != -1 else 0)

    async def seek(self, seconds: float):
        return await self.local.seek(seconds)

    async def set_volume(self, volume: float):
        await self.local.set_volume(volume)

    async def set_rate(self, rate: float):
        await self.local.set_rate(rate)

    async def toggle_mute(self):
        await self.local.toggle_mute()

    def set_shuffle(self, enabled: bool):
        self.policy.shuffle = bool(enabled)
        log.info("Shuffle: %s", "on" if self.policy.shuffle else "off")
        self._publish("shuffle")

    def set_repeat_all(self, enabled: bool):
        self.policy.repeat_all = bool(enabled)
        log.info("Repeat all: %s", "on" if self.policy.repeat_all else "off")
        self._publish("repeat")

    async def _execute(self, index: int | None):
        """Make the local player match a selection made by the policy."""
        if index is None:
            return None
        if index == -1:
            await self.local.stop()
            return -1
        entry = self.store.entry_at(index)
        url = self.library.playable_url(entry.audio_ref)
        self._advancing += 1
        try:
            await self.local.play(url, entry.id)
        finally:
            self._advancing -= 1
        return self.store.current_index

    async def _on_local_ended(self, sid: str, error: bool):
        if error:
            self._failures += 1
            # Every entry failed in a row: nothing here will ever play
            if self._failures >= max(1, len(self.policy.playable_indices())):
                log.warning("%d consecutive playback failures, going idle", self._failures)
                self._failures = 0
                self.store.clear_current()
                return
        else:
            self._failures = 0
        index = await self.next()
        if index == -1:
            log.info("End of queue reached")

    # ── Remote device ──

    async def remote_toggle(self, sid=None) -> bool:
        """Start/stop a story on the device; defaults to the current (or first) entry."""
        if sid is None:
            entry = self.store.current or self.store.entry_at(0)
        else:
            entry = self.find_story(sid)
        if entry is None or not entry.playable:
            log.info("Remote toggle ignored: no playable story")
            return False
        return await self.remote.toggle(entry.id)

    async def remote_next(self) -> bool:
        return await self._remote_step(self.policy.next)

    async def remote_prev(self) -> bool:
        return await self._remote_step(self.policy.prev)

    async def remote_stop(self) -> bool:
        """Stop the device if it reports playing; the story id may be absent."""
        if not self.remote.status.playing:
            return False
        return await self.remote.stop()

    async def _remote_step(self, step) -> bool:
        if self.remote.busy:
            log.debug("Remote busy, ignoring step")
            return False
        index = step()
        if index is None:
            return False
        if index == -1:
            return await self.remote.stop()
        # Resolved by id: a reorder during the request cannot redirect it
        return await self.remote.toggle(self.store.entry_at(index).id)

    def set_visible(self, visible: bool):
        self.remote.set_visible(visible)
        self._publish("visibility")

    # ── Story edits ──

    async def update_story(self, sid, patch: dict) -> StoryRef | None:
        """Edit a story's text/type/topic in place; playback is not interrupted."""
        story = self.find_story(sid)
        if story is None:
            return None
        updated = await self.library.update_story(story, patch)
        if updated is None:
            return None
        self._replace_in_library(updated)
        return updated

    async def toggle_favorite(self, sid) -> bool | None:
        story = self.find_story(sid)
        if story is None:
            return None
        value = await self.library.toggle_favorite(story)
        if value is None:
            return None
        self._replace_in_library(story.with_patch(is_favorite=value))
        return value

    def _replace_in_library(self, story: StoryRef):
        self._library = [story if s.id == story.id else s for s in self._library]
        if story.id in self.store:
            self.store.reconcile([story if s.id == story.id else s for s in self.store])

    # ── Snapshot ──

    @property
    def phase(self) -> Phase:
        return Phase.ADVANCING if self._advancing else self.policy.phase

    def snapshot(self) -> dict:
        current_id = self.store.current_id if self.store.current_index != -1 else None
        entries = []
        for entry in self.store:
            d = entry.to_dict()
            d["current"] = entry.id == current_id
            d["remote_playing"] = self.remote.status.is_playing(entry.id)
            entries.append(d)
        playback = self.local.get_status()
        playback["current_index"] = self.store.current_index
        return {
            "entries": entries,
            "current_index": self.store.current_index,
            "current_id": current_id,
            "phase": self.phase.value,
            "shuffle": self.policy.shuffle,
            "repeat_all": self.policy.repeat_all,
            "playback": playback,
            "remote": self.remote.get_status(),
        }

    def _publish(self, reason: str):
        if len(self.changes):
            self.changes.publish(reason, self.snapshot())
