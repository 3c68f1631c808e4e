"""
Shared pytest fixtures for the queue tests.

Tests use test doubles (fake library, fake local player, fake remote device
client) so nothing spawns audio or touches the network unless a test builds
its own in-process aiohttp server.  Config is pinned to an empty dict so
every ``cfg()`` lookup returns its default.
"""

import asyncio
import random

import pytest

from bedtime_queue.lib import config
from bedtime_queue.lib.events import Observable
from bedtime_queue.lib.persistence import KeyValueStore, QueuePersistence
from bedtime_queue.orchestrator import QueueOrchestrator
from bedtime_queue.playlist.models import PlaybackState, RemoteStatus, StoryRef


def make_story(sid, audio=True, text=None, topic=None) -> StoryRef:
    return StoryRef(
        id=str(sid),
        text=text or f"Story {sid} about a sleepy dragon",
        story_type="fairy_tale",
        custom_topic=topic,
        created_at="2026-10-01T20:00:00Z",
        audio_ref=f"story-{sid}.mp3" if audio else None,
    )


def run(coro):
    return asyncio.run(coro)


class FakeLibrary:
    def __init__(self, stories=()):
        self.stories = list(stories)
        self.available = True
        self.synced = []
        self.started = False

    async def start(self):
        self.started = True

    async def close(self):
        self.started = False

    def playable_url(self, audio_ref):
        return f"http://library/audio/{audio_ref}" if audio_ref else None

    async def list_stories(self):
        return list(self.stories) if self.available else None

    async def update_story(self, story, patch):
        updated = story.with_patch(**patch)
        self.stories = [updated if s.id == story.id else s for s in self.stories]
        return updated

    async def toggle_favorite(self, story):
        return not story.is_favorite

    async def sync_set_queue(self, ids):
        self.synced.append(("set", list(ids)))

    async def sync_add(self, sid):
        self.synced.append(("add", sid))

    async def sync_remove(self, sid):
        self.synced.append(("remove", sid))


class FakeLocalPlayer:
    def __init__(self):
        self.state = PlaybackState()
        self.changes = Observable("fake-local")
        self.on_ended = None
        self.played = []
        self.stops = 0

    async def play(self, url, story_id):
        self.played.append((url, story_id))
        self.state.story_id = story_id
        self.state.is_playing = True
        self.state.is_paused = False
        self.changes.publish(self.state)
        return True

    async def stop(self):
        self.stops += 1
        self.state.story_id = None
        self.state.is_playing = False
        self.state.is_paused = False

    async def pause(self):
        self.state.is_playing = False
        self.state.is_paused = True
        return True

    async def resume(self):
        self.state.is_playing = True
        self.state.is_paused = False
        return True

    async def seek(self, seconds):
        self.state.progress_seconds = seconds
        return True

    async def set_volume(self, volume):
        self.state.volume = volume

    async def set_rate(self, rate):
        self.state.rate = rate

    async def toggle_mute(self):
        self.state.muted = not self.state.muted

    def get_status(self):
        return self.state.to_dict()

    async def finish(self, error=False):
        """Simulate the current track running out (or failing)."""
        sid = self.state.story_id
        self.state.story_id = None
        self.state.is_playing = False
        await self.on_ended(sid, error)


class FakeRemote:
    def __init__(self):
        self.status = RemoteStatus()
        self.changes = Observable("fake-remote")
        self.busy = False
        self.visible = True
        self.toggled = []
        self.stopped = 0

    async def start(self):
        pass

    async def close(self):
        pass

    def set_visible(self, visible):
        self.visible = visible

    async def toggle(self, sid):
        if self.busy:
            return False
        self.toggled.append(sid)
        if self.status.is_playing(sid):
            self.status = RemoteStatus()
        else:
            self.status = RemoteStatus(playing=True, story_id=sid)
        self.changes.publish(self.status)
        return True

    async def stop(self):
        self.stopped += 1
        self.status = RemoteStatus()
        return True

    async def refresh_status(self):
        return self.status

    def get_status(self):
        status = self.status.to_dict()
        status["busy"] = self.busy
        return status


@pytest.fixture(autouse=True)
def empty_config(monkeypatch):
    """Every cfg() call returns its default."""
    monkeypatch.setattr(config, "_config", {})


@pytest.fixture
def persistence(tmp_path):
    return QueuePersistence(KeyValueStore(str(tmp_path / "store.json")))


@pytest.fixture
def abc_stories():
    """A (audio), B (no audio), C (audio)."""
    return [make_story("A"), make_story("B", audio=False), make_story("C")]


@pytest.fixture
def make_orchestrator(persistence):
    def _make(stories, shuffle=False, repeat_all=False, seed=0):
        library = FakeLibrary(stories)
        orch = QueueOrchestrator(
            library=library,
            persistence=persistence,
            local=FakeLocalPlayer(),
            remote=FakeRemote(),
            shuffle=shuffle,
            repeat_all=repeat_all,
            rng=random.Random(seed),
            library_refresh=3600,
        )
        return orch

    return _make
