# Bedtime Queue
# Copyright (C) 2026 Bedtime Queue contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Data model shared by the queue, the players and the service surface."""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, replace


class Phase(str, enum.Enum):
    IDLE = "idle"          # no current track
    ACTIVE = "active"      # a track is current, playing or paused
    ADVANCING = "advancing"  # selecting / starting the next track


def story_id(value) -> str | None:
    """Normalise a story id.  The backend hands out integers, the device strings."""
    if value is None or value == "":
        return None
    return str(value)


@dataclass(frozen=True)
class StoryRef:
    """A story record as the queue sees it.

    ``audio_ref`` is set only once text-to-speech has produced a file; without
    it the entry is not playable.
    """

    id: str
    text: str = ""
    story_type: str = ""
    custom_topic: str | None = None
    created_at: str | None = None
    audio_ref: str | None = None
    is_favorite: bool = False

    @property
    def playable(self) -> bool:
        return bool(self.audio_ref)

    @classmethod
    def from_api(cls, data: dict) -> StoryRef:
        """Build from a backend story record (snake_case or camelCase keys)."""
        audio = data.get("audio")
        audio_ref = None
        if isinstance(audio, dict):
            audio_ref = audio.get("file_name") or None
        if not audio_ref:
            audio_ref = data.get("audioUrl") or data.get("audio_ref") or None
        return cls(
            id=story_id(data.get("id")),
            text=data.get("story_text") or data.get("story") or data.get("text") or "",
            story_type=data.get("story_type") or data.get("storyType") or "",
            custom_topic=data.get("custom_topic") or data.get("customTopic") or None,
            created_at=data.get("created_at") or data.get("createdAt"),
            audio_ref=audio_ref,
            is_favorite=bool(data.get("is_favorite") or data.get("isFavorite")),
        )

    def with_patch(self, **changes) -> StoryRef:
        return replace(self, **changes)

    def to_dict(self) -> dict:
        d = asdict(self)
        d["playable"] = self.playable
        return d


@dataclass
class PlaybackState:
    """Local playback status.  ``current_index`` is filled in from the queue."""

    current_index: int = -1
    story_id: str | None = None
    is_playing: bool = False
    is_paused: bool = False
    progress_seconds: float = 0.0
    duration_seconds: float = 0.0
    volume: float = 0.75
    muted: bool = False
    rate: float = 1.0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class RemoteStatus:
    """What the remote device last said it is doing.  Eventually consistent."""

    playing: bool = False
    story_id: str | None = None

    @classmethod
    def from_api(cls, data: dict) -> RemoteStatus:
        playing = bool(data.get("playing"))
        return cls(playing=playing, story_id=story_id(data.get("storyId")) if playing else None)

    def is_playing(self, sid) -> bool:
        return self.playing and self.story_id is not None and self.story_id == story_id(sid)

    def to_dict(self) -> dict:
        return {"playing": self.playing, "storyId": self.story_id}
