# Bedtime Queue
# Copyright (C) 2026 Bedtime Queue contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""
LocalPlayer — plays one story at a time on this machine's speaker.

Audio is rendered by an external command (mpv by default).  With mpv the
player is steered over its JSON IPC socket (pause, seek, volume, speed,
mute, position); any other command gets SIGSTOP/SIGCONT for pause and is
restarted for everything else.

``on_ended(story_id, error)`` is awaited exactly once per track that
finishes on its own.  A track that fails to start or exits non-zero is
reported the same way (with ``error=True``) so the queue keeps moving.  An
explicit ``stop()`` or a replacement ``play()`` never fires it.
"""

import asyncio
import json
import logging
import os
import shlex
import signal
import socket
import subprocess

from ..lib.config import cfg
from ..lib.events import Observable
from ..playlist.models import PlaybackState

log = logging.getLogger(__name__)

DEFAULT_PLAYER_CMD = "mpv --no-video --no-terminal"
DEFAULT_IPC_SOCKET = "/tmp/bedtime-queue-mpv.sock"

MIN_RATE = 0.25
MAX_RATE = 4.0


class LocalPlayer:
    POLL_INTERVAL = 0.25     # seconds between process checks
    PROGRESS_EVERY = 4       # refresh position every N checks (mpv only)

    def __init__(self, command: str | None = None, ipc_socket: str | None = None,
                 volume: float | None = None):
        cmd = command or cfg("local", "player_cmd", default=DEFAULT_PLAYER_CMD)
        self.command = shlex.split(cmd)
        self._ipc_socket = ipc_socket or cfg("local", "ipc_socket", default=DEFAULT_IPC_SOCKET)
        if volume is None:
            volume = cfg("local", "volume", default=0.75)
        self.state = PlaybackState(volume=_clamp(float(volume), 0.0, 1.0))
        self.process: subprocess.Popen | None = None
        self.url: str | None = None
        self.changes = Observable("local-player")
        self.on_ended = None
        self._watcher_task: asyncio.Task | None = None
        self._pending: set[asyncio.Task] = set()
        # play/stop swap processes across an await; one at a time
        self._lock = asyncio.Lock()
        self._stopped_explicitly = False
        self._request_id = 0

    @property
    def uses_mpv(self) -> bool:
        return bool(self.command) and os.path.basename(self.command[0]) == "mpv"

    @property
    def active(self) -> bool:
        return self.process is not None

    # ── Transport ──

    async def play(self, url: str, story_id: str) -> bool:
        """Start *url* for *story_id*, replacing whatever is playing."""
        async with self._lock:
            return await self._play(url, story_id)

    async def _play(self, url: str, story_id: str) -> bool:
        self._stopped_explicitly = True
        await self._stop()
        self._stopped_explicitly = False

        self.url = url
        self.state.story_id = story_id
        try:
            self.process = subprocess.Popen(
                self._build_args(url),
                stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        except OSError as e:
            log.error("Playback failed for story %s: %s", story_id, e)
            self._reset()
            self._publish()
            task = asyncio.create_task(self._fire_ended(story_id, error=True))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
            return False

        self.state.is_playing = True
        self.state.is_paused = False
        self.state.progress_seconds = 0.0
        self.state.duration_seconds = 0.0
        self._watcher_task = asyncio.create_task(self._watch_process(story_id))
        log.info("Playing story %s (%s)", story_id, url)
        self._publish()
        return True

    async def pause(self) -> bool:
        if not self.process or not self.state.is_playing:
            return False
        if self.uses_mpv:
            await self._mpv_command("set_property", "pause", True)
        else:
            self.process.send_signal(signal.SIGSTOP)
        self.state.is_playing = False
        self.state.is_paused = True
        self._publish()
        return True

    async def resume(self) -> bool:
        if not self.process or not self.state.is_paused:
            return False
        if self.uses_mpv:
            await self._mpv_command("set_property", "pause", False)
        else:
            self.process.send_signal(signal.SIGCONT)
        self.state.is_playing = True
        self.state.is_paused = False
        self._publish()
        return True

    async def stop(self):
        """Explicit stop.  Does not fire ``on_ended``."""
        async with self._lock:
            await self._stop()

    async def _stop(self):
        if self._watcher_task:
            self._watcher_task.cancel()
            self._watcher_task = None
        if self.process:
            proc, self.process = self.process, None
            if self.state.is_paused and not self.uses_mpv:
                proc.send_signal(signal.SIGCONT)
            proc.terminate()
            try:
                await asyncio.get_running_loop().run_in_executor(None, proc.wait, 2)
            except subprocess.TimeoutExpired:
                proc.kill()
            log.info("Stopped story %s", self.state.story_id)
            self._reset()
            self._publish()

    async def seek(self, seconds: float) -> bool:
        if not self.process or not self.uses_mpv:
            return False
        seconds = max(0.0, float(seconds))
        if self.state.duration_seconds:
            seconds = min(seconds, self.state.duration_seconds)
        await self._mpv_command("seek", seconds, "absolute")
        self.state.progress_seconds = seconds
        self._publish()
        return True

    async def set_volume(self, volume: float):
        self.state.volume = _clamp(float(volume), 0.0, 1.0)
        await self._apply_volume()
        self._publish()

    async def toggle_mute(self):
        self.state.muted = not self.state.muted
        if self.process and self.uses_mpv:
            await self._mpv_command("set_property", "mute", self.state.muted)
        self._publish()

    async def set_rate(self, rate: float):
        self.state.rate = _clamp(float(rate), MIN_RATE, MAX_RATE)
        if self.process and self.uses_mpv:
            await self._mpv_command("set_property", "speed", self.state.rate)
        self._publish()

    def get_status(self) -> dict:
        status = self.state.to_dict()
        status["url"] = self.url
        return status

    # ── Internals ──

    def _build_args(self, url: str) -> list[str]:
        args = list(self.command)
        if self.uses_mpv:
            args += [
                f"--input-ipc-server={self._ipc_socket}",
                f"--volume={round(self.state.volume * 100)}",
                f"--speed={self.state.rate}",
            ]
            if self.state.muted:
                args.append("--mute=yes")
        args.append(url)
        return args

    async def _apply_volume(self):
        if self.process and self.uses_mpv:
            await self._mpv_command("set_property", "volume", round(self.state.volume * 100))

    def _reset(self):
        self.url = None
        self.state.story_id = None
        self.state.is_playing = False
        self.state.is_paused = False
        self.state.progress_seconds = 0.0
        self.state.duration_seconds = 0.0

    def _publish(self):
        self.changes.publish(self.state)

    async def _watch_process(self, story_id: str):
        """Poll the process; report a natural exit through ``on_ended``."""
        ticks = 0
        try:
            while self.process and self.process.poll() is None:
                await asyncio.sleep(self.POLL_INTERVAL)
                ticks += 1
                if self.uses_mpv and self.state.is_playing and ticks % self.PROGRESS_EVERY == 0:
                    await self._refresh_progress()
            if self._stopped_explicitly or self.state.story_id != story_id or not self.process:
                return
            code = self.process.returncode
            self.process = None
            self._watcher_task = None
            self._reset()
            self._publish()
        except asyncio.CancelledError:
            return

        error = code not in (0, None)
        if error:
            log.warning("Story %s failed (exit %s), skipping", story_id, code)
        else:
            log.info("Story %s ended naturally", story_id)
        await self._fire_ended(story_id, error=error)

    async def _fire_ended(self, story_id: str, error: bool):
        if not self.on_ended:
            return
        try:
            await self.on_ended(story_id, error)
        except Exception:
            log.exception("on_ended handler failed")

    async def _refresh_progress(self):
        pos = await self._mpv_request("get_property", "time-pos")
        dur = await self._mpv_request("get_property", "duration")
        if isinstance(pos, (int, float)):
            self.state.progress_seconds = float(pos)
        if isinstance(dur, (int, float)):
            self.state.duration_seconds = float(dur)
        self._publish()

    async def _mpv_command(self, *args):
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._mpv_command_sync, *args)

    async def _mpv_request(self, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._mpv_request_sync, *args)

    def _mpv_command_sync(self, *args):
        s = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            s.connect(self._ipc_socket)
            cmd = json.dumps({"command": list(args)}) + "\n"
            s.sendall(cmd.encode())
        except Exception as e:
            log.error("mpv IPC error: %s", e)
        finally:
            s.close()

    def _mpv_request_sync(self, *args):
        """Send a command and return its ``data`` field, or None."""
        self._request_id += 1
        request_id = self._request_id
        s = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        s.settimeout(0.5)
        try:
            s.connect(self._ipc_socket)
            s.sendall((json.dumps({"command": list(args), "request_id": request_id}) + "\n").encode())
            buf = b""
            while True:
                chunk = s.recv(4096)
                if not chunk:
                    return None
                buf += chunk
                *lines, buf = buf.split(b"\n")
                for line in lines:
                    try:
                        msg = json.loads(line)
                    except ValueError:
                        continue
                    # mpv interleaves event lines with replies
                    if msg.get("request_id") == request_id:
                        return msg.get("data") if msg.get("error") == "success" else None
        except Exception as e:
            log.debug("mpv IPC request %s failed: %s", args, e)
            return None
        finally:
            s.close()


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))
