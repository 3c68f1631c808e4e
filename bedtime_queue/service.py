#!/usr/bin/env python3
# Bedtime Queue
# Copyright (C) 2026 Bedtime Queue contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Bedtime Queue service (bedtime-queue)

HTTP + WebSocket surface over the queue orchestrator.  The UI renders the
playlist from ``GET /queue`` and the ``/ws`` push feed, and sends every
gesture as a ``POST /command``.

Port: 8780 (``service.port``)

Routes:
  GET  /queue          — full snapshot
  GET  /status         — service summary
  GET  /library        — stories not yet queued (?search=)
  POST /command        — {"command": "...", ...}
  GET  /ws             — {"type": "queue_update", "reason", "data"} pushes
"""

import asyncio
import json
import logging
import signal

from aiohttp import web

from .lib.config import cfg
from .lib.library import StoryLibrary
from .lib.persistence import DEFAULT_KEY, DEFAULT_SEED_COUNT, KeyValueStore, QueuePersistence
from .orchestrator import QueueOrchestrator
from .players.local import LocalPlayer
from .players.remote import RemoteSyncClient

log = logging.getLogger(__name__)

DEFAULT_PORT = 8780
DEFAULT_STORAGE_PATH = "~/.local/share/bedtime-queue/store.json"


class CommandError(ValueError):
    """A command was malformed or unknown (HTTP 400)."""


class QueueService:
    id = "bedtime-queue"
    name = "Bedtime Queue"

    def __init__(self, orchestrator: QueueOrchestrator, port: int | None = None):
        self.orchestrator = orchestrator
        self.port = port if port is not None else cfg("service", "port", default=DEFAULT_PORT)
        self._ws_clients: set[web.WebSocketResponse] = set()
        self._runner: web.AppRunner | None = None
        self._broadcast_tasks: set[asyncio.Task] = set()
        self.orchestrator.changes.subscribe(self._on_change)
        self._commands = {
            "add": self._cmd_add,
            "remove": self._cmd_remove,
            "move": self._cmd_move,
            "reorder": self._cmd_reorder,
            "clear": self._cmd_clear,
            "play_at": self._cmd_play_at,
            "next": self._cmd_next,
            "prev": self._cmd_prev,
            "stop": self._cmd_stop,
            "toggle": self._cmd_toggle,
            "seek": self._cmd_seek,
            "volume": self._cmd_volume,
            "rate": self._cmd_rate,
            "mute": self._cmd_mute,
            "shuffle": self._cmd_shuffle,
            "repeat": self._cmd_repeat,
            "remote_toggle": self._cmd_remote_toggle,
            "remote_next": self._cmd_remote_next,
            "remote_prev": self._cmd_remote_prev,
            "remote_stop": self._cmd_remote_stop,
            "refresh": self._cmd_refresh,
            "visibility": self._cmd_visibility,
            "update_story": self._cmd_update_story,
            "favorite": self._cmd_favorite,
        }

    # ── App ──

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/queue", self._handle_queue)
        app.router.add_get("/status", self._handle_status)
        app.router.add_get("/library", self._handle_library)
        app.router.add_post("/command", self._handle_command_route)
        app.router.add_options("/command", self._handle_cors)
        app.router.add_get("/ws", self._handle_ws)
        return app

    async def start(self):
        await self.orchestrator.start()
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, "0.0.0.0", self.port)
        await site.start()
        log.info("%s: HTTP + WebSocket on port %d", self.name, self.port)

    async def stop(self):
        for ws in list(self._ws_clients):
            await ws.close()
        self._ws_clients.clear()
        await self.orchestrator.close()
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

    async def run(self):
        """Convenience entry-point: start + wait for signal + stop."""
        await self.start()
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, stop_event.set)
        try:
            await stop_event.wait()
        finally:
            await self.stop()

    # ── CORS ──

    def _cors_headers(self):
        return {
            "Access-Control-Allow-Origin": "*",
            "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
            "Access-Control-Allow-Headers": "Content-Type",
        }

    async def _handle_cors(self, request):
        return web.Response(headers=self._cors_headers())

    # ── Read routes ──

    async def _handle_queue(self, request):
        return web.json_response(self.orchestrator.snapshot(), headers=self._cors_headers())

    async def _handle_status(self, request):
        orch = self.orchestrator
        return web.json_response({
            "service": self.id,
            "queue_length": len(orch.store),
            "phase": orch.phase.value,
            "remote": orch.remote.get_status(),
            "ws_clients": len(self._ws_clients),
        }, headers=self._cors_headers())

    async def _handle_library(self, request):
        search = request.query.get("search", "")
        stories = [s.to_dict() for s in self.orchestrator.library_candidates(search)]
        return web.json_response({"stories": stories}, headers=self._cors_headers())

    # ── Commands ──

    async def _handle_command_route(self, request):
        try:
            try:
                data = await request.json()
            except json.JSONDecodeError:
                raise CommandError("Body must be JSON")
            if not isinstance(data, dict):
                raise CommandError("Body must be a JSON object")
            cmd = data.get("command", "")
            result = await self.handle_command(cmd, data)
            resp = {"status": "ok", "command": cmd}
            if result:
                resp.update(result)
            return web.json_response(resp, headers=self._cors_headers())
        except CommandError as e:
            return web.json_response(
                {"status": "error", "message": str(e)},
                status=400,
                headers=self._cors_headers(),
            )
        except Exception as e:
            log.exception("Command error")
            return web.json_response(
                {"status": "error", "message": str(e)},
                status=500,
                headers=self._cors_headers(),
            )

    async def handle_command(self, cmd: str, data: dict) -> dict:
        handler = self._commands.get(cmd)
        if handler is None:
            raise CommandError(f"Unknown command: {cmd}")
        return await handler(data) or {}

    async def _cmd_add(self, data):
        return {"added": await self.orchestrator.add(_require(data, "id"))}

    async def _cmd_remove(self, data):
        return {"removed": await self.orchestrator.remove(_require(data, "id"))}

    async def _cmd_move(self, data):
        moved = await self.orchestrator.move(_require(data, "source"), _require(data, "target"))
        return {"moved": moved}

    async def _cmd_reorder(self, data):
        ids = _require(data, "ids")
        if not isinstance(ids, list):
            raise CommandError("ids must be a list")
        return {"reordered": await self.orchestrator.reorder(ids)}

    async def _cmd_clear(self, data):
        await self.orchestrator.clear()

    async def _cmd_play_at(self, data):
        return {"current_index": await self.orchestrator.play_at(_number(data, "index", int))}

    async def _cmd_next(self, data):
        await self.orchestrator.next()
        return {"current_index": self.orchestrator.store.current_index}

    async def _cmd_prev(self, data):
        await self.orchestrator.prev()
        return {"current_index": self.orchestrator.store.current_index}

    async def _cmd_stop(self, data):
        await self.orchestrator.stop()

    async def _cmd_toggle(self, data):
        await self.orchestrator.toggle_play()

    async def _cmd_seek(self, data):
        return {"seeked": await self.orchestrator.seek(_number(data, "seconds", float))}

    async def _cmd_volume(self, data):
        await self.orchestrator.set_volume(_number(data, "volume", float))

    async def _cmd_rate(self, data):
        await self.orchestrator.set_rate(_number(data, "rate", float))

    async def _cmd_mute(self, data):
        await self.orchestrator.toggle_mute()

    async def _cmd_shuffle(self, data):
        enabled = _flag(data, "enabled")
        self.orchestrator.set_shuffle(not self.orchestrator.policy.shuffle if enabled is None else enabled)

    async def _cmd_repeat(self, data):
        enabled = _flag(data, "enabled")
        self.orchestrator.set_repeat_all(not self.orchestrator.policy.repeat_all if enabled is None else enabled)

    async def _cmd_remote_toggle(self, data):
        return {"sent": await self.orchestrator.remote_toggle(data.get("id"))}

    async def _cmd_remote_next(self, data):
        return {"sent": await self.orchestrator.remote_next()}

    async def _cmd_remote_prev(self, data):
        return {"sent": await self.orchestrator.remote_prev()}

    async def _cmd_remote_stop(self, data):
        return {"sent": await self.orchestrator.remote_stop()}

    async def _cmd_refresh(self, data):
        await self.orchestrator.remote.refresh_status()
        return {"reconciled": await self.orchestrator.refresh_library()}

    async def _cmd_visibility(self, data):
        self.orchestrator.set_visible(_flag(data, "visible", required=True))

    async def _cmd_update_story(self, data):
        patch = data.get("patch") or {}
        if not isinstance(patch, dict):
            raise CommandError("patch must be an object")
        updated = await self.orchestrator.update_story(_require(data, "id"), patch)
        return {"story": updated.to_dict() if updated else None}

    async def _cmd_favorite(self, data):
        return {"is_favorite": await self.orchestrator.toggle_favorite(_require(data, "id"))}

    # ── WebSocket push ──

    async def _handle_ws(self, request):
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        self._ws_clients.add(ws)
        log.info("WebSocket client connected (%d total)", len(self._ws_clients))
        try:
            await ws.send_json({
                "type": "queue_update",
                "reason": "client_connect",
                "data": self.orchestrator.snapshot(),
            })
            # Push-only; client messages are ignored
            async for _msg in ws:
                pass
        finally:
            self._ws_clients.discard(ws)
            log.info("WebSocket client disconnected (%d remaining)", len(self._ws_clients))
        return ws

    def _on_change(self, reason: str, snapshot: dict):
        if not self._ws_clients:
            return
        task = asyncio.create_task(self.broadcast(snapshot, reason))
        self._broadcast_tasks.add(task)
        task.add_done_callback(self._broadcast_tasks.discard)

    async def broadcast(self, snapshot: dict, reason: str = "update"):
        message = json.dumps({"type": "queue_update", "reason": reason, "data": snapshot})
        disconnected = set()
        for ws in list(self._ws_clients):
            try:
                await ws.send_str(message)
            except Exception:
                disconnected.add(ws)
        self._ws_clients -= disconnected
        if reason != "playback":
            log.debug("Broadcast queue update to %d clients: %s", len(self._ws_clients), reason)


def _require(data: dict, key: str):
    value = data.get(key)
    if value is None:
        raise CommandError(f"Missing '{key}'")
    return value


def _number(data: dict, key: str, kind):
    value = _require(data, key)
    try:
        return kind(value)
    except (TypeError, ValueError):
        raise CommandError(f"'{key}' must be a number")


def _flag(data: dict, key: str, required: bool = False) -> bool | None:
    """A JSON boolean; the string "false" is not one."""
    value = _require(data, key) if required else data.get(key)
    if value is not None and not isinstance(value, bool):
        raise CommandError(f"'{key}' must be true or false")
    return value


def build_service() -> QueueService:
    """Assemble the service from config."""
    persistence = QueuePersistence(
        KeyValueStore(cfg("queue", "storage_path", default=DEFAULT_STORAGE_PATH)),
        key=cfg("queue", "storage_key", default=DEFAULT_KEY),
        seed_count=cfg("queue", "seed_count", default=DEFAULT_SEED_COUNT),
    )
    orchestrator = QueueOrchestrator(
        library=StoryLibrary(),
        persistence=persistence,
        local=LocalPlayer(),
        remote=RemoteSyncClient(),
    )
    return QueueService(orchestrator)


def main():
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    service = build_service()
    asyncio.run(service.run())


if __name__ == "__main__":
    main()
