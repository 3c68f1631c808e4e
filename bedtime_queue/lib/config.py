# Bedtime Queue
# Copyright (C) 2026 Bedtime Queue contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Per-device settings for the bedtime queue.

Each speaker box carries one JSON object with sections for the service,
the story library, the remote device, the queue and the local player.  The
first readable file wins:

  $BEDTIME_QUEUE_CONFIG, /etc/bedtime-queue/config.json, ./config.json,
  then config/default.json shipped with the package.

A file that is missing, malformed or not an object is skipped.  The result
is read once and cached; ``reload_config()`` re-reads it.

    poll = cfg("remote", "poll_interval", default=5)
"""

import json
import logging
import os

log = logging.getLogger(__name__)

_config: dict | None = None

ENV_CONFIG_PATH = "BEDTIME_QUEUE_CONFIG"

_SEARCH_PATHS = [
    "/etc/bedtime-queue/config.json",
    "config.json",
    os.path.join(os.path.dirname(__file__), "..", "..", "config", "default.json"),
]


def _search_paths() -> list[str]:
    override = os.environ.get(ENV_CONFIG_PATH)
    if override:
        return [override] + _SEARCH_PATHS
    return list(_SEARCH_PATHS)


def _validate(config: dict, path: str) -> None:
    """Warn about missing or suspicious config values."""
    remote = config.get("remote") or {}
    if not remote.get("base_url"):
        log.warning("Config %s: missing remote.base_url, using the localhost default", path)
    interval = remote.get("poll_interval")
    if interval is not None and (not isinstance(interval, (int, float)) or interval <= 0):
        log.warning("Config %s: remote.poll_interval must be a positive number, got %r",
                    path, interval)
    library = config.get("library") or {}
    if not library.get("base_url"):
        log.warning("Config %s: missing library.base_url, using the localhost default", path)
    queue = config.get("queue") or {}
    seed = queue.get("seed_count")
    if seed is not None and (not isinstance(seed, int) or seed < 0):
        log.warning("Config %s: queue.seed_count must be a non-negative integer, got %r",
                    path, seed)


def _read(path: str) -> dict | None:
    """Parse one candidate file; None if it is absent or unusable."""
    try:
        with open(path) as f:
            data = json.load(f)
    except FileNotFoundError:
        return None
    except json.JSONDecodeError as e:
        log.error("Invalid JSON in %s: %s", path, e)
        return None
    if not isinstance(data, dict):
        log.error("Config %s must hold a JSON object, got %s", path, type(data).__name__)
        return None
    return data


def load_config() -> dict:
    """Return the device config, reading it on first use."""
    global _config
    if _config is None:
        for path in _search_paths():
            data = _read(path)
            if data is not None:
                log.info("Config loaded from %s", path)
                _validate(data, path)
                _config = data
                break
        else:
            log.warning("No queue config found, every setting uses its default")
            _config = {}
    return _config


def cfg(section: str, key: str | None = None, *, default=None):
    """Look up ``section`` (or ``section.key``); a missing or null value gives *default*.

    cfg("queue")                           the whole queue section
    cfg("remote", "poll_interval", default=5)
    """
    block = load_config().get(section)
    if key is not None:
        block = block.get(key) if isinstance(block, dict) else None
    return default if block is None else block


def reload_config() -> dict:
    """Drop the cached config and read it again."""
    global _config
    _config = None
    return load_config()
