# Bedtime Queue
# Copyright (C) 2026 Bedtime Queue contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Players — the two places a queued story can actually be heard.

  local.py   — this machine's speaker, via an mpv subprocess
  remote.py  — a separate playback device driven over HTTP and polled for status

Both only execute "play story N"; which N comes next is the playlist's
AdvancePolicy's call.
"""
