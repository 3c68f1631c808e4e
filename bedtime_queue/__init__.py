# Bedtime Queue
# Copyright (C) 2026 Bedtime Queue contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Bedtime Queue: playback-queue orchestrator for story recordings."""

__version__ = "0.1.0"
