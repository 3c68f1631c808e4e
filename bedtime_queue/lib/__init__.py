# Bedtime Queue
# Copyright (C) 2026 Bedtime Queue contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Shared plumbing: config, persistence, events, periodic tasks, library client."""
