# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Processing state backends for feedbot."""

from feedbot.database.json_store import JsonStateStore
from feedbot.database.sqlite import SQLiteStateStore

__all__ = ["JsonStateStore", "SQLiteStateStore"]
