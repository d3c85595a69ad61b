"""
Storage module for Rewind.

This module defines the persistent history tables and provides a
connection owner for callers without a connection of their own.

Tables:
    - history_undo: inverse statements for undo, grouped by history_group
    - history_redo: inverse statements for redo, same layout
    - history_stats: exactly one row (id = 1) holding current group
      numbers and the group limit
"""

from rewind.store.db import (
    HistoryDB,
    calculate_history_size,
    history_tables_exist,
    initialize_history,
)

__all__ = [
    "HistoryDB",
    "calculate_history_size",
    "history_tables_exist",
    "initialize_history",
]
