"""
Rewind - SQL-native undo/redo history for SQLite databases.

Rewind records history inside the database itself. Triggers on each
tracked table append an inverse SQL statement for every row change to an
undo log; undo replays the newest group of those statements and records
their inverses in a redo log.

- Grouped history: a batch of changes undoes and redoes as one step
- Bounded: the oldest groups are evicted past a configurable limit
- Transactional replay: a failed undo or redo changes nothing
- Portable: all state lives in three tables and the triggers

Example usage:
    from rewind import HistoryEngine

    with HistoryEngine("drill.db", tables=["marcher"]) as engine:
        with engine.group() as conn:
            conn.execute("UPDATE marcher SET name = 'b' WHERE id = 1")
        engine.undo()
"""

__version__ = "0.1.0"
__author__ = "Rewind Contributors"

from rewind.engine import (
    HistoryEngine,
    HistoryError,
    HistoryResponse,
    execute_history_action,
    perform_redo,
    perform_undo,
)
from rewind.groups import (
    clear_most_recent_redo,
    decrement_last_group,
    flatten_groups_above,
    get_current_group,
    increment_group,
    increment_undo_group,
    refresh_current_groups,
)
from rewind.schema import HistoryConfig, HistoryDirection, load_config
from rewind.store import HistoryDB, calculate_history_size, initialize_history
from rewind.triggers import create_undo_triggers, drop_triggers, install_triggers

__all__ = [
    "__version__",
    "__author__",
    "HistoryConfig",
    "HistoryDB",
    "HistoryDirection",
    "HistoryEngine",
    "HistoryError",
    "HistoryResponse",
    "calculate_history_size",
    "clear_most_recent_redo",
    "create_undo_triggers",
    "decrement_last_group",
    "drop_triggers",
    "execute_history_action",
    "flatten_groups_above",
    "get_current_group",
    "increment_group",
    "increment_undo_group",
    "initialize_history",
    "install_triggers",
    "load_config",
    "perform_redo",
    "perform_undo",
    "refresh_current_groups",
]
