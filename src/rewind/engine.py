"""
Undo/redo execution for Rewind.

The executor replays the newest group of one history log and lets the
triggers record the compensating statements in the other log.

Execution Flow (one undo or redo):
    1. Locate the newest group in the source log (empty log: no-op)
    2. Collect its statements, newest first
    3. Retarget triggers of the touched tables to the opposite log
    4. Switch foreign key enforcement off
    5. Replay the statements
    6. Restore foreign key enforcement
    7. Delete the replayed group from the source log
    8. Resync both group counters
    9. Put the touched tables back in undo mode (new edits clear redo)

Steps 3, 5, 7, 8 and 9 run inside one savepoint. A failing statement rolls
all of them back, so a failed undo leaves rows, logs, counters and trigger
definitions exactly as they were. Failures are reported in the returned
HistoryResponse and never raised.
"""

import logging
import sqlite3
import traceback
from collections.abc import Iterable
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Generator

from rewind import groups, triggers
from rewind.errors import ReplayStatementError
from rewind.schema import DEFAULT_GROUP_LIMIT, HistoryConfig, HistoryDirection, HistoryEntry, HistoryStats
from rewind.sql import statement_table
from rewind.store import HistoryDB, calculate_history_size

logger = logging.getLogger(__name__)

REPLAY_SAVEPOINT = "rewind_replay"


@dataclass
class HistoryError:
    """
    Failure details of an undo or redo.

    Attributes:
        message: Human-readable error description
        detail: Formatted traceback for diagnostics
    """

    message: str
    detail: str = ""


@dataclass
class HistoryResponse:
    """
    Result of performing an undo or redo.

    Attributes:
        success: Whether the action completed (an empty log counts as success)
        table_names: Tables modified by the action
        sql_statements: Statements executed, in execution order
        error: Failure details when success is False
        direction: The action performed
        group: The group that was replayed, None for a no-op
    """

    success: bool
    table_names: set[str] = field(default_factory=set)
    sql_statements: list[str] = field(default_factory=list)
    error: HistoryError | None = None
    direction: HistoryDirection | None = None
    group: int | None = None

    @property
    def noop(self) -> bool:
        """Whether there was nothing to replay."""
        return self.success and not self.sql_statements

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "success": self.success,
            "direction": self.direction.value if self.direction else None,
            "group": self.group,
            "table_names": sorted(self.table_names),
            "sql_statements": self.sql_statements,
            "error": (
                {"message": self.error.message, "detail": self.error.detail}
                if self.error
                else None
            ),
        }


def _foreign_keys_enabled(conn: sqlite3.Connection) -> bool:
    return bool(conn.execute("PRAGMA foreign_keys").fetchone()[0])


@contextmanager
def _savepoint(conn: sqlite3.Connection, name: str) -> Generator[None, None, None]:
    """Run a block inside a savepoint, rolling it back on error."""
    conn.execute(f"SAVEPOINT {name}")
    try:
        yield
    except Exception:
        conn.execute(f"ROLLBACK TO SAVEPOINT {name}")
        conn.execute(f"RELEASE SAVEPOINT {name}")
        raise
    conn.execute(f"RELEASE SAVEPOINT {name}")


def _replay(
    conn: sqlite3.Connection,
    direction: HistoryDirection,
    group: int,
    statements: list[str],
    table_names: set[str],
) -> None:
    if direction is HistoryDirection.UNDO:
        # Replayed inverses form a fresh redo group
        groups.increment_group(conn, HistoryDirection.REDO)
    triggers.switch_trigger_mode(conn, direction.opposite, False, table_names)

    for statement in statements:
        try:
            conn.execute(statement)
        except sqlite3.Error as e:
            raise ReplayStatementError(
                direction=direction.value,
                statement=statement,
                underlying_error=str(e),
            ) from e

    conn.execute(f"DELETE FROM {direction.log_table} WHERE history_group = ?", (group,))
    groups.refresh_current_groups(conn)
    triggers.switch_trigger_mode(conn, HistoryDirection.UNDO, True, table_names)


def execute_history_action(
    conn: sqlite3.Connection,
    direction: HistoryDirection,
) -> HistoryResponse:
    """
    Perform one undo or one redo.

    Args:
        conn: SQLite connection with history initialized. A pending
            transaction is committed first, because SQLite ignores the
            foreign_keys pragma inside a transaction.
        direction: "undo" replays the undo log, "redo" the redo log

    Returns:
        HistoryResponse; check `success` rather than catching exceptions
    """
    direction = HistoryDirection(direction)
    source = direction.log_table
    logger.info("Performing %s", direction.value)

    try:
        group = conn.execute(f"SELECT MAX(history_group) FROM {source}").fetchone()[0]
        if group is None:
            logger.info("Nothing to %s", direction.value)
            return HistoryResponse(success=True, direction=direction)

        statements = [
            row[0]
            for row in conn.execute(
                f"SELECT sql FROM {source} WHERE history_group = ? ORDER BY sequence DESC",
                (group,),
            ).fetchall()
        ]
        table_names = {name for name in map(statement_table, statements) if name}

        if conn.in_transaction:
            logger.info("Committing pending transaction before %s", direction.value)
            conn.commit()

        fk_enabled = _foreign_keys_enabled(conn)
        conn.execute("PRAGMA foreign_keys = OFF")
        try:
            with _savepoint(conn, REPLAY_SAVEPOINT):
                _replay(conn, direction, group, statements, table_names)
        finally:
            conn.execute(f"PRAGMA foreign_keys = {'ON' if fk_enabled else 'OFF'}")
    except Exception as e:
        logger.exception("%s failed", direction.value.capitalize())
        return HistoryResponse(
            success=False,
            error=HistoryError(message=str(e), detail=traceback.format_exc()),
            direction=direction,
        )

    logger.info(
        "Finished %s of group %d (%d statements, tables: %s)",
        direction.value,
        group,
        len(statements),
        ", ".join(sorted(table_names)),
    )
    return HistoryResponse(
        success=True,
        table_names=table_names,
        sql_statements=statements,
        direction=direction,
        group=group,
    )


def perform_undo(conn: sqlite3.Connection) -> HistoryResponse:
    """Undo the newest undo group. Does nothing if the undo log is empty."""
    return execute_history_action(conn, HistoryDirection.UNDO)


def perform_redo(conn: sqlite3.Connection) -> HistoryResponse:
    """
    Redo the newest redo group. Does nothing if the redo log is empty.

    The redo log is cleared whenever a new change is recorded in the undo log.
    """
    return execute_history_action(conn, HistoryDirection.REDO)


class HistoryEngine:
    """
    Undo/redo history for one SQLite database.

    The engine owns a HistoryDB connection and commits after every
    operation. Row changes made through `engine.conn` inside `group()`
    become one undo step.

    Usage:
        with HistoryEngine("drill.db", tables=["marcher"]) as engine:
            with engine.group() as conn:
                conn.execute("INSERT INTO marcher (name) VALUES ('a')")
            engine.undo()

    Attributes:
        db: Connection owner with the history schema initialized
    """

    def __init__(
        self,
        db_path: str | Path = "history.db",
        group_limit: int = DEFAULT_GROUP_LIMIT,
        foreign_keys: bool = True,
        tables: Iterable[str] = (),
    ) -> None:
        """
        Open the database and start tracking the given tables.

        Args:
            db_path: Path to SQLite database, or ":memory:"
            group_limit: Group limit for a freshly initialized database
            foreign_keys: Whether to enable foreign key enforcement
            tables: Tables to track
        """
        self.db = HistoryDB(db_path, group_limit=group_limit, foreign_keys=foreign_keys)
        tables = list(tables)
        if tables:
            try:
                self.track(*tables)
            except Exception:
                self.db.close()
                raise

    @classmethod
    def from_config(cls, config: HistoryConfig) -> "HistoryEngine":
        """Create an engine from a loaded configuration."""
        return cls(
            db_path=config.database,
            group_limit=config.group_limit,
            foreign_keys=config.foreign_keys,
            tables=config.tables,
        )

    @property
    def conn(self) -> sqlite3.Connection:
        """The engine's connection."""
        return self.db.conn

    def close(self) -> None:
        """Close database connection."""
        self.db.close()

    def __enter__(self) -> "HistoryEngine":
        """Enter context manager."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Exit context manager."""
        self.close()

    # =========================================================================
    # Tracking
    # =========================================================================

    def track(self, *table_names: str) -> None:
        """Install undo triggers on tables (new edits clear the redo log)."""
        with self.db.transaction() as conn:
            for table_name in table_names:
                triggers.create_undo_triggers(conn, table_name)

    def untrack(self, *table_names: str) -> None:
        """Drop history triggers from tables. Recorded history is kept."""
        with self.db.transaction() as conn:
            for table_name in table_names:
                triggers.drop_triggers(conn, table_name)

    def tracked_tables(self) -> list[str]:
        """Tables that currently carry history triggers."""
        return triggers.tracked_tables(self.conn)

    def retrack_all(self) -> list[str]:
        """
        Reinstall triggers on every tracked table.

        Run after a schema migration so triggers capture the new columns.
        """
        with self.db.transaction() as conn:
            tables = triggers.tracked_tables(conn)
            triggers.switch_trigger_mode(conn, HistoryDirection.UNDO, True, tables)
        return tables

    # =========================================================================
    # Groups
    # =========================================================================

    def increment_group(self) -> int:
        """Seal the changes recorded so far as one undo step."""
        with self.db.transaction() as conn:
            return groups.increment_group(conn, HistoryDirection.UNDO)

    @contextmanager
    def group(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Make every change inside the block one undo step.

        Groups opened inside the block are flattened into one. If the
        block raises, its changes and their history are rolled back.
        """
        start = groups.get_current_group(self.conn, HistoryDirection.UNDO)
        with self.db.transaction() as conn:
            yield conn
            groups.flatten_groups_above(conn, start)
            groups.increment_group(conn, HistoryDirection.UNDO)

    def flatten_groups_above(self, group: int) -> None:
        """Merge undo groups above `group` into it."""
        with self.db.transaction() as conn:
            groups.flatten_groups_above(conn, group)

    def decrement_last_group(self) -> None:
        """Abandon the current undo group and its entries."""
        with self.db.transaction() as conn:
            groups.decrement_last_group(conn)

    def clear_most_recent_redo(self) -> None:
        """Drop the newest redo group."""
        with self.db.transaction() as conn:
            groups.clear_most_recent_redo(conn)

    def current_group(self, direction: HistoryDirection = HistoryDirection.UNDO) -> int:
        """Group new entries in a direction are stamped with."""
        return groups.get_current_group(self.conn, direction)

    def stats(self) -> HistoryStats:
        """Read the history_stats row."""
        return groups.get_history_stats(self.conn)

    def set_group_limit(self, limit: int) -> int:
        """Change the group limit. Returns the number of groups evicted."""
        with self.db.transaction() as conn:
            return groups.set_group_limit(conn, limit)

    # =========================================================================
    # Undo / Redo
    # =========================================================================

    def undo(self) -> HistoryResponse:
        """Undo the newest group."""
        return perform_undo(self.conn)

    def redo(self) -> HistoryResponse:
        """Redo the newest undone group."""
        return perform_redo(self.conn)

    # =========================================================================
    # Inspection
    # =========================================================================

    def entries(
        self,
        direction: HistoryDirection = HistoryDirection.UNDO,
        group: int | None = None,
    ) -> list[HistoryEntry]:
        """Log entries in insertion order."""
        return groups.list_entries(self.conn, direction, group)

    def list_groups(self, direction: HistoryDirection = HistoryDirection.UNDO) -> list[int]:
        """Distinct groups in a log, oldest first."""
        return groups.list_groups(self.conn, direction)

    def history_size(self) -> int:
        """Total length of stored inverse statements in both logs."""
        return calculate_history_size(self.conn)

    def clear(self) -> None:
        """Empty both logs and reset the group counters."""
        with self.db.transaction() as conn:
            groups.clear_history(conn)
