"""
SQLite storage for Rewind.

This module defines the persistent history layout and a small connection
owner for callers that do not already hold a connection.

Tables:
    - history_undo: inverse statements that undo recorded changes
    - history_redo: inverse statements that redo undone changes
    - history_stats: single bookkeeping row (current groups, group limit)

The layout matches files written by other implementations of the same
engine, so names and column types must not change.
"""

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator

from rewind.errors import StorageConnectionError, StorageWriteError
from rewind.schema import DEFAULT_GROUP_LIMIT, REDO_TABLE, STATS_TABLE, UNDO_TABLE

logger = logging.getLogger(__name__)

# Executed one at a time so that a caller's open transaction is not committed
CREATE_TABLES_SQL = (
    f"""
    CREATE TABLE IF NOT EXISTS {UNDO_TABLE} (
        sequence INTEGER PRIMARY KEY,
        history_group INTEGER NOT NULL,
        sql TEXT NOT NULL
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {REDO_TABLE} (
        sequence INTEGER PRIMARY KEY,
        history_group INTEGER NOT NULL,
        sql TEXT NOT NULL
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {STATS_TABLE} (
        id INTEGER PRIMARY KEY,
        cur_undo_group INTEGER NOT NULL,
        cur_redo_group INTEGER NOT NULL,
        group_limit INTEGER NOT NULL,
        CONSTRAINT history_stats_check_1 CHECK (id = 1)
    )
    """,
)


def initialize_history(
    conn: sqlite3.Connection,
    group_limit: int = DEFAULT_GROUP_LIMIT,
) -> None:
    """
    Create the history tables and the stats row if they don't exist.

    Safe to call on every open: existing tables and an existing stats row
    (including its group limit) are left untouched.

    Args:
        conn: SQLite connection
        group_limit: Group limit for a freshly created stats row
    """
    for statement in CREATE_TABLES_SQL:
        conn.execute(statement)
    conn.execute(
        f"INSERT OR IGNORE INTO {STATS_TABLE} "
        "(id, cur_undo_group, cur_redo_group, group_limit) VALUES (1, 0, 0, ?)",
        (group_limit,),
    )
    logger.debug("History tables initialized")


def history_tables_exist(conn: sqlite3.Connection) -> bool:
    """Check whether all three history tables are present."""
    row = conn.execute(
        "SELECT COUNT(*) FROM sqlite_master WHERE type = 'table' AND name IN (?, ?, ?)",
        (UNDO_TABLE, REDO_TABLE, STATS_TABLE),
    ).fetchone()
    return row[0] == 3


def calculate_history_size(conn: sqlite3.Connection) -> int:
    """
    Approximate the storage used by both history logs.

    Returns:
        Total character length of every stored inverse statement
    """
    total = 0
    for table in (UNDO_TABLE, REDO_TABLE):
        row = conn.execute(f"SELECT COALESCE(SUM(LENGTH(sql)), 0) FROM {table}").fetchone()
        total += int(row[0])
    return total


class HistoryDB:
    """
    SQLite connection owner with the history schema initialized.

    Usage:
        db = HistoryDB("drill.db")
        db.conn.execute("INSERT INTO marcher (name) VALUES ('a')")
        db.commit()
        db.close()

    Or use as context manager:
        with HistoryDB("drill.db") as db:
            ...
    """

    def __init__(
        self,
        db_path: str | Path,
        group_limit: int = DEFAULT_GROUP_LIMIT,
        foreign_keys: bool = True,
    ) -> None:
        """
        Open the database and initialize history tables.

        Args:
            db_path: Path to the SQLite database file, or ":memory:".
                     Will be created if it doesn't exist.
            group_limit: Group limit for a freshly created stats row
            foreign_keys: Whether to enable foreign key enforcement
        """
        self.db_path = ":memory:" if str(db_path) == ":memory:" else Path(db_path)
        self.foreign_keys = foreign_keys
        self._conn: sqlite3.Connection | None = None
        self._connect()
        self._init_schema(group_limit)

    @property
    def conn(self) -> sqlite3.Connection:
        """The open connection."""
        if self._conn is None:
            raise StorageConnectionError(
                db_path=str(self.db_path),
                operation="conn",
                message="Database is closed",
            )
        return self._conn

    def _connect(self) -> None:
        """Establish database connection."""
        try:
            self._conn = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute(f"PRAGMA foreign_keys = {'ON' if self.foreign_keys else 'OFF'}")
        except sqlite3.Error as e:
            raise StorageConnectionError(
                db_path=str(self.db_path),
                operation="connect",
                message=f"Failed to connect to database: {e}",
            ) from e

    def _init_schema(self, group_limit: int) -> None:
        """Initialize history schema if needed."""
        try:
            initialize_history(self.conn, group_limit)
            self.conn.commit()
        except sqlite3.Error as e:
            raise StorageWriteError(
                operation="init_schema",
                underlying_error=str(e),
            ) from e

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Context manager for database transactions.

        Opens the transaction explicitly so that DDL (trigger installs)
        inside the block is rolled back with everything else.
        """
        if not self.conn.in_transaction:
            self.conn.execute("BEGIN")
        try:
            yield self.conn
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

    def commit(self) -> None:
        """Commit pending changes."""
        self.conn.commit()

    def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "HistoryDB":
        """Enter context manager."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Exit context manager."""
        self.close()
