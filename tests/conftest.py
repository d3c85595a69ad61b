"""
Pytest configuration and fixtures for Rewind tests.

This module provides shared fixtures used across unit, integration,
and security tests.
"""

import sqlite3
import tempfile
from pathlib import Path
from typing import Callable, Generator

import pytest

from rewind.store import initialize_history
from rewind.triggers import create_undo_triggers


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def conn() -> Generator[sqlite3.Connection, None, None]:
    """In-memory connection with foreign keys on and history initialized."""
    connection = sqlite3.connect(":memory:")
    connection.execute("PRAGMA foreign_keys = ON")
    initialize_history(connection)
    yield connection
    connection.close()


@pytest.fixture
def items(conn: sqlite3.Connection) -> str:
    """A tracked table whose rowid is aliased by an INTEGER PRIMARY KEY."""
    conn.execute("CREATE TABLE items (id INTEGER PRIMARY KEY, value TEXT)")
    create_undo_triggers(conn, "items")
    return "items"


@pytest.fixture
def notes(conn: sqlite3.Connection) -> str:
    """A tracked table with an implicit rowid and no primary key."""
    conn.execute("CREATE TABLE notes (title TEXT, body TEXT)")
    create_undo_triggers(conn, "notes")
    return "notes"


@pytest.fixture
def table_rows(conn: sqlite3.Connection) -> Callable[[str], list[tuple]]:
    """Return a reader for all rows of a table including rowid, in rowid order."""

    def read(table: str) -> list[tuple]:
        return [tuple(r) for r in conn.execute(f'SELECT rowid, * FROM "{table}" ORDER BY rowid')]

    return read


@pytest.fixture
def log_rows(conn: sqlite3.Connection) -> Callable[[str], list[tuple]]:
    """Return a reader for all rows of a history log, in sequence order."""

    def read(log_table: str) -> list[tuple]:
        return [
            tuple(r)
            for r in conn.execute(
                f"SELECT sequence, history_group, sql FROM {log_table} ORDER BY sequence"
            )
        ]

    return read
