"""
History triggers for tracked tables.

Each tracked table carries three triggers that append one inverse
statement per row-level change to the undo or redo log:

    <table>_it  AFTER INSERT   ->  DELETE FROM "<table>" WHERE rowid=...
    <table>_ut  AFTER UPDATE   ->  UPDATE "<table>" SET [rowid=<old rowid>,] <every column>=<old value>
                                       WHERE rowid=<new rowid>
    <table>_dt  BEFORE DELETE  ->  INSERT INTO "<table>" (<columns>) VALUES (<old values>)

Which log a table writes to (its trigger mode) is encoded only by the
trigger definitions installed, so switching mode means dropping and
recreating the triggers. The column list is captured at install time;
triggers must be reinstalled after the table's schema changes.
"""

import logging
import sqlite3
from collections.abc import Iterable

from rewind.errors import TableHasNoColumnsError, TableNotFoundError, UntrackableTableError
from rewind.schema import (
    DELETE_TRIGGER_SUFFIX,
    HISTORY_TABLES,
    INSERT_TRIGGER_SUFFIX,
    REDO_TABLE,
    STATS_TABLE,
    TRIGGER_SUFFIXES,
    UPDATE_TRIGGER_SUFFIX,
    HistoryDirection,
)
from rewind.sql import (
    concat,
    has_rowid,
    quote_identifier,
    quote_literal,
    rowid_alias,
    rowid_name,
    table_columns,
    table_exists,
)

logger = logging.getLogger(__name__)


def trigger_names(table_name: str) -> tuple[str, str, str]:
    """Names of the insert, update and delete triggers for a table."""
    return tuple(table_name + suffix for suffix in TRIGGER_SUFFIXES)  # type: ignore[return-value]


def _insert_inverse(table: str, rowid: str) -> str:
    return concat(quote_literal(f"DELETE FROM {table} WHERE {rowid}="), f"new.{rowid}")


def _update_inverse(table: str, columns: list[str], rowid: str, keep_rowid: bool = False) -> str:
    parts: list[str] = []
    prefix = f"UPDATE {table} SET "
    if keep_rowid:
        parts.append(quote_literal(f"{prefix}{rowid}="))
        parts.append(f"old.{rowid}")
        prefix = ","
    for column in columns:
        parts.append(quote_literal(f"{prefix}{quote_identifier(column)}="))
        parts.append(f"quote(old.{quote_identifier(column)})")
        prefix = ","
    parts.append(quote_literal(f" WHERE {rowid}="))
    parts.append(f"new.{rowid}")
    return concat(*parts)


def _delete_inverse(table: str, columns: list[str], rowid: str | None) -> str:
    names = [quote_identifier(c) for c in columns]
    values = [f"quote(old.{quote_identifier(c)})" for c in columns]
    if rowid:
        names.insert(0, rowid)
        values.insert(0, f"old.{rowid}")

    parts = [quote_literal(f"INSERT INTO {table} ({','.join(names)}) VALUES (")]
    for i, value in enumerate(values):
        if i:
            parts.append(quote_literal(","))
        parts.append(value)
    parts.append(quote_literal(")"))
    return concat(*parts)


def _check_trackable(conn: sqlite3.Connection, table_name: str) -> tuple[list[str], str]:
    """
    Validate a table against live introspection.

    Returns:
        The table's columns and the rowid name the triggers should use
    """
    if table_name in HISTORY_TABLES:
        raise UntrackableTableError(table=table_name, reason="history tables are not tracked")
    if not table_exists(conn, table_name):
        raise TableNotFoundError(table=table_name)
    columns = table_columns(conn, table_name)
    if not columns:
        raise TableHasNoColumnsError(table=table_name)
    rowid = rowid_name(columns)
    if rowid is None:
        raise UntrackableTableError(
            table=table_name,
            reason="columns shadow rowid, _rowid_ and oid",
        )
    if not has_rowid(conn, table_name, rowid):
        raise UntrackableTableError(table=table_name, reason="WITHOUT ROWID tables are not supported")
    return columns, rowid


def build_trigger_sql(
    table_name: str,
    columns: list[str],
    mode: HistoryDirection,
    clear_opposite_log_on_write: bool = True,
    keep_rowid: bool = False,
    rowid: str = "rowid",
) -> list[str]:
    """
    Build the CREATE TRIGGER statements for a table.

    Args:
        table_name: Table the triggers attach to
        columns: Column names, as introspected from the table
        mode: Which log the triggers append to
        clear_opposite_log_on_write: In undo mode, also empty the redo log
            and reset its counter on every write
        keep_rowid: Restore rowid in the restoring INSERT and UPDATE (tables
            whose rowid is not aliased by an INTEGER PRIMARY KEY)
        rowid: Name used to address the implicit rowid; must not be
            shadowed by a column

    Returns:
        Insert, update and delete trigger statements, in that order
    """
    table = quote_identifier(table_name)
    log_table = mode.log_table
    group = f"(SELECT {mode.group_column} FROM {STATS_TABLE})"

    side_effect = ""
    if mode is HistoryDirection.UNDO and clear_opposite_log_on_write:
        side_effect = (
            f"DELETE FROM {REDO_TABLE};\n"
            f"    UPDATE {STATS_TABLE} SET cur_redo_group = 0;\n"
        )

    def trigger(suffix: str, timing: str, inverse: str) -> str:
        return (
            f"CREATE TRIGGER {quote_identifier(table_name + suffix)} {timing} ON {table} BEGIN\n"
            f"    INSERT INTO {log_table} (history_group, sql)\n"
            f"        VALUES ({group}, {inverse});\n"
            f"    {side_effect}"
            "END"
        )

    return [
        trigger(INSERT_TRIGGER_SUFFIX, "AFTER INSERT", _insert_inverse(table, rowid)),
        trigger(
            UPDATE_TRIGGER_SUFFIX,
            "AFTER UPDATE",
            _update_inverse(table, columns, rowid, keep_rowid),
        ),
        trigger(
            DELETE_TRIGGER_SUFFIX,
            "BEFORE DELETE",
            _delete_inverse(table, columns, rowid if keep_rowid else None),
        ),
    ]


def drop_triggers(conn: sqlite3.Connection, table_name: str) -> None:
    """Drop a table's history triggers if they exist (disables tracking)."""
    for name in trigger_names(table_name):
        conn.execute(f"DROP TRIGGER IF EXISTS {quote_identifier(name)}")


def install_triggers(
    conn: sqlite3.Connection,
    table_name: str,
    mode: HistoryDirection,
    clear_opposite_log_on_write: bool = True,
) -> None:
    """
    Install history triggers on a table, replacing any existing ones.

    Args:
        conn: SQLite connection
        table_name: An existing table with at least one column
        mode: Log the triggers append to
        clear_opposite_log_on_write: Whether writes in undo mode clear the
            redo log (normal editing) or leave it alone (during a redo)

    Raises:
        TableNotFoundError: If the table does not exist
        TableHasNoColumnsError: If introspection finds no columns
        UntrackableTableError: For history tables and WITHOUT ROWID tables
    """
    mode = HistoryDirection(mode)
    columns, rowid = _check_trackable(conn, table_name)
    keep_rowid = rowid_alias(conn, table_name) is None

    drop_triggers(conn, table_name)
    for statement in build_trigger_sql(
        table_name, columns, mode, clear_opposite_log_on_write, keep_rowid, rowid
    ):
        conn.execute(statement)
    logger.debug(
        "Installed %s triggers on %s (clear redo: %s)",
        mode.value,
        table_name,
        clear_opposite_log_on_write,
    )


def create_undo_triggers(conn: sqlite3.Connection, table_name: str) -> None:
    """Start tracking a table: undo mode, new writes clear the redo log."""
    install_triggers(conn, table_name, HistoryDirection.UNDO, True)


def tracked_tables(conn: sqlite3.Connection) -> list[str]:
    """List tables that carry at least one history trigger."""
    rows = conn.execute(
        "SELECT name, tbl_name FROM sqlite_master WHERE type = 'trigger'"
    ).fetchall()
    tables = {
        tbl_name
        for name, tbl_name in rows
        if any(name == tbl_name + suffix for suffix in TRIGGER_SUFFIXES)
    }
    return sorted(tables)


def trigger_mode(conn: sqlite3.Connection, table_name: str) -> HistoryDirection | None:
    """Report which log a table's insert trigger currently writes to."""
    row = conn.execute(
        "SELECT sql FROM sqlite_master WHERE type = 'trigger' AND name = ?",
        (table_name + INSERT_TRIGGER_SUFFIX,),
    ).fetchone()
    if row is None:
        return None
    if f"INSERT INTO {REDO_TABLE} " in row[0]:
        return HistoryDirection.REDO
    return HistoryDirection.UNDO


def switch_trigger_mode(
    conn: sqlite3.Connection,
    mode: HistoryDirection,
    clear_opposite_log_on_write: bool,
    table_names: Iterable[str] | None = None,
) -> None:
    """
    Reinstall triggers so the given tables write to another log.

    Args:
        conn: SQLite connection
        mode: Log the triggers should append to
        clear_opposite_log_on_write: See install_triggers
        table_names: Tables to retarget; every tracked table when omitted
    """
    tables = tracked_tables(conn) if table_names is None else sorted(set(table_names))
    for table_name in tables:
        install_triggers(conn, table_name, mode, clear_opposite_log_on_write)
