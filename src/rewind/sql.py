"""
SQL fragment helpers for Rewind.

Trigger bodies and inverse statements are assembled as SQL text, so every
name that reaches that text goes through this module:

    - Identifiers are double-quoted with embedded quotes doubled.
    - String literals are single-quoted with embedded quotes doubled.
    - Table and column names come from live introspection
      (sqlite_master and pragma_table_info), never from free-form input.
"""

import re
import sqlite3

_STATEMENT_TABLE_RE = re.compile(r'^\s*(?:INSERT INTO|UPDATE|DELETE FROM)\s+"((?:[^"]|"")*)"')
_FIRST_IDENTIFIER_RE = re.compile(r'"((?:[^"]|"")*)"')

# Names that refer to the implicit row identity unless a column shadows them
ROWID_NAMES = ("rowid", "_rowid_", "oid")


def quote_identifier(name: str) -> str:
    """Quote a table, column or trigger name for use in SQL text."""
    return '"' + name.replace('"', '""') + '"'


def quote_literal(text: str) -> str:
    """Quote a string as an SQL literal."""
    return "'" + text.replace("'", "''") + "'"


def concat(*parts: str) -> str:
    """Join SQL expressions with the || operator."""
    return " || ".join(parts)


def table_exists(conn: sqlite3.Connection, table_name: str) -> bool:
    """Check whether an ordinary table with this exact name exists."""
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?",
        (table_name,),
    ).fetchone()
    return row is not None


def list_tables(conn: sqlite3.Connection) -> list[str]:
    """List ordinary tables, excluding SQLite's internal ones."""
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type = 'table' "
        "AND name NOT LIKE 'sqlite_%' ORDER BY name"
    ).fetchall()
    return [row[0] for row in rows]


def table_columns(conn: sqlite3.Connection, table_name: str) -> list[str]:
    """
    Get the column names of a table in declaration order.

    Generated columns are not reported, so the result is exactly the set
    of columns an INSERT may name.
    """
    rows = conn.execute(
        "SELECT name FROM pragma_table_info(?) ORDER BY cid",
        (table_name,),
    ).fetchall()
    return [row[0] for row in rows if row[0] is not None]


def rowid_alias(conn: sqlite3.Connection, table_name: str) -> str | None:
    """
    Return the INTEGER PRIMARY KEY column aliasing rowid, if any.

    Only a single-column primary key declared exactly as INTEGER aliases
    the rowid.
    """
    rows = conn.execute(
        "SELECT name, type, pk FROM pragma_table_info(?)",
        (table_name,),
    ).fetchall()
    pk_columns = [row for row in rows if row[2]]
    if len(pk_columns) == 1 and (pk_columns[0][1] or "").upper() == "INTEGER":
        return pk_columns[0][0]
    return None


def rowid_name(columns: list[str]) -> str | None:
    """First name of the implicit rowid that no column shadows, if any."""
    shadowed = {c.lower() for c in columns}
    for name in ROWID_NAMES:
        if name not in shadowed:
            return name
    return None


def has_rowid(conn: sqlite3.Connection, table_name: str, rowid: str = "rowid") -> bool:
    """
    Check whether a table has an implicit rowid (not WITHOUT ROWID).

    `rowid` must be a name no column of the table shadows.
    """
    try:
        conn.execute(f"SELECT {rowid} FROM {quote_identifier(table_name)} LIMIT 0")
    except sqlite3.OperationalError:
        return False
    return True


def statement_table(statement: str) -> str | None:
    """
    Extract the table an inverse statement targets.

    Recognizes the three statement shapes the history triggers write,
    falling back to the first quoted identifier in the text.
    """
    match = _STATEMENT_TABLE_RE.match(statement) or _FIRST_IDENTIFIER_RE.search(statement)
    if match is None:
        return None
    return match.group(1).replace('""', '"')
