"""
Undo group bookkeeping.

An undo group is the batch of inverse statements that undo or redo
together as one user-visible step. Callers seal a batch of row changes
with increment_group(); the current-group counters in history_stats decide
which group the triggers stamp new entries with.

Group numbers may be zero or negative. Only their relative order matters.
"""

import logging
import sqlite3

from rewind.errors import HistoryStatsNotFoundError
from rewind.schema import (
    REDO_TABLE,
    STATS_TABLE,
    UNDO_TABLE,
    HistoryDirection,
    HistoryEntry,
    HistoryStats,
)

logger = logging.getLogger(__name__)


def _max_group(conn: sqlite3.Connection, log_table: str) -> int | None:
    row = conn.execute(f"SELECT MAX(history_group) FROM {log_table}").fetchone()
    return row[0]


def _evict_oldest_groups(conn: sqlite3.Connection, log_table: str, limit: int) -> int:
    """Delete the oldest groups so at most `limit` remain. Returns groups removed."""
    if limit <= 0:
        return 0
    count = conn.execute(
        f"SELECT COUNT(DISTINCT history_group) FROM {log_table}"
    ).fetchone()[0]
    excess = count - limit
    if excess <= 0:
        return 0
    conn.execute(
        f"""
        DELETE FROM {log_table} WHERE history_group IN (
            SELECT DISTINCT history_group FROM {log_table}
            ORDER BY history_group LIMIT ?
        )
        """,
        (excess,),
    )
    logger.debug("Evicted %d oldest groups from %s", excess, log_table)
    return excess


def get_history_stats(conn: sqlite3.Connection) -> HistoryStats:
    """
    Read the history_stats row.

    Raises:
        HistoryStatsNotFoundError: If the row is missing
    """
    row = conn.execute(
        f"SELECT cur_undo_group, cur_redo_group, group_limit FROM {STATS_TABLE} WHERE id = 1"
    ).fetchone()
    if row is None:
        raise HistoryStatsNotFoundError()
    return HistoryStats(cur_undo_group=row[0], cur_redo_group=row[1], group_limit=row[2])


def get_current_group(conn: sqlite3.Connection, direction: HistoryDirection) -> int:
    """
    Read the group new entries in a direction are stamped with.

    Raises:
        HistoryStatsNotFoundError: If the stats row is missing
    """
    direction = HistoryDirection(direction)
    row = conn.execute(
        f"SELECT {direction.group_column} FROM {STATS_TABLE} WHERE id = 1"
    ).fetchone()
    if row is None:
        raise HistoryStatsNotFoundError(
            message=f"Failed to get current {direction.value} group",
        )
    return row[0]


def get_group_limit(conn: sqlite3.Connection) -> int:
    """Read the group limit (<= 0 means unlimited)."""
    return get_history_stats(conn).group_limit


def set_group_limit(conn: sqlite3.Connection, limit: int) -> int:
    """
    Change the group limit and evict undo groups beyond the new limit.

    Returns:
        Number of undo groups evicted
    """
    get_history_stats(conn)
    conn.execute(f"UPDATE {STATS_TABLE} SET group_limit = ? WHERE id = 1", (limit,))
    return _evict_oldest_groups(conn, UNDO_TABLE, limit)


def increment_group(conn: sqlite3.Connection, direction: HistoryDirection) -> int:
    """
    Open a new group in a log.

    The new group is 1 + the largest group in the log (1 when empty). After
    the counter is written, the oldest groups are evicted if the log holds
    more distinct groups than a positive group limit allows.

    Args:
        conn: SQLite connection
        direction: Log to open the group in

    Returns:
        The new group number
    """
    direction = HistoryDirection(direction)
    log_table = direction.log_table
    new_group = (_max_group(conn, log_table) or 0) + 1

    conn.execute(
        f"UPDATE {STATS_TABLE} SET {direction.group_column} = ? WHERE id = 1",
        (new_group,),
    )
    _evict_oldest_groups(conn, log_table, get_group_limit(conn))
    logger.debug("Opened %s group %d", direction.value, new_group)
    return new_group


def increment_undo_group(conn: sqlite3.Connection) -> int:
    """Seal the current batch of changes as one undo step."""
    return increment_group(conn, HistoryDirection.UNDO)


def refresh_current_groups(conn: sqlite3.Connection) -> None:
    """Set both counters to 1 + the largest group in their log."""
    for direction in HistoryDirection:
        current = _max_group(conn, direction.log_table) or 0
        conn.execute(
            f"UPDATE {STATS_TABLE} SET {direction.group_column} = ? WHERE id = 1",
            (current + 1,),
        )


def flatten_groups_above(conn: sqlite3.Connection, group: int) -> None:
    """
    Merge every undo group above `group` into `group`.

    Used when several increments should have been one undo step, e.g. an
    operation that spanned multiple groups before an error was caught.
    """
    logger.debug("Flattening undo groups above %d", group)
    conn.execute(
        f"UPDATE {UNDO_TABLE} SET history_group = ? WHERE history_group > ?",
        (group, group),
    )
    conn.execute(f"UPDATE {STATS_TABLE} SET cur_undo_group = ? WHERE id = 1", (group,))


def decrement_last_group(conn: sqlite3.Connection) -> None:
    """
    Abandon the current undo group.

    Decrements the undo counter and deletes entries stamped with the
    abandoned group. Used when a group was opened only to allow rolling
    back changes and should not persist as an undo step.
    """
    current = get_current_group(conn, HistoryDirection.UNDO)
    if current > 0:
        conn.execute(
            f"UPDATE {STATS_TABLE} SET cur_undo_group = ? WHERE id = 1",
            (current - 1,),
        )
        conn.execute(f"DELETE FROM {UNDO_TABLE} WHERE history_group = ?", (current,))


def clear_most_recent_redo(conn: sqlite3.Connection) -> None:
    """
    Delete the newest redo group.

    Used after an error rollback whose undo should not remain redoable.
    """
    max_group = _max_group(conn, REDO_TABLE)
    if max_group is not None:
        conn.execute(f"DELETE FROM {REDO_TABLE} WHERE history_group = ?", (max_group,))


def clear_history(conn: sqlite3.Connection) -> None:
    """Empty both logs and reset the counters. The group limit is kept."""
    conn.execute(f"DELETE FROM {UNDO_TABLE}")
    conn.execute(f"DELETE FROM {REDO_TABLE}")
    conn.execute(
        f"UPDATE {STATS_TABLE} SET cur_undo_group = 0, cur_redo_group = 0 WHERE id = 1"
    )


def list_groups(conn: sqlite3.Connection, direction: HistoryDirection) -> list[int]:
    """Distinct group numbers in a log, oldest first."""
    direction = HistoryDirection(direction)
    rows = conn.execute(
        f"SELECT DISTINCT history_group FROM {direction.log_table} ORDER BY history_group"
    ).fetchall()
    return [row[0] for row in rows]


def list_entries(
    conn: sqlite3.Connection,
    direction: HistoryDirection,
    group: int | None = None,
) -> list[HistoryEntry]:
    """Entries of a log in insertion order, optionally for one group."""
    direction = HistoryDirection(direction)
    query = f"SELECT sequence, history_group, sql FROM {direction.log_table}"
    params: tuple[int, ...] = ()
    if group is not None:
        query += " WHERE history_group = ?"
        params = (group,)
    rows = conn.execute(query + " ORDER BY sequence", params).fetchall()
    return [HistoryEntry(sequence=r[0], history_group=r[1], sql=r[2]) for r in rows]
