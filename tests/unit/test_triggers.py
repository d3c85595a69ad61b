"""
Unit tests for history triggers.

Tests cover:
- Generated trigger SQL
- Inverse statements recorded for inserts, updates and deletes
- Redo clearing on new writes
- Trigger mode switching
- Tracking preconditions
"""

import sqlite3
from typing import Callable

import pytest

from rewind.errors import TableHasNoColumnsError, TableNotFoundError, UntrackableTableError
from rewind.schema import HistoryDirection
from rewind.triggers import (
    build_trigger_sql,
    create_undo_triggers,
    drop_triggers,
    install_triggers,
    switch_trigger_mode,
    trigger_mode,
    trigger_names,
    tracked_tables,
)


def _undo_sql(conn: sqlite3.Connection) -> list[str]:
    return [r[0] for r in conn.execute("SELECT sql FROM history_undo ORDER BY sequence")]


# =============================================================================
# Trigger SQL
# =============================================================================


class TestBuildTriggerSql:
    """Tests for build_trigger_sql."""

    def test_trigger_names(self) -> None:
        """Trigger names use fixed suffixes."""
        assert trigger_names("items") == ("items_it", "items_ut", "items_dt")

    def test_three_statements(self) -> None:
        """Insert, update and delete triggers are built in order."""
        statements = build_trigger_sql("items", ["id", "value"], HistoryDirection.UNDO)
        assert len(statements) == 3
        assert 'CREATE TRIGGER "items_it" AFTER INSERT ON "items"' in statements[0]
        assert 'CREATE TRIGGER "items_ut" AFTER UPDATE ON "items"' in statements[1]
        assert 'CREATE TRIGGER "items_dt" BEFORE DELETE ON "items"' in statements[2]

    def test_undo_mode_clears_redo(self) -> None:
        """Undo mode with clearing empties the redo log and resets its counter."""
        statement = build_trigger_sql("items", ["id"], HistoryDirection.UNDO)[0]
        assert "INSERT INTO history_undo (history_group, sql)" in statement
        assert "(SELECT cur_undo_group FROM history_stats)" in statement
        assert "DELETE FROM history_redo;" in statement
        assert "UPDATE history_stats SET cur_redo_group = 0;" in statement

    def test_undo_mode_without_clearing(self) -> None:
        """Undo mode used during redo leaves the redo log alone."""
        statement = build_trigger_sql("items", ["id"], HistoryDirection.UNDO, False)[0]
        assert "DELETE FROM history_redo" not in statement

    def test_redo_mode_never_clears(self) -> None:
        """Redo mode writes to the redo log and has no side effect."""
        statement = build_trigger_sql("items", ["id"], HistoryDirection.REDO, True)[0]
        assert "INSERT INTO history_redo (history_group, sql)" in statement
        assert "(SELECT cur_redo_group FROM history_stats)" in statement
        assert "DELETE FROM history_redo" not in statement

    def test_keep_rowid(self) -> None:
        """The restoring insert and update set rowid first when requested."""
        statements = build_trigger_sql("notes", ["title"], HistoryDirection.UNDO, keep_rowid=True)
        assert "SET rowid=' || old.rowid || ',\"title\"=" in statements[1]
        assert "(rowid,\"title\")" in statements[2]
        assert "old.rowid" in statements[2]

    def test_alternate_rowid_name(self) -> None:
        """Another rowid name is used throughout when requested."""
        statements = build_trigger_sql(
            "t", ["rowid", "v"], HistoryDirection.UNDO, keep_rowid=True, rowid="_rowid_"
        )
        assert "WHERE _rowid_=' || new._rowid_" in statements[0]
        assert "WHERE _rowid_=' || new._rowid_" in statements[1]
        assert "(_rowid_,\"rowid\",\"v\")" in statements[2]


# =============================================================================
# Recorded Inverses
# =============================================================================


class TestRecordedInverses:
    """Tests for the inverse statements written by the triggers."""

    def test_insert_records_delete(self, conn: sqlite3.Connection, items: str) -> None:
        """An insert records a delete of the new rowid."""
        conn.execute("INSERT INTO items (value) VALUES ('a')")
        assert _undo_sql(conn) == ['DELETE FROM "items" WHERE rowid=1']

    def test_update_records_every_column(self, conn: sqlite3.Connection, items: str) -> None:
        """An update records every column's old value."""
        conn.execute("INSERT INTO items (value) VALUES ('a')")
        conn.execute("UPDATE items SET value = 'b' WHERE id = 1")
        assert _undo_sql(conn)[1] == 'UPDATE "items" SET "id"=1,"value"=\'a\' WHERE rowid=1'

    def test_delete_records_insert(self, conn: sqlite3.Connection, items: str) -> None:
        """A delete records an insert of every column."""
        conn.execute("INSERT INTO items (value) VALUES ('a')")
        conn.execute("DELETE FROM items WHERE id = 1")
        assert _undo_sql(conn)[1] == 'INSERT INTO "items" ("id","value") VALUES (1,\'a\')'

    def test_delete_keeps_implicit_rowid(self, conn: sqlite3.Connection, notes: str) -> None:
        """Tables without a rowid alias restore the original rowid."""
        conn.execute("INSERT INTO notes VALUES ('t', 'b')")
        conn.execute("DELETE FROM notes")
        assert _undo_sql(conn)[1] == 'INSERT INTO "notes" (rowid,"title","body") VALUES (1,\'t\',\'b\')'

    def test_update_keeps_implicit_rowid(self, conn: sqlite3.Connection, notes: str) -> None:
        """Tables without a rowid alias record the old rowid in updates."""
        conn.execute("INSERT INTO notes VALUES ('t', 'b')")
        conn.execute("UPDATE notes SET rowid = 7, body = 'c'")
        assert _undo_sql(conn)[1] == 'UPDATE "notes" SET rowid=1,"title"=\'t\',"body"=\'b\' WHERE rowid=7'

    def test_values_are_quoted(self, conn: sqlite3.Connection, items: str) -> None:
        """NULLs, quotes and blobs survive as SQL literals."""
        conn.execute("INSERT INTO items VALUES (1, NULL)")
        conn.execute("UPDATE items SET value = 'it''s'")
        conn.execute("UPDATE items SET value = X'00FF'")
        statements = _undo_sql(conn)
        assert statements[1] == 'UPDATE "items" SET "id"=1,"value"=NULL WHERE rowid=1'
        assert statements[2] == 'UPDATE "items" SET "id"=1,"value"=\'it\'\'s\' WHERE rowid=1'

    def test_group_stamped_live(self, conn: sqlite3.Connection, items: str) -> None:
        """Entries use the current undo group at write time."""
        conn.execute("INSERT INTO items (value) VALUES ('a')")
        conn.execute("UPDATE history_stats SET cur_undo_group = 5")
        conn.execute("INSERT INTO items (value) VALUES ('b')")
        groups = [r[0] for r in conn.execute("SELECT history_group FROM history_undo ORDER BY sequence")]
        assert groups == [0, 5]

    def test_update_of_rowid_targets_new_row(self, conn: sqlite3.Connection, items: str) -> None:
        """Changing the primary key records an update aimed at the new rowid."""
        conn.execute("INSERT INTO items VALUES (1, 'a')")
        conn.execute("UPDATE items SET id = 9 WHERE id = 1")
        assert _undo_sql(conn)[1] == 'UPDATE "items" SET "id"=1,"value"=\'a\' WHERE rowid=9'

    def test_untracked_table_not_recorded(self, conn: sqlite3.Connection) -> None:
        """Only tables with triggers are recorded."""
        conn.execute("CREATE TABLE other (x)")
        conn.execute("INSERT INTO other VALUES (1)")
        assert _undo_sql(conn) == []


class TestRedoClearing:
    """Tests for redo clearing on new writes."""

    def test_write_clears_redo(self, conn: sqlite3.Connection, items: str) -> None:
        """A recorded write empties the redo log and resets its counter."""
        conn.execute("INSERT INTO history_redo (history_group, sql) VALUES (3, 'x')")
        conn.execute("UPDATE history_stats SET cur_redo_group = 4")

        conn.execute("INSERT INTO items (value) VALUES ('a')")

        assert conn.execute("SELECT COUNT(*) FROM history_redo").fetchone()[0] == 0
        assert conn.execute("SELECT cur_redo_group FROM history_stats").fetchone()[0] == 0

    def test_no_clearing_when_disabled(self, conn: sqlite3.Connection, items: str) -> None:
        """Undo triggers installed without clearing keep the redo log."""
        install_triggers(conn, "items", HistoryDirection.UNDO, False)
        conn.execute("INSERT INTO history_redo (history_group, sql) VALUES (3, 'x')")

        conn.execute("INSERT INTO items (value) VALUES ('a')")

        assert conn.execute("SELECT COUNT(*) FROM history_redo").fetchone()[0] == 1


# =============================================================================
# Modes and Tracking
# =============================================================================


class TestTriggerModes:
    """Tests for switching trigger mode."""

    def test_switch_to_redo(
        self,
        conn: sqlite3.Connection,
        items: str,
        log_rows: Callable[[str], list[tuple]],
    ) -> None:
        """Writes in redo mode go to the redo log with the redo group."""
        conn.execute("UPDATE history_stats SET cur_redo_group = 2")
        switch_trigger_mode(conn, HistoryDirection.REDO, False, ["items"])

        conn.execute("INSERT INTO items (value) VALUES ('a')")

        assert log_rows("history_undo") == []
        assert log_rows("history_redo") == [(1, 2, 'DELETE FROM "items" WHERE rowid=1')]
        assert trigger_mode(conn, "items") is HistoryDirection.REDO

    def test_switch_all_tracked(self, conn: sqlite3.Connection, items: str, notes: str) -> None:
        """Omitting table names retargets every tracked table."""
        switch_trigger_mode(conn, HistoryDirection.REDO, False)
        assert trigger_mode(conn, "items") is HistoryDirection.REDO
        assert trigger_mode(conn, "notes") is HistoryDirection.REDO

    def test_switch_back(self, conn: sqlite3.Connection, items: str) -> None:
        """Switching back restores undo mode."""
        switch_trigger_mode(conn, HistoryDirection.REDO, False, ["items"])
        switch_trigger_mode(conn, HistoryDirection.UNDO, True, ["items"])
        assert trigger_mode(conn, "items") is HistoryDirection.UNDO

    def test_untracked_mode(self, conn: sqlite3.Connection) -> None:
        """Tables without triggers have no mode."""
        conn.execute("CREATE TABLE other (x)")
        assert trigger_mode(conn, "other") is None


class TestTracking:
    """Tests for tracking preconditions and tracked table discovery."""

    def test_tracked_tables(self, conn: sqlite3.Connection, items: str, notes: str) -> None:
        """Tracked tables are listed in name order."""
        conn.execute("CREATE TABLE other (x)")
        assert tracked_tables(conn) == ["items", "notes"]

    def test_foreign_triggers_ignored(self, conn: sqlite3.Connection) -> None:
        """Triggers with other names do not count as tracking."""
        conn.execute("CREATE TABLE other (x)")
        conn.execute("CREATE TRIGGER audit AFTER INSERT ON other BEGIN SELECT 1; END")
        assert tracked_tables(conn) == []

    def test_reinstall_is_idempotent(self, conn: sqlite3.Connection, items: str) -> None:
        """Installing twice leaves one set of triggers."""
        create_undo_triggers(conn, "items")
        count = conn.execute(
            "SELECT COUNT(*) FROM sqlite_master WHERE type = 'trigger' AND tbl_name = 'items'"
        ).fetchone()[0]
        assert count == 3

    def test_drop_triggers(self, conn: sqlite3.Connection, items: str) -> None:
        """Dropping stops recording."""
        drop_triggers(conn, "items")
        conn.execute("INSERT INTO items (value) VALUES ('a')")
        assert tracked_tables(conn) == []
        assert _undo_sql(conn) == []

    def test_drop_untracked_is_noop(self, conn: sqlite3.Connection) -> None:
        """Dropping triggers that don't exist is fine."""
        drop_triggers(conn, "missing")

    def test_missing_table(self, conn: sqlite3.Connection) -> None:
        """Missing tables cannot be tracked."""
        with pytest.raises(TableNotFoundError):
            create_undo_triggers(conn, "missing")

    def test_history_table(self, conn: sqlite3.Connection) -> None:
        """History tables cannot be tracked."""
        with pytest.raises(UntrackableTableError):
            create_undo_triggers(conn, "history_undo")

    def test_without_rowid_table(self, conn: sqlite3.Connection) -> None:
        """WITHOUT ROWID tables cannot be tracked."""
        conn.execute("CREATE TABLE kv (k TEXT PRIMARY KEY, v) WITHOUT ROWID")
        with pytest.raises(UntrackableTableError):
            create_undo_triggers(conn, "kv")

    def test_no_columns(self, conn: sqlite3.Connection, monkeypatch: pytest.MonkeyPatch) -> None:
        """A table whose introspection finds no columns cannot be tracked."""
        conn.execute("CREATE TABLE t (x)")
        monkeypatch.setattr("rewind.triggers.table_columns", lambda conn, name: [])
        with pytest.raises(TableHasNoColumnsError):
            create_undo_triggers(conn, "t")

    def test_schema_change_needs_reinstall(self, conn: sqlite3.Connection, items: str) -> None:
        """Columns are captured when triggers are installed."""
        conn.execute("ALTER TABLE items ADD COLUMN extra TEXT")
        conn.execute("INSERT INTO items VALUES (1, 'a', 'e')")
        conn.execute("DELETE FROM items")
        assert '"extra"' not in _undo_sql(conn)[1]

        create_undo_triggers(conn, "items")
        conn.execute("INSERT INTO items VALUES (1, 'a', 'e')")
        conn.execute("DELETE FROM items")
        assert _undo_sql(conn)[3] == 'INSERT INTO "items" ("id","value","extra") VALUES (1,\'a\',\'e\')'
