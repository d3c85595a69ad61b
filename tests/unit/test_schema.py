"""
Unit tests for schema models and configuration loading.

Tests cover:
- HistoryDirection helpers
- HistoryEntry / HistoryStats models
- HistoryConfig validation
- YAML loading
"""

from pathlib import Path

import pytest
from pydantic import ValidationError

from rewind.errors import ConfigError
from rewind.schema import (
    DEFAULT_GROUP_LIMIT,
    HistoryConfig,
    HistoryDirection,
    HistoryEntry,
    HistoryStats,
    load_config,
    load_config_from_string,
)


class TestHistoryDirection:
    """Tests for HistoryDirection."""

    def test_values(self) -> None:
        """Directions parse from their string values."""
        assert HistoryDirection("undo") is HistoryDirection.UNDO
        assert HistoryDirection("redo") is HistoryDirection.REDO

    def test_log_tables(self) -> None:
        """Each direction maps to its log table."""
        assert HistoryDirection.UNDO.log_table == "history_undo"
        assert HistoryDirection.REDO.log_table == "history_redo"

    def test_group_columns(self) -> None:
        """Each direction maps to its stats column."""
        assert HistoryDirection.UNDO.group_column == "cur_undo_group"
        assert HistoryDirection.REDO.group_column == "cur_redo_group"

    def test_opposite(self) -> None:
        """Opposite swaps directions."""
        assert HistoryDirection.UNDO.opposite is HistoryDirection.REDO
        assert HistoryDirection.REDO.opposite is HistoryDirection.UNDO

    def test_invalid(self) -> None:
        """Unknown directions are rejected."""
        with pytest.raises(ValueError):
            HistoryDirection("sideways")


class TestModels:
    """Tests for log and stats models."""

    def test_entry_is_frozen(self) -> None:
        """Entries cannot be modified."""
        entry = HistoryEntry(sequence=1, history_group=0, sql="DELETE FROM t")
        with pytest.raises(ValidationError):
            entry.sql = "x"  # type: ignore[misc]

    def test_stats_unlimited(self) -> None:
        """Non-positive limits mean unlimited."""
        assert HistoryStats(cur_undo_group=0, cur_redo_group=0, group_limit=0).unlimited
        assert HistoryStats(cur_undo_group=0, cur_redo_group=0, group_limit=-5).unlimited
        assert not HistoryStats(cur_undo_group=0, cur_redo_group=0, group_limit=10).unlimited


class TestHistoryConfig:
    """Tests for HistoryConfig."""

    def test_defaults(self) -> None:
        """Defaults match a fresh database."""
        config = HistoryConfig()
        assert config.database == Path("history.db")
        assert config.group_limit == DEFAULT_GROUP_LIMIT
        assert config.tables == []
        assert config.foreign_keys is True

    def test_rejects_history_tables(self) -> None:
        """History tables cannot be listed for tracking."""
        with pytest.raises(ValidationError):
            HistoryConfig(tables=["history_undo"])

    def test_rejects_empty_table_name(self) -> None:
        """Empty names are invalid."""
        with pytest.raises(ValidationError):
            HistoryConfig(tables=[""])

    def test_rejects_unknown_keys(self) -> None:
        """Extra keys are forbidden."""
        with pytest.raises(ValidationError):
            HistoryConfig.model_validate({"grouplimit": 3})


class TestLoading:
    """Tests for YAML loading helpers."""

    def test_load_from_string(self) -> None:
        """A full configuration parses."""
        config = load_config_from_string(
            """
database: drill.db
group_limit: 50
tables:
  - marcher
  - page
foreign_keys: false
"""
        )
        assert config.database == Path("drill.db")
        assert config.group_limit == 50
        assert config.tables == ["marcher", "page"]
        assert config.foreign_keys is False

    def test_empty_string_gives_defaults(self) -> None:
        """An empty document is the default configuration."""
        assert load_config_from_string("") == HistoryConfig()

    def test_invalid_yaml_raises_config_error(self) -> None:
        """Malformed YAML is reported as ConfigError."""
        with pytest.raises(ConfigError):
            load_config_from_string("tables: [unclosed")

    def test_invalid_values_raise_config_error(self) -> None:
        """Schema violations are reported as ConfigError."""
        with pytest.raises(ConfigError) as exc_info:
            load_config_from_string("group_limit: lots", source="bad.yaml")
        assert exc_info.value.context["path"] == "bad.yaml"

    def test_load_file_resolves_relative_database(self, temp_dir: Path) -> None:
        """Relative database paths are relative to the config file."""
        path = temp_dir / "rewind.yaml"
        path.write_text("database: data/drill.db\n")

        config = load_config(path)
        assert config.database == temp_dir / "data" / "drill.db"

    def test_load_file_keeps_absolute_database(self, temp_dir: Path) -> None:
        """Absolute database paths are kept."""
        target = temp_dir / "elsewhere.db"
        path = temp_dir / "rewind.yaml"
        path.write_text(f"database: {target}\n")

        assert load_config(path).database == target

    def test_load_file_keeps_memory_database(self, temp_dir: Path) -> None:
        """In-memory databases are not turned into file paths."""
        path = temp_dir / "rewind.yaml"
        path.write_text('database: ":memory:"\n')

        assert str(load_config(path).database) == ":memory:"

    def test_load_missing_file(self, temp_dir: Path) -> None:
        """Missing files raise FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_config(temp_dir / "missing.yaml")
