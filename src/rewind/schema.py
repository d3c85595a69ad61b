"""
Schema definitions for Rewind.

This module defines the Pydantic models used throughout Rewind:
- HistoryDirection: which log an operation reads from or writes to
- HistoryEntry: one row of the undo or redo log
- HistoryStats: the single bookkeeping row
- HistoryConfig: settings loaded from a YAML file

Table and column names of the persisted layout are defined here as
constants so that every module builds SQL against the same names.
"""

from enum import Enum
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from rewind.errors import ConfigError


# =============================================================================
# Persisted Layout
# =============================================================================

UNDO_TABLE = "history_undo"
REDO_TABLE = "history_redo"
STATS_TABLE = "history_stats"
HISTORY_TABLES = frozenset({UNDO_TABLE, REDO_TABLE, STATS_TABLE})

# Trigger name suffixes, appended to the tracked table name
INSERT_TRIGGER_SUFFIX = "_it"
UPDATE_TRIGGER_SUFFIX = "_ut"
DELETE_TRIGGER_SUFFIX = "_dt"
TRIGGER_SUFFIXES = (INSERT_TRIGGER_SUFFIX, UPDATE_TRIGGER_SUFFIX, DELETE_TRIGGER_SUFFIX)

DEFAULT_GROUP_LIMIT = 500


# =============================================================================
# Enums
# =============================================================================


class HistoryDirection(str, Enum):
    """Which history log an operation targets."""

    UNDO = "undo"
    REDO = "redo"

    @property
    def log_table(self) -> str:
        """Name of the log table for this direction."""
        return UNDO_TABLE if self is HistoryDirection.UNDO else REDO_TABLE

    @property
    def group_column(self) -> str:
        """Name of the current-group column in history_stats."""
        return "cur_undo_group" if self is HistoryDirection.UNDO else "cur_redo_group"

    @property
    def opposite(self) -> "HistoryDirection":
        """The other direction."""
        return HistoryDirection.REDO if self is HistoryDirection.UNDO else HistoryDirection.UNDO


# =============================================================================
# Log Models
# =============================================================================


class HistoryEntry(BaseModel):
    """
    A single row of the undo or redo log.

    Attributes:
        sequence: Insertion order, replayed newest-first within a group
        history_group: The batch this entry belongs to
        sql: Inverse statement reversing one row-level change
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    sequence: int = Field(..., description="Insertion order")
    history_group: int = Field(..., description="Undo/redo group number")
    sql: str = Field(..., description="Inverse SQL statement")


class HistoryStats(BaseModel):
    """
    The single history_stats row.

    Attributes:
        cur_undo_group: Group new undo entries are stamped with
        cur_redo_group: Group new redo entries are stamped with
        group_limit: Maximum retained undo groups (<= 0 means unlimited)
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    cur_undo_group: int = Field(..., description="Current undo group")
    cur_redo_group: int = Field(..., description="Current redo group")
    group_limit: int = Field(..., description="Maximum retained groups")

    @property
    def unlimited(self) -> bool:
        """Whether group eviction is disabled."""
        return self.group_limit <= 0


# =============================================================================
# Configuration
# =============================================================================


class HistoryConfig(BaseModel):
    """
    Settings for a HistoryEngine.

    Attributes:
        database: Path to the SQLite database file
        group_limit: Maximum undo groups kept (<= 0 disables eviction)
        tables: Tables to track when the engine opens
        foreign_keys: Whether foreign key enforcement is enabled on connect
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    database: Path = Field(
        default=Path("history.db"),
        description="Path to the SQLite database file",
    )
    group_limit: int = Field(
        default=DEFAULT_GROUP_LIMIT,
        description="Maximum undo groups retained (<= 0 = unlimited)",
    )
    tables: list[str] = Field(
        default_factory=list,
        description="Tables to track on open",
    )
    foreign_keys: bool = Field(
        default=True,
        description="Enable foreign key enforcement on connect",
    )

    @field_validator("tables")
    @classmethod
    def validate_tables(cls, v: list[str]) -> list[str]:
        """Reject empty names and the history tables themselves."""
        for name in v:
            if not name:
                msg = "Table names must not be empty"
                raise ValueError(msg)
            if name in HISTORY_TABLES:
                msg = f"History table cannot be tracked: {name}"
                raise ValueError(msg)
        return v


# =============================================================================
# YAML Loading Helpers
# =============================================================================


def load_config(path: Path | str) -> HistoryConfig:
    """
    Load a configuration from a YAML file.

    Relative database paths are resolved against the file's directory;
    ":memory:" is kept as is.

    Args:
        path: Path to the YAML file

    Returns:
        Validated HistoryConfig object

    Raises:
        FileNotFoundError: If the file doesn't exist
        ConfigError: If the YAML doesn't match the schema
    """
    path = Path(path)
    with path.open() as f:
        content = f.read()

    config = load_config_from_string(content, source=str(path))
    if str(config.database) != ":memory:" and not config.database.is_absolute():
        config = config.model_copy(update={"database": path.parent / config.database})
    return config


def load_config_from_string(content: str, source: str = "<string>") -> HistoryConfig:
    """Load a configuration from a YAML string."""
    try:
        data = yaml.safe_load(content) or {}
        return HistoryConfig.model_validate(data)
    except (yaml.YAMLError, ValidationError) as e:
        raise ConfigError(path=source, underlying_error=str(e)) from e
