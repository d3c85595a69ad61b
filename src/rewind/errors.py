"""
Exception hierarchy for Rewind.

All Rewind exceptions inherit from RewindError, allowing callers to catch
all Rewind-specific exceptions with a single except clause.

Exception Categories:
    - Precondition errors: missing stats row, absent or untrackable table
    - ReplayStatementError: an inverse statement failed during undo/redo
    - StorageError: opening or writing the database failed

Propagation:
    Group management and trigger installation raise these errors directly.
    The undo/redo executor is the error boundary for replay: it converts
    failures into a HistoryResponse instead of raising.
"""

from dataclasses import dataclass, field
from typing import Any


# =============================================================================
# Error Codes
# =============================================================================

# Precondition errors: 1xxx
ERROR_STATS_NOT_FOUND = 1001
ERROR_TABLE_NOT_FOUND = 1002
ERROR_TABLE_NO_COLUMNS = 1003
ERROR_TABLE_UNTRACKABLE = 1004
ERROR_CONFIG_INVALID = 1005

# Replay errors: 2xxx
ERROR_REPLAY_STATEMENT = 2001

# Storage errors: 3xxx
ERROR_STORAGE_CONNECTION = 3001
ERROR_STORAGE_WRITE = 3002


# =============================================================================
# Base Exception
# =============================================================================


@dataclass
class RewindError(Exception):
    """
    Base exception for all Rewind errors.

    Attributes:
        message: Human-readable error description
        code: Numeric error code for programmatic handling
        suggestion: Optional hint for how to resolve the error
        context: Optional dict with additional debugging info
    """

    message: str = ""
    code: int = 0
    suggestion: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        """Format error for display."""
        parts = [f"[E{self.code}] {self.message}"]
        if self.suggestion:
            parts.append(f"\nSuggestion: {self.suggestion}")
        return "".join(parts)

    def __repr__(self) -> str:
        """Format error for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code}, "
            f"context={self.context!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "suggestion": self.suggestion,
            "context": self.context,
        }


# =============================================================================
# Precondition Errors
# =============================================================================


@dataclass
class HistoryStatsNotFoundError(RewindError):
    """Raised when the history_stats row is missing."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = "History stats row not found"
        if self.code == 0:
            self.code = ERROR_STATS_NOT_FOUND
        if not self.suggestion:
            self.suggestion = "Run initialize_history() on this database first"


@dataclass
class TableError(RewindError):
    """
    Base class for errors about a table the caller wants tracked.

    Attributes:
        table: Name of the offending table
    """

    table: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context["table"] = self.table


@dataclass
class TableNotFoundError(TableError):
    """Raised when a table does not exist in the database."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Table not found: {self.table}"
        if self.code == 0:
            self.code = ERROR_TABLE_NOT_FOUND
        if not self.suggestion:
            self.suggestion = "Check the table name spelling or create the table first"
        super().__post_init__()


@dataclass
class TableHasNoColumnsError(TableError):
    """Raised when introspection finds no columns for a table."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Table has no columns: {self.table}"
        if self.code == 0:
            self.code = ERROR_TABLE_NO_COLUMNS
        super().__post_init__()


@dataclass
class UntrackableTableError(TableError):
    """Raised for tables that cannot carry history triggers."""

    reason: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Table {self.table} cannot be tracked: {self.reason}"
        if self.code == 0:
            self.code = ERROR_TABLE_UNTRACKABLE
        super().__post_init__()
        self.context["reason"] = self.reason


@dataclass
class ConfigError(RewindError):
    """Raised when a configuration file cannot be loaded."""

    path: str = ""
    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid configuration {self.path}: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_CONFIG_INVALID
        self.context.update({
            "path": self.path,
            "underlying_error": self.underlying_error,
        })


# =============================================================================
# Replay Errors
# =============================================================================


@dataclass
class ReplayStatementError(RewindError):
    """
    Raised inside the executor when an inverse statement fails.

    Attributes:
        direction: "undo" or "redo"
        statement: The SQL text that failed
        underlying_error: The sqlite3 error message
    """

    direction: str = ""
    statement: str = ""
    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"{self.direction} failed: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_REPLAY_STATEMENT
        self.context.update({
            "direction": self.direction,
            "statement": self.statement,
            "underlying_error": self.underlying_error,
        })


# =============================================================================
# Storage Errors
# =============================================================================


@dataclass
class StorageError(RewindError):
    """
    Base class for storage/database errors.

    Attributes:
        operation: The operation that failed (e.g., "connect", "init_schema")
    """

    operation: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context["operation"] = self.operation


@dataclass
class StorageConnectionError(StorageError):
    """Raised when database connection fails."""

    db_path: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Failed to connect to database: {self.db_path}"
        if self.code == 0:
            self.code = ERROR_STORAGE_CONNECTION
        if not self.suggestion:
            self.suggestion = "Check that the database path is valid and writable"
        super().__post_init__()
        self.context["db_path"] = self.db_path


@dataclass
class StorageWriteError(StorageError):
    """Raised when a write operation fails."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Database write failed: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_STORAGE_WRITE
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error

