from typing import Optional


class StmtCacheError(Exception):
    """Base error for the statement cache package."""


class ConfigurationError(StmtCacheError):
    """Raised when a cache is constructed or resized with invalid limits."""


class DatabaseError(StmtCacheError):
    """Raised when the underlying SQLite engine rejects an operation."""

    def __init__(self, message: str, sql: Optional[str] = None, error_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.sql = sql
        self.error_code = error_code


class OutOfMemoryError(DatabaseError):
    """Raised when SQLite reports SQLITE_NOMEM; the statement cache has been cleared."""
