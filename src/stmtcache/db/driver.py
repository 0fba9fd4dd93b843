"""
SQLite driver that prepares statements through a statement cache.

Python's sqlite3 module has no standalone prepare step, so a statement
handle is the SQL text bound to a dedicated cursor on the connection.
All access goes through one lock held for each logical operation; the
cache and the handles it holds are not safe to share otherwise.
"""
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterator, List, Mapping, Optional, Sequence, Union

from loguru import logger

from stmtcache.core.errors import ConfigurationError, DatabaseError, OutOfMemoryError
from stmtcache.core.settings import TransactionMode, settings
from stmtcache.db.statement_cache import CacheStats, StatementCache, StatementCacheOption, create_statement_cache

SQLITE_NOMEM = 7

Parameters = Union[Sequence[Any], Mapping[str, Any]]
DatabaseSource = Union[str, Path, sqlite3.Connection, Callable[[], sqlite3.Connection]]


@dataclass(frozen=True)
class RunResult:
    changes: int
    last_insert_rowid: Optional[int]


@dataclass(frozen=True)
class QueryResult:
    rows: List[Any] = field(default_factory=list)
    num_affected_rows: Optional[int] = None
    insert_id: Optional[int] = None


def _bind(params: Sequence[Any]) -> Parameters:
    # A single mapping binds named parameters
    if len(params) == 1 and isinstance(params[0], Mapping):
        return params[0]
    return tuple(params)


def is_out_of_memory(error: sqlite3.Error) -> bool:
    code = getattr(error, "sqlite_errorcode", None)
    if code is not None:
        return code & 0xFF == SQLITE_NOMEM
    return "out of memory" in str(error).lower()


class PreparedStatement:
    def __init__(self, db: sqlite3.Connection, sql: str) -> None:
        self.sql = sql
        self._cursor = db.cursor()
        self._closed = False

    def execute(self, parameters: Parameters = ()) -> sqlite3.Cursor:
        if self._closed:
            raise DatabaseError("Statement has been closed", sql=self.sql)
        return self._cursor.execute(self.sql, parameters)

    def all(self, *params: Any) -> List[Any]:
        return self.execute(_bind(params)).fetchall()

    def get(self, *params: Any) -> Optional[Any]:
        return self.execute(_bind(params)).fetchone()

    def run(self, *params: Any) -> RunResult:
        cursor = self.execute(_bind(params))
        return RunResult(changes=cursor.rowcount, last_insert_rowid=cursor.lastrowid)

    def iterate(self, *params: Any) -> Iterator[Any]:
        return iter(self.execute(_bind(params)))

    def close(self) -> None:
        if not self._closed:
            self._cursor.close()
            self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    def __repr__(self) -> str:
        return f"PreparedStatement({self.sql!r})"


class SqliteConnection:
    def __init__(self, db: sqlite3.Connection, cache: Optional[StatementCache] = None) -> None:
        self._db = db
        self._cache = cache

    def prepare(self, sql: str) -> PreparedStatement:
        if self._cache is None:
            return PreparedStatement(self._db, sql)

        cached = self._cache.get(sql)
        if cached is not None:
            return cached

        statement = PreparedStatement(self._db, sql)
        self._cache.set(sql, statement)
        return statement

    def execute_query(self, sql: str, parameters: Parameters = ()) -> QueryResult:
        statement = self._cache.get(sql) if self._cache is not None else None
        is_new = statement is None
        if is_new:
            statement = PreparedStatement(self._db, sql)

        try:
            cursor = statement.execute(parameters)
            if cursor.description is not None:
                result = QueryResult(rows=cursor.fetchall())
            else:
                result = QueryResult(num_affected_rows=cursor.rowcount, insert_id=cursor.lastrowid)
        except sqlite3.Error as e:
            if is_new:
                statement.close()
            raise self._translate_error(e, sql) from e

        # Only statements that compiled and ran take a cache slot
        if is_new and self._cache is not None:
            self._cache.set(sql, statement)
        return result

    def stream_query(self, sql: str, parameters: Parameters = (), chunk_size: int = 100) -> Iterator[QueryResult]:
        """Yield SELECT results in chunks; uses its own uncached cursor."""
        if not sql.lstrip().lower().startswith(("select", "with")):
            raise DatabaseError("SQLite driver only supports streaming of SELECT queries", sql=sql)

        statement = PreparedStatement(self._db, sql)
        try:
            cursor = statement.execute(parameters)
            while True:
                rows = cursor.fetchmany(chunk_size)
                if not rows:
                    break
                yield QueryResult(rows=rows)
        except sqlite3.Error as e:
            raise self._translate_error(e, sql) from e
        finally:
            statement.close()

    def _translate_error(self, error: sqlite3.Error, sql: str) -> DatabaseError:
        code = getattr(error, "sqlite_errorcode", None)
        if is_out_of_memory(error):
            if self._cache is not None:
                self._cache.clear()
            logger.warning(f"SQLite out of memory while running {sql[:80]!r}; statement cache cleared")
            return OutOfMemoryError(
                "Failed to run statement due to memory constraints. Cache has been cleared.",
                sql=sql,
                error_code=code,
            )
        # A cached statement that no longer compiles (dropped table, changed schema) is stale
        if self._cache is not None and isinstance(error, (sqlite3.OperationalError, sqlite3.ProgrammingError)):
            self._cache.delete(sql)
        return DatabaseError(str(error), sql=sql, error_code=code)

    def get_cache_stats(self) -> Optional[CacheStats]:
        if self._cache is None:
            return None
        return self._cache.get_stats()

    @property
    def cache(self) -> Optional[StatementCache]:
        return self._cache

    @property
    def in_transaction(self) -> bool:
        return self._db.in_transaction


class SqliteDriver:
    """
    Owns one SQLite connection and the statement cache attached to it.

    The connection is opened lazily on first use. ``connection()`` holds the
    driver lock for as long as the caller keeps the connection.
    """

    def __init__(
        self,
        database: DatabaseSource,
        cache_option: Optional[StatementCacheOption] = None,
        on_create_connection: Optional[Callable[[SqliteConnection], None]] = None,
        timeout: float = 30.0,
    ) -> None:
        self._database = database
        self._cache_option = cache_option
        self._on_create_connection = on_create_connection
        self._timeout = timeout
        self._lock = threading.Lock()
        self._db: Optional[sqlite3.Connection] = None
        self._cache: Optional[StatementCache] = None
        self._connection: Optional[SqliteConnection] = None

    def _open(self) -> SqliteConnection:
        if isinstance(self._database, sqlite3.Connection):
            db = self._database
        elif callable(self._database):
            db = self._database()
        else:
            db = sqlite3.connect(
                str(self._database),
                timeout=self._timeout,
                isolation_level=None,
                check_same_thread=False,
            )

        if self._cache_option is not None:
            self._cache = create_statement_cache(self._cache_option)

        self._db = db
        self._connection = SqliteConnection(db, self._cache)
        logger.debug(f"Opened SQLite connection to {self._database!r}")

        if self._on_create_connection is not None:
            self._on_create_connection(self._connection)
        return self._connection

    @contextmanager
    def connection(self) -> Iterator[SqliteConnection]:
        with self._lock:
            connection = self._connection or self._open()
            yield connection

    def execute(self, sql: str, parameters: Parameters = ()) -> QueryResult:
        with self.connection() as connection:
            return connection.execute_query(sql, parameters)

    @contextmanager
    def transaction(self, mode: Optional[Union[TransactionMode, str]] = None) -> Iterator[SqliteConnection]:
        """
        Run a block inside ``BEGIN <mode>`` ... ``COMMIT``.

        The driver lock is held until the transaction ends, so other threads
        can't interleave statements. Any exception rolls back and re-raises.
        """
        if mode is None:
            mode = settings.db.transaction_mode
        if not isinstance(mode, TransactionMode):
            try:
                mode = TransactionMode(str(mode).upper())
            except ValueError:
                raise ConfigurationError(f"Unsupported transaction mode: {mode!r}") from None

        with self.connection() as connection:
            connection.execute_query(f"BEGIN {mode.value}")
            try:
                yield connection
            except BaseException:
                # SQLite may already have rolled back on its own
                if connection.in_transaction:
                    connection.execute_query("ROLLBACK")
                raise
            connection.execute_query("COMMIT")

    def get_cache_stats(self) -> Optional[CacheStats]:
        with self._lock:
            if self._connection is None:
                return None
            return self._connection.get_cache_stats()

    def destroy(self) -> None:
        with self._lock:
            if self._cache is not None:
                self._cache.clear()
            if self._db is not None:
                self._db.close()
            self._db = None
            self._cache = None
            self._connection = None
