"""
Logical database handles on top of SQLAlchemy engines.

This module provides:
1. A thread-safe engine registry, one engine per storage URL
2. `LogicalDatabase`, the handle of one named database and its lifecycle
   (UNOPENED -> OPEN -> CLOSED)
3. `HandleRegistry`, the explicit name -> handle map owned by a driver

Handles execute `Statement` objects through the raw DBAPI connection, which is
kept in autocommit mode; transactions are opened explicitly by
`tablekit.transaction.Transaction`.
"""
import atexit
import enum
import logging
import pathlib
import sqlite3
import threading
import time
from collections.abc import Callable
from contextlib import contextmanager
from dataclasses import dataclass, field
from functools import wraps
from typing import TYPE_CHECKING, Any, Self

import sqlalchemy as sa
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool
from tablekit.cache import Cache
from tablekit.exceptions import ConnectionError, wrap_storage_error
from tablekit.sql import validate_identifier

if TYPE_CHECKING:
    from tablekit.options import DriverOptions
    from tablekit.schema import TableSchema
    from tablekit.statements import Statement
    from tablekit.strategy import DialectStrategy

__all__ = [
    'HandleState',
    'LogicalDatabase',
    'HandleRegistry',
    'StatementResult',
    'get_engine_for_url',
    'release_engine',
    'dispose_all_engines',
]

logger = logging.getLogger(__name__)

_engine_registry: dict[str, Engine] = {}
_engine_registry_lock = threading.RLock()


def get_engine_for_url(url: sa.URL, engine_kwargs: dict[str, Any],
                       engine_factory: Callable[..., Engine] = sa.create_engine) -> Engine:
    """Get or create a SQLAlchemy engine for a storage URL.

    Engines never pool connections: every logical database handle keeps its
    own connection for as long as it is open.
    """
    key = f'{url.render_as_string(hide_password=False)}_{sorted(engine_kwargs.get("connect_args", {}).items())}'

    with _engine_registry_lock:
        if key in _engine_registry:
            logger.debug(f'Using existing engine for {url.database}')
            return _engine_registry[key]

        kwargs: dict[str, Any] = {'echo': False, 'poolclass': NullPool}
        kwargs.update(engine_kwargs)
        engine = engine_factory(url, **kwargs)

        _engine_registry[key] = engine
        logger.debug(f'Created new engine for {url.database}')
        return engine


def release_engine(engine: Engine | None) -> None:
    """Dispose an engine and drop it from the registry.

    Connections already checked out stay usable; a later open builds a new
    engine.
    """
    if engine is None:
        return
    with _engine_registry_lock:
        for key in [k for k, v in _engine_registry.items() if v is engine]:
            del _engine_registry[key]
        engine.dispose()
        logger.debug(f'Released engine for {engine.url.database}')


def dispose_all_engines() -> None:
    """Dispose all engines in the registry.
    """
    with _engine_registry_lock:
        for engine in list(_engine_registry.values()):
            engine.dispose()
        _engine_registry.clear()
        logger.debug('All database engines disposed')


atexit.register(dispose_all_engines)


class HandleState(enum.Enum):
    UNOPENED = 'unopened'
    OPEN = 'open'
    CLOSED = 'closed'


@dataclass
class StatementResult:
    """Outcome of one executed statement."""
    rows: list[dict[str, Any]] = field(default_factory=list)
    rowcount: int = -1
    lastrowid: int | None = None


def dumpsql(func):
    """Decorator for logging statements, parameters and timing.

    Statements are logged at INFO when the handle is verbose, DEBUG otherwise.
    """
    @wraps(func)
    def wrapper(self: 'LogicalDatabase', statement: 'Statement', *args: Any, **kwargs: Any):
        level = logging.INFO if self.options.verbose else logging.DEBUG
        start = time.time()
        logger.log(level, f'SQL [{self.name}]:\n{statement.sql}\nargs: {statement.params}')
        try:
            return func(self, statement, *args, **kwargs)
        except Exception:
            logger.error(f'Error with query [{self.name}]:\nSQL:\n{statement.sql}\nargs: {statement.params}')
            raise
        finally:
            elapsed = time.time() - start
            self.addcall(elapsed)
            logger.debug(f'Query time: {elapsed:.4f}s')
    return wrapper


class LogicalDatabase:
    """Handle of one named logical database.

    The handle is created UNOPENED and performs no I/O until `open()`. Once
    closed it can never be reopened; every further use raises
    `ConnectionError`.
    """

    def __init__(self, name: str, options: 'DriverOptions',
                 strategy: 'DialectStrategy') -> None:
        self.name = validate_identifier(name, 'database name')
        self.options = options
        self.strategy = strategy
        self.path = options.path_for(name)
        self.state = HandleState.UNOPENED
        self.engine: Engine | None = None
        self.sa_connection: sa.engine.Connection | None = None
        self.dbapi_connection: Any = None
        self.calls = 0
        self.time = 0.0
        self.in_transaction = False
        self.rollback_only = False
        self.abort_cause: BaseException | None = None
        self.schemas: dict[str, 'TableSchema'] = {}
        self.cache_namespace = f'{name}@{id(self):x}'

    def __repr__(self) -> str:
        return f'LogicalDatabase({self.name!r}, state={self.state.value})'

    @property
    def is_open(self) -> bool:
        return self.state is HandleState.OPEN

    def check_open(self) -> None:
        """Raise ConnectionError unless the handle is open."""
        if self.state is HandleState.CLOSED:
            raise ConnectionError('Logical database is closed', db=self.name)
        if self.state is HandleState.UNOPENED:
            raise ConnectionError('Logical database has not been opened', db=self.name)

    def open(self) -> Self:
        """Open the storage file, creating it and its directory when missing.

        Opening an open handle is a no-op.
        """
        if self.state is HandleState.OPEN:
            return self
        if self.state is HandleState.CLOSED:
            raise ConnectionError('Logical database is closed and cannot be reopened', db=self.name)

        if not self.options.in_memory and not self.options.readonly:
            pathlib.Path(self.path).parent.mkdir(parents=True, exist_ok=True)

        url = self.strategy.build_connection_url(self.options, self.name)
        engine = get_engine_for_url(url, self.strategy.get_engine_kwargs(self.options))
        try:
            sa_connection = engine.connect()
        except sa.exc.DBAPIError as e:
            raise ConnectionError(f'Could not open {self.path}: {e.orig}',
                                  db=self.name, operation='connect') from e

        dbapi_connection = sa_connection.connection.dbapi_connection
        try:
            self.strategy.configure_connection(dbapi_connection, self.options)
        except sqlite3.Error as e:
            sa_connection.close()
            raise ConnectionError(f'Could not configure {self.path}: {e}',
                                  db=self.name, operation='connect') from e

        self.engine = engine
        self.sa_connection = sa_connection
        self.dbapi_connection = dbapi_connection
        self.state = HandleState.OPEN
        logger.debug(f'Opened logical database {self.name} at {self.path}')
        return self

    def mark_rollback_only(self, cause: BaseException) -> None:
        """Force the open transaction to end in ROLLBACK; the first cause wins."""
        if not self.rollback_only:
            logger.debug(f'Transaction on {self.name} marked rollback-only: {cause!r}')
            self.rollback_only = True
            self.abort_cause = cause

    def clear_rollback_only(self) -> None:
        self.rollback_only = False
        self.abort_cause = None

    def addcall(self, elapsed: float) -> None:
        """Track execution statistics
        """
        self.time += elapsed
        self.calls += 1

    @dumpsql
    def execute(self, statement: 'Statement') -> StatementResult:
        """Execute one statement and collect its rows and counters.

        Storage errors are wrapped with the statement's context.
        """
        self.check_open()
        cursor = self.dbapi_connection.cursor()
        try:
            cursor.execute(statement.sql, statement.params)
            rows = []
            if cursor.description is not None:
                columns = [desc[0] for desc in cursor.description]
                rows = [dict(zip(columns, row)) for row in cursor.fetchall()]
            return StatementResult(rows=rows, rowcount=cursor.rowcount,
                                   lastrowid=cursor.lastrowid)
        except sqlite3.Error as e:
            raise wrap_storage_error(e, db=self.name, table=statement.table,
                                     operation=statement.operation) from e
        finally:
            cursor.close()

    @contextmanager
    def wrap_errors(self, table: str | None = None, operation: str | None = None):
        """Translate storage errors raised inside the block.
        """
        try:
            yield
        except sqlite3.Error as e:
            raise wrap_storage_error(e, db=self.name, table=table, operation=operation) from e

    def close(self) -> None:
        """Close the connection; the handle becomes CLOSED for good.
        """
        if self.state is HandleState.CLOSED:
            return
        if self.state is HandleState.OPEN:
            if self.in_transaction:
                logger.warning(f'Closing {self.name} with an open transaction, rolling back')
                try:
                    self.strategy.rollback(self.dbapi_connection)
                except sqlite3.Error as e:
                    logger.error(f'Rollback on close failed for {self.name}: {e}')
                self.in_transaction = False
                self.clear_rollback_only()
            self.sa_connection.close()
            release_engine(self.engine)
            logger.debug(f'Connection closed: {self.calls} queries in {self.time:.2f}s (avg: {self.time/max(1,self.calls):.3f}s per query)')
        Cache.get_instance().clear_for_namespace(self.cache_namespace)
        self.engine = None
        self.sa_connection = None
        self.dbapi_connection = None
        self.state = HandleState.CLOSED


class HandleRegistry:
    """Explicit map of logical database name -> handle.

    Only `open()` creates handles. After `close_all()` the registry itself is
    closed and every lookup raises `ConnectionError`.
    """

    def __init__(self, options: 'DriverOptions', strategy: 'DialectStrategy') -> None:
        self.options = options
        self.strategy = strategy
        self._handles: dict[str, LogicalDatabase] = {}
        self._lock = threading.RLock()
        self.closed = False

    def _check_open(self, name: str | None = None) -> None:
        if self.closed:
            raise ConnectionError('Driver has been disconnected', db=name)

    def open(self, name: str) -> LogicalDatabase:
        """Return the open handle for `name`, opening it on first reference.
        """
        with self._lock:
            self._check_open(name)
            handle = self._handles.get(name)
            if handle is None:
                handle = LogicalDatabase(name, self.options, self.strategy)
                self._handles[name] = handle
            try:
                return handle.open()
            except ConnectionError:
                if handle.state is HandleState.UNOPENED:
                    self._handles.pop(name, None)
                raise

    def get(self, name: str) -> LogicalDatabase:
        """Return an already registered handle.

        Raises
            ConnectionError: If the registry is closed or `name` was never opened
        """
        with self._lock:
            self._check_open(name)
            if name not in self._handles:
                raise ConnectionError('Logical database is not open', db=name)
            return self._handles[name]

    def first(self) -> LogicalDatabase:
        """Return the first-opened handle."""
        with self._lock:
            self._check_open()
            if not self._handles:
                raise ConnectionError('No logical database is open')
            return next(iter(self._handles.values()))

    def names(self) -> list[str]:
        with self._lock:
            return list(self._handles)

    def __contains__(self, name: str) -> bool:
        return name in self._handles

    def close_all(self) -> None:
        """Close every handle and the registry. Idempotent."""
        with self._lock:
            if self.closed:
                return
            for handle in self._handles.values():
                handle.close()
            self.closed = True
            logger.debug(f'Closed {len(self._handles)} logical database(s)')
