"""
Base strategy interface for dialect-specific operations.

Defines the abstract base class that every storage dialect implements. The
strategy encapsulates what differs between engines (connection URLs, pragmas,
native column types, catalog introspection, maintenance commands) while the
statement builder and the drivers stay dialect-neutral.
"""
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from tablekit.exceptions import ValidationError
from tablekit.sql import quote_identifier as sql_quote_identifier
from tablekit.types import DataType

if TYPE_CHECKING:
    from tablekit.connection import LogicalDatabase
    from tablekit.options import DriverOptions

# Registry of dialect name -> strategy class
# Defined here to avoid circular imports (concrete strategies import from base)
_STRATEGY_REGISTRY: dict[str, type['DialectStrategy']] = {}


def register_strategy(dialect: str):
    """Decorator to register a strategy class for a dialect.

    Usage:
        @register_strategy('sqlite')
        class SQLiteStrategy(DialectStrategy):
            ...
    """
    def decorator(cls: type['DialectStrategy']) -> type['DialectStrategy']:
        _STRATEGY_REGISTRY[dialect] = cls
        return cls
    return decorator


class DialectStrategy(ABC):
    """Base class for dialect-specific operations.
    """

    AGGREGATES: frozenset[str] = frozenset()

    @contextmanager
    def _cursor(self, cn: 'LogicalDatabase', sql: str, params: tuple | None = None):
        """Context manager for cursor lifecycle.

        Handles cursor creation, SQL execution, and cleanup.
        """
        cursor = cn.dbapi_connection.cursor()
        try:
            cursor.execute(sql, params or ())
            yield cursor
        finally:
            cursor.close()

    def _execute_raw(self, cn: 'LogicalDatabase', sql: str,
                     params: tuple | None = None) -> int:
        """Execute SQL and return rowcount.

        Used internally by strategy methods for pragmas and maintenance.
        """
        with self._cursor(cn, sql, params) as cursor:
            return cursor.rowcount

    def _select_raw(self, cn: 'LogicalDatabase', sql: str,
                    params: tuple | None = None) -> list[dict]:
        """Execute SQL and return results as list of dicts.
        """
        with self._cursor(cn, sql, params) as cursor:
            if cursor.description is None:
                return []
            columns = [desc[0] for desc in cursor.description]
            return [dict(zip(columns, row)) for row in cursor.fetchall()]

    def _select_column_raw(self, cn: 'LogicalDatabase', sql: str,
                           params: tuple | None = None) -> list:
        """Execute SQL and return first column as list.
        """
        with self._cursor(cn, sql, params) as cursor:
            return [row[0] for row in cursor.fetchall()]

    @property
    @abstractmethod
    def dialect_name(self) -> str:
        """Return the dialect identifier (e.g., 'sqlite')."""

    @abstractmethod
    def build_connection_url(self, options: 'DriverOptions', db_name: str) -> Any:
        """Build the SQLAlchemy connection URL of one logical database.

        Args:
            options: DriverOptions containing connection parameters
            db_name: Logical database name

        Returns
            URL suitable for SQLAlchemy create_engine
        """

    @abstractmethod
    def get_engine_kwargs(self, options: 'DriverOptions') -> dict[str, Any]:
        """Return SQLAlchemy create_engine kwargs for this dialect.

        Args:
            options: DriverOptions containing connection parameters
        """

    @abstractmethod
    def configure_connection(self, raw_conn: Any, options: 'DriverOptions') -> None:
        """Apply session settings to a freshly opened raw DBAPI connection.

        After configuration the connection must be in autocommit mode;
        transactions are opened explicitly with `begin`.
        """

    @abstractmethod
    def begin(self, raw_conn: Any) -> None:
        """Open a transaction on a raw DBAPI connection."""

    @abstractmethod
    def commit(self, raw_conn: Any) -> None:
        """Commit the open transaction."""

    @abstractmethod
    def rollback(self, raw_conn: Any) -> None:
        """Roll back the open transaction."""

    @abstractmethod
    def native_type(self, data_type: DataType) -> str:
        """Return the native column type used in DDL for a declared type.
        """

    @abstractmethod
    def limit_clause(self, limit: int | None, offset: int | None) -> str:
        """Return the pagination clause (with a leading space) or empty string.
        """

    @abstractmethod
    def table_exists(self, cn: 'LogicalDatabase', table: str) -> bool:
        """Check the catalog for a table. Never cached."""

    @abstractmethod
    def get_columns(self, cn: 'LogicalDatabase', table: str,
                    bypass_cache: bool = False) -> list[str]:
        """Get all column names for a table ordered by their position.

        Args:
            cn: Logical database handle
            table: Table name to get columns for
            bypass_cache: If True, bypass cache and query database directly
        """

    @abstractmethod
    def describe_table(self, cn: 'LogicalDatabase', table: str,
                       bypass_cache: bool = False) -> list[dict[str, Any]]:
        """Describe the columns of a table as stored in the catalog.

        Returns
            One dict per column with `name`, `type`, `not_null`, `default`
            and `primary_key` keys
        """

    @abstractmethod
    def get_index_table(self, cn: 'LogicalDatabase', index: str) -> str | None:
        """Return the table an index belongs to, or None when it does not exist.
        """

    @abstractmethod
    def checkpoint(self, cn: 'LogicalDatabase', mode: str = 'PASSIVE') -> dict[str, int]:
        """Checkpoint the write-ahead log."""

    @abstractmethod
    def optimize(self, cn: 'LogicalDatabase') -> None:
        """Run the engine's statistics optimizer."""

    @abstractmethod
    def vacuum(self, cn: 'LogicalDatabase') -> None:
        """Rebuild the database file, reclaiming free pages."""

    @abstractmethod
    def analyze(self, cn: 'LogicalDatabase') -> None:
        """Gather statistics for the query planner."""

    @abstractmethod
    def storage_stats(self, cn: 'LogicalDatabase') -> dict[str, int]:
        """Return used and maximum storage size in bytes."""

    @classmethod
    @abstractmethod
    def get_required_options(cls) -> list[str]:
        """Return list of required option field names for this dialect.
        """

    @classmethod
    def validate_options(cls, options: 'DriverOptions') -> None:
        """Validate options for this dialect.

        Raises
            ValidationError: If any required field is None or empty
        """
        for field in cls.get_required_options():
            if not getattr(options, field):
                raise ValidationError(f'field {field} cannot be None or empty')

    def supports_aggregate(self, op: str) -> bool:
        """Check whether an aggregate function is available."""
        return isinstance(op, str) and op.upper() in self.AGGREGATES

    def quote_identifier(self, identifier: str) -> str:
        """Validate and quote a database identifier.

        Default implementation uses standard SQL double-quote quoting.
        """
        return sql_quote_identifier(identifier)
