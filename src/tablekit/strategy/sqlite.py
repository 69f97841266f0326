"""
SQLite-specific strategy implementation.

This module implements the DialectStrategy interface for SQLite. It handles:
- One database file per logical database (`<storage_dir>/<db>.<extension>`)
- Read-only files through `mode=ro` URI connections
- Session pragmas (WAL, synchronous, cache, foreign keys, busy timeout)
- Explicit BEGIN/COMMIT/ROLLBACK on an autocommit connection
- Catalog introspection through `sqlite_master` and `pragma_table_info`
"""
import logging
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from tablekit.cache import cacheable_strategy
from tablekit.exceptions import ValidationError
from tablekit.strategy.base import DialectStrategy, register_strategy
from tablekit.types import DataType

if TYPE_CHECKING:
    from tablekit.connection import LogicalDatabase
    from tablekit.options import DriverOptions

logger = logging.getLogger(__name__)

sqlite_types = {
    DataType.TEXT: 'TEXT',
    DataType.STRING: 'TEXT',
    DataType.INTEGER: 'INTEGER',
    DataType.NUMBER: 'INTEGER',
    DataType.REAL: 'REAL',
    DataType.BLOB: 'BLOB',
    DataType.BOOLEAN: 'INTEGER',
    DataType.DATE: 'TEXT',
    DataType.DATETIME: 'TEXT',
    DataType.JSON: 'TEXT',
    DataType.OBJECT: 'TEXT',
    DataType.ARRAY: 'TEXT',
}

CHECKPOINT_MODES = ('PASSIVE', 'FULL', 'RESTART', 'TRUNCATE')


@register_strategy('sqlite')
class SQLiteStrategy(DialectStrategy):
    """SQLite-specific operations.
    """

    AGGREGATES = frozenset({'SUM', 'AVG', 'MIN', 'MAX', 'COUNT'})

    @property
    def dialect_name(self) -> str:
        """Return the dialect identifier for SQLite."""
        return 'sqlite'

    def build_connection_url(self, options: 'DriverOptions', db_name: str) -> sa.URL:
        """Build the SQLAlchemy connection URL for one logical database file.
        """
        path = options.path_for(db_name)
        if options.in_memory:
            return sa.URL.create(drivername='sqlite', database=path)
        if options.readonly:
            return sa.URL.create(
                drivername='sqlite',
                database=f'file:{path}',
                query={'mode': 'ro', 'uri': 'true'},
            )
        return sa.URL.create(drivername='sqlite', database=path)

    def get_engine_kwargs(self, options: 'DriverOptions') -> dict[str, Any]:
        """Return SQLAlchemy create_engine kwargs for SQLite.

        The async driver runs statements on worker threads, so the connection
        may not be pinned to the thread that opened it.
        """
        return {
            'connect_args': {
                'check_same_thread': False,
                'timeout': options.timeout / 1000,
            }
        }

    def configure_connection(self, raw_conn: Any, options: 'DriverOptions') -> None:
        """Configure connection settings for SQLite.
        """
        self.enable_autocommit(raw_conn)
        if options.wal and not options.readonly and not options.in_memory:
            raw_conn.execute('PRAGMA journal_mode = WAL')
        raw_conn.execute('PRAGMA synchronous = NORMAL')
        raw_conn.execute('PRAGMA cache_size = -64000')
        raw_conn.execute('PRAGMA temp_store = MEMORY')
        raw_conn.execute('PRAGMA foreign_keys = ON')
        raw_conn.execute(f'PRAGMA busy_timeout = {int(options.timeout)}')

    def enable_autocommit(self, raw_conn: Any) -> None:
        """Enable auto-commit mode for SQLite.
        """
        raw_conn.isolation_level = None

    def begin(self, raw_conn: Any) -> None:
        raw_conn.execute('BEGIN')

    def commit(self, raw_conn: Any) -> None:
        raw_conn.execute('COMMIT')

    def rollback(self, raw_conn: Any) -> None:
        raw_conn.execute('ROLLBACK')

    def native_type(self, data_type: DataType) -> str:
        return sqlite_types[DataType.parse(data_type)]

    def limit_clause(self, limit: int | None, offset: int | None) -> str:
        """SQLite needs a LIMIT before OFFSET; -1 means no limit.
        """
        if limit is None and not offset:
            return ''
        clause = f' LIMIT {int(limit) if limit is not None else -1}'
        if offset:
            clause += f' OFFSET {int(offset)}'
        return clause

    @classmethod
    def get_required_options(cls) -> list[str]:
        """Return required options for SQLite connections."""
        return ['storage_dir']

    def table_exists(self, cn: 'LogicalDatabase', table: str) -> bool:
        sql = "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?"
        return bool(self._select_column_raw(cn, sql, (table,)))

    @cacheable_strategy('table_columns', ttl=300, maxsize=50)
    def get_columns(self, cn: 'LogicalDatabase', table: str,
                    bypass_cache: bool = False) -> list[str]:
        """Get all columns for a table.
        """
        sql = 'SELECT name FROM pragma_table_info(?) ORDER BY cid'
        return self._select_column_raw(cn, sql, (table,))

    @cacheable_strategy('table_description', ttl=300, maxsize=50)
    def describe_table(self, cn: 'LogicalDatabase', table: str,
                       bypass_cache: bool = False) -> list[dict[str, Any]]:
        """Describe table columns from pragma_table_info.
        """
        sql = """
SELECT name, type, "notnull" AS not_null, dflt_value AS "default", pk AS primary_key
FROM pragma_table_info(?)
ORDER BY cid
"""
        rows = self._select_raw(cn, sql, (table,))
        for row in rows:
            row['not_null'] = bool(row['not_null'])
            row['primary_key'] = bool(row['primary_key'])
        return rows

    def get_index_table(self, cn: 'LogicalDatabase', index: str) -> str | None:
        sql = "SELECT tbl_name FROM sqlite_master WHERE type = 'index' AND name = ?"
        tables = self._select_column_raw(cn, sql, (index,))
        return tables[0] if tables else None

    def checkpoint(self, cn: 'LogicalDatabase', mode: str = 'PASSIVE') -> dict[str, int]:
        """Checkpoint the write-ahead log.
        """
        if not isinstance(mode, str) or mode.upper() not in CHECKPOINT_MODES:
            raise ValidationError(f'Checkpoint mode must be one of {list(CHECKPOINT_MODES)}, got {mode!r}')
        rows = self._select_raw(cn, f'PRAGMA wal_checkpoint({mode.upper()})')
        return rows[0] if rows else {}

    def optimize(self, cn: 'LogicalDatabase') -> None:
        self._execute_raw(cn, 'PRAGMA optimize')

    def vacuum(self, cn: 'LogicalDatabase') -> None:
        """Rebuild the whole database file.

        SQLite has no table-specific vacuum.
        """
        self._execute_raw(cn, 'VACUUM')
        logger.debug(f'Executed VACUUM on {cn.name}')

    def analyze(self, cn: 'LogicalDatabase') -> None:
        self._execute_raw(cn, 'ANALYZE')

    def storage_stats(self, cn: 'LogicalDatabase') -> dict[str, int]:
        """Return used and maximum file size computed from page counts.
        """
        page_size = self._select_column_raw(cn, 'PRAGMA page_size')[0]
        page_count = self._select_column_raw(cn, 'PRAGMA page_count')[0]
        max_page_count = self._select_column_raw(cn, 'PRAGMA max_page_count')[0]
        return {
            'used': page_count * page_size,
            'highwater': max_page_count * page_size,
        }
