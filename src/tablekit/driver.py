"""
Synchronous driver capability contract and its SQLite adapter.

A driver owns a `HandleRegistry` of logical databases. Every operation names
the logical database it addresses; the first reference to a name opens its
storage file (`<storage_dir>/<db>.<extension>`). After `disconnect()` the
driver is closed for good and every call raises `ConnectionError`.

Records are plain dicts of column name -> value, deserialized according to
the schema the table was declared with. Tables the driver has no schema for
return storage primitives unchanged.
"""
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Self, TypeVar

from libb import isiterable
from tablekit.cache import Cache
from tablekit.connection import HandleRegistry, LogicalDatabase
from tablekit.exceptions import ConnectionError, UnsupportedOperation
from tablekit.exceptions import ValidationError
from tablekit.options import DriverOptions
from tablekit.query import QueryOptions
from tablekit.schema import IndexOptions, TableSchema
from tablekit.statements import Statement, build_aggregate, build_count
from tablekit.statements import build_create_index, build_create_table
from tablekit.statements import build_delete, build_drop_index, build_drop_table
from tablekit.statements import build_insert, build_select, build_select_by_rowid
from tablekit.statements import build_select_one, build_update
from tablekit.strategy import DialectStrategy, get_strategy
from tablekit.transaction import run_atomic
from tablekit.types import TypeConverter

__all__ = ['Driver', 'DriverMetadata', 'SQLiteDriver', 'normalize_update_ops']

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass(frozen=True)
class DriverMetadata:
    """Name and version of a driver, for diagnostics."""
    name: str
    version: str


def normalize_update_ops(ops: Any) -> list[tuple[Mapping[str, Any], Mapping[str, Any]]]:
    """Normalize bulk update operations to (where, data) pairs.

    Each operation is a mapping with `where` and `data` keys, or a
    `(where, data)` pair.
    """
    if isinstance(ops, str | bytes | Mapping) or not isiterable(ops):
        raise ValidationError(f'bulk_update expects a list of operations, got {type(ops).__name__}')
    normalized = []
    for op in ops:
        if isinstance(op, Mapping):
            if set(op) != {'where', 'data'}:
                raise ValidationError(f'Update operation needs exactly "where" and "data" keys, got {sorted(op)}')
            where, data = op['where'], op['data']
        elif isinstance(op, tuple | list) and len(op) == 2:
            where, data = op
        else:
            raise ValidationError(f'Invalid update operation: {op!r}')
        normalized.append((where, data))
    return normalized


def _check_records(records: Any, what: str) -> list:
    if isinstance(records, str | bytes | Mapping) or not isiterable(records):
        raise ValidationError(f'{what} expects a list, got {type(records).__name__}')
    return list(records)


class Driver(ABC):
    """Synchronous driver capability contract.

    Every operation returns its result directly. Optional capabilities
    (aggregation, maintenance) raise `UnsupportedOperation` unless the
    backend provides them.
    """

    @property
    @abstractmethod
    def metadata(self) -> DriverMetadata:
        """Name/version pair of this driver."""

    @property
    def supports_aggregate(self) -> bool:
        return False

    @abstractmethod
    def connect(self, options: DriverOptions | Mapping[str, Any] | None = None,
                **kw: Any) -> Self:
        """Configure the driver. Storage is opened lazily, per logical database."""

    @abstractmethod
    def disconnect(self) -> None:
        """Close every logical database. The driver cannot be used afterwards."""

    def get_schema(self, db: str, table: str) -> TableSchema | None:
        """Schema the table was declared with, None when unknown."""
        return None

    @abstractmethod
    def table_exists(self, db: str, table: str) -> bool: ...

    @abstractmethod
    def create_table(self, db: str, table: str,
                     schema: TableSchema | Mapping[str, Any]) -> None: ...

    @abstractmethod
    def drop_table(self, db: str, table: str) -> None: ...

    @abstractmethod
    def create_index(self, db: str, table: str, name: str,
                     options: IndexOptions | Mapping[str, Any]) -> None: ...

    @abstractmethod
    def drop_index(self, db: str, table: str, name: str) -> None: ...

    @abstractmethod
    def find_one(self, db: str, table: str,
                 query: QueryOptions | Mapping[str, Any] | None = None,
                 **kw: Any) -> dict[str, Any] | None: ...

    @abstractmethod
    def find_all(self, db: str, table: str,
                 query: QueryOptions | Mapping[str, Any] | None = None,
                 **kw: Any) -> list[dict[str, Any]]: ...

    @abstractmethod
    def count(self, db: str, table: str, where: Mapping[str, Any] | None = None) -> int: ...

    @abstractmethod
    def insert(self, db: str, table: str, data: Mapping[str, Any]) -> dict[str, Any]: ...

    @abstractmethod
    def bulk_insert(self, db: str, table: str,
                    records: Sequence[Mapping[str, Any]]) -> list[dict[str, Any]]: ...

    @abstractmethod
    def update(self, db: str, table: str, data: Mapping[str, Any],
               where: Mapping[str, Any]) -> int: ...

    @abstractmethod
    def bulk_update(self, db: str, table: str, ops: Sequence[Any]) -> int: ...

    @abstractmethod
    def delete(self, db: str, table: str, where: Mapping[str, Any]) -> int: ...

    @abstractmethod
    def bulk_delete(self, db: str, table: str,
                    wheres: Sequence[Mapping[str, Any]]) -> int: ...

    @abstractmethod
    def transaction(self, fn: Callable[[], T], db: str | None = None) -> T: ...

    def aggregate(self, db: str, table: str, op: str, field: str,
                  where: Mapping[str, Any] | None = None) -> int | float:
        raise UnsupportedOperation(f'{self.metadata.name} does not support aggregation',
                                   db=db, table=table, operation='aggregate')

    def checkpoint(self, db: str, mode: str = 'PASSIVE') -> dict[str, int]:
        raise UnsupportedOperation('checkpoint is not supported', db=db, operation='checkpoint')

    def optimize(self, db: str) -> None:
        raise UnsupportedOperation('optimize is not supported', db=db, operation='optimize')

    def vacuum(self, db: str) -> None:
        raise UnsupportedOperation('vacuum is not supported', db=db, operation='vacuum')

    def analyze(self, db: str) -> None:
        raise UnsupportedOperation('analyze is not supported', db=db, operation='analyze')

    def storage_stats(self, db: str) -> dict[str, int]:
        raise UnsupportedOperation('storage_stats is not supported', db=db, operation='storage_stats')


class SQLiteDriver(Driver):
    """Synchronous SQLite driver.

    Construction performs no I/O; pass options here or to `connect()`.

    Transactions: `transaction(fn, db=None)` binds to one logical database,
    the first opened one unless `db` names another. Statements that `fn`
    sends to any other logical database are not part of the transaction and
    commit on their own. There is no atomicity across logical databases.

    Examples
        driver = SQLiteDriver(storage_dir='./data')
        driver.create_table('main', 'users', {
            'id': {'type': 'INTEGER', 'primary_key': True, 'auto_increment': True},
            'name': {'type': 'TEXT', 'unique': True},
        })
        driver.insert('main', 'users', {'name': 'a'})
        driver.find_all('main', 'users', where={'name': {'like': 'a%'}})
    """

    dialect = 'sqlite'

    def __init__(self, options: DriverOptions | Mapping[str, Any] | None = None,
                 **kw: Any) -> None:
        self._options: DriverOptions | None = None
        if options is not None or kw:
            self._options = DriverOptions.load(options, **kw)
        self._registry: HandleRegistry | None = None
        self._closed = False

    def __repr__(self) -> str:
        state = 'closed' if self._closed else ('connected' if self._registry else 'new')
        return f'{self.__class__.__name__}({state})'

    @property
    def metadata(self) -> DriverMetadata:
        from tablekit import __version__
        return DriverMetadata(name='tablekit-sqlite', version=__version__)

    @property
    def supports_aggregate(self) -> bool:
        return True

    @property
    def options(self) -> DriverOptions | None:
        return self._options

    @property
    def strategy(self) -> DialectStrategy:
        return get_strategy(self.dialect)

    @property
    def closed(self) -> bool:
        return self._closed

    def connect(self, options: DriverOptions | Mapping[str, Any] | None = None,
                **kw: Any) -> Self:
        """Configure the driver; no storage file is touched yet.

        Raises
            ConnectionError: If the driver has been disconnected
            ValidationError: On invalid options, or when changing options
            while logical databases are open
        """
        if self._closed:
            raise ConnectionError('Driver has been disconnected', operation='connect')

        if options is not None or kw or self._options is None:
            loaded = DriverOptions.load(options if options is not None else self._options, **kw)
            if loaded.drivername != self.dialect:
                raise ValidationError(f'{self.__class__.__name__} needs drivername {self.dialect!r}')
            if self._registry is not None and self._registry.names() and loaded != self._options:
                raise ValidationError('Cannot change options while logical databases are open')
            if loaded != self._options:
                self._registry = None
            self._options = loaded

        if self._registry is None:
            self._registry = HandleRegistry(self._options, self.strategy)
            logger.debug(f'Connected {self.__class__.__name__} to {self._options.storage_dir}')
        return self

    def disconnect(self) -> None:
        """Close every logical database handle. Idempotent.
        """
        if self._registry is not None:
            self._registry.close_all()
        if not self._closed:
            logger.debug(f'Disconnected {self.__class__.__name__}')
        self._closed = True

    def _handles(self) -> HandleRegistry:
        if self._closed:
            raise ConnectionError('Driver has been disconnected')
        if self._registry is None:
            self.connect()
        return self._registry

    def _open(self, db: str) -> LogicalDatabase:
        return self._handles().open(db)

    def _transaction_handle(self, db: str | None = None) -> LogicalDatabase:
        registry = self._handles()
        if db is None:
            return registry.first()
        return registry.open(db)

    @staticmethod
    def _record(row: dict[str, Any], schema: TableSchema | None) -> dict[str, Any]:
        if schema is None:
            return dict(row)
        return TypeConverter.deserialize_record(row, schema.types)

    def databases(self) -> list[str]:
        """Names of the logical databases referenced so far."""
        return self._handles().names()

    def get_schema(self, db: str, table: str) -> TableSchema | None:
        """Schema the table was declared with through this driver, if any."""
        return self._open(db).schemas.get(table)

    def table_exists(self, db: str, table: str) -> bool:
        cn = self._open(db)
        with cn.wrap_errors(table, 'table_exists'):
            return self.strategy.table_exists(cn, table)

    def describe_table(self, db: str, table: str) -> list[dict[str, Any]]:
        """Column descriptions of a table as stored in the catalog."""
        cn = self._open(db)
        with cn.wrap_errors(table, 'describe_table'):
            return self.strategy.describe_table(cn, table)

    def create_table(self, db: str, table: str,
                     schema: TableSchema | Mapping[str, Any]) -> None:
        """Create a table unless it exists.

        The first declaration of a table wins: declaring it again, even with
        a different schema, leaves the stored table untouched and logs a
        warning when the declarations differ.
        """
        schema = TableSchema.create(schema)
        cn = self._open(db)

        registered = cn.schemas.get(table)
        if registered is not None:
            if registered != schema:
                logger.warning(f'Table {db}.{table} is already declared with a different schema; keeping the original')
            return

        strategy = self.strategy
        with cn.wrap_errors(table, 'create_table'):
            exists = strategy.table_exists(cn, table)
        if exists:
            with cn.wrap_errors(table, 'create_table'):
                stored = strategy.get_columns(cn, table, bypass_cache=True)
            if stored != list(schema):
                logger.warning(f'Table {db}.{table} exists with columns {stored}; declaration ignored')
        else:
            cn.execute(build_create_table(table, schema, strategy=strategy))
            Cache.get_instance().clear_for_table(cn.cache_namespace, table)
        cn.schemas[table] = schema

    def drop_table(self, db: str, table: str) -> None:
        cn = self._open(db)
        cn.execute(build_drop_table(table))
        cn.schemas.pop(table, None)
        Cache.get_instance().clear_for_table(cn.cache_namespace, table)

    def _index_owner(self, cn: LogicalDatabase, table: str, name: str,
                     operation: str) -> str | None:
        with cn.wrap_errors(table, operation):
            owner = self.strategy.get_index_table(cn, name)
        if owner is not None and owner != table:
            raise ValidationError(f'Index {name!r} belongs to table {owner!r}',
                                  db=cn.name, table=table, operation=operation)
        return owner

    def create_index(self, db: str, table: str, name: str,
                     options: IndexOptions | Mapping[str, Any]) -> None:
        """Create an index unless one of that name exists on the table.
        """
        cn = self._open(db)
        statement = build_create_index(table, name, options, cn.schemas.get(table))
        self._index_owner(cn, table, name, 'create_index')
        cn.execute(statement)

    def drop_index(self, db: str, table: str, name: str) -> None:
        """Drop an index of the table; absent indexes are a no-op.

        Raises
            ValidationError: If the index exists on another table
        """
        cn = self._open(db)
        statement = build_drop_index(table, name)
        if self._index_owner(cn, table, name, 'drop_index') is None:
            logger.debug(f'Index {name} does not exist in {db}, nothing to drop')
            return
        cn.execute(statement)

    def find_one(self, db: str, table: str,
                 query: QueryOptions | Mapping[str, Any] | None = None,
                 **kw: Any) -> dict[str, Any] | None:
        """Return the first matching record, or None.

        Query options may be given as a `QueryOptions`, a mapping, or keyword
        arguments (`where`, `order_by`, `offset`, `select`).
        """
        cn = self._open(db)
        schema = cn.schemas.get(table)
        options = QueryOptions.create(query, **kw)
        rows = cn.execute(build_select_one(table, options, schema, strategy=self.strategy)).rows
        if not rows:
            return None
        return self._record(rows[0], schema)

    def find_all(self, db: str, table: str,
                 query: QueryOptions | Mapping[str, Any] | None = None,
                 **kw: Any) -> list[dict[str, Any]]:
        """Return every matching record, ordered and paginated as requested.
        """
        cn = self._open(db)
        schema = cn.schemas.get(table)
        options = QueryOptions.create(query, **kw)
        rows = cn.execute(build_select(table, options, schema, strategy=self.strategy)).rows
        return [self._record(row, schema) for row in rows]

    def count(self, db: str, table: str, where: Mapping[str, Any] | None = None) -> int:
        cn = self._open(db)
        rows = cn.execute(build_count(table, where, cn.schemas.get(table))).rows
        return int(rows[0]['count'])

    def _insert(self, cn: LogicalDatabase, table: str, statement: Statement,
                data: Mapping[str, Any]) -> dict[str, Any]:
        schema = cn.schemas.get(table)
        result = cn.execute(statement)
        rows = cn.execute(build_select_by_rowid(table, result.lastrowid)).rows
        if not rows:
            return dict(data)
        return self._record(rows[0], schema)

    def insert(self, db: str, table: str, data: Mapping[str, Any]) -> dict[str, Any]:
        """Insert one record and return it as stored, generated keys and
        defaults included.
        """
        cn = self._open(db)
        statement = build_insert(table, data, cn.schemas.get(table))
        return self._insert(cn, table, statement, data)

    def bulk_insert(self, db: str, table: str,
                    records: Sequence[Mapping[str, Any]]) -> list[dict[str, Any]]:
        """Insert every record or none of them.

        Raises
            TransactionAborted: If any insert fails; the batch is rolled back
        """
        records = _check_records(records, 'bulk_insert')
        cn = self._open(db)
        schema = cn.schemas.get(table)
        statements = [build_insert(table, record, schema) for record in records]
        if not statements:
            return []
        return run_atomic(cn, lambda: [
            self._insert(cn, table, statement, record)
            for statement, record in zip(statements, records)
        ])

    def update(self, db: str, table: str, data: Mapping[str, Any],
               where: Mapping[str, Any]) -> int:
        """Update matching rows and return how many changed.

        `where={}` matches every row.
        """
        cn = self._open(db)
        return cn.execute(build_update(table, data, where, cn.schemas.get(table))).rowcount

    def bulk_update(self, db: str, table: str, ops: Sequence[Any]) -> int:
        """Apply several updates atomically and return the total row count.
        """
        cn = self._open(db)
        schema = cn.schemas.get(table)
        statements = [build_update(table, data, where, schema)
                      for where, data in normalize_update_ops(ops)]
        if not statements:
            return 0
        return run_atomic(cn, lambda: sum(cn.execute(s).rowcount for s in statements))

    def delete(self, db: str, table: str, where: Mapping[str, Any]) -> int:
        """Delete matching rows and return how many were removed.
        """
        cn = self._open(db)
        return cn.execute(build_delete(table, where, cn.schemas.get(table))).rowcount

    def bulk_delete(self, db: str, table: str,
                    wheres: Sequence[Mapping[str, Any]]) -> int:
        """Apply several deletes atomically and return the total row count.
        """
        wheres = _check_records(wheres, 'bulk_delete')
        cn = self._open(db)
        schema = cn.schemas.get(table)
        statements = [build_delete(table, where, schema) for where in wheres]
        if not statements:
            return 0
        return run_atomic(cn, lambda: sum(cn.execute(s).rowcount for s in statements))

    def aggregate(self, db: str, table: str, op: str, field: str,
                  where: Mapping[str, Any] | None = None) -> int | float:
        """Compute SUM, AVG, MIN, MAX or COUNT of a column; 0 when nothing matches.
        """
        cn = self._open(db)
        statement = build_aggregate(table, op, field, where, cn.schemas.get(table),
                                    strategy=self.strategy)
        return cn.execute(statement).rows[0]['value']

    def transaction(self, fn: Callable[[], T], db: str | None = None) -> T:
        """Run `fn` atomically on one logical database and return its result.

        Binds to the first-opened logical database unless `db` is given.
        Writes to other logical databases inside `fn` are not covered.

        Raises
            ConnectionError: If no logical database is open and `db` is None
            TransactionAborted: If `fn` raised; everything it wrote is rolled back
        """
        return run_atomic(self._transaction_handle(db), fn)

    def checkpoint(self, db: str, mode: str = 'PASSIVE') -> dict[str, int]:
        """Checkpoint the write-ahead log of a logical database.
        """
        cn = self._open(db)
        with cn.wrap_errors(operation='checkpoint'):
            return self.strategy.checkpoint(cn, mode)

    def optimize(self, db: str) -> None:
        cn = self._open(db)
        with cn.wrap_errors(operation='optimize'):
            self.strategy.optimize(cn)

    def vacuum(self, db: str) -> None:
        cn = self._open(db)
        if cn.in_transaction:
            raise ValidationError('VACUUM cannot run inside a transaction', db=db, operation='vacuum')
        with cn.wrap_errors(operation='vacuum'):
            self.strategy.vacuum(cn)

    def analyze(self, db: str) -> None:
        cn = self._open(db)
        with cn.wrap_errors(operation='analyze'):
            self.strategy.analyze(cn)

    def storage_stats(self, db: str) -> dict[str, int]:
        """Used and maximum storage of a logical database, in bytes.
        """
        cn = self._open(db)
        with cn.wrap_errors(operation='storage_stats'):
            return self.strategy.storage_stats(cn)
