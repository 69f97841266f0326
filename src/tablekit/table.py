"""
Per-table facades and the catalog that creates them.

A `Table` holds a driver, a logical database name, a table name and the
read-only schema the table was declared with, and forwards every call to the
driver. `AsyncTable` does the same for an `AsyncDriver`, returning
coroutines. Facades never touch storage handles themselves.

Example
    catalog = Catalog(SQLiteDriver(storage_dir='./data'))
    users = catalog.define('main', 'users', {
        'id': {'type': 'INTEGER', 'primary_key': True, 'auto_increment': True},
        'age': 'INTEGER',
        'name': {'type': 'TEXT', 'unique': True},
    })
    users.create({'name': 'a', 'age': 10})
    users.find_all(where={'age': {'gte': 15}}, order_by=[('age', 'DESC')])
"""
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any, TypeVar

from tablekit.aio import AsyncDriver
from tablekit.driver import Driver, DriverMetadata
from tablekit.options import DriverOptions
from tablekit.query import QueryOptions
from tablekit.schema import IndexOptions, TableSchema

__all__ = ['Table', 'AsyncTable', 'Catalog', 'AsyncCatalog']

logger = logging.getLogger(__name__)

T = TypeVar('T')

DEFAULT_DATABASE = 'default'


class _TableBase:

    def __init__(self, driver: Any, db: str, name: str, schema: TableSchema) -> None:
        self._driver = driver
        self._db = db
        self._name = name
        self._schema = schema

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}({self._db}.{self._name})'

    @property
    def name(self) -> str:
        return self._name

    @property
    def database(self) -> str:
        return self._db

    @property
    def schema(self) -> TableSchema:
        return self._schema

    @property
    def driver(self) -> Any:
        return self._driver

    @property
    def id_column(self) -> str:
        """The single primary-key column, or 'id' when there is none."""
        primary_keys = self._schema.primary_keys
        if len(primary_keys) == 1:
            return primary_keys[0]
        return 'id'


class Table(_TableBase):
    """Synchronous facade of one table."""

    def find_one(self, query: QueryOptions | Mapping[str, Any] | None = None,
                 **kw: Any) -> dict[str, Any] | None:
        return self._driver.find_one(self._db, self._name, query, **kw)

    def find_all(self, query: QueryOptions | Mapping[str, Any] | None = None,
                 **kw: Any) -> list[dict[str, Any]]:
        return self._driver.find_all(self._db, self._name, query, **kw)

    def find_by_id(self, id: Any) -> dict[str, Any] | None:
        return self.find_one(where={self.id_column: id})

    def count(self, where: Mapping[str, Any] | None = None) -> int:
        return self._driver.count(self._db, self._name, where)

    def create(self, data: Mapping[str, Any]) -> dict[str, Any]:
        return self._driver.insert(self._db, self._name, data)

    def bulk_create(self, records: Sequence[Mapping[str, Any]]) -> list[dict[str, Any]]:
        return self._driver.bulk_insert(self._db, self._name, records)

    def update(self, data: Mapping[str, Any], where: Mapping[str, Any]) -> int:
        return self._driver.update(self._db, self._name, data, where)

    def bulk_update(self, ops: Sequence[Any]) -> int:
        return self._driver.bulk_update(self._db, self._name, ops)

    def delete(self, where: Mapping[str, Any]) -> int:
        return self._driver.delete(self._db, self._name, where)

    def bulk_delete(self, wheres: Sequence[Mapping[str, Any]]) -> int:
        return self._driver.bulk_delete(self._db, self._name, wheres)

    def create_index(self, name: str, options: IndexOptions | Mapping[str, Any]) -> None:
        self._driver.create_index(self._db, self._name, name, options)

    def drop_index(self, name: str) -> None:
        self._driver.drop_index(self._db, self._name, name)

    def aggregate(self, op: str, field: str, where: Mapping[str, Any] | None = None) -> int | float:
        return self._driver.aggregate(self._db, self._name, op, field, where)

    def sum(self, field: str, where: Mapping[str, Any] | None = None) -> int | float:
        return self.aggregate('SUM', field, where)

    def avg(self, field: str, where: Mapping[str, Any] | None = None) -> int | float:
        return self.aggregate('AVG', field, where)

    def min(self, field: str, where: Mapping[str, Any] | None = None) -> int | float:
        return self.aggregate('MIN', field, where)

    def max(self, field: str, where: Mapping[str, Any] | None = None) -> int | float:
        return self.aggregate('MAX', field, where)

    def transaction(self, fn: Callable[[], T]) -> T:
        """Run `fn` atomically on this table's logical database."""
        return self._driver.transaction(fn, db=self._db)


class AsyncTable(_TableBase):
    """Asynchronous facade of one table; every operation is a coroutine."""

    async def find_one(self, query: QueryOptions | Mapping[str, Any] | None = None,
                       **kw: Any) -> dict[str, Any] | None:
        return await self._driver.find_one(self._db, self._name, query, **kw)

    async def find_all(self, query: QueryOptions | Mapping[str, Any] | None = None,
                       **kw: Any) -> list[dict[str, Any]]:
        return await self._driver.find_all(self._db, self._name, query, **kw)

    async def find_by_id(self, id: Any) -> dict[str, Any] | None:
        return await self.find_one(where={self.id_column: id})

    async def count(self, where: Mapping[str, Any] | None = None) -> int:
        return await self._driver.count(self._db, self._name, where)

    async def create(self, data: Mapping[str, Any]) -> dict[str, Any]:
        return await self._driver.insert(self._db, self._name, data)

    async def bulk_create(self, records: Sequence[Mapping[str, Any]]) -> list[dict[str, Any]]:
        return await self._driver.bulk_insert(self._db, self._name, records)

    async def update(self, data: Mapping[str, Any], where: Mapping[str, Any]) -> int:
        return await self._driver.update(self._db, self._name, data, where)

    async def bulk_update(self, ops: Sequence[Any]) -> int:
        return await self._driver.bulk_update(self._db, self._name, ops)

    async def delete(self, where: Mapping[str, Any]) -> int:
        return await self._driver.delete(self._db, self._name, where)

    async def bulk_delete(self, wheres: Sequence[Mapping[str, Any]]) -> int:
        return await self._driver.bulk_delete(self._db, self._name, wheres)

    async def create_index(self, name: str, options: IndexOptions | Mapping[str, Any]) -> None:
        await self._driver.create_index(self._db, self._name, name, options)

    async def drop_index(self, name: str) -> None:
        await self._driver.drop_index(self._db, self._name, name)

    async def aggregate(self, op: str, field: str,
                        where: Mapping[str, Any] | None = None) -> int | float:
        return await self._driver.aggregate(self._db, self._name, op, field, where)

    async def sum(self, field: str, where: Mapping[str, Any] | None = None) -> int | float:
        return await self.aggregate('SUM', field, where)

    async def avg(self, field: str, where: Mapping[str, Any] | None = None) -> int | float:
        return await self.aggregate('AVG', field, where)

    async def min(self, field: str, where: Mapping[str, Any] | None = None) -> int | float:
        return await self.aggregate('MIN', field, where)

    async def max(self, field: str, where: Mapping[str, Any] | None = None) -> int | float:
        return await self.aggregate('MAX', field, where)

    async def transaction(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Await `fn()` atomically on this table's logical database."""
        return await self._driver.transaction(fn, db=self._db)


class _CatalogBase:

    def __init__(self, driver: Any) -> None:
        self._driver = driver
        self._tables: dict[str, dict[str, _TableBase]] = {}

    @property
    def driver(self) -> Any:
        return self._driver

    @property
    def driver_info(self) -> DriverMetadata:
        return self._driver.metadata

    def _cached(self, db: str, name: str) -> _TableBase | None:
        return self._tables.get(db, {}).get(name)

    def _register(self, table: _TableBase) -> None:
        self._tables.setdefault(table.database, {})[table.name] = table

    def model(self, db: str, name: str) -> Any:
        """Return the facade defined for `db`.`name`, or None."""
        return self._cached(db, name)

    def table(self, name: str, db: str = DEFAULT_DATABASE) -> Any:
        return self.model(db, name)

    def has_model(self, db: str, name: str) -> bool:
        return self._cached(db, name) is not None

    def get_schemas(self, db: str) -> dict[str, TableSchema]:
        return {name: table.schema for name, table in self._tables.get(db, {}).items()}

    def models(self, db: str) -> dict[str, Any]:
        return dict(self._tables.get(db, {}))

    def databases(self) -> list[str]:
        return list(self._tables)


class Catalog(_CatalogBase):
    """Registry of synchronous table facades over one driver.

    `models` maps table name -> schema, defined in the 'default' logical
    database at construction.
    """

    def __init__(self, driver: Driver, options: DriverOptions | Mapping[str, Any] | None = None,
                 models: Mapping[str, Any] | None = None) -> None:
        super().__init__(driver)
        if options is not None:
            driver.connect(options)
        for name, schema in (models or {}).items():
            self.define(DEFAULT_DATABASE, name, schema)

    def define(self, db: str, name: str, schema: TableSchema | Mapping[str, Any]) -> Table:
        """Declare a table, creating it when missing, and return its facade.

        A table defined twice returns the facade of the first definition.
        """
        cached = self._cached(db, name)
        if cached is not None:
            return cached
        schema = TableSchema.create(schema)
        self._driver.create_table(db, name, schema)
        table = Table(self._driver, db, name, self._driver.get_schema(db, name) or schema)
        self._register(table)
        logger.debug(f'Defined table {db}.{name}')
        return table

    def disconnect(self) -> None:
        self._driver.disconnect()


class AsyncCatalog(_CatalogBase):
    """Registry of asynchronous table facades over one async driver.

    Build it with `await AsyncCatalog.create(driver, options, models)` to
    connect and define tables in one step.
    """

    def __init__(self, driver: AsyncDriver) -> None:
        super().__init__(driver)

    @classmethod
    async def create(cls, driver: AsyncDriver,
                     options: DriverOptions | Mapping[str, Any] | None = None,
                     models: Mapping[str, Any] | None = None) -> 'AsyncCatalog':
        catalog = cls(driver)
        if options is not None:
            await driver.connect(options)
        for name, schema in (models or {}).items():
            await catalog.define(DEFAULT_DATABASE, name, schema)
        return catalog

    async def define(self, db: str, name: str,
                     schema: TableSchema | Mapping[str, Any]) -> AsyncTable:
        """Declare a table, creating it when missing, and return its facade.
        """
        cached = self._cached(db, name)
        if cached is not None:
            return cached
        schema = TableSchema.create(schema)
        await self._driver.create_table(db, name, schema)
        table = AsyncTable(self._driver, db, name, await self._driver.get_schema(db, name) or schema)
        self._register(table)
        logger.debug(f'Defined table {db}.{name}')
        return table

    async def disconnect(self) -> None:
        await self._driver.disconnect()
