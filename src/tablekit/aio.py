"""
Asynchronous driver capability contract and its SQLite adapter.

`AsyncSQLiteDriver` offers the operations of `SQLiteDriver` as coroutines.
Each call runs on a worker thread (`asyncio.to_thread`); calls on one driver
are serialized by an `asyncio.Lock`, since the underlying SQLite connections
are shared. Inside `transaction()` the unit of work already holds the driver
lock, so its calls skip it and are serialized by the transaction instead.

Example
    driver = AsyncSQLiteDriver(storage_dir='./data')
    await driver.create_table('main', 'users', {'name': 'TEXT'})

    async def move():
        await driver.insert('main', 'users', {'name': 'a'})
        await driver.delete('main', 'users', {'name': 'b'})

    await driver.transaction(move)
"""
import asyncio
import contextvars
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any, Self, TypeVar

from tablekit.driver import DriverMetadata, SQLiteDriver
from tablekit.exceptions import UnsupportedOperation
from tablekit.options import DriverOptions
from tablekit.query import QueryOptions
from tablekit.schema import IndexOptions, TableSchema
from tablekit.transaction import run_atomic_async

__all__ = ['AsyncDriver', 'AsyncSQLiteDriver']

logger = logging.getLogger(__name__)

T = TypeVar('T')


class AsyncDriver(ABC):
    """Asynchronous driver capability contract: every operation is a coroutine.
    """

    @property
    @abstractmethod
    def metadata(self) -> DriverMetadata:
        """Name/version pair of this driver."""

    @property
    def supports_aggregate(self) -> bool:
        return False

    @abstractmethod
    async def connect(self, options: DriverOptions | Mapping[str, Any] | None = None,
                      **kw: Any) -> Self: ...

    @abstractmethod
    async def disconnect(self) -> None: ...

    async def get_schema(self, db: str, table: str) -> TableSchema | None:
        """Schema the table was declared with, None when unknown."""
        return None

    @abstractmethod
    async def table_exists(self, db: str, table: str) -> bool: ...

    @abstractmethod
    async def create_table(self, db: str, table: str,
                           schema: TableSchema | Mapping[str, Any]) -> None: ...

    @abstractmethod
    async def drop_table(self, db: str, table: str) -> None: ...

    @abstractmethod
    async def create_index(self, db: str, table: str, name: str,
                           options: IndexOptions | Mapping[str, Any]) -> None: ...

    @abstractmethod
    async def drop_index(self, db: str, table: str, name: str) -> None: ...

    @abstractmethod
    async def find_one(self, db: str, table: str,
                       query: QueryOptions | Mapping[str, Any] | None = None,
                       **kw: Any) -> dict[str, Any] | None: ...

    @abstractmethod
    async def find_all(self, db: str, table: str,
                       query: QueryOptions | Mapping[str, Any] | None = None,
                       **kw: Any) -> list[dict[str, Any]]: ...

    @abstractmethod
    async def count(self, db: str, table: str,
                    where: Mapping[str, Any] | None = None) -> int: ...

    @abstractmethod
    async def insert(self, db: str, table: str, data: Mapping[str, Any]) -> dict[str, Any]: ...

    @abstractmethod
    async def bulk_insert(self, db: str, table: str,
                          records: Sequence[Mapping[str, Any]]) -> list[dict[str, Any]]: ...

    @abstractmethod
    async def update(self, db: str, table: str, data: Mapping[str, Any],
                     where: Mapping[str, Any]) -> int: ...

    @abstractmethod
    async def bulk_update(self, db: str, table: str, ops: Sequence[Any]) -> int: ...

    @abstractmethod
    async def delete(self, db: str, table: str, where: Mapping[str, Any]) -> int: ...

    @abstractmethod
    async def bulk_delete(self, db: str, table: str,
                          wheres: Sequence[Mapping[str, Any]]) -> int: ...

    @abstractmethod
    async def transaction(self, fn: Callable[[], Awaitable[T]], db: str | None = None) -> T: ...

    async def aggregate(self, db: str, table: str, op: str, field: str,
                        where: Mapping[str, Any] | None = None) -> int | float:
        raise UnsupportedOperation(f'{self.metadata.name} does not support aggregation',
                                   db=db, table=table, operation='aggregate')


class AsyncSQLiteDriver(AsyncDriver):
    """Asynchronous SQLite driver built on `SQLiteDriver`.

    Transactions: `transaction(fn, db=None)` awaits the coroutine function
    `fn` atomically on one logical database, the first opened one unless
    `db` names another. Writes to other logical databases inside `fn`
    commit on their own; there is no atomicity across logical databases.
    Nested `transaction()` calls join the open transaction.
    """

    def __init__(self, options: DriverOptions | Mapping[str, Any] | None = None,
                 **kw: Any) -> None:
        self._sync = SQLiteDriver(options, **kw)
        self._lock = asyncio.Lock()
        self._tx_lock: contextvars.ContextVar[asyncio.Lock | None] = contextvars.ContextVar(
            f'tablekit_tx_lock_{id(self):x}', default=None)

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}({self._sync!r})'

    @property
    def metadata(self) -> DriverMetadata:
        from tablekit import __version__
        return DriverMetadata(name='tablekit-sqlite-async', version=__version__)

    @property
    def supports_aggregate(self) -> bool:
        return True

    @property
    def options(self) -> DriverOptions | None:
        return self._sync.options

    @property
    def closed(self) -> bool:
        return self._sync.closed

    async def _call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run a synchronous driver method on a worker thread.
        """
        tx_lock = self._tx_lock.get()
        lock = tx_lock if tx_lock is not None else self._lock
        async with lock:
            return await asyncio.to_thread(func, *args, **kwargs)

    async def connect(self, options: DriverOptions | Mapping[str, Any] | None = None,
                      **kw: Any) -> Self:
        await self._call(self._sync.connect, options, **kw)
        return self

    async def disconnect(self) -> None:
        await self._call(self._sync.disconnect)

    async def databases(self) -> list[str]:
        return await self._call(self._sync.databases)

    async def get_schema(self, db: str, table: str) -> TableSchema | None:
        return await self._call(self._sync.get_schema, db, table)

    async def table_exists(self, db: str, table: str) -> bool:
        return await self._call(self._sync.table_exists, db, table)

    async def describe_table(self, db: str, table: str) -> list[dict[str, Any]]:
        return await self._call(self._sync.describe_table, db, table)

    async def create_table(self, db: str, table: str,
                           schema: TableSchema | Mapping[str, Any]) -> None:
        await self._call(self._sync.create_table, db, table, schema)

    async def drop_table(self, db: str, table: str) -> None:
        await self._call(self._sync.drop_table, db, table)

    async def create_index(self, db: str, table: str, name: str,
                           options: IndexOptions | Mapping[str, Any]) -> None:
        await self._call(self._sync.create_index, db, table, name, options)

    async def drop_index(self, db: str, table: str, name: str) -> None:
        await self._call(self._sync.drop_index, db, table, name)

    async def find_one(self, db: str, table: str,
                       query: QueryOptions | Mapping[str, Any] | None = None,
                       **kw: Any) -> dict[str, Any] | None:
        return await self._call(self._sync.find_one, db, table, query, **kw)

    async def find_all(self, db: str, table: str,
                       query: QueryOptions | Mapping[str, Any] | None = None,
                       **kw: Any) -> list[dict[str, Any]]:
        return await self._call(self._sync.find_all, db, table, query, **kw)

    async def count(self, db: str, table: str,
                    where: Mapping[str, Any] | None = None) -> int:
        return await self._call(self._sync.count, db, table, where)

    async def insert(self, db: str, table: str, data: Mapping[str, Any]) -> dict[str, Any]:
        return await self._call(self._sync.insert, db, table, data)

    async def bulk_insert(self, db: str, table: str,
                          records: Sequence[Mapping[str, Any]]) -> list[dict[str, Any]]:
        return await self._call(self._sync.bulk_insert, db, table, records)

    async def update(self, db: str, table: str, data: Mapping[str, Any],
                     where: Mapping[str, Any]) -> int:
        return await self._call(self._sync.update, db, table, data, where)

    async def bulk_update(self, db: str, table: str, ops: Sequence[Any]) -> int:
        return await self._call(self._sync.bulk_update, db, table, ops)

    async def delete(self, db: str, table: str, where: Mapping[str, Any]) -> int:
        return await self._call(self._sync.delete, db, table, where)

    async def bulk_delete(self, db: str, table: str,
                          wheres: Sequence[Mapping[str, Any]]) -> int:
        return await self._call(self._sync.bulk_delete, db, table, wheres)

    async def aggregate(self, db: str, table: str, op: str, field: str,
                        where: Mapping[str, Any] | None = None) -> int | float:
        return await self._call(self._sync.aggregate, db, table, op, field, where)

    async def transaction(self, fn: Callable[[], Awaitable[T]], db: str | None = None) -> T:
        """Await `fn()` atomically and return its result.

        Raises
            ConnectionError: If no logical database is open and `db` is None
            TransactionAborted: If `fn` raised; everything it wrote is rolled back
        """
        if self._tx_lock.get() is not None:
            cn = await self._call(self._sync._transaction_handle, db)
            return await run_atomic_async(cn, fn)

        async with self._lock:
            token = self._tx_lock.set(asyncio.Lock())
            try:
                cn = await asyncio.to_thread(self._sync._transaction_handle, db)
                return await run_atomic_async(cn, fn)
            finally:
                self._tx_lock.reset(token)

    async def checkpoint(self, db: str, mode: str = 'PASSIVE') -> dict[str, int]:
        return await self._call(self._sync.checkpoint, db, mode)

    async def optimize(self, db: str) -> None:
        await self._call(self._sync.optimize, db)

    async def vacuum(self, db: str) -> None:
        await self._call(self._sync.vacuum, db)

    async def analyze(self, db: str) -> None:
        await self._call(self._sync.analyze, db)

    async def storage_stats(self, db: str) -> dict[str, int]:
        return await self._call(self._sync.storage_stats, db)
