"""
Table-oriented data access over embedded SQLite storage.

Tables are declared with a schema and accessed through a driver, either
directly (`driver.find_all('main', 'users', where=...)`) or through the
per-table facades a `Catalog` hands out (`users.find_all(where=...)`).
Synchronous and asynchronous drivers share the same semantics.
"""
__version__ = '0.1.0'

from tablekit.aio import AsyncDriver, AsyncSQLiteDriver
from tablekit.conditions import Literal, Operators, compile_where
from tablekit.driver import Driver, DriverMetadata, SQLiteDriver
from tablekit.exceptions import ConnectionError, ConstraintViolation
from tablekit.exceptions import DatabaseError, DbConnectionError
from tablekit.exceptions import IntegrityError, QueryError, TransactionAborted
from tablekit.exceptions import UnsupportedOperation, ValidationError
from tablekit.options import MEMORY, DriverOptions
from tablekit.query import QueryOptions
from tablekit.schema import ColumnDefinition, ForeignKeyRef, IndexOptions
from tablekit.schema import TableSchema
from tablekit.table import AsyncCatalog, AsyncTable, Catalog, Table
from tablekit.types import DataType, deserialize, serialize
from tablekit.utils import probe_runtime

__all__ = [
    '__version__',
    'AsyncCatalog',
    'AsyncDriver',
    'AsyncSQLiteDriver',
    'AsyncTable',
    'Catalog',
    'ColumnDefinition',
    'ConnectionError',
    'ConstraintViolation',
    'DataType',
    'DatabaseError',
    'DbConnectionError',
    'Driver',
    'DriverMetadata',
    'DriverOptions',
    'ForeignKeyRef',
    'IndexOptions',
    'IntegrityError',
    'Literal',
    'MEMORY',
    'Operators',
    'QueryError',
    'QueryOptions',
    'SQLiteDriver',
    'Table',
    'TableSchema',
    'TransactionAborted',
    'UnsupportedOperation',
    'ValidationError',
    'compile_where',
    'deserialize',
    'probe_runtime',
    'serialize',
]
