"""
Exception taxonomy for tablekit.

Every error raised by the library derives from `DatabaseError`. Errors that
originate in the storage engine are wrapped, never reinterpreted: the wrapped
exception is always available as ``__cause__``.
"""
import sqlite3


class DatabaseError(Exception):
    """Base class for all tablekit errors.

    Optional operation context (logical database, table, operation name) is
    kept on the instance and rendered into the message.
    """

    def __init__(self, message: str = '', *, db: str | None = None,
                 table: str | None = None, operation: str | None = None) -> None:
        self.db = db
        self.table = table
        self.operation = operation
        super().__init__(message)

    @property
    def context(self) -> dict[str, str | None]:
        return {'db': self.db, 'table': self.table, 'operation': self.operation}

    def __str__(self) -> str:
        message = super().__str__()
        context = ', '.join(f'{k}={v}' for k, v in self.context.items() if v is not None)
        if context:
            return f'{message} [{context}]'
        return message


class ValidationError(DatabaseError):
    """Malformed input detected before any statement reached storage.
    """


class ConstraintViolation(DatabaseError):
    """Unique, not-null, check or foreign-key violation reported by the engine.
    """


class ConnectionError(DatabaseError):
    """Logical database handle is closed or could not be opened.
    """


class TransactionAborted(DatabaseError):
    """An atomic unit of work failed and was rolled back.

    The error raised by the unit of work is attached as ``__cause__``.
    """


class UnsupportedOperation(DatabaseError):
    """Optional capability not provided by this backend.
    """


class QueryError(DatabaseError):
    """Any other error reported by the storage engine while executing a statement.
    """


IntegrityError = (
    sqlite3.IntegrityError,      # SQLite constraint violations
    ConstraintViolation,         # Our wrapped form
)

DbConnectionError = (
    sqlite3.InterfaceError,      # SQLite interface issues
    ConnectionError,             # Our custom exception
)


def wrap_storage_error(exc: sqlite3.Error, *, db: str | None = None,
                       table: str | None = None,
                       operation: str | None = None) -> DatabaseError:
    """Translate a DBAPI error into the matching tablekit error.

    The caller is expected to ``raise ... from exc``.
    """
    context = {'db': db, 'table': table, 'operation': operation}
    if isinstance(exc, sqlite3.IntegrityError):
        return ConstraintViolation(str(exc), **context)
    if isinstance(exc, sqlite3.ProgrammingError) and 'closed' in str(exc).lower():
        return ConnectionError(str(exc), **context)
    return QueryError(str(exc), **context)
