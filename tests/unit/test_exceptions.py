"""
Unit tests for the exception taxonomy.
"""
import builtins
import sqlite3

import tablekit
from tablekit.exceptions import ConnectionError, ConstraintViolation, DatabaseError
from tablekit.exceptions import DbConnectionError, IntegrityError, QueryError
from tablekit.exceptions import TransactionAborted, UnsupportedOperation
from tablekit.exceptions import ValidationError, wrap_storage_error


def test_every_error_is_a_database_error():
    for cls in (ValidationError, ConstraintViolation, ConnectionError,
                TransactionAborted, UnsupportedOperation, QueryError):
        assert issubclass(cls, DatabaseError)
        assert getattr(tablekit, cls.__name__) is cls


def test_context_in_message():
    error = QueryError('boom', db='main', table='users', operation='insert')
    assert str(error) == 'boom [db=main, table=users, operation=insert]'
    assert error.context == {'db': 'main', 'table': 'users', 'operation': 'insert'}
    assert str(ValidationError('plain')) == 'plain'


def test_wrap_storage_error():
    integrity = wrap_storage_error(sqlite3.IntegrityError('UNIQUE constraint failed: users.name'),
                                   db='main', table='users', operation='insert')
    assert isinstance(integrity, ConstraintViolation)
    assert integrity.table == 'users'

    closed = wrap_storage_error(sqlite3.ProgrammingError('Cannot operate on a closed database.'))
    assert isinstance(closed, ConnectionError)

    other = wrap_storage_error(sqlite3.OperationalError('no such table: x'))
    assert isinstance(other, QueryError)
    assert 'no such table' in str(other)


def test_exception_groups():
    try:
        raise ConstraintViolation('dup')
    except IntegrityError as e:
        assert isinstance(e, ConstraintViolation)

    try:
        raise ConnectionError('gone')
    except DbConnectionError as e:
        assert isinstance(e, ConnectionError)


def test_connection_error_is_not_the_builtin():
    assert ConnectionError is not builtins.ConnectionError
    assert not issubclass(ConnectionError, OSError)
