"""
Record round trips through the synchronous SQLite driver.
"""
import datetime
import sqlite3

import pytest
from tablekit import ConstraintViolation, TransactionAborted, ValidationError
from tests.fixtures.sqlite import PEOPLE_SCHEMA


pytestmark = pytest.mark.sqlite


def test_insert_returns_stored_record(users_driver):
    """Generated keys come back with the record"""
    record = users_driver.insert('main', 'users', {'name': 'a', 'age': 10})
    assert record == {'id': 1, 'age': 10, 'name': 'a'}
    assert users_driver.insert('main', 'users', {'name': 'b'}) == {'id': 2, 'age': None, 'name': 'b'}


def test_find_returns_inserted_record(users_driver):
    record = users_driver.insert('main', 'users', {'name': 'a', 'age': 10})
    assert users_driver.find_one('main', 'users', where={'id': record['id']}) == record
    assert users_driver.find_all('main', 'users') == [record]


def test_declared_types_round_trip(sqlite_driver):
    """Values come back as the Python type of their declared column"""
    sqlite_driver.create_table('main', 'people', PEOPLE_SCHEMA)
    data = {
        'name': 'ann',
        'age': 41,
        'active': False,
        'born': datetime.date(1983, 5, 17),
        'seen': datetime.datetime(2024, 1, 2, 3, 4, 5),
        'tags': {'roles': ['admin', 'dev'], 'level': 3},
        'score': 9.5,
    }
    record = sqlite_driver.insert('main', 'people', data)
    assert record == {'id': 1, **data}
    assert sqlite_driver.find_one('main', 'people', where={'name': 'ann'}) == record


def test_engine_defaults_are_returned(sqlite_driver):
    sqlite_driver.create_table('main', 'people', PEOPLE_SCHEMA)
    record = sqlite_driver.insert('main', 'people', {'name': 'bo'})
    assert record['active'] is True
    assert record['tags'] is None


def test_filter_by_declared_type(sqlite_driver):
    sqlite_driver.create_table('main', 'people', PEOPLE_SCHEMA)
    sqlite_driver.bulk_insert('main', 'people', [
        {'name': 'x', 'born': datetime.date(1990, 1, 1), 'active': True},
        {'name': 'y', 'born': datetime.date(2005, 6, 1), 'active': False},
    ])
    found = sqlite_driver.find_all('main', 'people', where={'born': {'lt': datetime.date(2000, 1, 1)}})
    assert [r['name'] for r in found] == ['x']
    assert sqlite_driver.count('main', 'people', where={'active': False}) == 1


def test_unique_violation(users_driver):
    users_driver.insert('main', 'users', {'name': 'a'})
    with pytest.raises(ConstraintViolation) as exc_info:
        users_driver.insert('main', 'users', {'name': 'a'})
    assert isinstance(exc_info.value.__cause__, sqlite3.IntegrityError)
    assert exc_info.value.table == 'users'
    assert exc_info.value.operation == 'insert'


def test_not_null_violation(sqlite_driver):
    sqlite_driver.create_table('main', 'people', PEOPLE_SCHEMA)
    with pytest.raises(ConstraintViolation):
        sqlite_driver.insert('main', 'people', {'age': 1})


def test_unknown_column_is_rejected_before_io(users_driver):
    with pytest.raises(ValidationError, match='Unknown column'):
        users_driver.insert('main', 'users', {'email': 'a@b.c'})
    assert users_driver.count('main', 'users') == 0


def test_bulk_insert_is_atomic(users_driver):
    """A failing record rolls back the whole batch"""
    with pytest.raises(TransactionAborted) as exc_info:
        users_driver.bulk_insert('main', 'users', [{'name': 'x'}, {'name': 'y'}, {'name': 'x'}])
    assert isinstance(exc_info.value.__cause__, ConstraintViolation)
    assert users_driver.count('main', 'users') == 0


def test_bulk_insert_returns_records(users_driver):
    records = users_driver.bulk_insert('main', 'users', [{'name': 'x', 'age': 1}, {'name': 'y', 'age': 2}])
    assert records == [{'id': 1, 'name': 'x', 'age': 1}, {'id': 2, 'name': 'y', 'age': 2}]
    assert users_driver.bulk_insert('main', 'users', []) == []


def test_bulk_insert_validates_all_records_first(users_driver):
    with pytest.raises(ValidationError):
        users_driver.bulk_insert('main', 'users', [{'name': 'x'}, {'bogus': 1}])
    assert users_driver.count('main', 'users') == 0
    with pytest.raises(ValidationError):
        users_driver.bulk_insert('main', 'users', {'name': 'x'})


def test_update(aged_users):
    assert aged_users.update('main', 'users', {'age': 99}, {'age': {'gte': 65}}) == 2
    assert aged_users.count('main', 'users', where={'age': 99}) == 2
    assert aged_users.update('main', 'users', {'age': 1}, {'name': 'nobody'}) == 0


def test_bulk_insert_accepts_any_iterable(users_driver):
    records = users_driver.bulk_insert('main', 'users', ({'name': f'g{i}'} for i in range(3)))
    assert [r['name'] for r in records] == ['g0', 'g1', 'g2']
    with pytest.raises(ValidationError, match='expects a list'):
        users_driver.bulk_insert('main', 'users', 'abc')


def test_update_every_row_needs_empty_filter(aged_users):
    with pytest.raises(ValidationError):
        aged_users.update('main', 'users', {'age': 0}, None)
    assert aged_users.update('main', 'users', {'age': 0}, {}) == 5


def test_bulk_update(aged_users):
    ops = [
        {'where': {'name': 'u10'}, 'data': {'age': 11}},
        ({'name': 'zzz'}, {'age': 99}),
        {'where': {'age': {'gte': 65}}, 'data': {'age': 64}},
    ]
    assert aged_users.bulk_update('main', 'users', ops) == 3
    assert aged_users.find_one('main', 'users', where={'name': 'u10'})['age'] == 11


def test_bulk_update_rejects_malformed_ops(aged_users):
    for ops in ([{'where': {'name': 'u10'}}], [{'name': 'u10'}], ['x'], {'where': {}, 'data': {}}):
        with pytest.raises(ValidationError):
            aged_users.bulk_update('main', 'users', ops)


def test_bulk_update_is_atomic(aged_users):
    ops = [
        {'where': {'name': 'u10'}, 'data': {'age': 1}},
        {'where': {'name': 'u18'}, 'data': {'name': 'u30'}},
    ]
    with pytest.raises(TransactionAborted):
        aged_users.bulk_update('main', 'users', ops)
    assert aged_users.find_one('main', 'users', where={'name': 'u10'})['age'] == 10


def test_delete(aged_users):
    assert aged_users.delete('main', 'users', {'age': {'lt': 18}}) == 1
    assert aged_users.count('main', 'users') == 4
    with pytest.raises(ValidationError):
        aged_users.delete('main', 'users', None)
    assert aged_users.delete('main', 'users', {}) == 4


def test_bulk_delete(aged_users):
    assert aged_users.bulk_delete('main', 'users', [{'name': 'u10'}, {'age': {'gte': 65}}, {'name': 'none'}]) == 3
    assert aged_users.count('main', 'users') == 2
    assert aged_users.bulk_delete('main', 'users', []) == 0


def test_table_without_declared_schema_returns_primitives(sqlite_driver, storage_dir):
    """Rows of tables created elsewhere come back unconverted"""
    storage_dir.mkdir(parents=True)
    conn = sqlite3.connect(storage_dir / 'legacy.sqlite')
    conn.execute('CREATE TABLE events (id INTEGER PRIMARY KEY, flag INTEGER, at TEXT)')
    conn.execute("INSERT INTO events (flag, at) VALUES (1, '2024-01-01')")
    conn.commit()
    conn.close()

    assert sqlite_driver.find_all('legacy', 'events') == [{'id': 1, 'flag': 1, 'at': '2024-01-01'}]
    assert sqlite_driver.get_schema('legacy', 'events') is None
