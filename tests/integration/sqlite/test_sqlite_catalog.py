"""
Table facades and the catalog, end to end against SQLite.
"""
import pytest
from tablekit import AsyncCatalog, AsyncSQLiteDriver, AsyncTable, Catalog, ConstraintViolation
from tablekit import SQLiteDriver, Table, TableSchema, TransactionAborted
from tests.fixtures.sqlite import PEOPLE_SCHEMA, USERS_SCHEMA


pytestmark = pytest.mark.sqlite


@pytest.fixture
def catalog(sqlite_driver):
    return Catalog(sqlite_driver)


@pytest.fixture
def users(catalog):
    table = catalog.define('main', 'users', USERS_SCHEMA)
    table.bulk_create([{'name': 'a', 'age': 10}, {'name': 'b', 'age': 20}, {'name': 'c', 'age': 30}])
    return table


def test_users_scenario(users):
    found = users.find_all(where={'age': {'gte': 15}}, order_by=[('age', 'DESC')])
    assert [r['name'] for r in found] == ['c', 'b']

    assert users.bulk_update([
        {'where': {'name': 'a'}, 'data': {'age': 11}},
        {'where': {'name': 'zzz'}, 'data': {'age': 99}},
    ]) == 1
    assert users.find_one(where={'name': 'a'})['age'] == 11

    def work():
        users.create({'name': 'd', 'age': 40})
        raise RuntimeError('abort')

    with pytest.raises(TransactionAborted):
        users.transaction(work)
    assert users.count() == 3


def test_define_returns_cached_facade(catalog, users):
    again = catalog.define('main', 'users', {'id': 'INTEGER', 'other': 'TEXT'})
    assert again is users
    assert catalog.model('main', 'users') is users
    assert catalog.has_model('main', 'users')
    assert not catalog.has_model('main', 'posts')
    assert catalog.model('main', 'posts') is None


def test_facade_properties(users):
    assert isinstance(users, Table)
    assert users.name == 'users'
    assert users.database == 'main'
    assert users.schema == TableSchema(USERS_SCHEMA)
    assert users.id_column == 'id'
    assert repr(users) == 'Table(main.users)'


def test_find_by_id(users):
    assert users.find_by_id(2)['name'] == 'b'
    assert users.find_by_id(99) is None


def test_id_column_without_single_primary_key(catalog):
    plain = catalog.define('main', 'plain', {'value': 'TEXT'})
    assert plain.id_column == 'id'


def test_aggregates(users):
    assert users.sum('age') == 60
    assert users.avg('age') == 20
    assert users.min('age') == 10
    assert users.max('age', {'age': {'lt': 30}}) == 20
    assert users.aggregate('COUNT', 'age') == 3
    assert users.sum('age', {'name': 'nobody'}) == 0


def test_writes_through_facade(users):
    assert users.update({'age': 0}, {'age': {'lt': 25}}) == 2
    assert users.delete({'age': 0}) == 2
    assert users.bulk_delete([{'name': 'c'}]) == 1
    assert users.count() == 0


def test_indexes_through_facade(users):
    users.create_index('users_age', {'columns': ['age'], 'unique': True})
    with pytest.raises(ConstraintViolation):
        users.create({'name': 'dup', 'age': 10})
    users.drop_index('users_age')
    users.create({'name': 'dup', 'age': 10})
    assert users.count({'age': 10}) == 2


def test_typed_round_trip(catalog):
    people = catalog.define('main', 'people', PEOPLE_SCHEMA)
    record = people.create({'name': 'x', 'tags': ['a', 'b'], 'score': 1.5})
    assert record['active'] is True
    assert people.find_by_id(record['id'])['tags'] == ['a', 'b']


def test_catalog_listings(catalog, users):
    catalog.define('other', 'items', {'name': 'TEXT'})
    assert catalog.databases() == ['main', 'other']
    assert catalog.get_schemas('main') == {'users': TableSchema(USERS_SCHEMA)}
    assert list(catalog.models('other')) == ['items']
    assert catalog.get_schemas('missing') == {}
    assert catalog.driver_info.name == 'tablekit-sqlite'


def test_catalog_connects_and_defines_models(storage_dir):
    catalog = Catalog(SQLiteDriver(), {'storageDir': str(storage_dir)}, {'users': USERS_SCHEMA})
    users = catalog.table('users')
    assert users.database == 'default'
    users.create({'name': 'a'})
    assert (storage_dir / 'default.sqlite').exists()
    catalog.disconnect()
    assert catalog.driver.closed


@pytest.mark.asyncio
async def test_async_users_scenario(storage_dir):
    catalog = await AsyncCatalog.create(AsyncSQLiteDriver(), {'storage_dir': str(storage_dir)},
                                        {'users': USERS_SCHEMA})
    users = catalog.table('users')
    assert isinstance(users, AsyncTable)
    assert await catalog.define('default', 'users', USERS_SCHEMA) is users

    await users.bulk_create([{'name': 'a', 'age': 10}, {'name': 'b', 'age': 20}, {'name': 'c', 'age': 30}])
    found = await users.find_all(where={'age': {'gte': 15}}, order_by=[('age', 'DESC')])
    assert [r['name'] for r in found] == ['c', 'b']
    assert await users.bulk_update([
        {'where': {'name': 'a'}, 'data': {'age': 11}},
        {'where': {'name': 'zzz'}, 'data': {'age': 99}},
    ]) == 1

    async def work():
        await users.create({'name': 'd', 'age': 40})
        raise RuntimeError('abort')

    with pytest.raises(TransactionAborted):
        await users.transaction(work)
    assert await users.count() == 3
    assert (await users.find_by_id(1))['age'] == 11
    assert await users.sum('age') == 61
    assert await users.max('age') == 30

    await users.create_index('users_age', {'columns': ['age']})
    await users.drop_index('users_age')
    assert catalog.has_model('default', 'users')
    assert catalog.driver_info.name == 'tablekit-sqlite-async'

    await catalog.disconnect()
    assert catalog.driver.closed
