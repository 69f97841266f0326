"""
Filtering, ordering, pagination and aggregation against SQLite.
"""
import pytest
from tablekit import QueryOptions, UnsupportedOperation, ValidationError
from tablekit.driver import Driver, DriverMetadata


pytestmark = pytest.mark.sqlite


def _names(records):
    return [r['name'] for r in records]


def test_range_filter(aged_users):
    found = aged_users.find_all('main', 'users', where={'age': {'gte': 18, 'lt': 65}}, order_by=['age'])
    assert [r['age'] for r in found] == [18, 30]


@pytest.mark.parametrize(('where', 'expected'), [
    ({'age': 30}, ['u30']),
    ({'age': {'gt': 30}}, ['u65', 'u70']),
    ({'age': {'lte': 18}}, ['u10', 'u18']),
    ({'age': {'ne': 30}}, ['u10', 'u18', 'u65', 'u70']),
    ({'age': {'in': [10, 70, 99]}}, ['u10', 'u70']),
    ({'age': {'notIn': [10, 70]}}, ['u18', 'u30', 'u65']),
    ({'age': {'in': []}}, []),
    ({'age': {'notIn': []}}, ['u10', 'u18', 'u30', 'u65', 'u70']),
    ({'age': {'notIn': [10, None]}}, ['u18', 'u30', 'u65', 'u70']),
    ({'age': {'in': [10, None]}}, ['u10']),
    ({'name': {'like': 'u1%'}}, ['u10', 'u18']),
    ({'age': {'between': [18, 65]}}, ['u18', 'u30', 'u65']),
    ({'age': {'$gte': 30}, 'name': {'ne': 'u65'}}, ['u30', 'u70']),
])
def test_filters(aged_users, where, expected):
    assert _names(aged_users.find_all('main', 'users', where=where, order_by=['age'])) == expected


def test_null_filters(aged_users):
    aged_users.insert('main', 'users', {'name': 'ageless'})
    assert _names(aged_users.find_all('main', 'users', where={'age': None})) == ['ageless']
    assert aged_users.count('main', 'users', where={'age': {'ne': None}}) == 5


def test_none_inside_in_lists(aged_users):
    aged_users.insert('main', 'users', {'name': 'ageless'})
    found = aged_users.find_all('main', 'users', where={'age': {'in': [70, None]}}, order_by=['name'])
    assert _names(found) == ['ageless', 'u70']
    assert aged_users.count('main', 'users', where={'age': {'notIn': [10, None]}}) == 4
    assert aged_users.count('main', 'users', where={'age': {'notIn': [None]}}) == 5


def test_ordering(aged_users):
    found = aged_users.find_all('main', 'users', order_by=[('age', 'DESC')])
    assert [r['age'] for r in found] == [70, 65, 30, 18, 10]


def test_ordering_on_several_keys(users_driver):
    users_driver.bulk_insert('main', 'users', [
        {'name': 'b', 'age': 1}, {'name': 'a', 'age': 2}, {'name': 'c', 'age': 1},
    ])
    found = users_driver.find_all('main', 'users', order_by=[('age', 'ASC'), ('name', 'DESC')])
    assert _names(found) == ['c', 'b', 'a']


def test_pagination(aged_users):
    query = QueryOptions(order_by=[('age', 'ASC')], limit=2, offset=1)
    assert _names(aged_users.find_all('main', 'users', query)) == ['u18', 'u30']
    assert _names(aged_users.find_all('main', 'users', order_by=['age'], offset=3)) == ['u65', 'u70']
    assert aged_users.find_all('main', 'users', limit=0) == []
    assert aged_users.find_all('main', 'users', offset=10) == []


def test_pages_cover_every_row_once(aged_users):
    seen = []
    for page in range(3):
        seen += _names(aged_users.find_all('main', 'users', order_by=['age'], limit=2, offset=page * 2))
    assert seen == ['u10', 'u18', 'u30', 'u65', 'u70']


def test_projection(aged_users):
    assert aged_users.find_all('main', 'users', where={'age': 30}, select=['name']) == [{'name': 'u30'}]


def test_find_one(aged_users):
    assert aged_users.find_one('main', 'users', order_by=[('age', 'DESC')])['name'] == 'u70'
    assert aged_users.find_one('main', 'users', {'where': {'age': {'gt': 100}}}) is None
    assert aged_users.find_one('main', 'users', order_by=['age'], offset=1)['name'] == 'u18'


def test_invalid_query_is_rejected(aged_users):
    with pytest.raises(ValidationError):
        aged_users.find_all('main', 'users', where={'age': {'almost': 3}})
    with pytest.raises(ValidationError):
        aged_users.find_all('main', 'users', order_by=[('age', 'UP')])
    with pytest.raises(ValidationError):
        aged_users.find_all('main', 'users', limit=-1)
    with pytest.raises(ValidationError):
        aged_users.find_all('main', 'users', group_by=['age'])


def test_count(aged_users):
    assert aged_users.count('main', 'users') == 5
    assert aged_users.count('main', 'users', {'age': {'gte': 30}}) == 3


def test_aggregates(aged_users):
    assert aged_users.aggregate('main', 'users', 'SUM', 'age') == 193
    assert aged_users.aggregate('main', 'users', 'avg', 'age', {'age': {'in': [10, 30]}}) == 20
    assert aged_users.aggregate('main', 'users', 'MIN', 'age') == 10
    assert aged_users.aggregate('main', 'users', 'MAX', 'age') == 70
    assert aged_users.aggregate('main', 'users', 'COUNT', '*', {'age': {'gt': 20}}) == 3


def test_aggregate_of_empty_set_is_zero(users_driver):
    for op in ('SUM', 'AVG', 'MIN', 'MAX', 'COUNT'):
        assert users_driver.aggregate('main', 'users', op, 'age') == 0
    assert users_driver.aggregate('main', 'users', 'SUM', 'age', {'age': {'gt': 1}}) == 0


def test_unsupported_aggregate(aged_users):
    assert aged_users.supports_aggregate
    with pytest.raises(ValidationError):
        aged_users.aggregate('main', 'users', 'MEDIAN', 'age')


def _minimal_driver():
    def unsupported(self, *args, **kwargs):
        raise NotImplementedError

    namespace = {name: unsupported for name in Driver.__abstractmethods__}
    namespace['metadata'] = property(lambda self: DriverMetadata('minimal', '0'))
    return type('MinimalDriver', (Driver,), namespace)()


def test_driver_without_aggregation():
    """Backends that cannot aggregate say so"""
    driver = _minimal_driver()
    assert not driver.supports_aggregate
    assert driver.get_schema('main', 'users') is None
    with pytest.raises(UnsupportedOperation, match='minimal does not support aggregation'):
        driver.aggregate('main', 'users', 'SUM', 'age')
    with pytest.raises(UnsupportedOperation):
        driver.vacuum('main')
