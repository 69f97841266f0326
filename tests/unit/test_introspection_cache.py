"""
Unit tests for the introspection cache.
"""
import pytest
from tablekit.cache import Cache, _create_cache_key, cacheable_strategy


class FakeHandle:

    def __init__(self, namespace):
        self.cache_namespace = namespace


class CountingStrategy:

    def __init__(self):
        self.calls = 0

    @cacheable_strategy('test_columns', ttl=60, maxsize=10)
    def get_columns(self, cn, table, bypass_cache=False):
        self.calls += 1
        return [f'{table}_{self.calls}']


@pytest.fixture
def cache_manager():
    """Provide the cache manager instance"""
    return Cache.get_instance()


def test_cache_singleton(cache_manager):
    assert Cache.get_instance() is cache_manager


def test_get_cache_reuses_instance(cache_manager):
    first = cache_manager.get_cache('shared')
    first['k'] = 1
    assert cache_manager.get_cache('shared') is first
    cache_manager.clear_all()
    assert 'k' not in first


def test_cache_key_is_deterministic():
    key = _create_cache_key('Main@1', 'Users', (1,), {'b': 2, 'a': 1, 'bypass_cache': True})
    assert key == 'main@1:users:1:a=1:b=2'


def test_decorated_method_hits_cache():
    strategy = CountingStrategy()
    cn = FakeHandle('main@1')
    assert strategy.get_columns(cn, 'users') == ['users_1']
    assert strategy.get_columns(cn, 'users') == ['users_1']
    assert strategy.calls == 1


def test_bypass_cache():
    strategy = CountingStrategy()
    cn = FakeHandle('main@1')
    strategy.get_columns(cn, 'users')
    assert strategy.get_columns(cn, 'users', bypass_cache=True) == ['users_2']


def test_handles_do_not_share_entries():
    strategy = CountingStrategy()
    assert strategy.get_columns(FakeHandle('main@1'), 'users') == ['users_1']
    assert strategy.get_columns(FakeHandle('main@2'), 'users') == ['users_2']


def test_clear_for_table_only_touches_that_table(cache_manager):
    strategy = CountingStrategy()
    cn = FakeHandle('main@1')
    strategy.get_columns(cn, 'users')
    strategy.get_columns(cn, 'posts')
    cache_manager.clear_for_table('main@1', 'users')
    assert strategy.get_columns(cn, 'users') == ['users_3']
    assert strategy.get_columns(cn, 'posts') == ['posts_2']
    assert strategy.calls == 3


def test_clear_for_namespace(cache_manager):
    strategy = CountingStrategy()
    strategy.get_columns(FakeHandle('main@1'), 'users')
    strategy.get_columns(FakeHandle('other@2'), 'users')
    cache_manager.clear_for_namespace('main@1')
    strategy.get_columns(FakeHandle('main@1'), 'users')
    strategy.get_columns(FakeHandle('other@2'), 'users')
    assert strategy.calls == 3
