"""
Unit tests for compiling filter mappings into SQL predicates.
"""
import datetime

import pytest
from tablekit import Literal, Operators, TableSchema, ValidationError
from tablekit.conditions import compile_where, normalize_tag, to_condition
from tablekit.sql import count_placeholders


def test_empty_filter_compiles_to_nothing():
    for where in (None, {}):
        predicate = compile_where(where)
        assert not predicate
        assert predicate.sql == ''
        assert predicate.params == ()
        assert predicate.where_clause() == ''


def test_literal_equality_and_null():
    predicate = compile_where({'age': 30, 'name': None})
    assert predicate.sql == '"age" = ? AND "name" IS NULL'
    assert predicate.params == (30,)
    assert predicate.where_clause() == ' WHERE "age" = ? AND "name" IS NULL'


def test_operator_range():
    predicate = compile_where({'age': {'gte': 18, 'lt': 65}})
    assert predicate.sql == '"age" >= ? AND "age" < ?'
    assert predicate.params == (18, 65)


def test_operators_emit_in_fixed_order():
    """Tag order in the input does not change the compiled text"""
    first = compile_where({'age': {'lt': 65, 'gte': 18, 'ne': 30}})
    second = compile_where({'age': {'ne': 30, 'gte': 18, 'lt': 65}})
    assert first == second
    assert first.sql == '"age" >= ? AND "age" < ? AND "age" != ?'
    assert first.params == (18, 65, 30)


def test_dollar_prefixed_tags():
    predicate = compile_where({'age': {'$gt': 1, '$lte': 9}})
    assert predicate.sql == '"age" > ? AND "age" <= ?'


def test_in_and_not_in():
    predicate = compile_where({'id': {'in': [1, 2, 3]}, 'name': {'notIn': ('a',)}})
    assert predicate.sql == '"id" IN (?, ?, ?) AND "name" NOT IN (?)'
    assert predicate.params == (1, 2, 3, 'a')


def test_empty_in_matches_nothing_and_empty_not_in_matches_everything():
    assert compile_where({'id': {'in': []}}).sql == '1 = 0'
    assert compile_where({'id': {'notIn': []}}).sql == '1 = 1'
    assert compile_where({'id': {'not_in': []}}).params == ()


def test_none_inside_in_lists_tests_null():
    predicate = compile_where({'age': {'in': [10, None]}})
    assert predicate.sql == '("age" IS NULL OR "age" IN (?))'
    assert predicate.params == (10,)

    predicate = compile_where({'age': {'notIn': [10, None, 18]}})
    assert predicate.sql == '("age" IS NOT NULL AND "age" NOT IN (?, ?))'
    assert predicate.params == (10, 18)

    assert compile_where({'age': {'in': [None]}}).sql == '"age" IS NULL'
    assert compile_where({'age': {'notIn': [None]}}).sql == '"age" IS NOT NULL'


def test_like_and_between():
    predicate = compile_where({'name': {'like': 'a%'}, 'age': {'between': [18, 65]}})
    assert predicate.sql == '"name" LIKE ? AND "age" BETWEEN ? AND ?'
    assert predicate.params == ('a%', 18, 65)


def test_ne_none_means_is_not_null():
    assert compile_where({'name': {'ne': None}}).sql == '"name" IS NOT NULL'


@pytest.mark.parametrize(('where', 'message'), [
    ({'age': {'gte': None}}, 'cannot compare with None'),
    ({'age': {'in': 5}}, 'requires a list'),
    ({'age': {'between': [1]}}, 'exactly'),
    ({'age': {'between': [None, 2]}}, 'None bounds'),
    ({'name': {'like': 3}}, 'string pattern'),
    ({'age': {'regex': '.*'}}, 'Unrecognized operator'),
    ({'age': {}}, 'at least one operator'),
    ({'bad column': 1}, 'Unsafe column name'),
    ({'x"; DROP TABLE users; --': 1}, 'Unsafe column name'),
])
def test_malformed_filters(where, message):
    with pytest.raises(ValidationError, match=message):
        compile_where(where)


def test_filter_must_be_mapping():
    with pytest.raises(ValidationError):
        compile_where([('age', 1)])


def test_literal_wraps_dict_values():
    """A dict is an operator object unless wrapped in Literal"""
    predicate = compile_where({'meta': Literal({'gte': 1})})
    assert predicate.sql == '"meta" = ?'
    assert predicate.params == ('{"gte": 1}',)


def test_to_condition_coercion():
    assert to_condition(5) == Literal(5)
    assert to_condition({'gt': 1}) == Operators(gt=1)
    operators = Operators({'lt': 3})
    assert to_condition(operators) is operators


def test_duplicate_tag_after_normalization():
    with pytest.raises(ValidationError, match='more than once'):
        Operators({'gt': 1, '$gt': 2})


def test_normalize_tag():
    assert normalize_tag('$notIn') == 'notIn'
    assert normalize_tag('notin') == 'notIn'
    with pytest.raises(ValidationError):
        normalize_tag(1)


def test_schema_serializes_operands_and_rejects_unknown_columns():
    schema = TableSchema({'born': 'DATE', 'active': 'BOOLEAN'})
    predicate = compile_where({'born': {'gte': datetime.date(2000, 1, 1)}, 'active': True}, schema)
    assert predicate.params == ('2000-01-01', 1)
    with pytest.raises(ValidationError, match='Unknown column'):
        compile_where({'missing': 1}, schema)


def test_placeholders_match_params():
    """Every compiled predicate carries one parameter per placeholder"""
    filters = [
        {'a': 1},
        {'a': {'in': [1, 2, 3, 4]}, 'b': {'between': [1, 2]}},
        {'a': None, 'b': {'ne': None}, 'c': {'notIn': []}},
        {'a': {'in': [1, None]}, 'b': {'notIn': [None, 2, 3]}},
        {'a': {'gt': 1, 'gte': 2, 'lt': 3, 'lte': 4, 'ne': 5, 'like': 'x', 'in': [6]}},
    ]
    for where in filters:
        predicate = compile_where(where)
        assert count_placeholders(predicate.sql) == len(predicate.params)


def test_inline_renders_literals():
    predicate = compile_where({'name': "o'neil", 'age': {'gte': 18}})
    assert predicate.inline() == '"name" = \'o\'\'neil\' AND "age" >= 18'
