"""
Compilation of structured filter descriptions into SQL predicates.

A filter is a mapping of column name to a where condition. A condition is
either a `Literal` (equality, or IS NULL for None) or an `Operators` object
holding comparison tags. Plain values given by callers are coerced:

    {'age': 30}                       -> Literal(30)
    {'age': None}                     -> Literal(None)     -> "age" IS NULL
    {'age': {'gte': 18, 'lt': 65}}    -> Operators(...)    -> "age" >= ? AND "age" < ?

A dict is always read as an operator object; to compare a column with a dict
value, wrap it in `Literal`. Multiple tags on a column and multiple columns
are ANDed. Filters cannot express OR across columns.

None inside an `in` list also matches NULL; None inside a `notIn` list also
excludes NULL:

    {'age': {'in': [1, None]}}        -> ("age" IS NULL OR "age" IN (?))
    {'age': {'notIn': [1, None]}}     -> ("age" IS NOT NULL AND "age" NOT IN (?))

Tags are emitted in a fixed order so compiled output is deterministic:

    gt, gte, lt, lte, ne, in, notIn, like, between
"""
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from tablekit.exceptions import ValidationError
from tablekit.sql import inline_params, make_placeholders
from tablekit.sql import quote_identifier
from tablekit.types import DataType, TypeConverter

logger = logging.getLogger(__name__)

OPERATOR_TAGS = ('gt', 'gte', 'lt', 'lte', 'ne', 'in', 'notIn', 'like', 'between')

_TAG_ALIASES = {'not_in': 'notIn', 'notin': 'notIn'}

_COMPARISONS = {
    'gt': '>',
    'gte': '>=',
    'lt': '<',
    'lte': '<=',
    'ne': '!=',
}

MATCH_NOTHING = '1 = 0'
MATCH_EVERYTHING = '1 = 1'


def normalize_tag(tag: Any) -> str:
    """Map a user-supplied operator tag to its canonical name.

    A leading '$' is accepted, so '$gte' and 'gte' are the same tag.

    Raises
        ValidationError: If the tag is not recognized
    """
    if not isinstance(tag, str):
        raise ValidationError(f'Operator tag must be a string, got {tag!r}')
    name = tag[1:] if tag.startswith('$') else tag
    name = _TAG_ALIASES.get(name, name)
    if name not in OPERATOR_TAGS:
        raise ValidationError(f'Unrecognized operator {tag!r}; expected one of {list(OPERATOR_TAGS)}')
    return name


@dataclass(frozen=True)
class Literal:
    """Equality against a single value (None means IS NULL)."""
    value: Any


class Operators:
    """Ordered mapping of operator tag to operand.

    Tags are validated and canonicalized at construction.
    """

    __slots__ = ('_operands',)

    def __init__(self, operands: Mapping[str, Any] | None = None, **kw: Any) -> None:
        merged = dict(operands or {})
        merged.update(kw)
        if not merged:
            raise ValidationError('Operator object must contain at least one operator')
        canonical = {}
        for tag, operand in merged.items():
            name = normalize_tag(tag)
            if name in canonical:
                raise ValidationError(f'Operator {name!r} given more than once')
            canonical[name] = operand
        self._operands = {tag: canonical[tag] for tag in OPERATOR_TAGS if tag in canonical}

    def items(self):
        return self._operands.items()

    def __contains__(self, tag: str) -> bool:
        return tag in self._operands

    def __getitem__(self, tag: str) -> Any:
        return self._operands[tag]

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Operators):
            return self._operands == other._operands
        return NotImplemented

    def __repr__(self) -> str:
        return f'Operators({self._operands!r})'


WhereCondition = Literal | Operators


def to_condition(value: Any) -> WhereCondition:
    """Coerce a caller-supplied where value to a tagged condition.
    """
    if isinstance(value, Literal | Operators):
        return value
    if isinstance(value, Mapping):
        return Operators(value)
    return Literal(value)


@dataclass(frozen=True)
class CompiledPredicate:
    """Compiled filter: fragments to AND together plus their parameters.
    """
    fragments: tuple[tuple[str, tuple], ...] = ()

    @property
    def params(self) -> tuple:
        """Flat parameter list in emission order."""
        return tuple(p for _, params in self.fragments for p in params)

    @property
    def sql(self) -> str:
        """Fragments joined with AND, empty when the filter is empty."""
        return ' AND '.join(fragment for fragment, _ in self.fragments)

    def __bool__(self) -> bool:
        return bool(self.fragments)

    def where_clause(self) -> str:
        """The predicate prefixed with WHERE, or empty string."""
        if not self.fragments:
            return ''
        return f' WHERE {self.sql}'

    def inline(self) -> str:
        """Predicate text with literals in place of placeholders."""
        return inline_params(self.sql, self.params)


def _serializer_for(column: str, schema: Mapping[str, Any] | None) -> Callable[[Any], Any]:
    declared: DataType | None = None
    if schema is not None:
        if column not in schema:
            raise ValidationError(f'Unknown column in filter: {column!r}')
        declared = schema[column].type

    def serialize(value: Any) -> Any:
        return TypeConverter.serialize(value, declared)

    return serialize


def _list_operand(tag: str, column: str, operand: Any) -> list:
    if isinstance(operand, list | tuple | set | frozenset):
        return list(operand)
    raise ValidationError(f'Operator {tag!r} on {column!r} requires a list, got {type(operand).__name__}')


def _compile_literal(quoted: str, value: Any, serialize: Callable) -> list[tuple[str, tuple]]:
    if value is None:
        return [(f'{quoted} IS NULL', ())]
    return [(f'{quoted} = ?', (serialize(value),))]


def _compile_membership(tag: str, quoted: str, values: list,
                        serialize: Callable) -> tuple[str, tuple]:
    """`in`/`notIn` with None tested through IS NULL, since NULL never matches IN.
    """
    params = tuple(serialize(v) for v in values if v is not None)
    with_null = len(params) < len(values)
    if tag == 'in':
        if not params:
            return f'{quoted} IS NULL', ()
        sql = f'{quoted} IN ({make_placeholders(len(params))})'
        return (f'({quoted} IS NULL OR {sql})' if with_null else sql), params
    if not params:
        return f'{quoted} IS NOT NULL', ()
    sql = f'{quoted} NOT IN ({make_placeholders(len(params))})'
    return (f'({quoted} IS NOT NULL AND {sql})' if with_null else sql), params


def _compile_operators(column: str, quoted: str, operators: Operators,
                       serialize: Callable) -> list[tuple[str, tuple]]:
    fragments = []
    for tag, operand in operators.items():
        if tag in _COMPARISONS:
            if operand is None:
                if tag != 'ne':
                    raise ValidationError(f'Operator {tag!r} on {column!r} cannot compare with None')
                fragments.append((f'{quoted} IS NOT NULL', ()))
                continue
            fragments.append((f'{quoted} {_COMPARISONS[tag]} ?', (serialize(operand),)))

        elif tag in {'in', 'notIn'}:
            values = _list_operand(tag, column, operand)
            if not values:
                fragments.append((MATCH_NOTHING if tag == 'in' else MATCH_EVERYTHING, ()))
                continue
            fragments.append(_compile_membership(tag, quoted, values, serialize))

        elif tag == 'like':
            if not isinstance(operand, str):
                raise ValidationError(f'Operator like on {column!r} requires a string pattern')
            fragments.append((f'{quoted} LIKE ?', (operand,)))

        elif tag == 'between':
            if not isinstance(operand, list | tuple) or len(operand) != 2:
                raise ValidationError(f'Operator between on {column!r} requires exactly [low, high]')
            low, high = operand
            if low is None or high is None:
                raise ValidationError(f'Operator between on {column!r} cannot use None bounds')
            fragments.append((f'{quoted} BETWEEN ? AND ?', (serialize(low), serialize(high))))

    return fragments


def compile_where(where: Mapping[str, Any] | None,
                  schema: Mapping[str, Any] | None = None) -> CompiledPredicate:
    """Compile a filter mapping into a predicate.

    Parameters
        where: Mapping of column name to a where condition (None or empty
            means no filter)
        schema: Optional table schema; when given, unknown columns are
            rejected and operands are serialized with the column's declared
            type

    Returns
        CompiledPredicate whose placeholder count equals its parameter count

    Raises
        ValidationError: For unsafe column names, unrecognized operators,
        malformed `in`/`notIn`/`between` operands, or unknown columns
    """
    if where is None:
        return CompiledPredicate()
    if not isinstance(where, Mapping):
        raise ValidationError(f'Filter must be a mapping, got {type(where).__name__}')

    fragments: list[tuple[str, tuple]] = []
    for column, value in where.items():
        quoted = quote_identifier(column, 'column name')
        serialize = _serializer_for(column, schema)
        condition = to_condition(value)
        if isinstance(condition, Literal):
            fragments.extend(_compile_literal(quoted, condition.value, serialize))
        else:
            fragments.extend(_compile_operators(column, quoted, condition, serialize))

    return CompiledPredicate(tuple(fragments))
