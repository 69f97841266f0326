"""
Query options for read operations.
"""
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, fields
from typing import Any

from libb import load_options
from tablekit.exceptions import ValidationError
from tablekit.sql import validate_identifier

DIRECTIONS = ('ASC', 'DESC')

_OPTION_ALIASES = {'orderBy': 'order_by'}


def _check_count(name: str, value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f'{name} must be a non-negative integer, got {value!r}')
    return value


def normalize_order_by(order_by: Any) -> tuple[tuple[str, str], ...]:
    """Normalize ordering keys to a tuple of (column, direction) pairs.

    Each key is a (column, direction) pair or a bare column name (ascending).
    """
    if order_by is None:
        return ()
    if isinstance(order_by, str) or not isinstance(order_by, Sequence):
        raise ValidationError(f'order_by must be a list of (column, direction) pairs, got {order_by!r}')

    keys = []
    for key in order_by:
        if isinstance(key, str):
            column, direction = key, 'ASC'
        elif isinstance(key, Sequence) and len(key) == 2:
            column, direction = key
        else:
            raise ValidationError(f'Invalid order_by key: {key!r}')
        validate_identifier(column, 'column name')
        if not isinstance(direction, str) or direction.upper() not in DIRECTIONS:
            raise ValidationError(f'Invalid sort direction for {column!r}: {direction!r}')
        keys.append((column, direction.upper()))
    return tuple(keys)


@dataclass(frozen=True)
class QueryOptions:
    """Description of a read: filter, ordering, pagination and projection.

    Rows equal on every ordering key keep an unspecified relative order;
    include a unique column as the last key when full determinism matters.
    """
    where: Mapping[str, Any] | None = None
    order_by: tuple[tuple[str, str], ...] = ()
    limit: int | None = None
    offset: int | None = None
    select: tuple[str, ...] | None = None

    def __post_init__(self):
        if self.where is not None and not isinstance(self.where, Mapping):
            raise ValidationError(f'where must be a mapping, got {type(self.where).__name__}')
        object.__setattr__(self, 'order_by', normalize_order_by(self.order_by))
        object.__setattr__(self, 'limit', _check_count('limit', self.limit))
        object.__setattr__(self, 'offset', _check_count('offset', self.offset))
        if self.select is not None:
            if isinstance(self.select, str):
                raise ValidationError('select must be a list of column names')
            select = tuple(self.select)
            if not select:
                raise ValidationError('select must name at least one column')
            for column in select:
                validate_identifier(column, 'column name')
            object.__setattr__(self, 'select', select)

    @classmethod
    def create(cls, query: 'QueryOptions | Mapping[str, Any] | None' = None,
               **kw: Any) -> 'QueryOptions':
        """Build options from an instance, a mapping and/or keyword arguments.

        Keyword arguments override values from `query`. The camelCase key
        `orderBy` is accepted.
        """
        if isinstance(query, cls) and not kw:
            return query

        values: dict[str, Any] = {}
        if isinstance(query, cls):
            values = {f.name: getattr(query, f.name) for f in fields(cls)}
        elif isinstance(query, Mapping):
            values = dict(query)
        elif query is not None:
            raise ValidationError(f'Invalid query options: {query!r}')
        values.update(kw)

        values = {_OPTION_ALIASES.get(k, k): v for k, v in values.items()}
        allowed = {f.name for f in fields(cls)}
        unknown = set(values) - allowed
        if unknown:
            raise ValidationError(f'Unknown query option(s): {sorted(unknown)}')
        options_func = load_options(cls=cls)(lambda o, c: o)
        return options_func(values, None)
