"""
Table schema declarations.

A table schema is an ordered, read-only mapping of column name to
`ColumnDefinition`. Schemas are built once, when a table is declared, and
shared read-only by every facade that addresses the same table.
"""
import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field, fields
from types import MappingProxyType
from typing import Any

from tablekit.exceptions import ValidationError
from tablekit.sql import validate_identifier
from tablekit.types import DataType

logger = logging.getLogger(__name__)

REFERENTIAL_ACTIONS = frozenset({'CASCADE', 'SET NULL', 'RESTRICT', 'NO ACTION', 'SET DEFAULT'})

# camelCase spellings accepted in schema mappings
_COLUMN_ALIASES = {
    'primaryKey': 'primary_key',
    'autoIncrement': 'auto_increment',
    'notNull': 'not_null',
    'onDelete': 'on_delete',
    'onUpdate': 'on_update',
}


class _NoDefault:
    """Sentinel for a column without a DEFAULT clause."""

    def __repr__(self) -> str:
        return 'NO_DEFAULT'


NO_DEFAULT = _NoDefault()


def _normalize_keys(data: Mapping[str, Any], allowed: set[str], what: str) -> dict[str, Any]:
    normalized = {_COLUMN_ALIASES.get(k, k): v for k, v in data.items()}
    unknown = set(normalized) - allowed
    if unknown:
        raise ValidationError(f'Unknown {what} option(s): {sorted(unknown)}')
    return normalized


def _check_action(action: str | None) -> str | None:
    if action is None:
        return None
    normalized = ' '.join(str(action).upper().split())
    if normalized not in REFERENTIAL_ACTIONS:
        raise ValidationError(f'Unsupported referential action: {action!r}')
    return normalized


@dataclass(frozen=True)
class ForeignKeyRef:
    """Reference from a column to a column of another table."""
    table: str
    column: str
    on_delete: str | None = None
    on_update: str | None = None

    def __post_init__(self):
        validate_identifier(self.table, 'table name')
        validate_identifier(self.column, 'column name')
        object.__setattr__(self, 'on_delete', _check_action(self.on_delete))
        object.__setattr__(self, 'on_update', _check_action(self.on_update))

    @classmethod
    def create(cls, value: 'ForeignKeyRef | Mapping[str, Any]') -> 'ForeignKeyRef':
        if isinstance(value, cls):
            return value
        if not isinstance(value, Mapping):
            raise ValidationError(f'Invalid foreign key reference: {value!r}')
        allowed = {f.name for f in fields(cls)}
        return cls(**_normalize_keys(value, allowed, 'reference'))


@dataclass(frozen=True)
class ColumnDefinition:
    """Declared column: type plus constraints."""
    type: DataType
    primary_key: bool = False
    auto_increment: bool = False
    not_null: bool = False
    unique: bool = False
    default: Any = NO_DEFAULT
    references: ForeignKeyRef | None = None

    def __post_init__(self):
        object.__setattr__(self, 'type', DataType.parse(self.type))
        if self.references is not None:
            object.__setattr__(self, 'references', ForeignKeyRef.create(self.references))
        if self.auto_increment and not self.primary_key:
            raise ValidationError('auto_increment requires primary_key')
        if self.auto_increment and self.type not in {DataType.INTEGER, DataType.NUMBER}:
            raise ValidationError('auto_increment requires an INTEGER column')

    @property
    def has_default(self) -> bool:
        return self.default is not NO_DEFAULT

    @classmethod
    def create(cls, value: 'ColumnDefinition | Mapping[str, Any] | DataType | str') -> 'ColumnDefinition':
        """Build a definition from a definition, a mapping or a bare type name.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, DataType | str):
            return cls(type=value)
        if not isinstance(value, Mapping):
            raise ValidationError(f'Invalid column definition: {value!r}')
        allowed = {f.name for f in fields(cls)}
        options = _normalize_keys(value, allowed, 'column')
        if 'type' not in options:
            raise ValidationError('Column definition requires a type')
        return cls(**options)


class TableSchema(Mapping):
    """Ordered, read-only mapping of column name to ColumnDefinition.
    """

    def __init__(self, columns: 'Mapping[str, Any] | TableSchema') -> None:
        if isinstance(columns, TableSchema):
            columns = columns._columns
        if not isinstance(columns, Mapping) or not columns:
            raise ValidationError('A table schema needs at least one column')

        built = {}
        for name, definition in columns.items():
            validate_identifier(name, 'column name')
            built[name] = ColumnDefinition.create(definition)

        primary = [name for name, col in built.items() if col.primary_key]
        if len(primary) > 1 and any(built[name].auto_increment for name in primary):
            raise ValidationError('auto_increment is not allowed on a composite primary key')

        self._columns = MappingProxyType(built)

    def __getitem__(self, name: str) -> ColumnDefinition:
        return self._columns[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._columns)

    def __len__(self) -> int:
        return len(self._columns)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, TableSchema):
            return list(self._columns.items()) == list(other._columns.items())
        return NotImplemented

    __hash__ = None

    def __repr__(self) -> str:
        return f'TableSchema({dict(self._columns)!r})'

    @classmethod
    def create(cls, value: 'TableSchema | Mapping[str, Any]') -> 'TableSchema':
        if isinstance(value, cls):
            return value
        return cls(value)

    @property
    def primary_keys(self) -> list[str]:
        return [name for name, col in self._columns.items() if col.primary_key]

    @property
    def types(self) -> dict[str, DataType]:
        """Declared type per column, as used by the value serializer."""
        return {name: col.type for name, col in self._columns.items()}


@dataclass(frozen=True)
class IndexOptions:
    """Options for CREATE INDEX.

    `where` is an optional filter mapping that makes the index partial.
    """
    columns: tuple[str, ...] = field(default_factory=tuple)
    unique: bool = False
    where: Mapping[str, Any] | None = None

    def __post_init__(self):
        columns = self.columns
        if isinstance(columns, str):
            columns = (columns,)
        columns = tuple(columns)
        if not columns:
            raise ValidationError('An index needs at least one column')
        for column in columns:
            validate_identifier(column, 'column name')
        object.__setattr__(self, 'columns', columns)

    @classmethod
    def create(cls, value: 'IndexOptions | Mapping[str, Any]') -> 'IndexOptions':
        if isinstance(value, cls):
            return value
        if not isinstance(value, Mapping):
            raise ValidationError(f'Invalid index options: {value!r}')
        allowed = {f.name for f in fields(cls)}
        return cls(**_normalize_keys(value, allowed, 'index'))
