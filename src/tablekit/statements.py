"""
Statement builder: read, write and DDL statements for one table.

Every builder returns an immutable `Statement`. Identifiers are checked
against the allow-list and quoted; values always travel as parameters, except
in DDL where SQLite refuses bound parameters (DEFAULT clauses and partial
index predicates) and literals are rendered inline.

Main entry points:
- `build_select()`, `build_select_one()`, `build_count()`, `build_aggregate()`
- `build_insert()`, `build_select_by_rowid()`, `build_update()`, `build_delete()`
- `build_create_table()`, `build_drop_table()`, `build_create_index()`,
  `build_drop_index()`
"""
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

from tablekit.conditions import compile_where
from tablekit.exceptions import ValidationError
from tablekit.query import QueryOptions
from tablekit.schema import ColumnDefinition, IndexOptions, TableSchema
from tablekit.sql import count_placeholders, make_placeholders, quote_identifier
from tablekit.sql import render_literal, validate_identifier
from tablekit.types import TypeConverter

if TYPE_CHECKING:
    from tablekit.strategy import DialectStrategy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Statement:
    """SQL text, its positional parameters and the context it runs in.

    `inline_literals` marks DDL that carries rendered literals, which may
    contain '?' characters of their own; such statements take no parameters.
    """
    sql: str
    params: tuple = ()
    table: str | None = None
    operation: str | None = None
    inline_literals: bool = False

    def __post_init__(self):
        object.__setattr__(self, 'params', tuple(self.params))
        if self.inline_literals:
            if self.params:
                raise ValidationError('Statements with inline literals take no parameters')
            return
        placeholders = count_placeholders(self.sql)
        if placeholders != len(self.params):
            raise ValidationError(
                f'Statement has {placeholders} placeholders but {len(self.params)} parameters',
                table=self.table, operation=self.operation)


def _strategy(strategy: 'DialectStrategy | None') -> 'DialectStrategy':
    if strategy is not None:
        return strategy
    from tablekit.strategy import get_strategy
    return get_strategy('sqlite')


def _check_columns(columns: Iterable[str], schema: Mapping[str, Any] | None,
                   what: str) -> None:
    for column in columns:
        validate_identifier(column, 'column name')
        if schema is not None and column not in schema:
            raise ValidationError(f'Unknown column in {what}: {column!r}')


def _order_by_clause(order_by: tuple[tuple[str, str], ...],
                     schema: Mapping[str, Any] | None) -> str:
    if not order_by:
        return ''
    _check_columns((column for column, _ in order_by), schema, 'order_by')
    keys = ', '.join(f'{quote_identifier(column)} {direction}' for column, direction in order_by)
    return f' ORDER BY {keys}'


def _require_where(where: Any, operation: str) -> Mapping[str, Any]:
    if where is None:
        raise ValidationError(f'{operation} requires a filter; pass {{}} to match every row')
    if not isinstance(where, Mapping):
        raise ValidationError(f'Filter must be a mapping, got {type(where).__name__}')
    return where


def build_select(table: str, options: QueryOptions | Mapping[str, Any] | None = None,
                 schema: TableSchema | None = None, *,
                 strategy: 'DialectStrategy | None' = None,
                 operation: str = 'find_all') -> Statement:
    """Build a SELECT with projection, filter, ordering and pagination.

    Offset without limit is emitted the way the dialect needs it (SQLite
    requires a LIMIT clause, -1 meaning unbounded).
    """
    options = QueryOptions.create(options)
    quoted_table = quote_identifier(table, 'table name')

    if options.select:
        _check_columns(options.select, schema, 'select')
        projection = ', '.join(quote_identifier(column) for column in options.select)
    else:
        projection = '*'

    predicate = compile_where(options.where, schema)
    sql = f'SELECT {projection} FROM {quoted_table}{predicate.where_clause()}'
    sql += _order_by_clause(options.order_by, schema)
    sql += _strategy(strategy).limit_clause(options.limit, options.offset)
    return Statement(sql, predicate.params, table, operation)


def build_select_one(table: str, options: QueryOptions | Mapping[str, Any] | None = None,
                     schema: TableSchema | None = None, *,
                     strategy: 'DialectStrategy | None' = None) -> Statement:
    """Same as `build_select` limited to one row; ordering and offset apply.
    """
    options = replace(QueryOptions.create(options), limit=1)
    return build_select(table, options, schema, strategy=strategy, operation='find_one')


def build_count(table: str, where: Mapping[str, Any] | None = None,
                schema: TableSchema | None = None) -> Statement:
    quoted_table = quote_identifier(table, 'table name')
    predicate = compile_where(where, schema)
    sql = f'SELECT COUNT(*) AS "count" FROM {quoted_table}{predicate.where_clause()}'
    return Statement(sql, predicate.params, table, 'count')


def build_aggregate(table: str, op: str, field: str,
                    where: Mapping[str, Any] | None = None,
                    schema: TableSchema | None = None, *,
                    strategy: 'DialectStrategy | None' = None) -> Statement:
    """Build `SELECT <OP>(field)`; an empty match set yields 0.

    `field` may be '*' for COUNT only.
    """
    strategy = _strategy(strategy)
    if not strategy.supports_aggregate(op):
        raise ValidationError(f'Unsupported aggregate {op!r}; expected one of {sorted(strategy.AGGREGATES)}',
                              table=table, operation='aggregate')
    op = op.upper()
    if field == '*':
        if op != 'COUNT':
            raise ValidationError(f'{op} needs a column, not *', table=table, operation='aggregate')
        target = '*'
    else:
        _check_columns([field], schema, 'aggregate')
        target = quote_identifier(field)

    quoted_table = quote_identifier(table, 'table name')
    predicate = compile_where(where, schema)
    sql = f'SELECT COALESCE({op}({target}), 0) AS "value" FROM {quoted_table}{predicate.where_clause()}'
    return Statement(sql, predicate.params, table, 'aggregate')


def build_insert(table: str, data: Mapping[str, Any],
                 schema: TableSchema | None = None) -> Statement:
    """Build a single-row INSERT; empty data inserts DEFAULT VALUES.
    """
    if not isinstance(data, Mapping):
        raise ValidationError(f'Insert data must be a mapping, got {type(data).__name__}',
                              table=table, operation='insert')
    quoted_table = quote_identifier(table, 'table name')
    if not data:
        return Statement(f'INSERT INTO {quoted_table} DEFAULT VALUES', (), table, 'insert')

    _check_columns(data, schema, 'insert')
    types = schema.types if schema is not None else {}
    values = TypeConverter.serialize_record(dict(data), types)
    columns = ', '.join(quote_identifier(column) for column in values)
    placeholders = make_placeholders(len(values))
    sql = f'INSERT INTO {quoted_table} ({columns}) VALUES ({placeholders})'
    return Statement(sql, tuple(values.values()), table, 'insert')


def build_select_by_rowid(table: str, rowid: int) -> Statement:
    """Read back a row just inserted, so engine defaults are visible."""
    quoted_table = quote_identifier(table, 'table name')
    return Statement(f'SELECT * FROM {quoted_table} WHERE rowid = ?', (rowid,), table, 'insert')


def build_update(table: str, data: Mapping[str, Any], where: Mapping[str, Any],
                 schema: TableSchema | None = None) -> Statement:
    """Build an UPDATE; `where={}` matches every row.
    """
    if not isinstance(data, Mapping) or not data:
        raise ValidationError('Update data must be a non-empty mapping',
                              table=table, operation='update')
    where = _require_where(where, 'update')
    quoted_table = quote_identifier(table, 'table name')

    _check_columns(data, schema, 'update')
    types = schema.types if schema is not None else {}
    values = TypeConverter.serialize_record(dict(data), types)
    assignments = ', '.join(f'{quote_identifier(column)} = ?' for column in values)

    predicate = compile_where(where, schema)
    sql = f'UPDATE {quoted_table} SET {assignments}{predicate.where_clause()}'
    return Statement(sql, tuple(values.values()) + predicate.params, table, 'update')


def build_delete(table: str, where: Mapping[str, Any],
                 schema: TableSchema | None = None) -> Statement:
    """Build a DELETE; `where={}` matches every row.
    """
    where = _require_where(where, 'delete')
    quoted_table = quote_identifier(table, 'table name')
    predicate = compile_where(where, schema)
    sql = f'DELETE FROM {quoted_table}{predicate.where_clause()}'
    return Statement(sql, predicate.params, table, 'delete')


def _column_ddl(name: str, column: ColumnDefinition, strategy: 'DialectStrategy',
                inline_primary_key: bool) -> str:
    parts = [quote_identifier(name, 'column name')]
    if column.auto_increment:
        parts.append('INTEGER PRIMARY KEY AUTOINCREMENT')
    else:
        parts.append(strategy.native_type(column.type))
        if column.primary_key and inline_primary_key:
            parts.append('PRIMARY KEY')
    if column.not_null:
        parts.append('NOT NULL')
    if column.unique and not (column.primary_key and inline_primary_key):
        parts.append('UNIQUE')
    if column.has_default:
        parts.append(f'DEFAULT {render_literal(TypeConverter.serialize(column.default, column.type))}')
    if column.references is not None:
        ref = column.references
        parts.append(f'REFERENCES {quote_identifier(ref.table, "table name")}({quote_identifier(ref.column)})')
        if ref.on_delete:
            parts.append(f'ON DELETE {ref.on_delete}')
        if ref.on_update:
            parts.append(f'ON UPDATE {ref.on_update}')
    return ' '.join(parts)


def build_create_table(table: str, schema: TableSchema | Mapping[str, Any], *,
                       strategy: 'DialectStrategy | None' = None) -> Statement:
    """Build an idempotent CREATE TABLE.

    A single primary-key column is declared inline; several primary-key
    columns become a table-level composite key.
    """
    strategy = _strategy(strategy)
    schema = TableSchema.create(schema)
    quoted_table = quote_identifier(table, 'table name')

    primary_keys = schema.primary_keys
    inline_primary_key = len(primary_keys) == 1
    definitions = [_column_ddl(name, column, strategy, inline_primary_key)
                   for name, column in schema.items()]
    if len(primary_keys) > 1:
        keys = ', '.join(quote_identifier(name) for name in primary_keys)
        definitions.append(f'PRIMARY KEY ({keys})')

    sql = f'CREATE TABLE IF NOT EXISTS {quoted_table} ({", ".join(definitions)})'
    return Statement(sql, (), table, 'create_table', inline_literals=True)


def build_drop_table(table: str) -> Statement:
    quoted_table = quote_identifier(table, 'table name')
    return Statement(f'DROP TABLE IF EXISTS {quoted_table}', (), table, 'drop_table')


def build_create_index(table: str, name: str, options: IndexOptions | Mapping[str, Any],
                       schema: TableSchema | None = None) -> Statement:
    """Build an idempotent CREATE INDEX, optionally UNIQUE and partial.
    """
    options = IndexOptions.create(options)
    quoted_table = quote_identifier(table, 'table name')
    quoted_name = quote_identifier(name, 'index name')
    _check_columns(options.columns, schema, 'index')

    unique = 'UNIQUE ' if options.unique else ''
    columns = ', '.join(quote_identifier(column) for column in options.columns)
    sql = f'CREATE {unique}INDEX IF NOT EXISTS {quoted_name} ON {quoted_table} ({columns})'

    predicate = compile_where(options.where, schema)
    if predicate:
        sql += f' WHERE {predicate.inline()}'
    return Statement(sql, (), table, 'create_index', inline_literals=True)


def build_drop_index(table: str, name: str) -> Statement:
    quoted_name = quote_identifier(name, 'index name')
    return Statement(f'DROP INDEX IF EXISTS {quoted_name}', (), table, 'drop_index')
