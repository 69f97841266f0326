"""
Low-level SQL text helpers.

Main entry points:
- `validate_identifier()` - Allow-list check for table/column/index names
- `quote_identifier()` - Validate and quote an identifier
- `make_placeholders()` - Build a comma-separated placeholder list
- `render_literal()` - Render a storage primitive as a SQL literal (DDL only)
"""
import re
from typing import Any

from tablekit.exceptions import ValidationError

PLACEHOLDER = '?'
MAX_IDENTIFIER_LENGTH = 128

_IDENTIFIER = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')


def validate_identifier(identifier: Any, kind: str = 'identifier') -> str:
    """Check an identifier against the safe character set.

    Parameters
        identifier: Table, column or index name
        kind: Noun used in the error message

    Returns
        The identifier unchanged

    Raises
        ValidationError: If the identifier is not a string of letters, digits
        and underscores starting with a letter or underscore
    """
    if not isinstance(identifier, str) or not identifier:
        raise ValidationError(f'Invalid {kind}: {identifier!r}')
    if len(identifier) > MAX_IDENTIFIER_LENGTH or not _IDENTIFIER.match(identifier):
        raise ValidationError(f'Unsafe {kind}: {identifier!r}')
    return identifier


def quote_identifier(identifier: str, kind: str = 'identifier') -> str:
    """Validate and quote a database identifier.
    """
    validate_identifier(identifier, kind)
    return '"' + identifier + '"'


def make_placeholders(count: int) -> str:
    """Return `count` comma-separated placeholders.
    """
    return ', '.join([PLACEHOLDER] * count)


def count_placeholders(sql: str) -> int:
    """Count positional placeholders in generated SQL.

    Generated statements carry no string literals, so every '?' is a
    placeholder.
    """
    return sql.count(PLACEHOLDER)


def render_literal(value: Any) -> str:
    """Render a storage primitive as an inline SQL literal.

    Used where SQLite rejects bound parameters (DEFAULT clauses and partial
    index predicates). Accepts only None, bool, int, float, str and bytes.
    """
    if value is None:
        return 'NULL'
    if isinstance(value, bool):
        return '1' if value else '0'
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if value != value or value in {float('inf'), float('-inf')}:
            raise ValidationError(f'Cannot render non-finite float literal: {value!r}')
        return repr(value)
    if isinstance(value, str):
        return "'" + value.replace("'", "''") + "'"
    if isinstance(value, bytes):
        return "X'" + value.hex() + "'"
    raise ValidationError(f'Cannot render literal of type {type(value).__name__}')


def inline_params(sql: str, params: tuple | list) -> str:
    """Substitute positional placeholders with rendered literals.
    """
    pieces = sql.split(PLACEHOLDER)
    if len(pieces) - 1 != len(params):
        raise ValidationError(
            f'Placeholder count {len(pieces) - 1} does not match {len(params)} parameters')
    out = [pieces[0]]
    for value, piece in zip(params, pieces[1:]):
        out.append(render_literal(value))
        out.append(piece)
    return ''.join(out)
