"""
Declared column types and value conversion between Python and SQLite.

This module provides:
- DataType: the declared column types understood by every backend
- TypeConverter: Python value <-> storage primitive conversion by declared type
- serialize / deserialize: module-level shortcuts for TypeConverter
"""
import datetime
import enum
import json
import logging
from typing import Any

import dateutil.parser
from tablekit.exceptions import ValidationError

logger = logging.getLogger(__name__)


class DataType(str, enum.Enum):
    """Declared column types."""
    TEXT = 'TEXT'
    STRING = 'STRING'
    INTEGER = 'INTEGER'
    NUMBER = 'NUMBER'
    REAL = 'REAL'
    BLOB = 'BLOB'
    BOOLEAN = 'BOOLEAN'
    DATE = 'DATE'
    DATETIME = 'DATETIME'
    JSON = 'JSON'
    OBJECT = 'OBJECT'
    ARRAY = 'ARRAY'

    @classmethod
    def parse(cls, value: 'DataType | str') -> 'DataType':
        """Resolve a declared type from an enum member or a case-insensitive name.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().upper())
            except ValueError:
                pass
        raise ValidationError(f'Unknown column type: {value!r}')


JSON_TYPES = frozenset({DataType.JSON, DataType.OBJECT, DataType.ARRAY})
NUMERIC_TYPES = frozenset({DataType.INTEGER, DataType.NUMBER, DataType.REAL})


def convert_date(val: str | bytes) -> datetime.date:
    """Convert ISO 8601 date string to date object."""
    if isinstance(val, bytes):
        val = val.decode()
    return dateutil.parser.isoparse(val).date()


def convert_datetime(val: str | bytes) -> datetime.datetime:
    """Convert ISO 8601 datetime string to datetime object."""
    if isinstance(val, bytes):
        val = val.decode()
    return dateutil.parser.isoparse(val)


def _dump_json(value: Any) -> str:
    try:
        return json.dumps(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f'Value is not JSON serializable: {e}') from e


def _load_json(value: Any) -> Any:
    if isinstance(value, bytes | bytearray | memoryview):
        value = bytes(value).decode()
    if not isinstance(value, str):
        raise ValidationError(f'Expected JSON text, got {type(value).__name__}')
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        raise ValidationError(f'Malformed JSON in storage: {e}') from e


class TypeConverter:
    """Conversion of values to and from storage primitives.

    The declared column type drives the conversion. When the declared type is
    unknown (None), the Python type of the value decides.
    """

    @staticmethod
    def infer_value(value: Any) -> Any:
        """Convert a value of unknown declared type to a storage primitive."""
        if value is None:
            return None
        if isinstance(value, bool):
            return 1 if value else 0
        if isinstance(value, datetime.date):
            return value.isoformat()
        if isinstance(value, dict | list | tuple):
            return _dump_json(list(value) if isinstance(value, tuple) else value)
        if isinstance(value, bytearray | memoryview):
            return bytes(value)
        return value

    @staticmethod
    def serialize(value: Any, declared_type: DataType | str | None = None) -> Any:
        """Convert a Python value to the primitive stored for `declared_type`."""
        if value is None:
            return None
        if declared_type is None:
            return TypeConverter.infer_value(value)

        declared_type = DataType.parse(declared_type)

        if declared_type == DataType.BOOLEAN:
            if isinstance(value, bool):
                return 1 if value else 0
            return value

        if declared_type == DataType.DATE:
            if isinstance(value, datetime.datetime):
                return value.date().isoformat()
            if isinstance(value, datetime.date):
                return value.isoformat()
            return value

        if declared_type == DataType.DATETIME:
            if isinstance(value, datetime.datetime):
                return value.isoformat()
            if isinstance(value, datetime.date):
                return datetime.datetime.combine(value, datetime.time()).isoformat()
            return value

        if declared_type in JSON_TYPES:
            return _dump_json(value)

        if declared_type == DataType.BLOB:
            if isinstance(value, bytearray | memoryview):
                return bytes(value)
            return value

        if isinstance(value, bool) and declared_type in NUMERIC_TYPES:
            return int(value)

        return value

    @staticmethod
    def deserialize(value: Any, declared_type: DataType | str | None = None) -> Any:
        """Convert a stored primitive back to the Python value for `declared_type`."""
        if value is None or declared_type is None:
            return value

        declared_type = DataType.parse(declared_type)

        if declared_type == DataType.BOOLEAN:
            if isinstance(value, int | float):
                return bool(value)
            return value

        if declared_type == DataType.DATE:
            if isinstance(value, str | bytes):
                try:
                    return convert_date(value)
                except ValueError as e:
                    raise ValidationError(f'Malformed date in storage: {value!r}') from e
            return value

        if declared_type == DataType.DATETIME:
            if isinstance(value, str | bytes):
                try:
                    return convert_datetime(value)
                except ValueError as e:
                    raise ValidationError(f'Malformed datetime in storage: {value!r}') from e
            return value

        if declared_type in JSON_TYPES:
            return _load_json(value)

        if declared_type == DataType.BLOB and isinstance(value, bytearray | memoryview):
            return bytes(value)

        return value

    @staticmethod
    def serialize_record(data: dict[str, Any], types: dict[str, DataType]) -> dict[str, Any]:
        """Serialize every value of a record using the declared type of its column."""
        return {k: TypeConverter.serialize(v, types.get(k)) for k, v in data.items()}

    @staticmethod
    def deserialize_record(row: dict[str, Any], types: dict[str, DataType]) -> dict[str, Any]:
        """Deserialize a stored row; columns without a declared type pass through."""
        return {k: TypeConverter.deserialize(v, types.get(k)) for k, v in row.items()}


def serialize(value: Any, declared_type: DataType | str | None = None) -> Any:
    """Convert a Python value to a storage primitive.
    """
    return TypeConverter.serialize(value, declared_type)


def deserialize(value: Any, declared_type: DataType | str | None = None) -> Any:
    """Convert a storage primitive to a Python value.

    Raises ValidationError when stored JSON or ISO text is malformed.
    """
    return TypeConverter.deserialize(value, declared_type)
