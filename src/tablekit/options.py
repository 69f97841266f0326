import pathlib
from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from typing import Any

from libb import load_options
from tablekit.exceptions import ValidationError
from tablekit.sql import validate_identifier
from tablekit.strategy import get_available_dialects, get_strategy_class
from tablekit.strategy import is_supported_dialect

__all__ = ['DriverOptions', 'MEMORY']

MEMORY = ':memory:'

# camelCase spellings accepted when options come from a mapping
_OPTION_ALIASES = {
    'storageDir': 'storage_dir',
}


@dataclass
class DriverOptions:
    """Options

    supported driver names: `sqlite`

    - storage_dir: Base directory for `<db>.<extension>` files, or ':memory:'
      to give every logical database a private in-memory store (required)
    - readonly: Open database files read-only (default: False)
    - verbose: Log every statement at INFO instead of DEBUG (default: False)
    - timeout: Busy timeout in milliseconds (default: 5000)
    - extension: File extension of logical database files (default: 'sqlite')
    - wal: Use write-ahead logging, ignored when readonly (default: True)
    """
    storage_dir: str | pathlib.Path | None = None
    readonly: bool = False
    verbose: bool = False
    timeout: int = 5000
    extension: str = 'sqlite'
    wal: bool = True
    drivername: str = 'sqlite'

    def __post_init__(self):
        if not is_supported_dialect(self.drivername):
            available = get_available_dialects()
            raise ValidationError(f'drivername must be one of: {available}')
        if isinstance(self.timeout, bool) or not isinstance(self.timeout, int) or self.timeout < 0:
            raise ValidationError(f'timeout must be a non-negative number of milliseconds, got {self.timeout!r}')
        validate_identifier(self.extension, 'file extension')
        strategy_cls = get_strategy_class(self.drivername)
        strategy_cls.validate_options(self)

    @property
    def in_memory(self) -> bool:
        return str(self.storage_dir) == MEMORY

    def path_for(self, db_name: str) -> str:
        """Return the storage location for a logical database.
        """
        if self.in_memory:
            return MEMORY
        return str(pathlib.Path(self.storage_dir) / f'{db_name}.{self.extension}')

    @classmethod
    def load(cls, options: 'DriverOptions | Mapping[str, Any] | None' = None,
             **kw: Any) -> 'DriverOptions':
        """Build options from an instance, a mapping and/or keyword arguments.

        Keyword arguments override values from `options`.
        """
        if isinstance(options, cls):
            if not kw:
                return options
            return replace(options, **{_OPTION_ALIASES.get(k, k): v for k, v in kw.items()})

        values: dict[str, Any] = {}
        if isinstance(options, Mapping):
            values.update(options)
        elif options is not None:
            raise ValidationError(f'Invalid driver options: {options!r}')
        values.update(kw)

        values = {_OPTION_ALIASES.get(k, k): v for k, v in values.items()}
        allowed = {f.name for f in fields(cls)}
        unknown = set(values) - allowed
        if unknown:
            raise ValidationError(f'Unknown driver option(s): {sorted(unknown)}')
        options_func = load_options(cls=cls)(lambda o, c: o)
        return options_func(values, None)
