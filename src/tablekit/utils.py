"""Runtime diagnostics.

Nothing here runs on import or from a constructor; the host application
calls `probe_runtime()` when it wants to know what the SQLite library in use
can do.
"""
import logging
import sqlite3
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa

if TYPE_CHECKING:
    from tablekit.connection import LogicalDatabase

logger = logging.getLogger(__name__)

# pragma table-valued functions (pragma_table_info) appeared in 3.16
MIN_SQLITE_VERSION = (3, 16, 0)


def _has_json1(conn: sqlite3.Connection) -> bool:
    try:
        conn.execute("SELECT json('{}')").fetchone()
    except sqlite3.OperationalError:
        return False
    return True


def probe_runtime(warn: bool = True) -> dict[str, Any]:
    """Inspect the SQLite library linked into this interpreter.

    Parameters
        warn: Log each finding in `warnings` at WARNING level

    Returns
        Dict with `sqlite_version`, `sqlite_version_info`, `threadsafety`,
        `json1`, `sqlalchemy_version` and a list of `warnings`
    """
    conn = sqlite3.connect(':memory:')
    try:
        json1 = _has_json1(conn)
    finally:
        conn.close()

    warnings = []
    if sqlite3.sqlite_version_info < MIN_SQLITE_VERSION:
        minimum = '.'.join(str(part) for part in MIN_SQLITE_VERSION)
        warnings.append(f'SQLite {sqlite3.sqlite_version} is older than {minimum}; '
                        'catalog introspection will fail')
    if not json1:
        warnings.append('SQLite was built without JSON1; JSON columns are stored as plain text')
    if sqlite3.threadsafety == 0:
        warnings.append('SQLite is not thread-safe; the async driver must not be used')

    if warn:
        for warning in warnings:
            logger.warning(warning)

    return {
        'sqlite_version': sqlite3.sqlite_version,
        'sqlite_version_info': sqlite3.sqlite_version_info,
        'threadsafety': sqlite3.threadsafety,
        'json1': json1,
        'sqlalchemy_version': sa.__version__,
        'warnings': warnings,
    }


def diagnose_handle(cn: 'LogicalDatabase') -> dict[str, Any]:
    """Describe the state of a logical database handle for debugging.
    """
    info: dict[str, Any] = {
        'name': cn.name,
        'path': cn.path,
        'state': cn.state.value,
        'in_transaction': cn.in_transaction,
        'calls': cn.calls,
        'time': cn.time,
        'tables': sorted(cn.schemas),
    }
    if cn.dbapi_connection is not None:
        info['auto_commit'] = cn.dbapi_connection.isolation_level is None
    return info
