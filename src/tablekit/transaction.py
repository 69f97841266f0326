"""
Transaction handling for logical database handles.

The outermost `Transaction` on a handle issues BEGIN and ends with COMMIT, or
with ROLLBACK when the block raises. Entering a `Transaction` while the handle
is already inside one joins the open transaction: nothing is issued. A joined
block that fails marks the handle rollback-only, so the outermost block rolls
back even when the caller catches the error in between.

A rolled back error is re-raised as `TransactionAborted` whose ``__cause__``
is the original error.

Examples
    with Transaction(cn):
        cn.execute(build_insert('users', {'name': 'a'}))
        cn.execute(build_update('users', {'age': 11}, {'name': 'a'}))

    run_atomic(cn, lambda: [cn.execute(s) for s in statements])
"""
import asyncio
import logging
import sqlite3
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, TypeVar

from tablekit.exceptions import TransactionAborted, wrap_storage_error

if TYPE_CHECKING:
    from tablekit.connection import LogicalDatabase

logger = logging.getLogger(__name__)

T = TypeVar('T')


class Transaction:
    """Context manager for running several statements as one unit.
    """

    def __init__(self, cn: 'LogicalDatabase') -> None:
        self.cn = cn
        self.owner = False

    def __enter__(self):
        self.cn.check_open()
        if self.cn.in_transaction:
            logger.debug(f'Joining open transaction on {self.cn.name}')
            return self

        try:
            self.cn.strategy.begin(self.cn.dbapi_connection)
        except sqlite3.Error as e:
            raise wrap_storage_error(e, db=self.cn.name, operation='begin') from e
        self.cn.in_transaction = True
        self.cn.clear_rollback_only()
        self.owner = True
        logger.debug(f'Started transaction on {self.cn.name}')
        return self

    def __exit__(self, exc_type: type | None, exc: BaseException | None,
                 traceback: Any | None) -> bool:
        if not self.owner:
            if exc is None:
                return False
            self.cn.mark_rollback_only(exc)
            if not isinstance(exc, Exception) or isinstance(exc, TransactionAborted):
                return False
            raise TransactionAborted(f'Transaction aborted: {exc}', db=self.cn.name,
                                     operation='transaction') from exc
        self.owner = False

        if exc is None and self.cn.rollback_only:
            exc = TransactionAborted(f'Transaction aborted by a failed inner scope: {self.cn.abort_cause}',
                                     db=self.cn.name, operation='transaction')
            exc.__cause__ = self.cn.abort_cause
            self._rollback()
            raise exc

        if exc is None:
            try:
                self.cn.strategy.commit(self.cn.dbapi_connection)
            except sqlite3.Error as e:
                exc = wrap_storage_error(e, db=self.cn.name, operation='commit')
                exc.__cause__ = e
            else:
                self.cn.in_transaction = False
                logger.debug(f'Committed transaction on {self.cn.name}')
                return False

        self._rollback()
        if not isinstance(exc, Exception) or isinstance(exc, TransactionAborted):
            return False
        raise TransactionAborted(f'Transaction rolled back: {exc}', db=self.cn.name,
                                 operation='transaction') from exc

    def _rollback(self) -> None:
        try:
            if self.cn.is_open:
                self.cn.strategy.rollback(self.cn.dbapi_connection)
        except sqlite3.Error as e:
            logger.error(f'Rollback failed on {self.cn.name}: {e}')
        finally:
            self.cn.in_transaction = False
            self.cn.clear_rollback_only()
        logger.warning(f'Rolled back transaction on {self.cn.name}')


def run_atomic(cn: 'LogicalDatabase', unit_of_work: Callable[[], T]) -> T:
    """Run a zero-argument callable inside one transaction and return its result.
    """
    with Transaction(cn):
        return unit_of_work()


class AsyncTransaction:
    """Awaitable counterpart of `Transaction`.

    BEGIN, COMMIT and ROLLBACK run on a worker thread, like every other
    statement of the async driver.
    """

    def __init__(self, cn: 'LogicalDatabase') -> None:
        self._tx = Transaction(cn)

    @property
    def cn(self) -> 'LogicalDatabase':
        return self._tx.cn

    async def __aenter__(self):
        await asyncio.to_thread(self._tx.__enter__)
        return self

    async def __aexit__(self, exc_type: type | None, exc: BaseException | None,
                        traceback: Any | None) -> bool:
        return await asyncio.to_thread(self._tx.__exit__, exc_type, exc, traceback)


async def run_atomic_async(cn: 'LogicalDatabase',
                           unit_of_work: Callable[[], Awaitable[T]]) -> T:
    """Await a zero-argument coroutine function inside one transaction.
    """
    async with AsyncTransaction(cn):
        return await unit_of_work()
