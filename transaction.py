"""
Unit of work

run_unit() executes a coroutine function against a store session so that all
of its writes commit together. Deployments that cannot run multi-document
transactions (a standalone mongod, the in-memory store) are detected from the
error they raise, and the work is re-run once without a session. Writes made
that way are independent: a failure half way leaves the earlier ones applied.
"""

import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from pymongo.errors import PyMongoError

from errors import TransactionsUnsupported

logger = logging.getLogger(__name__)

T = TypeVar("T")
Work = Callable[[Optional[Any]], Awaitable[T]]

TRANSACTION_NOT_SUPPORTED_PATTERNS = (
    "Transaction numbers are only allowed on a replica set member",
    "Transaction numbers are only allowed on a sharded cluster",
    "does not support retryable writes",
)


def is_transaction_unsupported(error: BaseException) -> bool:
    if isinstance(error, TransactionsUnsupported):
        return True
    if not isinstance(error, PyMongoError):
        return False
    message = str(error)
    return any(pattern in message for pattern in TRANSACTION_NOT_SUPPORTED_PATTERNS)


async def _abort_quietly(session) -> None:
    try:
        await session.abort_transaction()
    except Exception as exc:
        logger.debug("Ignoring failed transaction abort: %s", exc)


async def _run_without_transaction(work: Work, error: BaseException) -> T:
    logger.warning("Transactions unavailable (%s); running unit of work without one", error)
    return await work(None)


async def run_unit(store, work: Work) -> T:
    session = store.start_session()
    try:
        try:
            await session.start_transaction()
        except Exception as exc:
            if is_transaction_unsupported(exc):
                return await _run_without_transaction(work, exc)
            raise

        try:
            result = await work(session)
            await session.commit_transaction()
            return result
        except Exception as exc:
            await _abort_quietly(session)
            if is_transaction_unsupported(exc):
                return await _run_without_transaction(work, exc)
            raise
    finally:
        await session.end_session()
