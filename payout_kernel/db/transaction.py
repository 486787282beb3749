"""
Transaction wrapper -- atomic unit-of-work scopes with timing logs.

Contract:
    ``transaction_scope()`` opens a fresh session from an injected factory,
    commits on normal exit, rolls back and re-raises on any exception, and
    always closes the session.  ``run_in_transaction()`` is the callable
    form.  ``nested_scope()`` is the SAVEPOINT form for sub-units inside an
    already-open transaction.

    Every scope logs ``transaction_started``, then either
    ``transaction_committed`` or ``transaction_rolled_back`` with
    ``operation`` and ``duration_ms``.

Non-goals:
    - Does NOT retry.  Retry belongs to the caller (RetryService) and must
      wrap the whole scope, never a part of it.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Callable, Generator, TypeVar

from sqlalchemy.orm import Session

from payout_kernel.logging_config import get_logger

logger = get_logger("db.transaction")

T = TypeVar("T")


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


@contextmanager
def transaction_scope(
    session_factory: Callable[[], Session],
    operation_name: str = "transaction",
) -> Generator[Session, None, None]:
    """Run the body inside one atomic transaction on a new session.

    Usage::

        with transaction_scope(factory, "create_revenue_report") as session:
            session.add(report)
    """
    session = session_factory()
    start = time.monotonic()
    logger.debug("transaction_started", extra={"operation": operation_name})
    try:
        yield session
        session.commit()
        logger.info(
            "transaction_committed",
            extra={"operation": operation_name, "duration_ms": _elapsed_ms(start)},
        )
    except Exception:
        session.rollback()
        logger.warning(
            "transaction_rolled_back",
            extra={"operation": operation_name, "duration_ms": _elapsed_ms(start)},
            exc_info=True,
        )
        raise
    finally:
        session.close()


def run_in_transaction(
    session_factory: Callable[[], Session],
    operation: Callable[[Session], T],
    operation_name: str = "transaction",
) -> T:
    """Call ``operation(session)`` inside ``transaction_scope`` and return its value."""
    with transaction_scope(session_factory, operation_name) as session:
        return operation(session)


@contextmanager
def nested_scope(
    session: Session,
    operation_name: str = "savepoint",
) -> Generator[Session, None, None]:
    """SAVEPOINT scope inside the caller's transaction.

    A failure rolls back only the savepoint; the exception is re-raised so
    the caller decides whether it is benign (e.g. a unique violation).
    """
    savepoint = session.begin_nested()
    start = time.monotonic()
    logger.debug("savepoint_started", extra={"operation": operation_name})
    try:
        yield session
        savepoint.commit()
        logger.debug(
            "savepoint_released",
            extra={"operation": operation_name, "duration_ms": _elapsed_ms(start)},
        )
    except Exception:
        savepoint.rollback()
        logger.debug(
            "savepoint_rolled_back",
            extra={"operation": operation_name, "duration_ms": _elapsed_ms(start)},
        )
        raise
