"""
LockService -- storage-backed distributed lock with a time-to-live.

Responsibility:
    Serializes a named operation (e.g. one monthly automation job) across
    process instances.  A lock is a row in ``distributed_locks`` keyed by a
    unique ``lock_key``; whoever inserts the row (or takes over an expired
    one) holds the lock until release or expiry.

Contract:
    - ``acquire(key, ttl)`` returns False if the lock is held and unexpired.
    - ``release(key)`` only deletes a lock this instance owns.
    - ``with_lock()`` returns ``None`` when the lock is held elsewhere and
      always releases in ``finally``.

Failure modes:
    - Two instances inserting the same key race on the unique constraint;
      the loser sees IntegrityError and reports False.
    - A holder that dies keeps the lock until ``expires_at``.  The TTL must
      exceed the longest expected run.
"""

from __future__ import annotations

import os
import socket
from contextlib import contextmanager
from datetime import timedelta
from typing import Callable, Generator, TypeVar
from uuid import uuid4

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from payout_kernel.db.transaction import transaction_scope
from payout_kernel.domain.clock import Clock, SystemClock
from payout_kernel.exceptions import LockNotAcquiredError
from payout_kernel.logging_config import get_logger
from payout_kernel.models.lock import DistributedLockModel
from payout_kernel.utils.datetimes import as_utc

logger = get_logger("services.lock")

T = TypeVar("T")

DEFAULT_LOCK_TTL_SECONDS = 300


def default_lock_owner() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid4().hex[:8]}"


class LockService:
    """Acquire/release named locks in shared storage."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        owner: str | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._owner = owner or default_lock_owner()

    @property
    def owner(self) -> str:
        return self._owner

    def acquire(self, key: str, ttl_seconds: int = DEFAULT_LOCK_TTL_SECONDS) -> bool:
        """Try to take ``key`` for ``ttl_seconds``.  Never blocks."""
        try:
            with transaction_scope(self._session_factory, "lock_acquire") as session:
                acquired = self._try_acquire(session, key, ttl_seconds)
        except IntegrityError:
            acquired = False

        logger.info(
            "lock_acquired" if acquired else "lock_contended",
            extra={"lock_key": key, "owner": self._owner, "ttl_seconds": ttl_seconds},
        )
        return acquired

    def release(self, key: str) -> bool:
        """Release ``key`` if this instance owns it.  Returns True if released."""
        with transaction_scope(self._session_factory, "lock_release") as session:
            result = session.execute(
                delete(DistributedLockModel).where(
                    DistributedLockModel.lock_key == key,
                    DistributedLockModel.owner == self._owner,
                )
            )
            released = result.rowcount > 0

        logger.info(
            "lock_released" if released else "lock_release_skipped",
            extra={"lock_key": key, "owner": self._owner},
        )
        return released

    def is_locked(self, key: str) -> bool:
        """True if ``key`` is held by anyone and not expired."""
        session = self._session_factory()
        try:
            row = session.execute(
                select(DistributedLockModel).where(DistributedLockModel.lock_key == key)
            ).scalar_one_or_none()
            return row is not None and as_utc(row.expires_at) > self._clock.now_utc()
        finally:
            session.close()

    @contextmanager
    def hold(
        self, key: str, ttl_seconds: int = DEFAULT_LOCK_TTL_SECONDS,
    ) -> Generator[None, None, None]:
        """Hold ``key`` for the body.

        Raises:
            LockNotAcquiredError: If the lock is held elsewhere.
        """
        if not self.acquire(key, ttl_seconds):
            raise LockNotAcquiredError(key)
        try:
            yield
        finally:
            self.release(key)

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _try_acquire(self, session: Session, key: str, ttl_seconds: int) -> bool:
        now = self._clock.now_utc()
        expires_at = now + timedelta(seconds=ttl_seconds)

        existing = session.execute(
            select(DistributedLockModel)
            .where(DistributedLockModel.lock_key == key)
            .with_for_update()
        ).scalar_one_or_none()

        if existing is None:
            session.add(DistributedLockModel(
                lock_key=key,
                owner=self._owner,
                acquired_at=now,
                expires_at=expires_at,
            ))
            session.flush()
            return True

        if as_utc(existing.expires_at) > now:
            return False

        logger.warning(
            "lock_expired_takeover",
            extra={"lock_key": key, "previous_owner": existing.owner, "owner": self._owner},
        )
        existing.owner = self._owner
        existing.acquired_at = now
        existing.expires_at = expires_at
        return True


def with_lock(
    lock_service: LockService,
    key: str,
    operation: Callable[[], T],
    ttl_seconds: int = DEFAULT_LOCK_TTL_SECONDS,
) -> T | None:
    """Run ``operation`` under ``key``; return None if the lock is held elsewhere."""
    if not lock_service.acquire(key, ttl_seconds):
        logger.info("lock_skip_operation", extra={"lock_key": key})
        return None
    try:
        return operation()
    finally:
        lock_service.release(key)
