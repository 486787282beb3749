"""
Module: payout_kernel.models.lock
Responsibility: Storage row backing the distributed lock.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - lock_key is unique: at most one holder per key at any time.  An
      expired row may be taken over by a new owner.
"""

from datetime import datetime

from sqlalchemy import String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from payout_kernel.db.base import TrackedBase


class DistributedLockModel(TrackedBase):
    """A held (or expired) named lock."""

    __tablename__ = "distributed_locks"

    __table_args__ = (
        UniqueConstraint("lock_key", name="uq_distributed_lock_key"),
    )

    lock_key: Mapped[str] = mapped_column(String(200), nullable=False)
    owner: Mapped[str] = mapped_column(String(200), nullable=False)
    acquired_at: Mapped[datetime] = mapped_column(nullable=False)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<DistributedLock {self.lock_key} owner={self.owner}>"
