"""
Module: payout_kernel.models.price
Responsibility: ORM persistence for monthly share price snapshots written
    by the price adjustment run.
Architecture position: Kernel > Models.  May import from db/base.py only.

A snapshot at the scheduled adjustment instant (+/- 60 seconds) marks the
month's adjustment as done for that company.  At most one snapshot exists
per company and instant.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Numeric, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from payout_kernel.db.base import TrackedBase, UUIDString


class PriceSnapshot(TrackedBase):
    """Share price of a company at one instant."""

    __tablename__ = "price_snapshots"

    __table_args__ = (
        UniqueConstraint("company_id", "snapshot_at", name="uq_price_snapshot_company_time"),
    )

    company_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    previous_price: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    volume: Mapped[Decimal] = mapped_column(
        Numeric(38, 9), default=Decimal("0"), nullable=False,
    )
    performance_score: Mapped[Decimal] = mapped_column(
        Numeric(38, 9), default=Decimal("0"), nullable=False,
    )
    snapshot_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<PriceSnapshot company={self.company_id} {self.price} at {self.snapshot_at}>"
