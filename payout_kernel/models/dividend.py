"""
Module: payout_kernel.models.dividend
Responsibility: ORM persistence for dividends and per-shareholder payouts.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - At most one Dividend per revenue report (uq_dividend_revenue_report).
    - At most one DividendPayout per (dividend, user)
      (uq_dividend_payout_user).  Together with the single transaction that
      writes payout, wallet credit and holding increment, this makes every
      shareholder-dividend credit happen at most once.
    - DividendPayout rows are immutable once created and exist only for
      payouts at or above the minimum threshold.

Lifecycle:
    Dividend is created PROCESSING and becomes COMPLETED once every payout
    is written.  A queued distribution completes when the persisted payout
    count reaches expected_payout_count.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Index, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from payout_kernel.db.base import TrackedBase, UUIDString


class DividendStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class DistributionMode(str, Enum):
    """How payouts were written: in one transaction, or as queued jobs."""

    INLINE = "inline"
    QUEUED = "queued"


class PayoutStatus(str, Enum):
    COMPLETED = "completed"


class PaymentMethod(str, Enum):
    WALLET = "wallet"


class Dividend(TrackedBase):
    """One dividend declared from one revenue report."""

    __tablename__ = "dividends"

    __table_args__ = (
        UniqueConstraint("revenue_report_id", name="uq_dividend_revenue_report"),
        Index("idx_dividend_company", "company_id"),
        Index("idx_dividend_status", "payment_status"),
    )

    company_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    revenue_report_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    report_month: Mapped[int] = mapped_column(Integer, nullable=False)
    report_year: Mapped[int] = mapped_column(Integer, nullable=False)

    total_dividend_pool: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    total_shares_eligible: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    amount_per_share: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    payment_status: Mapped[str] = mapped_column(
        String(20), default=DividendStatus.PROCESSING.value, nullable=False,
    )
    distribution_mode: Mapped[str] = mapped_column(
        String(20), default=DistributionMode.INLINE.value, nullable=False,
    )
    # Set for queued distributions: payouts that must land before COMPLETED
    expected_payout_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    distribution_date: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<Dividend report={self.revenue_report_id} {self.payment_status}>"

    @property
    def is_completed(self) -> bool:
        return self.payment_status == DividendStatus.COMPLETED.value


class DividendPayout(TrackedBase):
    """Amount credited to one shareholder for one dividend."""

    __tablename__ = "dividend_payouts"

    __table_args__ = (
        UniqueConstraint("dividend_id", "user_id", name="uq_dividend_payout_user"),
        Index("idx_dividend_payout_dividend", "dividend_id"),
    )

    dividend_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    user_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    holding_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    shares_held: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    payout_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    payment_method: Mapped[str] = mapped_column(
        String(20), default=PaymentMethod.WALLET.value, nullable=False,
    )
    status: Mapped[str] = mapped_column(
        String(20), default=PayoutStatus.COMPLETED.value, nullable=False,
    )
    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<DividendPayout dividend={self.dividend_id} user={self.user_id} {self.payout_amount}>"
