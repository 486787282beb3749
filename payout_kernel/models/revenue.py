"""
Module: payout_kernel.models.revenue
Responsibility: ORM persistence for raw bank transactions and the monthly
    per-company revenue report derived from them.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - At most one RevenueReport per (company, month, year)
      (uq_revenue_report_company_period).  This constraint is the
      authoritative idempotency guard of the revenue calculation; the
      existence pre-check is only a fast path.
    - BankTransaction.bank_reference is unique; fetched lines are inserted
      with insert-or-ignore semantics so repeated fetches are safe.
    - A RevenueReport is never mutated by this core after creation.  Only
      the external verification workflow changes verification_status.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Index, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from payout_kernel.db.base import TrackedBase, UUIDString


class ReportVerificationStatus(str, Enum):
    """Verification lifecycle of a revenue report."""

    AUTO_VERIFIED = "auto_verified"
    VERIFIED = "verified"
    REJECTED = "rejected"


DISTRIBUTABLE_STATUSES: frozenset[str] = frozenset({
    ReportVerificationStatus.AUTO_VERIFIED.value,
    ReportVerificationStatus.VERIFIED.value,
})


class TransactionType(str, Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class BankTransaction(TrackedBase):
    """One raw ledger line fetched from a company's bank."""

    __tablename__ = "bank_transactions"

    __table_args__ = (
        UniqueConstraint("bank_reference", name="uq_bank_transaction_reference"),
        Index("idx_bank_transaction_company_date", "company_id", "transaction_date"),
    )

    company_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    bank_reference: Mapped[str] = mapped_column(String(128), nullable=False)
    transaction_date: Mapped[datetime] = mapped_column(nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(10), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    balance_after: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<BankTransaction {self.bank_reference} {self.transaction_type} {self.amount}>"


class RevenueReport(TrackedBase):
    """
    Monthly revenue summary for one company.

    Contract:
        fee = 5% of net revenue, dividend pool = 60% and reinvestment = 40%
        of net profit (rates come from RevenueSettings).  All amounts are
        rounded to cents when the report is built.
    """

    __tablename__ = "revenue_reports"

    __table_args__ = (
        UniqueConstraint(
            "company_id", "report_month", "report_year",
            name="uq_revenue_report_company_period",
        ),
        Index("idx_revenue_report_period", "report_year", "report_month"),
    )

    company_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    report_month: Mapped[int] = mapped_column(Integer, nullable=False)
    report_year: Mapped[int] = mapped_column(Integer, nullable=False)
    period_start: Mapped[datetime] = mapped_column(nullable=False)
    period_end: Mapped[datetime] = mapped_column(nullable=False)

    total_deposits: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    total_withdrawals: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    net_revenue: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    platform_fee: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    net_profit: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    dividend_pool: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    reinvestment_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    transaction_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    verification_status: Mapped[str] = mapped_column(
        String(20),
        default=ReportVerificationStatus.AUTO_VERIFIED.value,
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<RevenueReport company={self.company_id} "
            f"{self.report_year:04d}-{self.report_month:02d} pool={self.dividend_pool}>"
        )

    @property
    def is_distributable(self) -> bool:
        return self.verification_status in DISTRIBUTABLE_STATUSES
