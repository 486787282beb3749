"""
Module: payout_kernel.models.company
Responsibility: ORM persistence for listed companies, shareholder holdings
    and user wallets -- the inputs and the two shared mutable balances of
    the dividend pipeline.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - total_shares > 0 (CHECK constraint); per-share division never divides
      by zero.
    - One StockHolding per (user, company) (uq_holding_user_company).
    - One UserWallet per user (uq_wallet_user).
    - StockHolding.total_dividends_earned and UserWallet.balance are only
      ever incremented by this core, inside a transaction.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Index,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from payout_kernel.db.base import TrackedBase, UUIDString


class ListingStatus(str, Enum):
    """Marketplace listing lifecycle of a company."""

    PENDING = "pending"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    DELISTED = "delisted"


class CompanyVerificationStatus(str, Enum):
    """Outcome of the external company verification workflow."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Company(TrackedBase):
    """
    A listed company whose monthly revenue funds dividends.

    Only companies that are ACTIVE and APPROVED take part in monthly runs.
    """

    __tablename__ = "companies"

    __table_args__ = (
        CheckConstraint("total_shares > 0", name="ck_company_total_shares_positive"),
        Index("idx_company_status", "listing_status", "verification_status"),
    )

    business_name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Bank linkage: account number plus a flag set by the bank OAuth flow
    bank_account_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    bank_api_connected: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False,
    )

    total_shares: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    current_price: Mapped[Decimal] = mapped_column(
        Numeric(38, 9), default=Decimal("0"), nullable=False,
    )

    listing_status: Mapped[str] = mapped_column(
        String(20), default=ListingStatus.PENDING.value, nullable=False,
    )
    verification_status: Mapped[str] = mapped_column(
        String(20), default=CompanyVerificationStatus.PENDING.value, nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Company {self.business_name} ({self.listing_status})>"

    @property
    def is_eligible(self) -> bool:
        """Active and approved."""
        return (
            self.listing_status == ListingStatus.ACTIVE.value
            and self.verification_status == CompanyVerificationStatus.APPROVED.value
        )

    @property
    def bank_account_identifier(self) -> str:
        """Identifier handed to the bank fetch collaborator."""
        return self.bank_account_number or str(self.id)


class StockHolding(TrackedBase):
    """Shares a user owns in one company, plus lifetime dividends received."""

    __tablename__ = "stock_holdings"

    __table_args__ = (
        UniqueConstraint("user_id", "company_id", name="uq_holding_user_company"),
        Index("idx_holding_company_created", "company_id", "created_at"),
    )

    user_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    company_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    shares_owned: Mapped[Decimal] = mapped_column(
        Numeric(38, 9), default=Decimal("0"), nullable=False,
    )
    total_dividends_earned: Mapped[Decimal] = mapped_column(
        Numeric(38, 9), default=Decimal("0"), nullable=False,
    )

    def __repr__(self) -> str:
        return f"<StockHolding user={self.user_id} company={self.company_id} shares={self.shares_owned}>"


class UserWallet(TrackedBase):
    """Fiat wallet balance credited by dividend payouts."""

    __tablename__ = "user_wallets"

    __table_args__ = (
        UniqueConstraint("user_id", name="uq_wallet_user"),
    )

    user_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    balance: Mapped[Decimal] = mapped_column(
        Numeric(38, 9), default=Decimal("0"), nullable=False,
    )
    last_credited_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<UserWallet user={self.user_id} balance={self.balance}>"
