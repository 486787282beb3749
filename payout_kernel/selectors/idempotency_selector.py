"""
IdempotencySelector -- "has this unit of work already been done?" predicates.

Contract:
    Pure reads over persisted state.  Each predicate is a fast path in front
    of a storage-level unique constraint; a False answer does not guarantee
    that a concurrent writer will not win the insert, so writers must still
    treat a unique violation as a benign duplicate.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import select

from payout_kernel.models.dividend import Dividend, DividendPayout
from payout_kernel.models.price import PriceSnapshot
from payout_kernel.models.revenue import RevenueReport
from payout_kernel.selectors.base import BaseSelector

PRICE_SNAPSHOT_WINDOW = timedelta(seconds=60)


class IdempotencySelector(BaseSelector):
    """Existence checks for revenue reports, dividends, payouts and prices."""

    def revenue_report_exists(self, company_id: UUID, month: int, year: int) -> bool:
        return self.find_revenue_report_id(company_id, month, year) is not None

    def find_revenue_report_id(
        self, company_id: UUID, month: int, year: int,
    ) -> UUID | None:
        return self.session.execute(
            select(RevenueReport.id).where(
                RevenueReport.company_id == company_id,
                RevenueReport.report_month == month,
                RevenueReport.report_year == year,
            )
        ).scalar_one_or_none()

    def dividend_exists(self, revenue_report_id: UUID) -> bool:
        return self.find_dividend_id(revenue_report_id) is not None

    def find_dividend_id(self, revenue_report_id: UUID) -> UUID | None:
        return self.session.execute(
            select(Dividend.id).where(
                Dividend.revenue_report_id == revenue_report_id,
            )
        ).scalar_one_or_none()

    def payout_exists(self, dividend_id: UUID, user_id: UUID) -> bool:
        return self.session.execute(
            select(DividendPayout.id).where(
                DividendPayout.dividend_id == dividend_id,
                DividendPayout.user_id == user_id,
            )
        ).first() is not None

    def price_snapshot_exists(
        self,
        company_id: UUID,
        at: datetime,
        window: timedelta = PRICE_SNAPSHOT_WINDOW,
    ) -> bool:
        """True if a snapshot was recorded within ``window`` either side of ``at``."""
        return self.session.execute(
            select(PriceSnapshot.id).where(
                PriceSnapshot.company_id == company_id,
                PriceSnapshot.snapshot_at >= at - window,
                PriceSnapshot.snapshot_at <= at + window,
            ).limit(1)
        ).first() is not None
