"""SQLAlchemy ORM models for the payout kernel."""

from payout_kernel.models.company import (
    Company,
    CompanyVerificationStatus,
    ListingStatus,
    StockHolding,
    UserWallet,
)
from payout_kernel.models.dividend import (
    DistributionMode,
    Dividend,
    DividendPayout,
    DividendStatus,
    PaymentMethod,
    PayoutStatus,
)
from payout_kernel.models.lock import DistributedLockModel
from payout_kernel.models.price import PriceSnapshot
from payout_kernel.models.revenue import (
    DISTRIBUTABLE_STATUSES,
    BankTransaction,
    ReportVerificationStatus,
    RevenueReport,
    TransactionType,
)

__all__ = [
    "Company",
    "CompanyVerificationStatus",
    "ListingStatus",
    "StockHolding",
    "UserWallet",
    "DistributionMode",
    "Dividend",
    "DividendPayout",
    "DividendStatus",
    "PaymentMethod",
    "PayoutStatus",
    "DistributedLockModel",
    "PriceSnapshot",
    "DISTRIBUTABLE_STATUSES",
    "BankTransaction",
    "ReportVerificationStatus",
    "RevenueReport",
    "TransactionType",
]
