"""
Monthly automation engines: revenue calculation, dividend distribution
and share price adjustment, plus the queue job handlers that drive
queued distributions.
"""

from payout_automation.collaborators import (
    BankTransactionFetcher,
    FetchedTransaction,
    NotificationSender,
    NullNotificationSender,
    NullPriceBroadcaster,
    PaymentProcessor,
    PriceBroadcaster,
    TradingVolumeSource,
    WalletCredit,
    ZeroVolumeSource,
)
from payout_automation.dividend_distribution import DividendDistributionEngine
from payout_automation.job_processors import build_dispatcher
from payout_automation.price_adjustment import PriceAdjustmentEngine
from payout_automation.revenue_calculation import (
    RevenueCalculationEngine,
    split_revenue,
    summarize_transactions,
)
from payout_automation.types import (
    CompanySnapshot,
    DividendDistributionResult,
    DividendRunResult,
    PayoutApplyResult,
    PriceAdjustmentResult,
    PriceRunResult,
    RevenueCalculationResult,
    RevenueRunResult,
    RevenueSplit,
    UnitOutcome,
)

__all__ = [
    "BankTransactionFetcher",
    "CompanySnapshot",
    "DividendDistributionEngine",
    "DividendDistributionResult",
    "DividendRunResult",
    "FetchedTransaction",
    "NotificationSender",
    "NullNotificationSender",
    "NullPriceBroadcaster",
    "PaymentProcessor",
    "PayoutApplyResult",
    "PriceAdjustmentEngine",
    "PriceAdjustmentResult",
    "PriceBroadcaster",
    "PriceRunResult",
    "RevenueCalculationEngine",
    "RevenueCalculationResult",
    "RevenueRunResult",
    "RevenueSplit",
    "TradingVolumeSource",
    "UnitOutcome",
    "WalletCredit",
    "ZeroVolumeSource",
    "build_dispatcher",
    "split_revenue",
    "summarize_transactions",
]
