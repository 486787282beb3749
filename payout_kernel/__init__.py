"""
Payout Kernel - shared infrastructure for the monthly automation pipeline.

Provides:
- Declarative ORM base and persisted models (companies, reports, dividends)
- Transaction wrapper with structured start/commit/rollback logging
- Idempotency predicates backed by storage-level unique constraints
- Retry strategy with exponential backoff
- Storage-backed distributed lock
- Decimal money and calendar period helpers
"""

__version__ = "0.1.0"
