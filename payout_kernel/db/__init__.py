"""Database layer - engine, base classes, and transaction scopes."""

from payout_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from payout_kernel.db.engine import create_tables, get_engine, get_session
from payout_kernel.db.transaction import (
    nested_scope,
    run_in_transaction,
    transaction_scope,
)

__all__ = [
    "get_engine",
    "get_session",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "transaction_scope",
    "run_in_transaction",
    "nested_scope",
]
