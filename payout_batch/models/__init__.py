"""
payout_batch.models -- ORM models for run history and schedules.

Architecture: payout_batch/models. Imports from payout_kernel.db.base only.
"""

from payout_batch.models.run import AutomationRunModel, JobScheduleModel

__all__ = [
    "AutomationRunModel",
    "JobScheduleModel",
]
