"""ORM models for queue jobs and queue flags."""

from payout_queue.models.job import QueueJobModel, QueueStateModel

__all__ = ["QueueJobModel", "QueueStateModel"]
