"""
Typed exception hierarchy for the payout pipeline.

Every error carries a machine-readable ``code`` class attribute and keeps
its context as attributes, so callers catch by type and log or serialize
structured data instead of parsing messages.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    PayoutKernelError (base)
    |
    +-- ConfigurationError
    |
    +-- RevenueError
    |   +-- CompanyNotFoundError
    |   +-- RevenueReportNotFoundError
    |   +-- RevenueReportNotVerifiedError
    |
    +-- DividendError
    |   +-- DividendNotFoundError
    |
    +-- ExternalServiceError
    |   +-- BankAuthError
    |   +-- RetryExhaustedError
    |
    +-- ConcurrencyError
    |   +-- LockNotAcquiredError
    |
    +-- QueueError
    |   +-- JobNotFoundError
    |   +-- InvalidJobStateError
    |   +-- UnknownJobTypeError
    |   +-- HandlerNotRegisteredError
    |   +-- QueueClosedError
    |
    +-- AutomationError
        +-- AutomationJobNotFoundError
        +-- ManualJobOptionsError

``BankConnectionError`` is the one transient error in the module.  It
subclasses the builtin ``ConnectionError`` so that the retry helper
classifies it as retryable without a message match.

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                          | When Raised
-------------|-------------------------------|-----------------------------------
Config       | CONFIGURATION_ERROR           | Settings file fails validation
Revenue      | COMPANY_NOT_FOUND             | Manual run for unknown company
             | REVENUE_REPORT_NOT_FOUND      | Manual distribution, unknown report
             | REVENUE_REPORT_NOT_VERIFIED   | Report not auto_verified/verified
Dividend     | DIVIDEND_NOT_FOUND            | Queued payout for unknown dividend
External     | BANK_CONNECTION_ERROR         | Transient bank API failure
             | BANK_AUTH_ERROR               | Permanent bank API auth failure
             | RETRY_EXHAUSTED               | Retryable attempts used up
Concurrency  | LOCK_NOT_ACQUIRED             | Lock held by another owner
Queue        | JOB_NOT_FOUND                 | Job id does not exist
             | INVALID_JOB_STATE             | Transition not allowed from state
             | UNKNOWN_JOB_TYPE              | Payload tag has no variant
             | HANDLER_NOT_REGISTERED        | Dispatcher has no handler for type
             | QUEUE_CLOSED                  | Operation after close()
Automation   | AUTOMATION_JOB_NOT_FOUND      | Unknown scheduled job name
             | MANUAL_JOB_OPTIONS_INVALID    | Manual trigger missing an id
"""

from __future__ import annotations

from typing import Sequence


class PayoutKernelError(Exception):
    """
    Base exception for all payout pipeline errors.

    All subclasses must have a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "PAYOUT_KERNEL_ERROR"


class ConfigurationError(PayoutKernelError):
    """Automation settings failed validation."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid configuration for {field}: {reason}")


# Revenue-related exceptions


class RevenueError(PayoutKernelError):
    """Base exception for revenue calculation errors."""

    code: str = "REVENUE_ERROR"


class CompanyNotFoundError(RevenueError):
    """Company with given ID was not found."""

    code: str = "COMPANY_NOT_FOUND"

    def __init__(self, company_id: str):
        self.company_id = company_id
        super().__init__(f"Company not found: {company_id}")


class RevenueReportNotFoundError(RevenueError):
    """Revenue report with given ID was not found."""

    code: str = "REVENUE_REPORT_NOT_FOUND"

    def __init__(self, revenue_report_id: str):
        self.revenue_report_id = revenue_report_id
        super().__init__(f"Revenue report not found: {revenue_report_id}")


class RevenueReportNotVerifiedError(RevenueError):
    """Revenue report is not in a distributable verification status."""

    code: str = "REVENUE_REPORT_NOT_VERIFIED"

    def __init__(self, revenue_report_id: str, verification_status: str):
        self.revenue_report_id = revenue_report_id
        self.verification_status = verification_status
        super().__init__(f"Revenue report not verified: {verification_status}")


# Dividend-related exceptions


class DividendError(PayoutKernelError):
    """Base exception for dividend distribution errors."""

    code: str = "DIVIDEND_ERROR"


class DividendNotFoundError(DividendError):
    """Dividend with given ID was not found."""

    code: str = "DIVIDEND_NOT_FOUND"

    def __init__(self, dividend_id: str):
        self.dividend_id = dividend_id
        super().__init__(f"Dividend not found: {dividend_id}")


# External service exceptions


class ExternalServiceError(PayoutKernelError):
    """Base exception for collaborator failures."""

    code: str = "EXTERNAL_SERVICE_ERROR"


class BankConnectionError(ConnectionError):
    """Transient bank API failure (reset, timeout, refused).

    Subclasses the builtin ``ConnectionError`` so it is retryable by type.
    """

    code: str = "BANK_CONNECTION_ERROR"

    def __init__(self, account_identifier: str, reason: str):
        self.account_identifier = account_identifier
        self.reason = reason
        super().__init__(f"Bank API unavailable for {account_identifier}: {reason}")


class BankAuthError(ExternalServiceError):
    """Permanent bank API authorization failure. Never retried."""

    code: str = "BANK_AUTH_ERROR"

    def __init__(self, account_identifier: str, reason: str):
        self.account_identifier = account_identifier
        self.reason = reason
        super().__init__(f"Bank API rejected credentials for {account_identifier}: {reason}")


class RetryExhaustedError(ExternalServiceError):
    """A retryable operation failed on every allowed attempt."""

    code: str = "RETRY_EXHAUSTED"

    def __init__(self, operation_name: str, attempts: int, last_error: BaseException):
        self.operation_name = operation_name
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"{operation_name} failed after {attempts} attempts: {last_error}"
        )


# Concurrency exceptions


class ConcurrencyError(PayoutKernelError):
    """Base exception for concurrency conflicts."""

    code: str = "CONCURRENCY_ERROR"


class LockNotAcquiredError(ConcurrencyError):
    """Distributed lock is held by another owner."""

    code: str = "LOCK_NOT_ACQUIRED"

    def __init__(self, lock_key: str, holder: str | None = None):
        self.lock_key = lock_key
        self.holder = holder
        super().__init__(f"Lock not acquired: {lock_key}")


# Queue exceptions


class QueueError(PayoutKernelError):
    """Base exception for job queue errors."""

    code: str = "QUEUE_ERROR"


class JobNotFoundError(QueueError):
    """Queue job with given ID was not found."""

    code: str = "JOB_NOT_FOUND"

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class InvalidJobStateError(QueueError):
    """Requested transition is not valid from the job's current state."""

    code: str = "INVALID_JOB_STATE"

    def __init__(self, job_id: str, state: str, operation: str):
        self.job_id = job_id
        self.state = state
        self.operation = operation
        super().__init__(f"Cannot {operation} job {job_id} in state {state}")


class UnknownJobTypeError(QueueError):
    """Persisted job type has no payload variant."""

    code: str = "UNKNOWN_JOB_TYPE"

    def __init__(self, job_type: str):
        self.job_type = job_type
        super().__init__(f"Unknown job type: {job_type}")


class HandlerNotRegisteredError(QueueError):
    """Dispatcher has no handler for a job type."""

    code: str = "HANDLER_NOT_REGISTERED"

    def __init__(self, job_type: str, registered: Sequence[str] = ()):
        self.job_type = job_type
        self.registered = list(registered)
        super().__init__(
            f"No handler registered for job type {job_type}; "
            f"registered: {', '.join(self.registered) or 'none'}"
        )


class QueueClosedError(QueueError):
    """Queue was used after close()."""

    code: str = "QUEUE_CLOSED"

    def __init__(self, queue_name: str):
        self.queue_name = queue_name
        super().__init__(f"Queue is closed: {queue_name}")


# Automation exceptions


class AutomationError(PayoutKernelError):
    """Base exception for scheduler and orchestration errors."""

    code: str = "AUTOMATION_ERROR"


class AutomationJobNotFoundError(AutomationError):
    """Scheduled job name is not registered."""

    code: str = "AUTOMATION_JOB_NOT_FOUND"

    def __init__(self, job_name: str, available: Sequence[str] = ()):
        self.job_name = job_name
        self.available = list(available)
        super().__init__(f"Unknown automation job: {job_name}")


class ManualJobOptionsError(AutomationError):
    """Manual trigger is missing a required option."""

    code: str = "MANUAL_JOB_OPTIONS_INVALID"

    def __init__(self, job_type: str, message: str):
        self.job_type = job_type
        super().__init__(message)
