"""
Settings loader (``payout_config.loader``).

Responsibility
--------------
Reads ``automation.yaml`` and parses it into the frozen dataclasses of
``payout_config.schema``, then validates the result.  Callers go through
``payout_config.get_active_settings()``; this module is its implementation.

Invariants enforced
-------------------
* Every validation failure raises ``ConfigurationError`` naming the field.
* Rates lie in [0, 1]; dividend pool rate + reinvestment rate == 1.
* Batch size, attempts and intervals are positive.
* Every cron expression parses.

Failure modes
-------------
* Missing file -> ``FileNotFoundError`` propagates.
* Malformed YAML -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from payout_batch.domain.schedule import parse_cron
from payout_kernel.exceptions import ConfigurationError
from payout_queue.domain.types import DEFAULT_JOB_POLICIES, BackoffType, JobPolicy, JobType

from payout_config.schema import (
    DEFAULT_SCHEDULES,
    AutomationSettings,
    DividendSettings,
    PriceSettings,
    QueueSettings,
    RetrySettings,
    RevenueSettings,
    ScheduleSettings,
)

_ONE = Decimal("1")
_ZERO = Decimal("0")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML mapping (empty file -> empty dict)."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_decimal(value: Any, field_name: str) -> Decimal:
    """Parse a YAML scalar into Decimal via ``str()``."""
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ConfigurationError(field_name, f"not a number: {value!r}") from None


def parse_retry(data: dict[str, Any]) -> RetrySettings:
    defaults = RetrySettings()
    return RetrySettings(
        max_attempts=int(data.get("max_attempts", defaults.max_attempts)),
        initial_delay_ms=int(data.get("initial_delay_ms", defaults.initial_delay_ms)),
        max_delay_ms=int(data.get("max_delay_ms", defaults.max_delay_ms)),
        backoff_multiplier=float(data.get("backoff_multiplier", defaults.backoff_multiplier)),
        retryable_errors=tuple(data.get("retryable_errors", defaults.retryable_errors)),
    )


def parse_revenue(data: dict[str, Any]) -> RevenueSettings:
    defaults = RevenueSettings()
    return RevenueSettings(
        platform_fee_rate=parse_decimal(
            data.get("platform_fee_rate", defaults.platform_fee_rate), "revenue.platform_fee_rate",
        ),
        dividend_pool_rate=parse_decimal(
            data.get("dividend_pool_rate", defaults.dividend_pool_rate), "revenue.dividend_pool_rate",
        ),
        reinvestment_rate=parse_decimal(
            data.get("reinvestment_rate", defaults.reinvestment_rate), "revenue.reinvestment_rate",
        ),
        fetch_retry=parse_retry(data.get("fetch_retry", {})),
    )


def parse_dividend(data: dict[str, Any]) -> DividendSettings:
    defaults = DividendSettings()
    return DividendSettings(
        minimum_payout=parse_decimal(
            data.get("minimum_payout", defaults.minimum_payout), "dividend.minimum_payout",
        ),
        batch_size=int(data.get("batch_size", defaults.batch_size)),
        notifications_enabled=bool(data.get("notifications_enabled", defaults.notifications_enabled)),
    )


def parse_price(data: dict[str, Any]) -> PriceSettings:
    defaults = PriceSettings()
    weights = data.get("weights", {})
    return PriceSettings(
        revenue_growth_weight=parse_decimal(
            weights.get("revenue_growth", defaults.revenue_growth_weight), "price.weights.revenue_growth",
        ),
        profit_margin_weight=parse_decimal(
            weights.get("profit_margin", defaults.profit_margin_weight), "price.weights.profit_margin",
        ),
        volume_weight=parse_decimal(
            weights.get("volume", defaults.volume_weight), "price.weights.volume",
        ),
        dividend_weight=parse_decimal(
            weights.get("dividend", defaults.dividend_weight), "price.weights.dividend",
        ),
        volume_score_cap=parse_decimal(
            data.get("volume_score_cap", defaults.volume_score_cap), "price.volume_score_cap",
        ),
        dividend_score_cap=parse_decimal(
            data.get("dividend_score_cap", defaults.dividend_score_cap), "price.dividend_score_cap",
        ),
        max_change=parse_decimal(data.get("max_change", defaults.max_change), "price.max_change"),
        dividend_lookback_months=int(
            data.get("dividend_lookback_months", defaults.dividend_lookback_months),
        ),
        snapshot_hour=int(data.get("snapshot_hour", defaults.snapshot_hour)),
        snapshot_window_seconds=int(
            data.get("snapshot_window_seconds", defaults.snapshot_window_seconds),
        ),
    )


def parse_job_policy(job_type: JobType, data: dict[str, Any]) -> JobPolicy:
    base = DEFAULT_JOB_POLICIES[job_type]
    try:
        return JobPolicy(
            concurrency=int(data.get("concurrency", base.concurrency)),
            max_attempts=int(data.get("max_attempts", base.max_attempts)),
            backoff_delay_ms=int(data.get("backoff_delay_ms", base.backoff_delay_ms)),
            backoff_type=BackoffType(data.get("backoff_type", base.backoff_type.value)),
            priority=int(data.get("priority", base.priority)),
        )
    except ValueError as exc:
        raise ConfigurationError(f"queue.policies.{job_type.value}", str(exc)) from exc


def parse_queue(data: dict[str, Any]) -> QueueSettings:
    defaults = QueueSettings()
    policies = dict(DEFAULT_JOB_POLICIES)
    for raw_type, policy_data in (data.get("policies") or {}).items():
        try:
            job_type = JobType(raw_type)
        except ValueError:
            raise ConfigurationError(
                "queue.policies", f"unknown job type {raw_type!r}",
            ) from None
        policies[job_type] = parse_job_policy(job_type, policy_data or {})

    return QueueSettings(
        queue_name=str(data.get("queue_name", defaults.queue_name)),
        stall_timeout_seconds=int(data.get("stall_timeout_seconds", defaults.stall_timeout_seconds)),
        max_stalled_count=int(data.get("max_stalled_count", defaults.max_stalled_count)),
        max_failed_jobs=int(data.get("max_failed_jobs", defaults.max_failed_jobs)),
        keep_completed=int(data.get("keep_completed", defaults.keep_completed)),
        keep_failed=int(data.get("keep_failed", defaults.keep_failed)),
        poll_interval_seconds=float(data.get("poll_interval_seconds", defaults.poll_interval_seconds)),
        policies=policies,
    )


def parse_schedules(data: list[dict[str, Any]] | None) -> tuple[ScheduleSettings, ...]:
    if not data:
        return DEFAULT_SCHEDULES
    return tuple(
        ScheduleSettings(
            job_name=item["job_name"],
            cron_expression=item["cron"],
            is_active=bool(item.get("is_active", True)),
            description=item.get("description", ""),
        )
        for item in data
    )


def parse_settings(data: dict[str, Any]) -> AutomationSettings:
    """Parse a loaded YAML mapping into AutomationSettings (no validation)."""
    defaults = AutomationSettings()
    return AutomationSettings(
        database_url=str(data.get("database_url", defaults.database_url)),
        lock_ttl_seconds=int(data.get("lock_ttl_seconds", defaults.lock_ttl_seconds)),
        scheduler_tick_seconds=int(data.get("scheduler_tick_seconds", defaults.scheduler_tick_seconds)),
        revenue=parse_revenue(data.get("revenue") or {}),
        dividend=parse_dividend(data.get("dividend") or {}),
        price=parse_price(data.get("price") or {}),
        queue=parse_queue(data.get("queue") or {}),
        schedules=parse_schedules(data.get("schedules")),
    )


# =============================================================================
# Validation
# =============================================================================


def _check_rate(value: Decimal, field_name: str) -> None:
    if value < _ZERO or value > _ONE:
        raise ConfigurationError(field_name, f"must be within [0, 1], got {value}")


def _check_positive(value: int | float, field_name: str) -> None:
    if value <= 0:
        raise ConfigurationError(field_name, f"must be positive, got {value}")


def validate_settings(settings: AutomationSettings) -> AutomationSettings:
    """Validate parsed settings.  Returns them unchanged.

    Raises:
        ConfigurationError: On the first invalid field.
    """
    revenue = settings.revenue
    _check_rate(revenue.platform_fee_rate, "revenue.platform_fee_rate")
    _check_rate(revenue.dividend_pool_rate, "revenue.dividend_pool_rate")
    _check_rate(revenue.reinvestment_rate, "revenue.reinvestment_rate")
    if revenue.dividend_pool_rate + revenue.reinvestment_rate != _ONE:
        raise ConfigurationError(
            "revenue.dividend_pool_rate",
            "dividend_pool_rate + reinvestment_rate must equal 1, got "
            f"{revenue.dividend_pool_rate + revenue.reinvestment_rate}",
        )
    try:
        revenue.fetch_retry.to_policy()
    except ValueError as exc:
        raise ConfigurationError("revenue.fetch_retry", str(exc)) from exc

    _check_positive(settings.dividend.batch_size, "dividend.batch_size")
    if settings.dividend.minimum_payout < _ZERO:
        raise ConfigurationError(
            "dividend.minimum_payout", f"must not be negative, got {settings.dividend.minimum_payout}",
        )

    _check_rate(settings.price.max_change, "price.max_change")
    _check_positive(settings.price.dividend_lookback_months, "price.dividend_lookback_months")

    _check_positive(settings.lock_ttl_seconds, "lock_ttl_seconds")
    _check_positive(settings.scheduler_tick_seconds, "scheduler_tick_seconds")
    _check_positive(settings.queue.stall_timeout_seconds, "queue.stall_timeout_seconds")
    _check_positive(settings.queue.max_failed_jobs, "queue.max_failed_jobs")

    seen: set[str] = set()
    for schedule in settings.schedules:
        if schedule.job_name in seen:
            raise ConfigurationError("schedules", f"duplicate job_name {schedule.job_name!r}")
        seen.add(schedule.job_name)
        try:
            parse_cron(schedule.cron_expression)
        except ValueError as exc:
            raise ConfigurationError(f"schedules.{schedule.job_name}.cron", str(exc)) from exc

    return settings


def load_settings(path: Path) -> AutomationSettings:
    """Load, parse and validate a settings file."""
    return validate_settings(parse_settings(load_yaml_file(path)))
