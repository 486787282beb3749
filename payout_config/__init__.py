"""
payout_config -- single public entrypoint for automation settings.

Responsibility:
    ``get_active_settings()`` is the only way runtime code obtains
    configuration.  Engines, the queue and the scheduler receive the
    sub-settings they need by injection and never read files or
    environment variables themselves.

Failure modes:
    - ``FileNotFoundError`` -- settings file missing.
    - ``ConfigurationError`` -- a value failed validation.
"""

from __future__ import annotations

from pathlib import Path

from payout_kernel.logging_config import get_logger

from payout_config.loader import load_settings
from payout_config.schema import (
    DIVIDEND_JOB,
    PRICE_JOB,
    REVENUE_JOB,
    AutomationSettings,
    DividendSettings,
    PriceSettings,
    QueueSettings,
    RetrySettings,
    RevenueSettings,
    ScheduleSettings,
)

_logger = get_logger("config")

_DEFAULT_SETTINGS_PATH = Path(__file__).parent / "sets" / "automation.yaml"


def get_active_settings(path: Path | str | None = None) -> AutomationSettings:
    """Load and validate the automation settings.

    Args:
        path: Settings file.  Defaults to payout_config/sets/automation.yaml.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigurationError: If validation fails.
    """
    settings_path = Path(path) if path is not None else _DEFAULT_SETTINGS_PATH
    settings = load_settings(settings_path)

    _logger.info(
        "payout_config_loaded",
        extra={
            "path": str(settings_path),
            "queue_name": settings.queue.queue_name,
            "schedules": [s.job_name for s in settings.schedules],
            "batch_size": settings.dividend.batch_size,
        },
    )
    return settings


__all__ = [
    "DIVIDEND_JOB",
    "PRICE_JOB",
    "REVENUE_JOB",
    "AutomationSettings",
    "DividendSettings",
    "PriceSettings",
    "QueueSettings",
    "RetrySettings",
    "RevenueSettings",
    "ScheduleSettings",
    "get_active_settings",
]
