"""
Tests for payout_config: the shipped automation.yaml, YAML parsing into the
frozen settings dataclasses, and validation.
"""

from dataclasses import FrozenInstanceError, replace
from decimal import Decimal

import pytest
import yaml

from payout_config import get_active_settings
from payout_config.loader import parse_settings, validate_settings
from payout_config.schema import (
    DEFAULT_SCHEDULES,
    DIVIDEND_JOB,
    PRICE_JOB,
    REVENUE_JOB,
    AutomationSettings,
    RevenueSettings,
    ScheduleSettings,
)
from payout_kernel.exceptions import ConfigurationError
from payout_queue.domain.types import DEFAULT_JOB_POLICIES, BackoffType, JobType


def _write(tmp_path, data) -> str:
    path = tmp_path / "automation.yaml"
    path.write_text(yaml.safe_dump(data))
    return str(path)


class TestShippedSettings:
    def test_loads_and_matches_defaults(self):
        settings = get_active_settings()
        defaults = AutomationSettings()

        assert settings.revenue == defaults.revenue
        assert settings.dividend == defaults.dividend
        assert settings.price == defaults.price
        assert settings.schedules == DEFAULT_SCHEDULES
        assert settings.queue.policies == DEFAULT_JOB_POLICIES

    def test_monthly_schedules(self):
        settings = get_active_settings()
        assert settings.schedule_for(REVENUE_JOB).cron_expression == "0 0 1 * *"
        assert settings.schedule_for(DIVIDEND_JOB).cron_expression == "0 2 1 * *"
        assert settings.schedule_for(PRICE_JOB).cron_expression == "0 3 1 * *"
        assert settings.schedule_for("Unknown") is None

    def test_load_is_logged(self, captured_logs):
        get_active_settings()
        [record] = [r for r in captured_logs() if r["message"] == "payout_config_loaded"]
        assert record["queue_name"] == "dividends"
        assert record["batch_size"] == 100

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_settings(tmp_path / "absent.yaml")


class TestParsing:
    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "automation.yaml"
        path.write_text("")
        assert get_active_settings(path) == AutomationSettings()

    def test_rates_parsed_as_decimal(self):
        settings = parse_settings({"revenue": {"platform_fee_rate": 0.1}})
        assert settings.revenue.platform_fee_rate == Decimal("0.1")
        assert isinstance(settings.revenue.platform_fee_rate, Decimal)

    def test_price_weights(self):
        settings = parse_settings({"price": {"weights": {"volume": "0.25"}, "max_change": "0.1"}})
        assert settings.price.volume_weight == Decimal("0.25")
        assert settings.price.revenue_growth_weight == Decimal("0.4")
        assert settings.price.max_change == Decimal("0.1")

    def test_queue_policy_override_keeps_other_defaults(self):
        settings = parse_settings({
            "queue": {"policies": {"dividend.payout": {"concurrency": 4, "backoff_type": "fixed"}}},
        })
        payout = settings.queue.policies[JobType.PAYOUT]
        assert payout.concurrency == 4
        assert payout.backoff_type == BackoffType.FIXED
        assert payout.max_attempts == DEFAULT_JOB_POLICIES[JobType.PAYOUT].max_attempts
        assert settings.queue.policies[JobType.NOTIFICATION] == DEFAULT_JOB_POLICIES[JobType.NOTIFICATION]

    def test_unknown_job_type_policy(self):
        with pytest.raises(ConfigurationError) as exc_info:
            parse_settings({"queue": {"policies": {"dividend.bonus": {}}}})
        assert exc_info.value.field == "queue.policies"

    def test_invalid_policy_value(self):
        with pytest.raises(ConfigurationError) as exc_info:
            parse_settings({"queue": {"policies": {"dividend.payout": {"concurrency": 0}}}})
        assert exc_info.value.field == "queue.policies.dividend.payout"

    def test_schedules_use_cron_key(self):
        settings = parse_settings({
            "schedules": [{"job_name": REVENUE_JOB, "cron": "15 1 1 * *", "is_active": False}],
        })
        assert settings.schedules == (
            ScheduleSettings(job_name=REVENUE_JOB, cron_expression="15 1 1 * *", is_active=False),
        )

    def test_not_a_number(self):
        with pytest.raises(ConfigurationError, match="dividend.minimum_payout"):
            parse_settings({"dividend": {"minimum_payout": "one cent"}})

    def test_settings_are_frozen(self):
        with pytest.raises(FrozenInstanceError):
            AutomationSettings().lock_ttl_seconds = 1  # type: ignore[misc]

    def test_retry_policy_from_yaml(self, tmp_path):
        path = _write(tmp_path, {"revenue": {"fetch_retry": {"max_attempts": 5, "initial_delay_ms": 250}}})
        policy = get_active_settings(path).revenue.fetch_retry.to_policy()
        assert policy.max_attempts == 5
        assert policy.initial_delay_ms == 250


class TestValidation:
    def test_defaults_are_valid(self):
        assert validate_settings(AutomationSettings()) == AutomationSettings()

    def test_pool_and_reinvestment_must_sum_to_one(self, tmp_path):
        path = _write(tmp_path, {"revenue": {"dividend_pool_rate": "0.70"}})
        with pytest.raises(ConfigurationError) as exc_info:
            get_active_settings(path)
        assert exc_info.value.field == "revenue.dividend_pool_rate"

    @pytest.mark.parametrize("revenue,field", [
        (RevenueSettings(platform_fee_rate=Decimal("1.5")), "revenue.platform_fee_rate"),
        (RevenueSettings(platform_fee_rate=Decimal("-0.01")), "revenue.platform_fee_rate"),
        (
            RevenueSettings(dividend_pool_rate=Decimal("1.2"), reinvestment_rate=Decimal("-0.2")),
            "revenue.dividend_pool_rate",
        ),
    ])
    def test_rates_within_unit_interval(self, revenue, field):
        with pytest.raises(ConfigurationError) as exc_info:
            validate_settings(replace(AutomationSettings(), revenue=revenue))
        assert exc_info.value.field == field

    def test_invalid_retry_policy(self):
        data = {"revenue": {"fetch_retry": {"max_attempts": 0}}}
        with pytest.raises(ConfigurationError, match="revenue.fetch_retry"):
            validate_settings(parse_settings(data))

    @pytest.mark.parametrize("data,field", [
        ({"dividend": {"batch_size": 0}}, "dividend.batch_size"),
        ({"dividend": {"minimum_payout": "-0.01"}}, "dividend.minimum_payout"),
        ({"price": {"max_change": "1.5"}}, "price.max_change"),
        ({"lock_ttl_seconds": 0}, "lock_ttl_seconds"),
        ({"scheduler_tick_seconds": -1}, "scheduler_tick_seconds"),
        ({"queue": {"stall_timeout_seconds": 0}}, "queue.stall_timeout_seconds"),
    ])
    def test_invalid_values(self, data, field):
        with pytest.raises(ConfigurationError) as exc_info:
            validate_settings(parse_settings(data))
        assert exc_info.value.field == field

    def test_duplicate_schedule_names(self):
        data = {"schedules": [
            {"job_name": REVENUE_JOB, "cron": "0 0 1 * *"},
            {"job_name": REVENUE_JOB, "cron": "0 1 1 * *"},
        ]}
        with pytest.raises(ConfigurationError, match="duplicate job_name"):
            validate_settings(parse_settings(data))

    def test_bad_cron(self, tmp_path):
        path = _write(tmp_path, {"schedules": [{"job_name": PRICE_JOB, "cron": "0 3 1 *"}]})
        with pytest.raises(ConfigurationError) as exc_info:
            get_active_settings(path)
        assert exc_info.value.field == "schedules.StockPriceAdjustment.cron"
        assert exc_info.value.code == "CONFIGURATION_ERROR"
