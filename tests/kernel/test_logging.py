"""
Tests for payout_kernel.logging_config.

Every record is one JSON line with ts/level/logger/message, the bound
LogContext fields and the structured ``extra`` payload.
"""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from payout_kernel.exceptions import CompanyNotFoundError
from payout_kernel.logging_config import LogContext, StructuredFormatter, get_logger

logger = get_logger("tests.logging")


class TestStructuredFormatter:
    def test_envelope_and_extra(self, captured_logs):
        logger.info("revenue_report_created", extra={"dividend_pool": Decimal("17100.00")})
        record = captured_logs()[-1]
        assert record["message"] == "revenue_report_created"
        assert record["level"] == "INFO"
        assert record["logger"] == "payout_kernel.tests.logging"
        assert record["dividend_pool"] == "17100.00"
        assert "ts" in record

    def test_uuid_values_serialize(self, captured_logs):
        company_id = uuid4()
        logger.info("company_seen", extra={"company": company_id})
        assert captured_logs()[-1]["company"] == str(company_id)

    def test_exception_fields(self, captured_logs):
        try:
            raise CompanyNotFoundError("c-1")
        except CompanyNotFoundError:
            logger.exception("revenue_company_failed")
        record = captured_logs()[-1]
        assert record["exc_type"] == "CompanyNotFoundError"
        assert record["exc_code"] == "COMPANY_NOT_FOUND"
        assert "traceback" in record

    def test_plain_handler_formats_one_line(self):
        stream = StringIO()
        handler = logging.StreamHandler(stream)
        handler.setFormatter(StructuredFormatter())
        plain = logging.getLogger("payout_kernel.tests.plain")
        plain.addHandler(handler)
        try:
            plain.warning("lock_contended", extra={"lock_key": "automation:x"})
        finally:
            plain.removeHandler(handler)
        lines = stream.getvalue().strip().splitlines()
        assert len(lines) >= 1
        assert json.loads(lines[0])["lock_key"] == "automation:x"


class TestLogContext:
    def test_bound_fields_appear_and_are_restored(self, captured_logs):
        job_id = uuid4()
        with LogContext.bind(job_name="DividendDistribution", job_id=job_id):
            logger.info("inside")
        logger.info("outside")

        inside, outside = captured_logs()[-2:]
        assert inside["job_name"] == "DividendDistribution"
        assert inside["job_id"] == str(job_id)
        assert "job_name" not in outside

    def test_nested_bind_restores_outer_value(self):
        with LogContext.bind(company_id="outer"):
            with LogContext.bind(company_id="inner"):
                assert LogContext.get_all()["company_id"] == "inner"
            assert LogContext.get_all()["company_id"] == "outer"
        assert "company_id" not in LogContext.get_all()

    def test_none_values_are_ignored(self):
        with LogContext.bind(report_id=None, dividend_id="d-1"):
            assert LogContext.get_all() == {"dividend_id": "d-1"}

    @pytest.mark.parametrize("field", ["correlation_id", "company_id", "report_id"])
    def test_bind_each_field(self, field):
        with LogContext.bind(**{field: "value"}):
            assert LogContext.get_all() == {field: "value"}
        assert LogContext.get_all() == {}

    def test_unknown_field_is_rejected(self):
        with pytest.raises(KeyError):
            with LogContext.bind(tenant_id="t-1"):
                pass
