"""
Observability Validation Test

This test validates the logging stack:
1. Correlation context merges and resets around a service call
2. JSON and human-readable formatters include correlation IDs
3. Extra fields from operation helpers reach the log record
4. Assignment calls log with the organization id attached
"""

import asyncio
import json
import logging

from core.observability.logging import (
    CorrelationContext,
    HumanReadableFormatter,
    StructuredFormatter,
    configure_logging,
    get_correlation_context,
    get_logger,
    log_operation_complete,
    with_correlation,
)


class CaptureHandler(logging.Handler):
    """Collects records for assertions."""

    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append((record, get_correlation_context()))


def make_record(msg="Test message"):
    return logging.LogRecord(
        name="test",
        level=logging.INFO,
        pathname="test.py",
        lineno=10,
        msg=msg,
        args=(),
        exc_info=None,
    )


class TestCorrelationContext:
    """Correlation IDs."""

    def test_merge_ignores_none(self):
        ctx = CorrelationContext(organization_id="org-1")
        merged = ctx.merge(operation="assign_template", rule_id=None)
        assert merged.to_dict() == {"organization_id": "org-1", "operation": "assign_template"}
        assert ctx.operation is None

    def test_with_correlation_nests_and_resets(self):
        assert get_correlation_context().organization_id is None

        with with_correlation(organization_id="org-1"):
            with with_correlation(rule_id="lock_after_go_live") as inner:
                assert inner.organization_id == "org-1"
                assert inner.rule_id == "lock_after_go_live"
            assert get_correlation_context().rule_id is None

        assert get_correlation_context().organization_id is None

    def test_context_is_isolated_per_task(self):
        async def tagged(org):
            with with_correlation(organization_id=org):
                await asyncio.sleep(0)
                return get_correlation_context().organization_id

        async def run():
            return await asyncio.gather(tagged("org-a"), tagged("org-b"))

        assert asyncio.run(run()) == ["org-a", "org-b"]


class TestFormatters:

    def test_structured_formatter_json_output(self):
        formatter = StructuredFormatter()
        with with_correlation(organization_id="org-1", configuration_id="coa-abc"):
            record = make_record()
            record.extra_fields = {"total_accounts": 41}
            data = json.loads(formatter.format(record))

        assert data["message"] == "Test message"
        assert data["level"] == "INFO"
        assert data["organization_id"] == "org-1"
        assert data["configuration_id"] == "coa-abc"
        assert data["total_accounts"] == 41

    def test_human_readable_formatter(self):
        formatter = HumanReadableFormatter()
        with with_correlation(organization_id="org-1", operation="assign_template", rule_id="fiscal_year_alignment"):
            line = formatter.format(make_record("Rule applied"))
        assert "[org-1/assign_template/rule:fiscal_year_alignment]: Rule applied" in line

        assert "[-]: Idle" in formatter.format(make_record("Idle"))


class TestCorrelatedLogger:

    def test_operation_helpers_attach_extra_fields(self):
        handler = CaptureHandler()
        target = logging.getLogger("coa_engine.test_operation")
        target.addHandler(handler)
        try:
            with with_correlation(organization_id="org-1"):
                log_operation_complete("test_operation", duration_ms=12.5, configuration_id="coa-1")
        finally:
            target.removeHandler(handler)

        record, ctx = handler.records[0]
        assert record.getMessage() == "Operation completed: test_operation"
        assert record.extra_fields == {"duration_ms": 12.5, "configuration_id": "coa-1"}
        assert ctx.organization_id == "org-1"

    def test_configure_logging_reapplies_when_forced(self):
        root = logging.getLogger()
        get_logger("coa_engine.defaults")
        try:
            configure_logging(level=logging.ERROR)
            assert root.level != logging.ERROR

            configure_logging(level=logging.ERROR, json_format=True, force=True)
            assert root.level == logging.ERROR
            assert logging.getLogger("core").level == logging.ERROR
            formatters = [h.formatter for h in root.handlers if isinstance(h.formatter, StructuredFormatter)]
            assert len(formatters) == 1

            configure_logging(force=True)
            assert root.level == logging.INFO
        finally:
            configure_logging(force=True)

    def test_get_logger_is_cached(self):
        assert get_logger("coa_engine.cached") is get_logger("coa_engine.cached")

    def test_assignment_logs_carry_organization(self, service):
        from coa_engine.models import CoaAssignmentRequest

        handler = CaptureHandler()
        target = logging.getLogger("coa_engine.assign_template")
        target.addHandler(handler)
        try:
            request = CoaAssignmentRequest(organization_id="org-7", assigned_by="u1", country_template="usa")
            asyncio.run(service.assign_template(request))
        finally:
            target.removeHandler(handler)

        messages = [r.getMessage() for r, _ in handler.records]
        assert messages == ["Operation started: assign_template", "Operation completed: assign_template"]
        assert all(ctx.organization_id == "org-7" for _, ctx in handler.records)
        assert handler.records[1][0].extra_fields["configuration_id"].startswith("coa-")
