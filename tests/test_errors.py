import logging

import pytest

from src.utils.error.compliance_error import (
    ComplianceError, ErrorCategory, ErrorSeverity, ExportNotImplementedError, InvalidRuleError,
    RuleNotFoundError
)
from src.utils.error.compliance_error_handler import ComplianceErrorHandler


@pytest.fixture
def handler():
    return ComplianceErrorHandler(logging.getLogger("compliance.test"))


class TestErrorHandler:

    def test_engine_errors_keep_their_category_and_code(self, handler):
        record = handler.handle_error(RuleNotFoundError("r1"), context={"component": "RulesEngine"})

        assert record.category == ErrorCategory.NOT_FOUND
        assert record.code == "RULE-404"
        assert record.message == "Rule with ID r1 not found"
        assert record.source_component == "RulesEngine"
        assert handler.error_counts == {"not_found": 1}

    def test_plain_exceptions_use_given_category(self, handler, caplog):
        with caplog.at_level(logging.WARNING, logger="compliance.test"):
            record = handler.handle_error(
                OSError("disk full"), context={"component": "Store", "path": "/tmp"},
                category=ErrorCategory.AUDIT, severity=ErrorSeverity.WARNING,
            )

        assert record.details == {"path": "/tmp"}
        assert record.code is None
        assert "AUDIT ERROR: disk full" in caplog.text

    def test_records_pass_through(self, handler):
        record = ComplianceError("boom", ErrorCategory.REPORTING, ErrorSeverity.CRITICAL)
        assert handler.handle_error(record) is record

    def test_stack_trace_only_in_development(self, handler, monkeypatch):
        record = handler.handle_error(ValueError("bad"))
        monkeypatch.setenv("ENVIRONMENT", "production")
        assert "stack_trace" not in record.to_dict()
        monkeypatch.setenv("ENVIRONMENT", "development")
        assert "stack_trace" in record.to_dict()


class TestEngineErrors:

    def test_invalid_rule_lists_errors(self):
        error = InvalidRuleError(["Rule text is required", "Jurisdiction is required"])
        assert error.errors == ("Rule text is required", "Jurisdiction is required")
        assert str(error) == "Invalid rule: Rule text is required, Jurisdiction is required"
        assert isinstance(error, ValueError)

    def test_export_not_implemented(self):
        assert str(ExportNotImplementedError("pdf")) == "PDF export not implemented yet"
        assert isinstance(ExportNotImplementedError("pdf"), NotImplementedError)
