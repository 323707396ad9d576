import datetime
import logging
import os

import pytest

from src.compliance.models.audit_models import (
    AuditAction, AuditEntry, AuditQuery, AuditSeverity, RuleEventCount, UserEventCount
)
from src.compliance.monitoring.audit_log import (
    RULE_MANAGEMENT_SESSION, ComplianceAuditLogger, redact_text, sanitize_rule_updates
)
from src.compliance.monitoring.audit_repository import InMemoryAuditRepository, JsonFileAuditRepository


class TestRecord:

    def test_record_returns_entry_id(self, audit_logger, audit_repository):
        entry_id = audit_logger.record("s1", AuditAction.RULE_APPLIED, {"rule_id": "r1"}, user_id="u1")

        entries = audit_repository.get_entries_by_session("s1")
        assert [entry.entry_id for entry in entries] == [entry_id]
        assert entries[0].component == "ComplianceEngine"
        assert entries[0].success is True

    def test_disabled_logger_records_nothing(self, audit_repository):
        audit_logger = ComplianceAuditLogger(audit_repository, {"enabled": False})
        assert audit_logger.record("s1", AuditAction.RULE_APPLIED) is None
        assert audit_repository.get_entries_by_session("s1") == []

    def test_store_failure_never_reaches_caller(self, failing_audit_repository, caplog):
        audit_logger = ComplianceAuditLogger(failing_audit_repository)

        with caplog.at_level(logging.ERROR, logger="compliance_audit"):
            entry_id = audit_logger.record("s1", AuditAction.VIOLATION_DETECTED)

        assert entry_id is not None
        assert "audit store unavailable" in caplog.text
        assert audit_logger.error_handler.error_counts == {"audit": 1}

    def test_invalid_action_is_reported_not_raised(self, audit_logger, caplog):
        with caplog.at_level(logging.ERROR, logger="compliance_audit"):
            assert audit_logger.record("s1", "not_an_action") is None
        assert "AUDIT ERROR" in caplog.text


class TestSanitization:

    def test_matched_text_is_redacted(self, audit_logger, audit_repository, violation_factory):
        violation = violation_factory(text="SSN 123-45-6789 and jane@example.com")

        audit_logger.log_violation_detected("s1", violation)

        details = audit_repository.get_entries_by_session("s1")[0].details
        assert details["matched_text"] == "SSN [SSN] and [EMAIL]"
        assert details["rule_id"] == "test-rule-001"

    def test_redaction_can_be_disabled(self, audit_repository, violation_factory):
        audit_logger = ComplianceAuditLogger(audit_repository, {"sanitize_pii": False})
        audit_logger.log_violation_detected("s1", violation_factory(text="123-45-6789"))
        assert audit_repository.get_entries_by_session("s1")[0].details["matched_text"] == "123-45-6789"

    def test_user_details_keep_safe_fields(self, audit_logger, audit_repository):
        audit_logger.record("s1", AuditAction.COMPLIANCE_REPORT_ACCESSED, {
            "user_details": {"role": "auditor", "email": "a@b.com", "authenticated": True},
        })
        details = audit_repository.get_entries_by_session("s1")[0].details
        assert details["user_details"] == {"role": "auditor", "authenticated": True}

    @pytest.mark.parametrize("text,expected", [
        ("call 555-123-4567", "call [PHONE]"),
        ("card 4111 1111 1111 1111", "card [CREDIT_CARD]"),
        ("", ""),
    ])
    def test_redact_text(self, text, expected):
        assert redact_text(text) == expected

    def test_rule_updates_keep_audited_fields(self, now):
        updates = {"severity": "high", "keywords": ["x"], "last_updated": now, "is_active": False}
        assert sanitize_rule_updates(updates) == {
            "severity": "high", "last_updated": now.isoformat(), "is_active": False,
        }


class TestLifecycleHelpers:

    def test_check_completed_severity_follows_risk(self, audit_logger, audit_repository, validator):
        result = validator.validate_compliance("SSN: 123-45-6789", "healthcare", session_id="s1")

        completed = audit_logger.query_events(AuditQuery(action=AuditAction.COMPLIANCE_CHECK_COMPLETED))[0]
        assert completed.severity == AuditSeverity.CRITICAL
        assert completed.details["violation_count"] == len(result.violations)
        assert completed.component == "ComplianceValidator"

    def test_rule_events_use_rule_management_session(self, audit_logger, rule_factory):
        rule = rule_factory()
        audit_logger.log_rule_created(rule, user_id="admin")
        audit_logger.log_rule_deleted(rule, user_id="admin")

        trail = audit_logger.get_session_trail(RULE_MANAGEMENT_SESSION)
        assert [entry.action for entry in trail] == [AuditAction.RULE_CREATED, AuditAction.RULE_DELETED]

    def test_rule_skipped(self, audit_logger, rule_factory):
        audit_logger.log_rule_skipped("s1", rule_factory(), "inactive")
        entry = audit_logger.get_session_trail("s1")[0]
        assert entry.action == AuditAction.RULE_SKIPPED
        assert entry.details["reason"] == "inactive"

    def test_remediation_events(self, audit_logger, violation_factory):
        violation = violation_factory()
        audit_logger.log_remediation_started("s1", violation, user_id="u1")
        audit_logger.log_remediation_completed("s1", violation, user_id="u1")

        summary = audit_logger.generate_audit_summary(AuditQuery(session_id="s1"))
        assert summary.remediation_events == 2

    def test_check_failed(self, audit_logger):
        audit_logger.log_compliance_check_failed("s1", "legal", ValueError("bad content"))
        entry = audit_logger.get_session_trail("s1")[0]
        assert entry.success is False
        assert entry.error_message == "bad content"
        assert entry.details["error_type"] == "ValueError"


class TestQueries:

    @pytest.fixture
    def populated(self, audit_logger, rule_factory, violation_factory):
        hipaa = rule_factory(id="hipaa-phi-001", regulation="HIPAA", domain="healthcare")
        for _ in range(3):
            audit_logger.log_violation_detected("s1", violation_factory(rule=hipaa), user_id="alice")
        audit_logger.log_violation_detected("s2", violation_factory(), user_id="bob")
        audit_logger.log_rule_created(hipaa, user_id="alice")
        audit_logger.log_report_generated("s1", "report-1", 3, 25)
        return audit_logger

    def test_filter_by_compliance_fields(self, populated):
        assert len(populated.query_events(AuditQuery(rule_id="hipaa-phi-001"))) == 4
        assert len(populated.query_events(AuditQuery(regulation="TEST"))) == 1
        assert len(populated.query_events(AuditQuery(domain="healthcare"))) == 4
        assert len(populated.query_events(AuditQuery(user_id="bob"))) == 1

    def test_paging(self, populated):
        everything = populated.query_events()
        page = populated.query_events(AuditQuery(limit=2, offset=1))
        assert page == everything[1:3]

    def test_date_range(self, populated):
        future = datetime.datetime.now() + datetime.timedelta(days=1)
        assert populated.query_events(AuditQuery(start_date=future)) == []

    def test_summary(self, populated):
        summary = populated.generate_audit_summary()

        assert summary.total_events == 6
        assert summary.events_by_action == {
            "violation_detected": 4, "rule_created": 1, "compliance_report_generated": 1,
        }
        assert summary.violation_events == 4
        assert summary.rule_management_events == 1
        assert summary.reporting_events == 1
        assert summary.top_rules[0] == RuleEventCount("hipaa-phi-001", "HIPAA", 4)
        assert summary.top_users[0] == UserEventCount("alice", 4)
        assert summary.time_range[0] <= summary.time_range[1]

    def test_summary_ignores_query_limit(self, populated):
        assert populated.generate_audit_summary(AuditQuery(limit=1)).total_events == 6

    def test_empty_summary(self, audit_logger):
        summary = audit_logger.generate_audit_summary()
        assert summary.total_events == 0
        assert summary.time_range == (None, None)
        assert summary.top_rules == []


class TestAsyncDispatch:

    def test_flush_waits_for_pending_entries(self, audit_repository):
        audit_logger = ComplianceAuditLogger(audit_repository, {"async_dispatch": True})
        try:
            for index in range(20):
                audit_logger.record("s1", AuditAction.RULE_APPLIED, {"index": index})
            audit_logger.flush()

            trail = audit_repository.get_entries_by_session("s1")
            assert [entry.details["index"] for entry in trail] == list(range(20))
        finally:
            audit_logger.close()

    def test_record_after_close_does_not_raise(self, audit_repository):
        audit_logger = ComplianceAuditLogger(audit_repository, {"async_dispatch": True})
        audit_logger.close()

        entry_id = audit_logger.record("s1", AuditAction.RULE_APPLIED)

        assert entry_id is not None
        assert len(audit_repository.get_entries_by_session("s1")) == 1

    def test_async_store_failure_is_suppressed(self, failing_audit_repository):
        audit_logger = ComplianceAuditLogger(failing_audit_repository, {"async_dispatch": True})
        audit_logger.record("s1", AuditAction.RULE_APPLIED)
        audit_logger.close()
        assert audit_logger.error_handler.error_counts == {"audit": 1}


class TestAuditRepositories:

    def test_in_memory_store_drops_oldest(self):
        repository = InMemoryAuditRepository(max_entries=2)
        for session in ("a", "b", "c"):
            repository.create_entry(AuditEntry(session, AuditAction.RULE_APPLIED, "test"))

        assert repository.get_entries_by_session("a") == []
        assert len(repository.query_entries(AuditQuery())) == 2

    def test_json_file_store_round_trip(self, tmp_path):
        repository = JsonFileAuditRepository(str(tmp_path / "audit"), buffer_size=1)
        entry = AuditEntry("s1", AuditAction.VIOLATION_DETECTED, "test", {"rule_id": "r1"},
                           severity=AuditSeverity.ERROR)
        repository.create_entry(entry)
        repository.create_entry(AuditEntry("s2", AuditAction.RULE_APPLIED, "test"))

        reopened = JsonFileAuditRepository(str(tmp_path / "audit"))
        assert reopened.get_entries_by_session("s1") == [entry]
        assert reopened.query_entries(AuditQuery(rule_id="r1")) == [entry]
        assert len(repository.in_memory_buffer) == 1

    def test_json_file_store_skips_corrupt_files(self, tmp_path):
        repository = JsonFileAuditRepository(str(tmp_path))
        (tmp_path / "broken.json").write_text("{not json")
        repository.create_entry(AuditEntry("s1", AuditAction.RULE_APPLIED, "test"))

        assert len(repository.query_entries(AuditQuery())) == 1

    def test_purge_old_entries(self, tmp_path):
        repository = JsonFileAuditRepository(str(tmp_path), retention_days=30)
        old = AuditEntry("s1", AuditAction.RULE_APPLIED, "test",
                         timestamp=datetime.datetime.now() - datetime.timedelta(days=45))
        recent = AuditEntry("s1", AuditAction.RULE_APPLIED, "test")
        repository.create_entry(old)
        repository.create_entry(recent)

        assert repository.purge_old_entries() == 1
        assert not os.path.exists(tmp_path / f"{old.entry_id}.json")
        assert repository.get_entries_by_session("s1") == [recent]
        assert repository.in_memory_buffer == [recent]
