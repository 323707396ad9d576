import datetime

import pytest

from src.compliance.knowledge_base.rule_repository import InMemoryComplianceRepository, default_rules
from src.compliance.models.audit_models import AuditAction, AuditQuery
from src.compliance.models.compliance_models import (
    ComplianceCheckResult, Domain, RemediationEffort, RemediationStatus, RiskLevel, Severity,
    Urgency, ViolationType
)
from src.compliance.models.report_models import (
    ExportFormat, ReportType, TopViolationType, TrendDirection
)
from src.compliance.monitoring.audit_log import ComplianceAuditLogger
from src.compliance.reporting.compliance_reporter import (
    ComplianceReporter, extract_section, generate_report_id, violation_trend
)
from src.compliance.reporting.remediation import RemediationPlanner
from src.utils.error.compliance_error import (
    ExportNotImplementedError, ReportGenerationError, UnsupportedExportFormatError
)

SSN_CONTENT = "SSN: 123-45-6789 for patient records"
HIPAA_URL = "https://www.hhs.gov/hipaa/for-professionals/privacy/laws-regulations/index.html"


@pytest.fixture
def check_result(validator):
    return validator.validate_compliance(SSN_CONTENT, Domain.HEALTHCARE, "US", session_id="session-1")


@pytest.fixture
def report(reporter, check_result):
    return reporter.generate_report("session-1", "org-1", Domain.HEALTHCARE, check_result)


class TestGenerateReport:

    def test_summary(self, report):
        summary = report.summary
        assert summary.total_violations == 5
        assert summary.violations_by_severity == {"low": 0, "medium": 1, "high": 0, "critical": 4}
        assert summary.overall_risk == RiskLevel.CRITICAL
        assert summary.compliance_score == 0
        assert (summary.checked_rules, summary.passed_rules, summary.failed_rules) == (1, 0, 1)

    def test_report_identity(self, report, now):
        assert report.id.startswith("compliance-report-")
        assert report.session_id == "session-1"
        assert report.organization_id == "org-1"
        assert report.domain == "healthcare"
        assert report.generated_at == now
        assert report.report_type == ReportType.DETAILED_ANALYSIS

    def test_violation_reports_follow_violation_order(self, report, check_result):
        assert [r.violation for r in report.violations] == list(check_result.violations)

    def test_violation_report_for_critical_pattern(self, report):
        first = report.violations[0]
        assert first.impact == Severity.CRITICAL
        assert first.urgency == Urgency.IMMEDIATE
        assert first.remediation.priority == 90
        assert first.remediation.estimated_effort == RemediationEffort.MEDIUM
        assert first.remediation.status == RemediationStatus.PENDING
        assert first.remediation.suggested_actions == (
            "Modify content to comply with HIPAA pattern restrictions",
            "Update content to match required patterns",
            "Validate against regulatory templates",
            "Verify compliance with HIPAA",
            "Document remediation steps taken",
        )

        context = first.regulatory_context
        assert context.regulation == "HIPAA"
        assert context.section == "General"
        assert context.precedents[0] == "2023: $240,000 fine for unauthorized PHI disclosure"
        assert [ref.document_id for ref in context.references] == ["hipaa-164-502", "hipaa-164-312"]

    def test_medium_violation_is_escalated_in_healthcare(self, report):
        patient = [r for r in report.violations if r.violation.rule_id == "hipaa-keyword-patient"][0]
        assert patient.violation.severity == Severity.MEDIUM
        assert patient.impact == Severity.HIGH
        assert patient.urgency == Urgency.MEDIUM

    def test_recommendations(self, report):
        assert report.recommendations == (
            "Immediate action required: 4 critical compliance violations detected. "
            "Review and remediate immediately to avoid regulatory penalties.",
            "Ensure all patient information is properly protected and anonymized according to HIPAA requirements.",
        )

    def test_references_are_deduplicated_by_regulation(self, report):
        assert len(report.regulatory_references) == 1
        reference = report.regulatory_references[0]
        assert reference.regulation == "HIPAA"
        assert reference.jurisdiction == "US"
        assert reference.applicable_domains == ("healthcare",)
        assert reference.url == HIPAA_URL

    def test_audit_trail_covers_the_session(self, report):
        actions = [entry.action for entry in report.audit_trail]
        assert actions[0] == AuditAction.COMPLIANCE_CHECK_STARTED
        assert actions.count(AuditAction.VIOLATION_DETECTED) == 5
        assert AuditAction.COMPLIANCE_CHECK_COMPLETED in actions
        assert actions[-1] == AuditAction.COMPLIANCE_REPORT_STARTED

    def test_generation_is_audited(self, report, audit_logger):
        events = audit_logger.query_events(AuditQuery(action=AuditAction.COMPLIANCE_REPORT_GENERATED))
        assert len(events) == 1
        assert events[0].details == {"report_id": report.id, "violation_count": 5, "compliance_score": 0}

    def test_report_type_is_kept(self, reporter, check_result):
        report = reporter.generate_report(
            "session-1", "org-1", "healthcare", check_result, ReportType.VIOLATION_SUMMARY
        )
        assert report.report_type == ReportType.VIOLATION_SUMMARY

    def test_clean_content_report(self, reporter, now):
        result = ComplianceCheckResult((), RiskLevel.LOW, 100, 0)
        report = reporter.generate_report("session-2", "org-1", Domain.INSURANCE, result)

        assert report.violations == ()
        assert report.recommendations == ()
        assert report.regulatory_references == ()
        assert report.summary.passed_rules == 0

    def test_failure_is_audited_and_raised(self, reporter, check_result, audit_logger, monkeypatch):
        def explode(violations, domain):
            raise RuntimeError("planner offline")

        monkeypatch.setattr(reporter.planner, "generate_recommendations", explode)

        with pytest.raises(ReportGenerationError) as excinfo:
            reporter.generate_report("session-1", "org-1", Domain.HEALTHCARE, check_result)

        assert isinstance(excinfo.value.__cause__, RuntimeError)
        assert "planner offline" in str(excinfo.value)
        failed = audit_logger.query_events(AuditQuery(action=AuditAction.COMPLIANCE_REPORT_FAILED))
        assert len(failed) == 1
        assert failed[0].success is False
        assert failed[0].details["report_id"] == excinfo.value.report_id

    def test_audit_store_failure_does_not_break_reports(self, rule_repository, reference_manager,
                                                        failing_audit_repository, check_result, clock):
        reporter = ComplianceReporter(
            rule_repository, ComplianceAuditLogger(failing_audit_repository), reference_manager, clock=clock
        )

        report = reporter.generate_report("session-1", "org-1", Domain.HEALTHCARE, check_result)

        assert report.summary.total_violations == 5
        assert report.audit_trail == ()


class TestSummary:

    def test_failed_rules_only_count_checked_rules(self, reporter, violation_factory, rule_factory):
        violations = (violation_factory(), violation_factory(rule=rule_factory(id="other")))
        result = ComplianceCheckResult(violations, RiskLevel.MEDIUM, 84, 0)

        summary = reporter.generate_summary(result)

        assert summary.total_violations == 2
        assert summary.failed_rules == 0
        assert summary.passed_rules == 0


class TestRecommendations:

    def test_high_severity_recommendation(self, violation_factory):
        violations = [violation_factory(severity=Severity.HIGH)] * 3
        assert RemediationPlanner().generate_recommendations(violations, Domain.LEGAL) == [
            "High priority: 3 high-severity violations require attention within 24-48 hours."
        ]

    def test_domain_recommendation_needs_matching_regulation(self, violation_factory, rule_factory):
        gdpr_violation = violation_factory(rule=rule_factory(regulation="GDPR"), severity=Severity.LOW)
        planner = RemediationPlanner()

        assert planner.generate_recommendations([gdpr_violation], Domain.LEGAL) == [
            "Verify data processing consent and implement proper data subject rights handling per GDPR."
        ]
        assert planner.generate_recommendations([gdpr_violation], Domain.FINANCIAL) == []

    def test_semantic_actions(self, violation_factory):
        violation = violation_factory(violation_type=ViolationType.SEMANTIC_MATCH, suggested_fix="Add notice")
        plan = RemediationPlanner().create_plan(violation)

        assert plan.estimated_effort == RemediationEffort.HIGH
        assert plan.suggested_actions == (
            "Add notice",
            "Conduct thorough content review",
            "Consult with legal/compliance team",
            "Verify compliance with TEST",
            "Document remediation steps taken",
        )


class TestExport:

    def test_export_is_audited_before_formatting(self, reporter, report, audit_logger):
        with pytest.raises(ExportNotImplementedError):
            reporter.export_report(report, ExportFormat.PDF, user_id="auditor")

        exported = audit_logger.query_events(AuditQuery(action=AuditAction.COMPLIANCE_REPORT_EXPORTED))
        assert exported[0].details == {"report_id": report.id, "format": "pdf"}
        assert exported[0].user_id == "auditor"

    def test_unknown_format(self, reporter, report):
        with pytest.raises(UnsupportedExportFormatError):
            reporter.export_report(report, "docx")

    def test_enum_and_string_formats(self, reporter, report):
        assert reporter.export_report(report, ExportFormat.CSV) == reporter.export_report(report, "CSV")


class TestMetrics:

    @pytest.fixture
    def history(self, now):
        days = (0, 1, 8, 9, 10)
        times = iter([now + datetime.timedelta(days=d) for d in days])
        repository = InMemoryComplianceRepository(default_rules(now), clock=lambda: next(times))
        return repository

    def _record(self, repository, violation_factory, count=5):
        rule = repository.get_rule_by_id("hipaa-phi-001")
        for _ in range(count):
            repository.record_violation(violation_factory(rule=rule), session_id="s")

    def test_domain_metrics(self, history, audit_logger, reference_manager, violation_factory, clock):
        self._record(history, violation_factory)
        reporter = ComplianceReporter(history, audit_logger, reference_manager, clock=clock)

        metrics = reporter.generate_metrics("org-1", Domain.HEALTHCARE)

        assert metrics.compliance_score == 0
        assert metrics.risk_level == RiskLevel.CRITICAL
        assert [trend.count for trend in metrics.violation_trends] == [1, 1, 1, 1, 1]
        assert metrics.top_violation_types == (
            TopViolationType("hipaa-phi-001", "HIPAA", 5, TrendDirection.INCREASING),
        )
        assert metrics.compliance_by_domain == {}

    def test_per_domain_breakdown(self, history, audit_logger, reference_manager, violation_factory, clock):
        self._record(history, violation_factory)
        reporter = ComplianceReporter(history, audit_logger, reference_manager, clock=clock)

        metrics = reporter.generate_metrics("org-1")

        assert set(metrics.compliance_by_domain) == {"legal", "financial", "healthcare", "insurance"}
        assert metrics.compliance_by_domain["healthcare"].violations == 5
        assert metrics.compliance_by_domain["healthcare"].risk_level == RiskLevel.CRITICAL
        assert metrics.compliance_by_domain["legal"].score == 100

    def test_time_range(self, history, audit_logger, reference_manager, violation_factory, clock, now):
        self._record(history, violation_factory)
        reporter = ComplianceReporter(history, audit_logger, reference_manager, clock=clock)

        window = (now + datetime.timedelta(days=7), now + datetime.timedelta(days=11))
        metrics = reporter.generate_metrics("org-1", Domain.HEALTHCARE, window)

        assert metrics.top_violation_types[0].count == 3
        assert metrics.compliance_score == 25

    def test_unknown_rule_uses_recorded_snapshot(self, empty_repository, audit_logger, violation_factory,
                                                 rule_factory, clock):
        empty_repository.record_violation(violation_factory(rule=rule_factory(id="ghost")))
        reporter = ComplianceReporter(empty_repository, audit_logger, clock=clock)

        metrics = reporter.generate_metrics("org-1")

        assert metrics.top_violation_types == (
            TopViolationType("ghost", "TEST", 1, TrendDirection.STABLE),
        )


class TestHelpers:

    @pytest.mark.parametrize("rule_text,expected", [
        ("Disclosure under Section 164.502 is restricted", "164.502"),
        ("see section 302", "302"),
        ("No section cited", "General"),
    ])
    def test_extract_section(self, rule_text, expected):
        assert extract_section(rule_text) == expected

    def test_report_ids_are_unique(self):
        assert generate_report_id() != generate_report_id()

    def test_trend_directions(self, now):
        hours = [now + datetime.timedelta(hours=h) for h in (0, 1, 2, 240)]
        assert violation_trend([]) == TrendDirection.STABLE
        assert violation_trend([now, now]) == TrendDirection.STABLE
        assert violation_trend(hours) == TrendDirection.DECREASING
        assert violation_trend([hours[0], hours[-1]]) == TrendDirection.STABLE
