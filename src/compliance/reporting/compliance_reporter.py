import concurrent.futures
import datetime
import logging
import re
import time
import uuid
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from src.compliance.knowledge_base.regulatory_knowledge_base import RegulatoryReferenceManager
from src.compliance.knowledge_base.rule_repository import ComplianceRepository, TimeRange
from src.compliance.models.audit_models import AuditEntry
from src.compliance.models.compliance_models import (
    ComplianceCheckResult, ComplianceRule, ComplianceViolation, Domain
)
from src.compliance.models.report_models import (
    ComplianceMetrics, ComplianceReport, ComplianceReportSummary, ComplianceViolationReport,
    DomainCompliance, ExportFormat, RegulatoryContext, ReportReference, ReportType,
    TopViolationType, TrendDirection, ViolationTrend
)
from src.compliance.reasoning.impact_analyzer import (
    escalate_severity, overall_risk, score_from_counts, severity_histogram, urgency_for
)
from src.compliance.reporting.formatter import ReportFormatter
from src.compliance.reporting.remediation import RemediationPlanner
from src.utils.error.compliance_error import ReportGenerationError

logger = logging.getLogger("compliance.reporter")

SECTION_PATTERN = re.compile(r"Section\s+(\d+(?:\.\d+)*)", re.IGNORECASE)
DEFAULT_SECTION = "General"


def extract_section(rule_text: str) -> str:
    """Section number cited in a rule text, "General" if none."""
    match = SECTION_PATTERN.search(rule_text or "")
    return match.group(1) if match else DEFAULT_SECTION


def generate_report_id() -> str:
    return f"compliance-report-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


def violation_trend(timestamps: Sequence[datetime.datetime]) -> TrendDirection:
    """
    Compare violation counts in the earlier and later half of their time span.

    Fewer than two timestamps, or a zero-length span, is stable.
    """
    if len(timestamps) < 2:
        return TrendDirection.STABLE
    ordered = sorted(timestamps)
    first, last = ordered[0], ordered[-1]
    if first == last:
        return TrendDirection.STABLE

    midpoint = first + (last - first) / 2
    earlier = sum(1 for ts in ordered if ts < midpoint)
    later = len(ordered) - earlier
    if later > earlier:
        return TrendDirection.INCREASING
    if later < earlier:
        return TrendDirection.DECREASING
    return TrendDirection.STABLE


class ComplianceReporter:
    """
    Synthesizes compliance reports, metrics and exports from check results,
    the rule store, the regulatory catalog and the audit trail.
    """

    def __init__(self,
                 repository: ComplianceRepository,
                 audit_logger,
                 reference_manager: Optional[RegulatoryReferenceManager] = None,
                 planner: Optional[RemediationPlanner] = None,
                 formatter: Optional[ReportFormatter] = None,
                 config: Optional[Dict[str, Any]] = None,
                 clock=None):
        """
        Initialize the compliance reporter.

        Args:
            repository: Rule store, used for metrics
            audit_logger: ComplianceAuditLogger for lifecycle events and trails
            reference_manager: Regulatory catalog used for violation context
            planner: Remediation planner
            formatter: Export formatter
            config: Reporting settings (max_workers, top_violation_types)
            clock: Callable returning the current datetime
        """
        self.repository = repository
        self.audit_logger = audit_logger
        self.reference_manager = reference_manager or RegulatoryReferenceManager(clock=clock)
        self.planner = planner or RemediationPlanner()
        self.formatter = formatter or ReportFormatter()
        self.config = config or {}
        self.max_workers = self.config.get("max_workers")
        self.top_violation_types = self.config.get("top_violation_types", 10)
        self._clock = clock or datetime.datetime.now

    def generate_report(self,
                        session_id: str,
                        organization_id: str,
                        domain: Domain,
                        check_result: ComplianceCheckResult,
                        report_type: ReportType = ReportType.DETAILED_ANALYSIS) -> ComplianceReport:
        """
        Generate a compliance report for a validation session.

        Args:
            session_id: Session the check belongs to
            organization_id: Organization the report is for
            domain: Regulatory domain of the check
            check_result: Result of validate_compliance
            report_type: Kind of report

        Returns:
            The generated report

        Raises:
            ReportGenerationError: If any step fails; chained to the cause
        """
        report_id = generate_report_id()
        domain = Domain(domain)
        report_type = ReportType(report_type)
        self.audit_logger.log_report_started(
            session_id, report_id, report_type.value, domain.value, organization_id=organization_id
        )

        try:
            violations = check_result.violations
            summary = self.generate_summary(check_result)
            violation_reports = self._create_violation_reports(violations, domain)
            recommendations = self.planner.generate_recommendations(violations, domain)
            references = self.collect_regulatory_references(violations)
            audit_trail = self._get_session_audit_trail(session_id)

            report = ComplianceReport(
                id=report_id,
                session_id=session_id,
                organization_id=organization_id,
                domain=domain.value,
                generated_at=self._clock(),
                report_type=report_type,
                summary=summary,
                violations=tuple(violation_reports),
                recommendations=tuple(recommendations),
                regulatory_references=tuple(references),
                audit_trail=tuple(audit_trail),
            )
        except Exception as e:
            logger.error(f"Failed to generate report {report_id} for session {session_id}: {str(e)}")
            self.audit_logger.log_report_failed(session_id, report_id, e, organization_id=organization_id)
            raise ReportGenerationError(report_id, str(e)) from e

        self.audit_logger.log_report_generated(
            session_id, report_id, len(violations), check_result.compliance_score,
            organization_id=organization_id,
        )
        logger.info(f"Generated report {report_id} with {len(violations)} violations")
        return report

    def export_report(self, report: ComplianceReport, export_format: Union[ExportFormat, str],
                      user_id: Optional[str] = None) -> str:
        """
        Serialize a report. The export is audited before formatting.

        Raises:
            ExportNotImplementedError: For PDF
            UnsupportedExportFormatError: For unknown formats
        """
        format_name = str(getattr(export_format, "value", export_format)).lower()
        self.audit_logger.log_report_exported(report.session_id, report.id, format_name, user_id=user_id)
        return self.formatter.format(report, format_name)

    def generate_summary(self, check_result: ComplianceCheckResult) -> ComplianceReportSummary:
        histogram = severity_histogram(check_result.violations)
        failed_ids = {v.rule_id for v in check_result.violations}
        if check_result.applicable_rules:
            # Fixed checkers raise violations for rules outside the checked set
            failed_ids &= {rule.id for rule in check_result.applicable_rules}
        failed_rules = min(len(failed_ids), check_result.checked_rules)

        return ComplianceReportSummary(
            total_violations=len(check_result.violations),
            violations_by_severity={severity.value: count for severity, count in histogram.items()},
            overall_risk=check_result.overall_risk,
            compliance_score=check_result.compliance_score,
            checked_rules=check_result.checked_rules,
            passed_rules=check_result.checked_rules - failed_rules,
            failed_rules=failed_rules,
        )

    def create_violation_report(self, violation: ComplianceViolation, domain: Domain) -> ComplianceViolationReport:
        return ComplianceViolationReport(
            violation=violation,
            impact=escalate_severity(violation.severity, domain),
            urgency=urgency_for(violation.severity),
            remediation=self.planner.create_plan(violation),
            regulatory_context=self.get_regulatory_context(violation.rule),
        )

    def get_regulatory_context(self, rule: ComplianceRule) -> RegulatoryContext:
        bundle = self.reference_manager.generate_regulatory_context(rule)
        return RegulatoryContext(
            regulation=rule.regulation,
            section=extract_section(rule.rule_text),
            description=rule.rule_text,
            penalties=bundle.penalties,
            precedents=bundle.enforcement_history,
            last_updated=rule.last_updated,
            references=bundle.primary_references,
            guidance=bundle.guidance,
        )

    def collect_regulatory_references(self, violations: Sequence[ComplianceViolation]) -> List[ReportReference]:
        """One reference per regulation and jurisdiction, with every domain seen."""
        first_rules: Dict[str, ComplianceRule] = {}
        domains: Dict[str, List[str]] = {}

        for violation in violations:
            rule = violation.rule
            key = f"{rule.regulation}-{rule.jurisdiction}"
            if key not in first_rules:
                first_rules[key] = rule
                domains[key] = []
            if rule.domain.value not in domains[key]:
                domains[key].append(rule.domain.value)

        references = []
        for key, rule in first_rules.items():
            references.append(ReportReference(
                regulation=rule.regulation,
                section=extract_section(rule.rule_text),
                title=rule.regulation,
                description=rule.rule_text,
                effective_date=rule.last_updated,
                jurisdiction=rule.jurisdiction,
                applicable_domains=tuple(domains[key]),
                url=self._reference_url(rule),
            ))
        return references

    def generate_metrics(self, organization_id: str, domain: Optional[Domain] = None,
                         time_range: Optional[TimeRange] = None) -> ComplianceMetrics:
        """
        Compliance metrics and trends from recorded violations.

        Args:
            organization_id: Organization the metrics are for
            domain: Optional domain filter; without it a per-domain breakdown is included
            time_range: Optional inclusive (start, end) window

        Returns:
            Score, risk level, daily trends, top violated rules and per-domain scores
        """
        domain = Domain(domain) if domain else None
        stats = self.repository.get_violation_stats(domain, time_range)

        compliance_by_domain = {} if domain else self._compliance_by_domain(time_range)
        logger.debug(f"Metrics for {organization_id}: {stats.total_violations} violations")

        return ComplianceMetrics(
            compliance_score=score_from_counts(stats.violations_by_severity),
            risk_level=overall_risk(stats.violations_by_severity),
            violation_trends=tuple(ViolationTrend(point.date, point.count) for point in stats.trends_over_time),
            top_violation_types=tuple(self._top_violation_types(stats.violations_by_rule, time_range)),
            compliance_by_domain=compliance_by_domain,
        )

    def _create_violation_reports(self, violations: Sequence[ComplianceViolation],
                                  domain: Domain) -> List[ComplianceViolationReport]:
        if not violations:
            return []
        with concurrent.futures.ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            return list(executor.map(lambda v: self.create_violation_report(v, domain), violations))

    def _get_session_audit_trail(self, session_id: str) -> Tuple[AuditEntry, ...]:
        try:
            self.audit_logger.flush()
            return tuple(self.audit_logger.get_session_trail(session_id))
        except Exception as e:
            logger.warning(f"Audit trail unavailable for session {session_id}: {str(e)}")
            return ()

    def _reference_url(self, rule: ComplianceRule) -> Optional[str]:
        references = self.reference_manager.get_regulatory_references(rule)
        return references[0].document.url if references else None

    def _top_violation_types(self, violations_by_rule: Dict[str, int],
                             time_range: Optional[TimeRange]) -> List[TopViolationType]:
        top_rules = sorted(violations_by_rule.items(), key=lambda item: item[1], reverse=True)
        results = []
        for rule_id, count in top_rules[:self.top_violation_types]:
            records = self.repository.get_violations_by_rule(rule_id)
            if time_range is not None:
                records = [r for r in records if time_range[0] <= r.recorded_at <= time_range[1]]

            rule = self.repository.get_rule_by_id(rule_id)
            if rule is None and records:
                rule = records[0].violation.rule

            results.append(TopViolationType(
                rule_id=rule_id,
                regulation=rule.regulation if rule else "Unknown",
                count=count,
                trend=violation_trend([r.recorded_at for r in records]),
            ))
        return results

    def _compliance_by_domain(self, time_range: Optional[TimeRange]) -> Dict[str, DomainCompliance]:
        result = {}
        for domain in Domain:
            stats = self.repository.get_violation_stats(domain, time_range)
            result[domain.value] = DomainCompliance(
                score=score_from_counts(stats.violations_by_severity),
                violations=stats.total_violations,
                risk_level=overall_risk(stats.violations_by_severity),
            )
        return result
