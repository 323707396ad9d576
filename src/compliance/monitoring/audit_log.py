import concurrent.futures
import dataclasses
import logging
import re
import threading
from typing import Any, Dict, List, Mapping, Optional

from src.compliance.models.audit_models import (
    REMEDIATION_ACTIONS, REPORTING_ACTIONS, RULE_MANAGEMENT_ACTIONS, VIOLATION_ACTIONS,
    AuditAction, AuditEntry, AuditQuery, AuditSeverity, AuditSummary, RuleEventCount, UserEventCount
)
from src.compliance.models.compliance_models import (
    ComplianceCheckResult, ComplianceRule, ComplianceViolation
)
from src.compliance.monitoring.audit_repository import AuditRepository
from src.compliance.reasoning.impact_analyzer import audit_severity_for
from src.utils.error.compliance_error import ErrorCategory, ErrorSeverity
from src.utils.error.compliance_error_handler import ComplianceErrorHandler

RULE_MANAGEMENT_SESSION = "rule-management"

# Only these rule fields are copied into rule_updated details
AUDITED_RULE_FIELDS = (
    "rule_text", "regulation", "jurisdiction", "domain", "severity", "is_active", "last_updated",
)

PII_PATTERNS = [
    (re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b'), '[EMAIL]'),
    (re.compile(r'\b\d{3}[-.\s]?\d{2}[-.\s]?\d{4}\b'), '[SSN]'),
    (re.compile(r'\b(?:\+\d{1,3}[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}\b'), '[PHONE]'),
    (re.compile(r'\b(?:\d{4}[- ]?){3}\d{4}\b'), '[CREDIT_CARD]'),
]

SENSITIVE_DETAIL_KEYS = ("matched_text", "context")

SUMMARY_QUERY_LIMIT = 10000
TOP_N = 10


class ComplianceAuditLogger:
    """
    Records compliance lifecycle events for accountability and reporting.

    Recording is fire-and-forget: storage failures are logged locally and
    never reach the caller. With async_dispatch enabled, entries are written
    by a single background worker in submission order.
    """

    def __init__(self, repository: AuditRepository, config: Optional[Dict[str, Any]] = None):
        """
        Initialize the compliance audit logger.

        Args:
            repository: Audit store collaborator
            config: Audit settings (enabled, sanitize_pii, async_dispatch)
        """
        self.repository = repository
        self.config = config or {}
        self.enabled = self.config.get("enabled", True)
        self.sanitize_pii = self.config.get("sanitize_pii", True)
        self.logger = logging.getLogger("compliance_audit")
        self.error_handler = ComplianceErrorHandler(self.logger)

        self._executor = None
        if self.config.get("async_dispatch", False):
            self._executor = concurrent.futures.ThreadPoolExecutor(
                max_workers=1, thread_name_prefix="compliance-audit"
            )
        self._pending: List[concurrent.futures.Future] = []
        self._pending_lock = threading.Lock()

    def record(self,
               session_id: str,
               action: AuditAction,
               details: Optional[Mapping[str, Any]] = None,
               severity: AuditSeverity = AuditSeverity.INFO,
               user_id: Optional[str] = None,
               organization_id: Optional[str] = None,
               component: str = "ComplianceEngine",
               success: bool = True,
               error_message: Optional[str] = None) -> Optional[str]:
        """
        Record one audit event. Never raises.

        Args:
            session_id: Session the event belongs to
            action: Lifecycle action
            details: Free-form event details
            severity: Audit severity
            user_id: Optional acting user
            organization_id: Optional organization
            component: Name of the emitting component
            success: Whether the audited operation succeeded
            error_message: Failure message for unsuccessful operations

        Returns:
            The entry ID, or None when auditing is disabled or the entry
            could not be built
        """
        if not self.enabled:
            return None

        try:
            entry = AuditEntry(
                session_id=session_id,
                action=AuditAction(action),
                component=component,
                details=dict(details or {}),
                severity=AuditSeverity(severity),
                success=success,
                user_id=user_id,
                organization_id=organization_id,
                error_message=error_message,
            )
            if self.sanitize_pii:
                entry = self._sanitize_entry(entry)
        except Exception as e:
            self._report_failure(e, session_id, action)
            return None

        if self._executor is None:
            self._store_entry(entry)
        else:
            self._dispatch(entry)
        return entry.entry_id

    def flush(self, timeout: Optional[float] = None) -> None:
        """Wait for entries queued by async dispatch to be written."""
        with self._pending_lock:
            pending, self._pending = self._pending, []
        concurrent.futures.wait(pending, timeout=timeout)

    def close(self) -> None:
        if self._executor is not None:
            self.flush()
            self._executor.shutdown(wait=True)
            self._executor = None

    # Lifecycle helpers

    def log_compliance_check_started(self, session_id: str, domain: str, jurisdiction: str,
                                     rule_count: int, content_length: int,
                                     user_id: Optional[str] = None,
                                     organization_id: Optional[str] = None) -> Optional[str]:
        return self.record(
            session_id, AuditAction.COMPLIANCE_CHECK_STARTED,
            {"domain": domain, "jurisdiction": jurisdiction,
             "rule_count": rule_count, "content_length": content_length},
            user_id=user_id, organization_id=organization_id, component="ComplianceValidator",
        )

    def log_compliance_check_completed(self, session_id: str, domain: str, result: ComplianceCheckResult,
                                       duration_ms: float, user_id: Optional[str] = None,
                                       organization_id: Optional[str] = None) -> Optional[str]:
        return self.record(
            session_id, AuditAction.COMPLIANCE_CHECK_COMPLETED,
            {"domain": domain,
             "violation_count": len(result.violations),
             "compliance_score": result.compliance_score,
             "overall_risk": result.overall_risk.value,
             "checked_rules": result.checked_rules,
             "duration_ms": round(duration_ms, 2)},
            severity=audit_severity_for(result.overall_risk),
            user_id=user_id, organization_id=organization_id, component="ComplianceValidator",
        )

    def log_compliance_check_failed(self, session_id: str, domain: str, error: BaseException,
                                    user_id: Optional[str] = None,
                                    organization_id: Optional[str] = None) -> Optional[str]:
        return self.record(
            session_id, AuditAction.COMPLIANCE_CHECK_FAILED,
            {"domain": domain, "error_type": type(error).__name__},
            severity=AuditSeverity.ERROR, user_id=user_id, organization_id=organization_id,
            component="ComplianceValidator", success=False, error_message=str(error),
        )

    def log_violation_detected(self, session_id: str, violation: ComplianceViolation,
                               user_id: Optional[str] = None,
                               organization_id: Optional[str] = None) -> Optional[str]:
        return self.record(
            session_id, AuditAction.VIOLATION_DETECTED,
            {"violation_id": violation.violation_id,
             "rule_id": violation.rule_id,
             "regulation": violation.rule.regulation,
             "domain": violation.rule.domain.value,
             "violation_type": violation.violation_type.value,
             "confidence": violation.confidence,
             "severity": violation.severity.value,
             "matched_text": violation.location.text},
            severity=audit_severity_for(violation.severity),
            user_id=user_id, organization_id=organization_id, component="ComplianceValidator",
        )

    def log_rule_applied(self, session_id: str, rule: ComplianceRule, violation_count: int) -> Optional[str]:
        return self.record(
            session_id, AuditAction.RULE_APPLIED,
            {"rule_id": rule.id, "regulation": rule.regulation, "domain": rule.domain.value,
             "violation_count": violation_count},
            component="ComplianceValidator",
        )

    def log_rule_skipped(self, session_id: str, rule: ComplianceRule, reason: str) -> Optional[str]:
        return self.record(
            session_id, AuditAction.RULE_SKIPPED,
            {"rule_id": rule.id, "regulation": rule.regulation, "domain": rule.domain.value,
             "reason": reason},
            component="ComplianceValidator",
        )

    def log_rule_created(self, rule: ComplianceRule, user_id: Optional[str] = None) -> Optional[str]:
        return self.record(
            RULE_MANAGEMENT_SESSION, AuditAction.RULE_CREATED,
            {"rule_id": rule.id, "regulation": rule.regulation, "domain": rule.domain.value,
             "severity": rule.severity.value},
            user_id=user_id, component="RulesEngine",
        )

    def log_rule_updated(self, rule: ComplianceRule, updates: Mapping[str, Any],
                         user_id: Optional[str] = None) -> Optional[str]:
        return self.record(
            RULE_MANAGEMENT_SESSION, AuditAction.RULE_UPDATED,
            {"rule_id": rule.id, "regulation": rule.regulation, "domain": rule.domain.value,
             "updates": sanitize_rule_updates(updates)},
            user_id=user_id, component="RulesEngine",
        )

    def log_rule_deleted(self, rule: ComplianceRule, user_id: Optional[str] = None) -> Optional[str]:
        return self.record(
            RULE_MANAGEMENT_SESSION, AuditAction.RULE_DELETED,
            {"rule_id": rule.id, "regulation": rule.regulation, "domain": rule.domain.value},
            severity=AuditSeverity.WARNING, user_id=user_id, component="RulesEngine",
        )

    def log_report_started(self, session_id: str, report_id: str, report_type: str, domain: str,
                           organization_id: Optional[str] = None) -> Optional[str]:
        return self.record(
            session_id, AuditAction.COMPLIANCE_REPORT_STARTED,
            {"report_id": report_id, "report_type": report_type, "domain": domain},
            organization_id=organization_id, component="ComplianceReporter",
        )

    def log_report_generated(self, session_id: str, report_id: str, violation_count: int,
                             compliance_score: int, organization_id: Optional[str] = None) -> Optional[str]:
        return self.record(
            session_id, AuditAction.COMPLIANCE_REPORT_GENERATED,
            {"report_id": report_id, "violation_count": violation_count,
             "compliance_score": compliance_score},
            organization_id=organization_id, component="ComplianceReporter",
        )

    def log_report_failed(self, session_id: str, report_id: str, error: BaseException,
                          organization_id: Optional[str] = None) -> Optional[str]:
        return self.record(
            session_id, AuditAction.COMPLIANCE_REPORT_FAILED,
            {"report_id": report_id, "error": str(error)},
            severity=AuditSeverity.ERROR, organization_id=organization_id,
            component="ComplianceReporter", success=False, error_message=str(error),
        )

    def log_report_exported(self, session_id: str, report_id: str, export_format: str,
                            user_id: Optional[str] = None) -> Optional[str]:
        return self.record(
            session_id, AuditAction.COMPLIANCE_REPORT_EXPORTED,
            {"report_id": report_id, "format": export_format},
            user_id=user_id, component="ComplianceReporter",
        )

    def log_remediation_started(self, session_id: str, violation: ComplianceViolation,
                                user_id: Optional[str] = None) -> Optional[str]:
        return self.record(
            session_id, AuditAction.REMEDIATION_STARTED,
            {"violation_id": violation.violation_id, "rule_id": violation.rule_id,
             "regulation": violation.rule.regulation},
            user_id=user_id, component="RemediationPlanner",
        )

    def log_remediation_completed(self, session_id: str, violation: ComplianceViolation,
                                  user_id: Optional[str] = None) -> Optional[str]:
        return self.record(
            session_id, AuditAction.REMEDIATION_COMPLETED,
            {"violation_id": violation.violation_id, "rule_id": violation.rule_id,
             "regulation": violation.rule.regulation},
            user_id=user_id, component="RemediationPlanner",
        )

    def log_threshold_exceeded(self, session_id: str, metric: str, value: float, threshold: float,
                               organization_id: Optional[str] = None) -> Optional[str]:
        return self.record(
            session_id, AuditAction.COMPLIANCE_THRESHOLD_EXCEEDED,
            {"metric": metric, "value": value, "threshold": threshold},
            severity=AuditSeverity.WARNING, organization_id=organization_id,
            component="ComplianceValidator",
        )

    # Query surface

    def query_events(self, query: Optional[AuditQuery] = None) -> List[AuditEntry]:
        return self.repository.query_entries(query or AuditQuery())

    def get_session_trail(self, session_id: str) -> List[AuditEntry]:
        return self.repository.get_entries_by_session(session_id)

    def generate_audit_summary(self, query: Optional[AuditQuery] = None) -> AuditSummary:
        """
        Aggregate audit events matching a filter.

        Args:
            query: Filter to apply; its limit and offset are ignored

        Returns:
            Counts by action and severity, category totals, time range and
            the most active rules and users
        """
        query = dataclasses.replace(query or AuditQuery(), limit=SUMMARY_QUERY_LIMIT, offset=0)
        events = self.query_events(query)

        events_by_action: Dict[str, int] = {}
        events_by_severity: Dict[str, int] = {}
        rule_counts: Dict[tuple, int] = {}
        user_counts: Dict[str, int] = {}

        for event in events:
            events_by_action[event.action.value] = events_by_action.get(event.action.value, 0) + 1
            events_by_severity[event.severity.value] = events_by_severity.get(event.severity.value, 0) + 1

            rule_id = event.details.get("rule_id")
            if rule_id:
                key = (rule_id, event.details.get("regulation") or "Unknown")
                rule_counts[key] = rule_counts.get(key, 0) + 1
            if event.user_id:
                user_counts[event.user_id] = user_counts.get(event.user_id, 0) + 1

        top_rules = sorted(rule_counts.items(), key=lambda item: item[1], reverse=True)[:TOP_N]
        top_users = sorted(user_counts.items(), key=lambda item: item[1], reverse=True)[:TOP_N]
        timestamps = sorted(event.timestamp for event in events)

        return AuditSummary(
            total_events=len(events),
            events_by_action=events_by_action,
            events_by_severity=events_by_severity,
            violation_events=sum(1 for e in events if e.action in VIOLATION_ACTIONS),
            remediation_events=sum(1 for e in events if e.action in REMEDIATION_ACTIONS),
            rule_management_events=sum(1 for e in events if e.action in RULE_MANAGEMENT_ACTIONS),
            reporting_events=sum(1 for e in events if e.action in REPORTING_ACTIONS),
            time_range=(timestamps[0], timestamps[-1]) if timestamps else (None, None),
            top_rules=[RuleEventCount(rule_id, regulation, count) for (rule_id, regulation), count in top_rules],
            top_users=[UserEventCount(user_id, count) for user_id, count in top_users],
        )

    # Internals

    def _dispatch(self, entry: AuditEntry):
        try:
            future = self._executor.submit(self._store_entry, entry)
        except RuntimeError as e:
            # executor already shut down
            self._report_failure(e, entry.session_id, entry.action)
            return
        with self._pending_lock:
            self._pending = [f for f in self._pending if not f.done()]
            self._pending.append(future)

    def _store_entry(self, entry: AuditEntry):
        """Write an entry, logging and dropping it on failure."""
        try:
            self.repository.create_entry(entry)
        except Exception as e:
            self._report_failure(e, entry.session_id, entry.action)

    def _report_failure(self, error: Exception, session_id: str, action):
        self.error_handler.handle_error(
            error,
            context={"component": "ComplianceAuditLogger", "session_id": session_id,
                     "action": getattr(action, "value", action)},
            category=ErrorCategory.AUDIT,
            severity=ErrorSeverity.ERROR,
        )

    def _sanitize_entry(self, entry: AuditEntry) -> AuditEntry:
        """Redact PII from entry details."""
        details = dict(entry.details)
        for key in SENSITIVE_DETAIL_KEYS:
            if isinstance(details.get(key), str):
                details[key] = redact_text(details[key])

        if "user_details" in details:
            user_details = details["user_details"]
            if isinstance(user_details, dict):
                safe_fields = ["role", "access_level", "authenticated"]
                details["user_details"] = {k: user_details[k] for k in safe_fields if k in user_details}
            else:
                del details["user_details"]

        return dataclasses.replace(entry, details=details)


def redact_text(text: str) -> str:
    """Redact potentially sensitive information from text."""
    if not text:
        return text

    redacted = text
    for pattern, replacement in PII_PATTERNS:
        redacted = pattern.sub(replacement, redacted)
    return redacted


def sanitize_rule_updates(updates: Mapping[str, Any]) -> Dict[str, Any]:
    """Keep only audited rule fields, as plain JSON-friendly values."""
    sanitized = {}
    for key in AUDITED_RULE_FIELDS:
        if key not in updates:
            continue
        value = updates[key]
        if hasattr(value, "isoformat"):
            value = value.isoformat()
        elif hasattr(value, "value"):
            value = value.value
        sanitized[key] = value
    return sanitized
