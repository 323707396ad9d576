import concurrent.futures
import datetime
import logging
import time
import uuid
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from src.compliance.frameworks.compliance_processor_base import ViolationChecker
from src.compliance.frameworks.gdpr import GDPRChecker
from src.compliance.frameworks.hipaa import HIPAAChecker
from src.compliance.frameworks.rule_checker import RuleDrivenChecker
from src.compliance.frameworks.sox import SOXChecker
from src.compliance.knowledge_base.rule_repository import ComplianceRepository
from src.compliance.knowledge_base.rules_engine import RulesEngine
from src.compliance.models.compliance_models import (
    ComplianceCheckResult, ComplianceRule, ComplianceViolation, Domain
)
from src.compliance.reasoning.impact_analyzer import (
    compliance_score, overall_risk, severity_histogram
)
from src.compliance.verification.semantic_compliance_checker import (
    ContradictionChecker, RequiredDisclosureChecker
)

logger = logging.getLogger("compliance.validator")

ContentInput = Union[str, Mapping[str, Any]]

INDUSTRY_CHECKERS = {
    Domain.HEALTHCARE: HIPAAChecker,
    Domain.FINANCIAL: SOXChecker,
    Domain.LEGAL: GDPRChecker,
}

_TEXT_KEYS = ("text", "extracted_text", "extractedText")


def extract_text(content: ContentInput) -> str:
    """Plain text of a content payload: a string, or a mapping with a text field."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    for key in _TEXT_KEYS:
        value = content.get(key)
        if isinstance(value, str):
            return value
    return ""


def build_check_result(violations: Sequence[ComplianceViolation],
                       rules: Sequence[ComplianceRule]) -> ComplianceCheckResult:
    """Aggregate score and risk level for a set of violations."""
    return ComplianceCheckResult(
        violations=tuple(violations),
        overall_risk=overall_risk(severity_histogram(violations)),
        compliance_score=compliance_score(violations),
        checked_rules=len(rules),
        applicable_rules=tuple(rules),
    )


class ComplianceValidator:
    """
    Validates content against applicable compliance rules with a set of
    independent checkers run concurrently.
    """

    def __init__(self, rules_engine: RulesEngine,
                 repository: Optional[ComplianceRepository] = None,
                 audit_logger=None,
                 config: Optional[Dict[str, Any]] = None,
                 clock=None):
        """
        Initialize the compliance validator.

        Args:
            rules_engine: Source of applicable rules
            repository: Optional rule store used to record violations per session
            audit_logger: Optional ComplianceAuditLogger
            config: Validator settings
            clock: Callable returning the current datetime
        """
        self.rules_engine = rules_engine
        self.repository = repository
        self.audit_logger = audit_logger
        self.config = config or {}
        self.max_workers = self.config.get("max_workers")
        self.contradiction_detection_enabled = self.config.get("contradiction_detection_enabled", True)
        self.required_disclosures_enabled = self.config.get("required_disclosures_enabled", False)
        self.industry_checkers_enabled = self.config.get("industry_checkers_enabled", True)
        self.audit_each_violation = self.config.get("audit_each_violation", True)
        self.score_alert_threshold = self.config.get("score_alert_threshold", 50)

        clock = clock or datetime.datetime.now
        # Fixed checkers are stateless; their rule snapshots are built once
        self.industry_checkers: Dict[Domain, ViolationChecker] = {
            domain: checker_cls(clock=clock) for domain, checker_cls in INDUSTRY_CHECKERS.items()
        }
        self.contradiction_checker = ContradictionChecker(clock=clock)
        self.disclosure_checkers = {domain: RequiredDisclosureChecker(domain, clock=clock) for domain in Domain}

    def build_checkers(self, domain: Domain, rules: Sequence[ComplianceRule]) -> List[ViolationChecker]:
        """Checker set for one validation call, in dispatch order."""
        domain = Domain(domain)
        checkers: List[ViolationChecker] = [RuleDrivenChecker(rules, self.config)]

        if self.industry_checkers_enabled and domain in self.industry_checkers:
            checkers.append(self.industry_checkers[domain])
        if self.contradiction_detection_enabled:
            checkers.append(self.contradiction_checker)
        if self.required_disclosures_enabled:
            checkers.append(self.disclosure_checkers[domain])
        return checkers

    def validate_compliance(self,
                            content: ContentInput,
                            domain: Domain,
                            jurisdiction: str = "US",
                            session_id: Optional[str] = None,
                            user_id: Optional[str] = None,
                            organization_id: Optional[str] = None) -> ComplianceCheckResult:
        """
        Validate content against every rule applicable to domain and jurisdiction.

        Args:
            content: Text, or a mapping with a "text"/"extracted_text" field
            domain: Regulatory domain
            jurisdiction: Jurisdiction code; GLOBAL rules always apply
            session_id: Optional session; violations are recorded against it
            user_id: Optional acting user for the audit trail
            organization_id: Optional organization for the audit trail

        Returns:
            Check result with violations, score and overall risk
        """
        domain = Domain(domain)
        text = extract_text(content)
        audit_session = session_id or f"validation-{uuid.uuid4().hex[:12]}"
        started = time.perf_counter()

        try:
            # Rules are fully loaded before any checker is dispatched
            rules = self.rules_engine.get_applicable_rules(domain, jurisdiction)
            if self.audit_logger:
                self.audit_logger.log_compliance_check_started(
                    audit_session, domain.value, jurisdiction, len(rules), len(text),
                    user_id=user_id, organization_id=organization_id,
                )

            checkers = self.build_checkers(domain, rules)
            violations = self._run_checkers(checkers, text)
            result = build_check_result(violations, rules)
        except Exception as e:
            logger.error(f"Compliance validation failed for {domain.value}/{jurisdiction}: {str(e)}")
            if self.audit_logger:
                self.audit_logger.log_compliance_check_failed(
                    audit_session, domain.value, e, user_id=user_id, organization_id=organization_id
                )
            raise

        if session_id:
            self._record_violations(result.violations, session_id)
        self._audit_result(audit_session, domain, result, started, user_id, organization_id)

        logger.info(
            f"Validated {len(text)} chars for {domain.value}/{jurisdiction}: "
            f"{len(result.violations)} violations, score {result.compliance_score}, "
            f"risk {result.overall_risk.value}"
        )
        return result

    def _run_checkers(self, checkers: Sequence[ViolationChecker], text: str) -> List[ComplianceViolation]:
        """Fan out to every checker, then concatenate in dispatch order."""
        if len(checkers) == 1:
            return list(checkers[0].detect_violations(text))

        max_workers = self.max_workers or len(checkers)
        with concurrent.futures.ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = [executor.submit(checker.detect_violations, text) for checker in checkers]
            violations = []
            for checker, future in zip(checkers, futures):
                found = future.result()
                logger.debug(f"Checker {checker.name}: {len(found)} violations")
                violations.extend(found)
        return violations

    def _record_violations(self, violations: Sequence[ComplianceViolation], session_id: str):
        if self.repository is None:
            return
        for violation in violations:
            try:
                self.repository.record_violation(violation, session_id=session_id)
            except Exception as e:
                # Statistics only; the check result is already complete
                logger.error(f"Failed to record violation {violation.violation_id}: {str(e)}")

    def _audit_result(self, session_id: str, domain: Domain, result: ComplianceCheckResult,
                      started: float, user_id: Optional[str], organization_id: Optional[str]):
        if not self.audit_logger:
            return

        if self.audit_each_violation:
            for violation in result.violations:
                self.audit_logger.log_violation_detected(
                    session_id, violation, user_id=user_id, organization_id=organization_id
                )

        for rule in result.applicable_rules:
            count = sum(1 for v in result.violations if v.rule_id == rule.id)
            self.audit_logger.log_rule_applied(session_id, rule, count)

        if result.compliance_score < self.score_alert_threshold:
            self.audit_logger.log_threshold_exceeded(
                session_id, "compliance_score", result.compliance_score, self.score_alert_threshold,
                organization_id=organization_id,
            )

        duration_ms = (time.perf_counter() - started) * 1000
        self.audit_logger.log_compliance_check_completed(
            session_id, domain.value, result, duration_ms,
            user_id=user_id, organization_id=organization_id,
        )
