import datetime
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

from src.compliance.models.compliance_models import (
    ComplianceRule, ComplianceViolation, Domain, Severity, ViolationStats, ViolationTrendPoint
)
from src.utils.error.compliance_error import RuleNotFoundError

TimeRange = Tuple[datetime.datetime, datetime.datetime]


@dataclass(frozen=True)
class RecordedViolation:
    """A violation as persisted by the rule store."""
    violation: ComplianceViolation
    session_id: Optional[str]
    recorded_at: datetime.datetime


class ComplianceRepository(ABC):
    """Persistence collaborator for rules and recorded violations."""

    @abstractmethod
    def create_rule(self, rule: ComplianceRule) -> ComplianceRule:
        pass

    @abstractmethod
    def update_rule(self, rule_id: str, updates: Mapping[str, Any]) -> ComplianceRule:
        pass

    @abstractmethod
    def delete_rule(self, rule_id: str) -> bool:
        pass

    @abstractmethod
    def get_rule_by_id(self, rule_id: str) -> Optional[ComplianceRule]:
        pass

    @abstractmethod
    def get_rules_by_domain(self, domain: Domain, jurisdiction: Optional[str] = None) -> List[ComplianceRule]:
        pass

    @abstractmethod
    def get_all_rules(self) -> List[ComplianceRule]:
        pass

    @abstractmethod
    def record_violation(self, violation: ComplianceViolation, session_id: Optional[str] = None) -> None:
        pass

    @abstractmethod
    def get_violations_by_session(self, session_id: str) -> List[ComplianceViolation]:
        pass

    @abstractmethod
    def get_violations_by_rule(self, rule_id: str) -> List[RecordedViolation]:
        pass

    @abstractmethod
    def get_violation_stats(self, domain: Optional[Domain] = None,
                            time_range: Optional[TimeRange] = None) -> ViolationStats:
        pass


class InMemoryComplianceRepository(ComplianceRepository):
    """
    Rule store kept in process memory.

    Writers replace the rule snapshot under a lock, so readers always see
    either the state before or after a mutation.
    """

    def __init__(self, rules: Optional[List[ComplianceRule]] = None, clock=None):
        self._lock = threading.Lock()
        self._rules: Dict[str, ComplianceRule] = {rule.id: rule for rule in (rules or [])}
        self._violations: List[RecordedViolation] = []
        self._clock = clock or datetime.datetime.now

    def create_rule(self, rule: ComplianceRule) -> ComplianceRule:
        with self._lock:
            rules = dict(self._rules)
            rules[rule.id] = rule
            self._rules = rules
        return rule

    def update_rule(self, rule_id: str, updates: Mapping[str, Any]) -> ComplianceRule:
        with self._lock:
            current = self._rules.get(rule_id)
            if current is None:
                raise RuleNotFoundError(rule_id)
            updated = current.with_updates(**{k: v for k, v in updates.items() if k != "id"})
            rules = dict(self._rules)
            rules[rule_id] = updated
            self._rules = rules
        return updated

    def delete_rule(self, rule_id: str) -> bool:
        with self._lock:
            if rule_id not in self._rules:
                return False
            rules = dict(self._rules)
            del rules[rule_id]
            self._rules = rules
        return True

    def get_rule_by_id(self, rule_id: str) -> Optional[ComplianceRule]:
        return self._rules.get(rule_id)

    def get_rules_by_domain(self, domain: Domain, jurisdiction: Optional[str] = None) -> List[ComplianceRule]:
        rules = self._rules.values()
        return [
            rule for rule in rules
            if rule.domain == Domain(domain) and (jurisdiction is None or rule.jurisdiction == jurisdiction)
        ]

    def get_all_rules(self) -> List[ComplianceRule]:
        return list(self._rules.values())

    def record_violation(self, violation: ComplianceViolation, session_id: Optional[str] = None) -> None:
        with self._lock:
            self._violations.append(RecordedViolation(violation, session_id, self._clock()))

    def get_violations_by_session(self, session_id: str) -> List[ComplianceViolation]:
        return [r.violation for r in list(self._violations) if r.session_id == session_id]

    def get_violations_by_rule(self, rule_id: str) -> List[RecordedViolation]:
        return [r for r in list(self._violations) if r.violation.rule_id == rule_id]

    def get_violation_stats(self, domain: Optional[Domain] = None,
                            time_range: Optional[TimeRange] = None) -> ViolationStats:
        """
        Aggregate recorded violations.

        Args:
            domain: Only count violations whose rule belongs to this domain
            time_range: Inclusive (start, end) window on the recording time

        Returns:
            Totals by severity and rule, plus per-day counts in date order
        """
        by_severity = {severity.value: 0 for severity in Severity}
        by_rule: Dict[str, int] = {}
        by_day: Dict[datetime.date, int] = {}
        total = 0

        for record in list(self._violations):
            violation = record.violation
            if domain is not None and violation.rule.domain != Domain(domain):
                continue
            if time_range is not None and not (time_range[0] <= record.recorded_at <= time_range[1]):
                continue
            total += 1
            by_severity[Severity(violation.severity).value] += 1
            by_rule[violation.rule_id] = by_rule.get(violation.rule_id, 0) + 1
            day = record.recorded_at.date()
            by_day[day] = by_day.get(day, 0) + 1

        return ViolationStats(
            total_violations=total,
            violations_by_severity=by_severity,
            violations_by_rule=by_rule,
            trends_over_time=[ViolationTrendPoint(day, count) for day, count in sorted(by_day.items())]
        )


def default_rules(now: Optional[datetime.datetime] = None) -> List[ComplianceRule]:
    """Baseline rules a fresh store is seeded with."""
    now = now or datetime.datetime.now()
    return [
        ComplianceRule(
            id="hipaa-phi-001",
            rule_text="Protected Health Information (PHI) must not be disclosed without proper authorization",
            regulation="HIPAA",
            jurisdiction="US",
            domain=Domain.HEALTHCARE,
            severity=Severity.CRITICAL,
            keywords=("ssn", "social security", "patient", "diagnosis", "medical record", "health information"),
            patterns=(
                r"\b\d{3}-\d{2}-\d{4}\b",
                r"\b[A-Z][a-z]+ [A-Z][a-z]+ (has|diagnosed with|suffers from)\b",
            ),
            examples=("Patient John Doe has diabetes", "SSN: 123-45-6789 diagnosed with cancer"),
            last_updated=now,
        ),
        ComplianceRule(
            id="sox-financial-001",
            rule_text="Financial statements must be accurate and not misleading",
            regulation="SOX",
            jurisdiction="US",
            domain=Domain.FINANCIAL,
            severity=Severity.CRITICAL,
            keywords=("revenue", "profit", "loss", "material weakness", "internal controls", "financial statement"),
            patterns=(
                r"\b(revenue|profit|earnings)\s+(increased|decreased)\s+by\s+\d{3,}%",
                r"\bno\s+material\s+weaknesses?\b",
            ),
            examples=("Revenue increased by 500% this quarter", "No material weaknesses identified"),
            last_updated=now,
        ),
        ComplianceRule(
            id="gdpr-privacy-001",
            rule_text="Personal data processing requires explicit consent",
            regulation="GDPR",
            jurisdiction="EU",
            domain=Domain.LEGAL,
            severity=Severity.HIGH,
            keywords=("personal data", "consent", "data subject", "processing", "third party", "data sharing"),
            patterns=(
                r"\b(collect|process|share)\s+.*\s+(without|no)\s+consent\b",
                r"\bpersonal\s+data\s+.*\s+automatically\s+(shared|processed)\b",
            ),
            examples=("We collect user data without consent", "Personal data is automatically shared"),
            last_updated=now,
        ),
        ComplianceRule(
            id="insurance-claim-001",
            rule_text="Insurance claims must be processed fairly without discrimination",
            regulation="State Insurance Code",
            jurisdiction="US",
            domain=Domain.INSURANCE,
            severity=Severity.HIGH,
            keywords=("claim denial", "discrimination", "unfair practice", "automatic rejection", "bias"),
            patterns=(
                r"\b(automatically|always)\s+(deny|reject)\s+claims?\b",
                r"\b(age|race|gender|zip\s+code)\s+based\s+(denial|rejection)\b",
            ),
            examples=("We automatically deny claims over $10,000", "Age based denial policy"),
            last_updated=now,
        ),
    ]
