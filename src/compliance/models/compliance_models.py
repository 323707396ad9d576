import datetime
import uuid
from dataclasses import dataclass, field, fields as dataclass_fields, replace
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple


class Domain(str, Enum):
    """Regulatory domains a rule can belong to."""
    LEGAL = "legal"
    FINANCIAL = "financial"
    HEALTHCARE = "healthcare"
    INSURANCE = "insurance"


class Severity(str, Enum):
    """Violation severity, ordered from least to most severe."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ViolationType(str, Enum):
    KEYWORD_MATCH = "keyword_match"
    PATTERN_MATCH = "pattern_match"
    SEMANTIC_MATCH = "semantic_match"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Urgency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    IMMEDIATE = "immediate"


class RemediationEffort(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RemediationStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    DEFERRED = "deferred"


GLOBAL_JURISDICTION = "GLOBAL"

# camelCase keys accepted when rules arrive in the storage wire shape
RULE_KEY_ALIASES = {
    "ruleText": "rule_text",
    "isActive": "is_active",
    "lastUpdated": "last_updated",
}


def parse_timestamp(value: Any) -> datetime.datetime:
    if isinstance(value, str):
        value = datetime.datetime.fromisoformat(value)
    if isinstance(value, datetime.datetime):
        # rule ages are compared against a naive clock
        if value.tzinfo is not None:
            value = value.astimezone(datetime.timezone.utc).replace(tzinfo=None)
        return value
    if isinstance(value, datetime.date):
        return datetime.datetime(value.year, value.month, value.day)
    raise ValueError(f"Unsupported timestamp value: {value!r}")


@dataclass(frozen=True)
class ComplianceRule:
    """A single compliance rule owned by the rule store."""
    id: str
    rule_text: str
    regulation: str
    jurisdiction: str
    domain: Domain
    severity: Severity
    keywords: Tuple[str, ...] = ()
    patterns: Tuple[str, ...] = ()
    examples: Tuple[str, ...] = ()
    is_active: bool = True
    last_updated: datetime.datetime = field(default_factory=datetime.datetime.now)

    def with_updates(self, **changes) -> "ComplianceRule":
        """Return a copy with the given fields replaced."""
        return replace(self, **_normalize_rule_fields(changes))

    def applies_to(self, domain: Domain, jurisdiction: str) -> bool:
        """Whether this rule is active for the domain and jurisdiction."""
        if not self.is_active or self.domain != domain:
            return False
        return self.jurisdiction == GLOBAL_JURISDICTION or self.jurisdiction == jurisdiction

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ComplianceRule":
        """
        Build a rule from a plain mapping.

        Args:
            data: Rule fields, in snake_case or the camelCase storage shape

        Returns:
            The constructed rule
        """
        fields = _normalize_rule_fields(data)
        if not fields.get("id"):
            fields["id"] = f"rule-{uuid.uuid4().hex[:12]}"
        return cls(**fields)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "rule_text": self.rule_text,
            "regulation": self.regulation,
            "jurisdiction": self.jurisdiction,
            "domain": self.domain.value,
            "severity": self.severity.value,
            "keywords": list(self.keywords),
            "patterns": list(self.patterns),
            "examples": list(self.examples),
            "is_active": self.is_active,
            "last_updated": self.last_updated.isoformat(),
        }


RULE_FIELDS = frozenset(f.name for f in dataclass_fields(ComplianceRule))


def _normalize_rule_fields(data: Mapping[str, Any]) -> Dict[str, Any]:
    fields = {}
    for key, value in data.items():
        key = RULE_KEY_ALIASES.get(key, key)
        if key not in RULE_FIELDS:
            raise ValueError(f"Unknown rule field: {key}")
        if key == "domain":
            value = Domain(value)
        elif key == "severity":
            value = Severity(value)
        elif key in ("keywords", "patterns", "examples"):
            value = tuple(value or ())
        elif key == "last_updated":
            if value is None:
                continue
            value = parse_timestamp(value)
        fields[key] = value
    return fields


@dataclass(frozen=True)
class TextSpan:
    """Location of a match inside the checked content."""
    start: int
    end: int
    text: str


@dataclass(frozen=True)
class ComplianceViolation:
    """A single detected match. Immutable once created."""
    rule_id: str
    rule: ComplianceRule
    violation_type: ViolationType
    location: TextSpan
    confidence: int
    severity: Severity
    description: str
    regulatory_reference: str
    suggested_fix: Optional[str] = None
    violation_id: str = field(default_factory=lambda: str(uuid.uuid4()), compare=False)


@dataclass(frozen=True)
class ComplianceCheckResult:
    """Outcome of one validation call."""
    violations: Tuple[ComplianceViolation, ...]
    overall_risk: RiskLevel
    compliance_score: int
    checked_rules: int
    applicable_rules: Tuple[ComplianceRule, ...] = ()

    @property
    def is_compliant(self) -> bool:
        return not self.violations

    def severity_histogram(self) -> Dict[Severity, int]:
        histogram = {severity: 0 for severity in Severity}
        for violation in self.violations:
            histogram[violation.severity] += 1
        return histogram


@dataclass(frozen=True)
class RemediationPlan:
    """Prioritized action list for a single violation."""
    priority: int
    estimated_effort: RemediationEffort
    suggested_actions: Tuple[str, ...]
    status: RemediationStatus = RemediationStatus.PENDING
    deadline: Optional[datetime.datetime] = None
    assigned_to: Optional[str] = None


@dataclass(frozen=True)
class RuleValidationResult:
    is_valid: bool
    errors: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ViolationTrendPoint:
    date: datetime.date
    count: int


@dataclass(frozen=True)
class ViolationStats:
    """Aggregated violation statistics returned by the rule store."""
    total_violations: int
    violations_by_severity: Dict[str, int]
    violations_by_rule: Dict[str, int]
    trends_over_time: List[ViolationTrendPoint] = field(default_factory=list)
