"""
Risk and confidence scoring for compliance violations.

Every ordering, weight and threshold used by the checkers, the validator and
the reporter lives in the tables below so the components cannot drift apart.
All functions are pure and total.
"""
import math
from dataclasses import dataclass
from typing import Dict, Iterable, Mapping, Tuple

from src.compliance.models.audit_models import AuditSeverity
from src.compliance.models.compliance_models import (
    ComplianceViolation, Domain, RemediationEffort, RiskLevel, Severity, Urgency, ViolationType
)
from src.utils.text.regex_pattern_matcher import matching_terms

SEVERITY_ORDER: Tuple[Severity, ...] = (
    Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL
)

SEVERITY_PENALTIES: Dict[Severity, int] = {
    Severity.CRITICAL: 25,
    Severity.HIGH: 15,
    Severity.MEDIUM: 8,
    Severity.LOW: 3,
}

REMEDIATION_WEIGHTS: Dict[Severity, int] = {
    Severity.CRITICAL: 100,
    Severity.HIGH: 75,
    Severity.MEDIUM: 50,
    Severity.LOW: 25,
}

PATTERN_CONFIDENCE_BONUS: Dict[Severity, int] = {
    Severity.CRITICAL: 5,
    Severity.HIGH: 3,
    Severity.MEDIUM: 1,
    Severity.LOW: 0,
}

URGENCY_BY_SEVERITY: Dict[Severity, Urgency] = {
    Severity.CRITICAL: Urgency.IMMEDIATE,
    Severity.HIGH: Urgency.HIGH,
    Severity.MEDIUM: Urgency.MEDIUM,
    Severity.LOW: Urgency.LOW,
}

# Shared by risk levels and severities, both use the same four values
AUDIT_SEVERITY_BY_LEVEL: Dict[str, AuditSeverity] = {
    "critical": AuditSeverity.CRITICAL,
    "high": AuditSeverity.ERROR,
    "medium": AuditSeverity.WARNING,
    "low": AuditSeverity.INFO,
}

HIGH_IMPACT_DOMAINS = frozenset({Domain.HEALTHCARE, Domain.FINANCIAL})

MAX_SCORE = 100


@dataclass(frozen=True)
class IndicatorGroup:
    """Phrases that move a contextual risk score by a fixed weight."""
    phrases: Tuple[str, ...]
    weight: float
    first_match_only: bool = False


@dataclass(frozen=True)
class ContextualRiskProfile:
    base: float
    groups: Tuple[IndicatorGroup, ...]


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def severity_rank(severity: Severity) -> int:
    return SEVERITY_ORDER.index(Severity(severity))


def assess_contextual_risk(context: str, profile: ContextualRiskProfile) -> float:
    """
    Score the risk that a keyword hit is a real violation.

    Args:
        context: Text window around the hit
        profile: Base score and indicator groups to apply

    Returns:
        Risk in [0, 1], clipped before any scaling
    """
    score = profile.base
    for group in profile.groups:
        found = matching_terms(context, group.phrases)
        if not found:
            continue
        score += group.weight if group.first_match_only else group.weight * len(found)
    # rounded so sums like 0.3 + 0.3 compare exactly against thresholds
    return round(min(1.0, max(0.0, score)), 6)


def risk_confidence(risk: float) -> int:
    """Scale a clipped [0, 1] risk to a 0-100 confidence."""
    return _round_half_up(min(1.0, max(0.0, risk)) * MAX_SCORE)


def pattern_confidence(base: int, severity: Severity) -> int:
    return min(MAX_SCORE, base + PATTERN_CONFIDENCE_BONUS[Severity(severity)])


def escalate_severity(severity: Severity, domain: Domain) -> Severity:
    """Raise severity one level for high-impact domains, capped at critical."""
    severity = Severity(severity)
    if Domain(domain) not in HIGH_IMPACT_DOMAINS:
        return severity
    return SEVERITY_ORDER[min(severity_rank(severity) + 1, len(SEVERITY_ORDER) - 1)]


def urgency_for(severity: Severity) -> Urgency:
    return URGENCY_BY_SEVERITY[Severity(severity)]


def normalize_histogram(counts: Mapping) -> Dict[Severity, int]:
    """Severity histogram from a mapping keyed by Severity or its string value."""
    histogram = {severity: 0 for severity in SEVERITY_ORDER}
    known = {severity.value for severity in SEVERITY_ORDER}
    for key, count in counts.items():
        value = key.value if isinstance(key, Severity) else key
        if value in known:
            histogram[Severity(value)] += count
    return histogram


def severity_histogram(violations: Iterable[ComplianceViolation]) -> Dict[Severity, int]:
    histogram = {severity: 0 for severity in SEVERITY_ORDER}
    for violation in violations:
        histogram[Severity(violation.severity)] += 1
    return histogram


def score_from_counts(counts: Mapping) -> int:
    """100 minus the weighted penalty of each severity count, floored at 0."""
    histogram = normalize_histogram(counts)
    penalty = sum(SEVERITY_PENALTIES[severity] * count for severity, count in histogram.items())
    return max(0, MAX_SCORE - penalty)


def compliance_score(violations: Iterable[ComplianceViolation]) -> int:
    return score_from_counts(severity_histogram(violations))


def overall_risk(counts: Mapping) -> RiskLevel:
    """Risk level derived only from the severity histogram."""
    histogram = normalize_histogram(counts)
    critical = histogram[Severity.CRITICAL]
    high = histogram[Severity.HIGH]
    medium = histogram[Severity.MEDIUM]

    if critical > 0 or high > 2:
        return RiskLevel.CRITICAL
    if high > 0 or medium > 5:
        return RiskLevel.HIGH
    if medium > 0:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def remediation_priority(severity: Severity, confidence: int) -> int:
    return _round_half_up(REMEDIATION_WEIGHTS[Severity(severity)] * confidence / MAX_SCORE)


def remediation_effort(violation: ComplianceViolation) -> RemediationEffort:
    if violation.violation_type == ViolationType.SEMANTIC_MATCH:
        return RemediationEffort.HIGH
    if violation.severity in (Severity.CRITICAL, Severity.HIGH):
        return RemediationEffort.MEDIUM
    return RemediationEffort.LOW


def audit_severity_for(level: str) -> AuditSeverity:
    value = level.value if hasattr(level, "value") else level
    return AUDIT_SEVERITY_BY_LEVEL.get(value, AuditSeverity.INFO)


# Contextual risk profiles used by the keyword checks

BENIGN_CONTEXT_PHRASES = (
    "system", "portal", "software", "application", "update", "interface",
    "user experience", "technology", "platform", "service",
)

DOMAIN_RISK_PHRASES: Dict[Domain, Tuple[str, ...]] = {
    Domain.HEALTHCARE: (
        "patient", "diagnosis", "treatment", "medical", "health",
        "ssn", "social security", "record", "prescription",
    ),
    Domain.FINANCIAL: ("investment", "profit", "loss", "money", "financial"),
    Domain.LEGAL: ("contract", "agreement", "legal", "liability", "rights"),
    Domain.INSURANCE: ("claim", "coverage", "policy", "premium", "benefit"),
}

SENSITIVE_DATA_PHRASES = ("personal", "confidential", "private", "sensitive")


def generic_risk_profile(domain: Domain) -> ContextualRiskProfile:
    """Profile for keywords of data-driven rules in the given domain."""
    return ContextualRiskProfile(
        base=0.3,
        groups=(
            IndicatorGroup(BENIGN_CONTEXT_PHRASES, -0.2),
            IndicatorGroup(DOMAIN_RISK_PHRASES[Domain(domain)], 0.2),
            IndicatorGroup(SENSITIVE_DATA_PHRASES, 0.3),
        ),
    )


HIPAA_RISK_PROFILE = ContextualRiskProfile(
    base=0.3,
    groups=(
        IndicatorGroup(
            ("john", "jane", "smith", "doe", "has", "diagnosed", "suffers",
             "condition", "mr.", "mrs.", "ms.", "dr.", "years old", "born",
             "date of birth", "ssn", "medical record"),
            0.3,
            first_match_only=True,
        ),
        IndicatorGroup(
            ("de-identified", "deidentified", "anonymized", "aggregate",
             "portal", "system", "software"),
            -0.2,
        ),
    ),
)

GDPR_RISK_PROFILE = ContextualRiskProfile(
    base=0.3,
    groups=(
        IndicatorGroup(
            ("collect", "store", "process", "share", "transfer",
             "without consent", "automatically", "third party"),
            0.3,
        ),
        IndicatorGroup(
            ("with consent", "lawful basis", "legitimate interest",
             "data protection", "privacy policy", "opt-in"),
            -0.2,
        ),
    ),
)

SOX_RISK_PROFILE = ContextualRiskProfile(
    base=0.3,
    groups=(
        IndicatorGroup(
            ("no material", "no significant", "no deficiencies", "no issues",
             "none", "zero", "never", "always", "guaranteed"),
            0.4,
            first_match_only=True,
        ),
        IndicatorGroup(("minimal", "insignificant", "unlikely", "certain"), 0.2, first_match_only=True),
        IndicatorGroup(("potential", "possible", "may", "could", "might"), -0.1, first_match_only=True),
    ),
)
