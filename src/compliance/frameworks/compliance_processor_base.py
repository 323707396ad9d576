import datetime
from dataclasses import dataclass
from typing import List, Optional, Protocol, Tuple, runtime_checkable

from src.compliance.models.compliance_models import (
    ComplianceRule, ComplianceViolation, Domain, Severity, TextSpan, ViolationType
)
from src.utils.text.regex_pattern_matcher import TextMatch, find_phrase


@runtime_checkable
class ViolationChecker(Protocol):
    """Capability shared by every detection strategy."""
    name: str

    def detect_violations(self, content: str) -> List[ComplianceViolation]:
        ...


@dataclass(frozen=True)
class PatternSpec:
    """Hard-coded pattern of an industry checker."""
    name: str
    pattern: str
    severity: Severity
    description: str


@dataclass(frozen=True)
class KeywordSpec:
    keyword: str
    severity: Severity


def slug(text: str) -> str:
    return "-".join(text.lower().split())


def checker_rule(rule_id: str, rule_text: str, regulation: str, domain: Domain,
                 severity: Severity, established: datetime.datetime,
                 jurisdiction: str = "US",
                 keywords: Tuple[str, ...] = (),
                 patterns: Tuple[str, ...] = ()) -> ComplianceRule:
    """Rule snapshot embedded in violations raised by fixed checkers."""
    return ComplianceRule(
        id=rule_id,
        rule_text=rule_text,
        regulation=regulation,
        jurisdiction=jurisdiction,
        domain=domain,
        severity=severity,
        keywords=keywords,
        patterns=patterns,
        last_updated=established,
    )


def make_violation(rule: ComplianceRule, violation_type: ViolationType,
                   match: TextMatch, confidence: int, description: str,
                   regulatory_reference: str, suggested_fix: Optional[str] = None,
                   severity: Optional[Severity] = None) -> ComplianceViolation:
    return ComplianceViolation(
        rule_id=rule.id,
        rule=rule,
        violation_type=violation_type,
        location=TextSpan(match.start, match.end, match.text),
        confidence=confidence,
        severity=severity or rule.severity,
        description=description,
        regulatory_reference=regulatory_reference,
        suggested_fix=suggested_fix,
    )


def document_head(text: str, length: int = 50) -> TextMatch:
    """Span covering the start of the document, for whole-document findings."""
    return TextMatch(0, min(length, len(text)), text[:length] + "...")


def first_occurrence(text: str, phrase: str) -> Optional[TextMatch]:
    """First case-insensitive occurrence of phrase, or None."""
    index = find_phrase(text, phrase)
    if index < 0:
        return None
    return TextMatch(index, index + len(phrase), text[index:index + len(phrase)])
