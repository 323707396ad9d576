import datetime
import re
from dataclasses import dataclass
from typing import Dict, List, Tuple

from src.compliance.frameworks.compliance_processor_base import (
    checker_rule, document_head, first_occurrence, make_violation
)
from src.compliance.models.compliance_models import (
    ComplianceViolation, Domain, Severity, ViolationType
)
from src.utils.text.regex_pattern_matcher import contains_term


@dataclass(frozen=True)
class ContradictionPair:
    """An absolute claim and a statement that undercuts it."""
    positive: str
    negative: str


class ContradictionChecker:
    """Checks content for contradictory absolute claims."""
    name = "contradiction"

    CONTRADICTION_PAIRS = (
        ContradictionPair("guaranteed", "may lose"),
        ContradictionPair("risk-free", "risk"),
        ContradictionPair("always profitable", "may lose"),
    )

    def __init__(self, clock=None):
        established = (clock or datetime.datetime.now)()
        self._rules = {
            pair: checker_rule(
                "contradiction-detected",
                "Content must not contain contradictory statements",
                "General Compliance", Domain.LEGAL, Severity.CRITICAL, established,
                keywords=(pair.positive, pair.negative),
            )
            for pair in self.CONTRADICTION_PAIRS
        }

    def detect_violations(self, content: str) -> List[ComplianceViolation]:
        """
        Flag every pair whose two statements both occur in content.

        Occurrences of the positive claim are masked before searching for the
        negative one, so "risk-free" alone does not also count as "risk".
        """
        violations = []
        if not content:
            return violations

        for pair in self.CONTRADICTION_PAIRS:
            hit = first_occurrence(content, pair.positive)
            if hit is None:
                continue
            masked = re.sub(re.escape(pair.positive), lambda m: " " * len(m.group(0)),
                            content, flags=re.IGNORECASE)
            if not contains_term(masked, pair.negative):
                continue

            violations.append(make_violation(
                self._rules[pair], ViolationType.SEMANTIC_MATCH, hit, 90,
                description=f'Contradictory statements detected: "{pair.positive}" and "{pair.negative}"',
                regulatory_reference="Truth in advertising and disclosure requirements",
                suggested_fix="Remove contradictory statements and ensure consistent messaging",
            ))
        return violations


class RequiredDisclosureChecker:
    """Checks that domain-specific disclosures are present."""
    name = "required_disclosures"

    REQUIRED_DISCLOSURES: Dict[Domain, Tuple[str, ...]] = {
        Domain.FINANCIAL: ("risk disclosure", "investment risk", "past performance"),
        Domain.HEALTHCARE: ("privacy notice", "patient rights", "hipaa"),
        Domain.LEGAL: ("data protection", "privacy policy", "consent"),
        Domain.INSURANCE: ("policy terms", "coverage limitations", "exclusions"),
    }

    def __init__(self, domain: Domain, clock=None):
        self.domain = Domain(domain)
        self.required = self.REQUIRED_DISCLOSURES[self.domain]
        established = (clock or datetime.datetime.now)()
        self._rule = checker_rule(
            f"missing-disclosure-{self.domain.value}",
            f"Required disclosure missing for {self.domain.value} domain",
            f"{self.domain.value.upper()} Regulations", self.domain, Severity.MEDIUM, established,
            keywords=self.required,
        )

    def detect_violations(self, content: str) -> List[ComplianceViolation]:
        violations = []
        if not content:
            return violations

        for disclosure in self.required:
            if contains_term(content, disclosure):
                continue
            violations.append(make_violation(
                self._rule, ViolationType.SEMANTIC_MATCH, document_head(content), 85,
                description=f'Missing required disclosure: "{disclosure}"',
                regulatory_reference=f"{self.domain.value.upper()} disclosure requirements",
                suggested_fix=f"Add required {disclosure} disclosure to the document",
            ))
        return violations

