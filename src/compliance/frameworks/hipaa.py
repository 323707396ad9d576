import datetime
from typing import Any, Dict, List, Optional

from src.compliance.frameworks.compliance_processor_base import (
    KeywordSpec, PatternSpec, checker_rule, first_occurrence, make_violation, slug
)
from src.compliance.models.compliance_models import (
    ComplianceViolation, Domain, Severity, ViolationType
)
from src.compliance.reasoning.impact_analyzer import (
    HIPAA_RISK_PROFILE, assess_contextual_risk, risk_confidence
)
from src.utils.text.regex_pattern_matcher import RegexPatternMatcher, context_window


class HIPAAChecker:
    """HIPAA checker for protected health information (PHI)"""
    name = "hipaa"
    regulation = "HIPAA"
    reference = "HIPAA Privacy Rule 45 CFR 164.502"

    PHI_PATTERNS = (
        PatternSpec("SSN", r"\b\d{3}-\d{2}-\d{4}\b", Severity.CRITICAL,
                    "Social Security Number detected"),
        PatternSpec("Phone", r"\b\d{3}-\d{3}-\d{4}\b", Severity.MEDIUM,
                    "Phone number detected"),
        PatternSpec("Email", r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b", Severity.MEDIUM,
                    "Email address detected"),
        PatternSpec("Medical Record Number", r"\b(MRN|MR#|Medical Record)\s*:?\s*\d+\b", Severity.CRITICAL,
                    "Medical record number detected"),
    )

    PHI_KEYWORDS = (
        KeywordSpec("patient", Severity.MEDIUM),
        KeywordSpec("diagnosis", Severity.HIGH),
        KeywordSpec("treatment", Severity.MEDIUM),
        KeywordSpec("medication", Severity.MEDIUM),
        KeywordSpec("health condition", Severity.HIGH),
        KeywordSpec("medical history", Severity.HIGH),
        KeywordSpec("lab results", Severity.HIGH),
        KeywordSpec("prescription", Severity.MEDIUM),
    )

    def __init__(self, config: Optional[Dict[str, Any]] = None, clock=None):
        """
        Initialize HIPAA checker

        Args:
            config: Optional overrides for context_radius, risk_threshold
                and pattern_confidence
            clock: Callable returning the current datetime
        """
        config = config or {}
        self.context_radius = config.get("context_radius", 50)
        self.risk_threshold = config.get("risk_threshold", 0.5)
        self.pattern_confidence = config.get("pattern_confidence", 95)
        established = (clock or datetime.datetime.now)()

        self._pattern_rules = [
            (spec, RegexPatternMatcher([spec.pattern]), checker_rule(
                f"hipaa-phi-{slug(spec.name)}",
                f"HIPAA requires protection of {spec.name}",
                self.regulation, Domain.HEALTHCARE, spec.severity, established,
                patterns=(spec.pattern,),
            ))
            for spec in self.PHI_PATTERNS
        ]
        self._keyword_rules = [
            (spec, checker_rule(
                f"hipaa-keyword-{slug(spec.keyword)}",
                f"HIPAA requires careful handling of {spec.keyword} information",
                self.regulation, Domain.HEALTHCARE, spec.severity, established,
                keywords=(spec.keyword,),
            ))
            for spec in self.PHI_KEYWORDS
        ]

    def detect_violations(self, content: str) -> List[ComplianceViolation]:
        """
        Detect PHI exposure in content

        Args:
            content: Text to check

        Returns:
            Pattern violations in table order, then keyword violations
        """
        if not content:
            return []
        return self._check_phi_patterns(content) + self._check_phi_keywords(content)

    def _check_phi_patterns(self, text: str) -> List[ComplianceViolation]:
        violations = []
        for spec, matcher, rule in self._pattern_rules:
            for _, match in matcher.iter_matches(text):
                violations.append(make_violation(
                    rule, ViolationType.PATTERN_MATCH, match, self.pattern_confidence,
                    description=f"{spec.description} - potential PHI exposure",
                    regulatory_reference=self.reference,
                    suggested_fix=f"Remove or anonymize {spec.name} to comply with HIPAA",
                ))
        return violations

    def _check_phi_keywords(self, text: str) -> List[ComplianceViolation]:
        """Only the first occurrence of each keyword is examined."""
        violations = []
        for spec, rule in self._keyword_rules:
            hit = first_occurrence(text, spec.keyword)
            if hit is None:
                continue

            context = context_window(text, hit.start, hit.end, self.context_radius)
            risk = assess_contextual_risk(context, HIPAA_RISK_PROFILE)
            if risk <= self.risk_threshold:
                continue

            violations.append(make_violation(
                rule, ViolationType.KEYWORD_MATCH, hit, risk_confidence(risk),
                description=f'Healthcare-related keyword "{spec.keyword}" detected in potentially sensitive context',
                regulatory_reference=self.reference,
                suggested_fix="Review context to ensure PHI is properly protected",
            ))
        return violations
