import datetime
from typing import Any, Dict, List, Optional

from src.compliance.frameworks.compliance_processor_base import (
    KeywordSpec, PatternSpec, checker_rule, document_head, first_occurrence, make_violation, slug
)
from src.compliance.models.compliance_models import (
    ComplianceViolation, Domain, Severity, ViolationType
)
from src.compliance.reasoning.impact_analyzer import (
    GDPR_RISK_PROFILE, assess_contextual_risk, risk_confidence
)
from src.utils.text.regex_pattern_matcher import (
    RegexPatternMatcher, contains_any, context_window
)


class GDPRChecker:
    """
    GDPR checker for personal data processing.

    Besides its pattern and keyword tables it runs two structural checks:
    personal data mentioned without any data-subject-rights statement, and
    cross-border transfers mentioned without a safeguard nearby.
    """
    name = "gdpr"
    regulation = "GDPR"

    GDPR_PATTERNS = (
        PatternSpec(
            "Consent Violation",
            r"\b(collect|process|use|share)\s+.*\s+(without|no)\s+(consent|permission|authorization)\b",
            Severity.CRITICAL,
            "Processing personal data without consent",
        ),
        PatternSpec(
            "Automatic Processing",
            r"\b(automatically|auto)\s+(process|share|transfer|collect)\s+.*\s+(personal\s+)?data\b",
            Severity.HIGH,
            "Automatic processing of personal data without proper safeguards",
        ),
        PatternSpec(
            "Third Party Sharing",
            r"\b(share|transfer|provide)\s+.*\s+(personal\s+)?data\s+.*\s+(third\s+part(y|ies)|partner|vendor)\b",
            Severity.HIGH,
            "Sharing personal data with third parties",
        ),
        PatternSpec(
            "Data Retention",
            r"\b(keep|store|retain)\s+.*\s+(personal\s+)?data\s+.*\s+(indefinitely|forever|permanently)\b",
            Severity.HIGH,
            "Indefinite retention of personal data",
        ),
    )

    PERSONAL_DATA_INDICATORS = (
        KeywordSpec("email address", Severity.MEDIUM),
        KeywordSpec("phone number", Severity.MEDIUM),
        KeywordSpec("home address", Severity.MEDIUM),
        KeywordSpec("ip address", Severity.MEDIUM),
        KeywordSpec("cookie", Severity.LOW),
        KeywordSpec("tracking", Severity.MEDIUM),
        KeywordSpec("location data", Severity.HIGH),
        KeywordSpec("biometric", Severity.CRITICAL),
        KeywordSpec("genetic", Severity.CRITICAL),
        KeywordSpec("health data", Severity.CRITICAL),
    )

    RIGHTS_PHRASES = (
        "right to access",
        "right to rectification",
        "right to erasure",
        "right to portability",
        "right to object",
        "data subject rights",
    )

    TRANSFER_PHRASES = (
        "transfer to",
        "send to",
        "share with",
        "provide to",
        "third country",
        "outside eu",
        "international transfer",
    )

    SAFEGUARD_PHRASES = (
        "adequacy decision",
        "standard contractual clauses",
        "binding corporate rules",
        "certification",
    )

    def __init__(self, config: Optional[Dict[str, Any]] = None, clock=None):
        config = config or {}
        self.context_radius = config.get("context_radius", 100)
        self.transfer_radius = config.get("transfer_radius", 200)
        self.risk_threshold = config.get("risk_threshold", 0.5)
        self.pattern_confidence = config.get("pattern_confidence", 90)
        established = (clock or datetime.datetime.now)()

        self._pattern_rules = [
            (spec, RegexPatternMatcher([spec.pattern]), checker_rule(
                f"gdpr-pattern-{slug(spec.name)}",
                "GDPR requires lawful basis and proper safeguards for personal data processing",
                self.regulation, Domain.LEGAL, spec.severity, established,
                jurisdiction="EU", patterns=(spec.pattern,),
            ))
            for spec in self.GDPR_PATTERNS
        ]
        self._indicator_rules = [
            (spec, checker_rule(
                f"gdpr-personal-data-{slug(spec.keyword)}",
                f"GDPR requires proper handling of {spec.keyword}",
                self.regulation, Domain.LEGAL, spec.severity, established,
                jurisdiction="EU", keywords=(spec.keyword,),
            ))
            for spec in self.PERSONAL_DATA_INDICATORS
        ]
        self._rights_rule = checker_rule(
            "gdpr-missing-rights",
            "GDPR requires informing data subjects of their rights",
            self.regulation, Domain.LEGAL, Severity.HIGH, established,
            jurisdiction="EU", keywords=self.RIGHTS_PHRASES,
        )
        self._transfer_rule = checker_rule(
            "gdpr-transfer-safeguards",
            "GDPR requires appropriate safeguards for international data transfers",
            self.regulation, Domain.LEGAL, Severity.HIGH, established,
            jurisdiction="EU", keywords=self.TRANSFER_PHRASES,
        )

    def detect_violations(self, content: str) -> List[ComplianceViolation]:
        if not content:
            return []
        return (
            self._check_patterns(content)
            + self._check_personal_data(content)
            + self._check_data_subject_rights(content)
            + self._check_data_transfers(content)
        )

    def _check_patterns(self, text: str) -> List[ComplianceViolation]:
        violations = []
        for spec, matcher, rule in self._pattern_rules:
            for _, match in matcher.iter_matches(text):
                violations.append(make_violation(
                    rule, ViolationType.PATTERN_MATCH, match, self.pattern_confidence,
                    description=spec.description,
                    regulatory_reference="GDPR Articles 6, 7, and 13",
                    suggested_fix="Ensure proper legal basis and consent mechanisms for personal data processing",
                ))
        return violations

    def _check_personal_data(self, text: str) -> List[ComplianceViolation]:
        violations = []
        for spec, rule in self._indicator_rules:
            hit = first_occurrence(text, spec.keyword)
            if hit is None:
                continue

            context = context_window(text, hit.start, hit.end, self.context_radius)
            risk = assess_contextual_risk(context, GDPR_RISK_PROFILE)
            if risk <= self.risk_threshold:
                continue

            violations.append(make_violation(
                rule, ViolationType.KEYWORD_MATCH, hit, risk_confidence(risk),
                description=f'Personal data type "{spec.keyword}" detected - ensure GDPR compliance',
                regulatory_reference="GDPR Article 4 (Definition of Personal Data)",
                suggested_fix=(
                    "Implement appropriate technical and organizational measures "
                    "for personal data protection"
                ),
            ))
        return violations

    def _check_data_subject_rights(self, text: str) -> List[ComplianceViolation]:
        """Personal data mentioned but no data-subject-rights phrase anywhere."""
        mentions_personal_data = contains_any(text, [spec.keyword for spec in self.PERSONAL_DATA_INDICATORS])
        if not mentions_personal_data or contains_any(text, self.RIGHTS_PHRASES):
            return []

        return [make_violation(
            self._rights_rule, ViolationType.SEMANTIC_MATCH, document_head(text), 80,
            description="Document processes personal data but lacks information about data subject rights",
            regulatory_reference="GDPR Articles 13 and 14",
            suggested_fix=(
                "Include information about data subject rights "
                "(access, rectification, erasure, portability, objection)"
            ),
        )]

    def _check_data_transfers(self, text: str) -> List[ComplianceViolation]:
        """Each transfer phrase needs a safeguard phrase within the transfer window."""
        violations = []
        for phrase in self.TRANSFER_PHRASES:
            hit = first_occurrence(text, phrase)
            if hit is None:
                continue

            context = context_window(text, hit.start, hit.end, self.transfer_radius)
            if contains_any(context, self.SAFEGUARD_PHRASES):
                continue

            violations.append(make_violation(
                self._transfer_rule, ViolationType.KEYWORD_MATCH, hit, 75,
                description="International data transfer mentioned without adequate safeguards",
                regulatory_reference="GDPR Chapter V (Articles 44-49)",
                suggested_fix="Ensure appropriate safeguards are in place for international data transfers",
            ))
        return violations
