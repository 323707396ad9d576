import logging
from typing import Any, Dict, List, Optional, Sequence

from src.compliance.frameworks.compliance_processor_base import make_violation
from src.compliance.models.compliance_models import ComplianceRule, ComplianceViolation, ViolationType
from src.compliance.reasoning.impact_analyzer import (
    assess_contextual_risk, generic_risk_profile, pattern_confidence, risk_confidence
)
from src.utils.text.regex_pattern_matcher import (
    RegexPatternMatcher, context_window, find_all_phrases
)

logger = logging.getLogger("compliance.checkers")


class RuleDrivenChecker:
    """
    Generic checker driven entirely by rule data.

    Every pattern match of an applicable rule is a violation. A keyword hit
    only becomes one when its surrounding context scores above the risk
    threshold.
    """
    name = "rule_driven"

    def __init__(self, rules: Sequence[ComplianceRule], config: Optional[Dict[str, Any]] = None):
        """
        Initialize the checker for one validation call.

        Args:
            rules: Applicable rules, already loaded
            config: Validator settings (keyword_context_radius,
                keyword_risk_threshold, pattern_confidence)
        """
        config = config or {}
        self.rules = tuple(rules)
        self.context_radius = config.get("keyword_context_radius", 100)
        self.risk_threshold = config.get("keyword_risk_threshold", 0.6)
        self.base_pattern_confidence = config.get("pattern_confidence", 85)
        self._matchers = {rule.id: RegexPatternMatcher(rule.patterns) for rule in self.rules}

    def detect_violations(self, content: str) -> List[ComplianceViolation]:
        violations = []
        for rule in self.rules:
            violations.extend(self._check_patterns(rule, content))
            violations.extend(self._check_keywords(rule, content))
        return violations

    def _check_patterns(self, rule: ComplianceRule, text: str) -> List[ComplianceViolation]:
        confidence = pattern_confidence(self.base_pattern_confidence, rule.severity)
        return [
            make_violation(
                rule,
                ViolationType.PATTERN_MATCH,
                match,
                confidence,
                description=f"Pattern match violation: Content matches restricted pattern for {rule.regulation}",
                regulatory_reference=f"{rule.regulation} - {rule.rule_text}",
                suggested_fix=f"Modify content to comply with {rule.regulation} pattern restrictions",
            )
            for _, match in self._matchers[rule.id].iter_matches(text)
        ]

    def _check_keywords(self, rule: ComplianceRule, text: str) -> List[ComplianceViolation]:
        violations = []
        profile = generic_risk_profile(rule.domain)

        for keyword in rule.keywords:
            for hit in find_all_phrases(text, keyword):
                context = context_window(text, hit.start, hit.end, self.context_radius)
                risk = assess_contextual_risk(context, profile)
                if risk <= self.risk_threshold:
                    continue
                violations.append(make_violation(
                    rule,
                    ViolationType.KEYWORD_MATCH,
                    hit,
                    risk_confidence(risk),
                    description=(
                        f'Potential compliance violation: Found keyword "{keyword}" '
                        f"in high-risk context for {rule.regulation}"
                    ),
                    regulatory_reference=f"{rule.regulation} - {rule.rule_text}",
                    suggested_fix=f"Review content for compliance with {rule.regulation} requirements",
                ))

        if violations:
            logger.debug(f"Rule {rule.id}: {len(violations)} keyword violations")
        return violations
