import datetime
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from src.compliance.frameworks.compliance_processor_base import (
    KeywordSpec, PatternSpec, checker_rule, first_occurrence, make_violation, slug
)
from src.compliance.models.compliance_models import (
    ComplianceViolation, Domain, Severity, ViolationType
)
from src.compliance.reasoning.impact_analyzer import (
    SOX_RISK_PROFILE, assess_contextual_risk, risk_confidence
)
from src.utils.text.regex_pattern_matcher import (
    RegexPatternMatcher, TextMatch, contains_any, context_window
)

CURRENCY_AMOUNT = re.compile(r"\$\d[\d,]*(?:\.\d{2})?")
ROUND_FIGURE_UNIT = Decimal(1000000)


class SOXChecker:
    """SOX checker for financial reporting statements"""
    name = "sox"
    regulation = "SOX"
    reference = "SOX Section 302 & 404"

    SOX_PATTERNS = (
        PatternSpec(
            "Extreme Percentage Change",
            r"\b(revenue|profit|earnings|sales)\s+(increased|decreased|grew|fell)\s+by\s+(\d{3,}|[5-9]\d)%",
            Severity.HIGH,
            "Extreme financial percentage change that may require additional scrutiny",
        ),
        PatternSpec(
            "Absolute Control Statement",
            r"\b(no|zero|none)\s+(material\s+)?(weaknesses?|deficiencies|issues|problems)\b",
            Severity.MEDIUM,
            "Absolute statement about internal controls",
        ),
        PatternSpec(
            "Unqualified Financial Claims",
            r"\b(guaranteed|certain|definitely|absolutely)\s+(profitable|revenue|growth)\b",
            Severity.HIGH,
            "Unqualified financial projections or guarantees",
        ),
    )

    SOX_KEYWORDS = (
        KeywordSpec("material weakness", Severity.CRITICAL),
        KeywordSpec("internal controls", Severity.HIGH),
        KeywordSpec("financial reporting", Severity.MEDIUM),
        KeywordSpec("management assessment", Severity.MEDIUM),
        KeywordSpec("auditor opinion", Severity.HIGH),
        KeywordSpec("deficiency", Severity.HIGH),
        KeywordSpec("restatement", Severity.CRITICAL),
    )

    FINANCIAL_TERMS = (
        "revenue", "profit", "loss", "earnings", "income", "assets",
        "liabilities", "equity", "cash flow", "expenses", "costs", "sales", "margin",
    )

    def __init__(self, config: Optional[Dict[str, Any]] = None, clock=None):
        config = config or {}
        self.context_radius = config.get("context_radius", 100)
        self.figure_context_radius = config.get("figure_context_radius", 50)
        self.risk_threshold = config.get("risk_threshold", 0.6)
        self.pattern_confidence = config.get("pattern_confidence", 85)
        established = (clock or datetime.datetime.now)()

        self._pattern_rules = [
            (spec, RegexPatternMatcher([spec.pattern]), checker_rule(
                f"sox-pattern-{slug(spec.name)}",
                "SOX requires accurate and substantiated financial reporting",
                self.regulation, Domain.FINANCIAL, spec.severity, established,
                patterns=(spec.pattern,),
            ))
            for spec in self.SOX_PATTERNS
        ]
        self._keyword_rules = [
            (spec, checker_rule(
                f"sox-keyword-{slug(spec.keyword)}",
                f"SOX requires proper disclosure and assessment of {spec.keyword}",
                self.regulation, Domain.FINANCIAL, spec.severity, established,
                keywords=(spec.keyword,),
            ))
            for spec in self.SOX_KEYWORDS
        ]
        self._round_figure_rule = checker_rule(
            "sox-round-numbers",
            "Financial figures should be precise and substantiated",
            self.regulation, Domain.FINANCIAL, Severity.MEDIUM, established,
        )

    def detect_violations(self, content: str) -> List[ComplianceViolation]:
        if not content:
            return []
        return (
            self._check_patterns(content)
            + self._check_keywords(content)
            + self._check_round_figures(content)
        )

    def _check_patterns(self, text: str) -> List[ComplianceViolation]:
        violations = []
        for spec, matcher, rule in self._pattern_rules:
            for _, match in matcher.iter_matches(text):
                violations.append(make_violation(
                    rule, ViolationType.PATTERN_MATCH, match, self.pattern_confidence,
                    description=spec.description,
                    regulatory_reference=self.reference,
                    suggested_fix="Provide supporting documentation and qualify financial statements appropriately",
                ))
        return violations

    def _check_keywords(self, text: str) -> List[ComplianceViolation]:
        violations = []
        for spec, rule in self._keyword_rules:
            hit = first_occurrence(text, spec.keyword)
            if hit is None:
                continue

            context = context_window(text, hit.start, hit.end, self.context_radius)
            risk = assess_contextual_risk(context, SOX_RISK_PROFILE)
            if risk <= self.risk_threshold:
                continue

            violations.append(make_violation(
                rule, ViolationType.KEYWORD_MATCH, hit, risk_confidence(risk),
                description=f'SOX-related term "{spec.keyword}" detected in potentially problematic context',
                regulatory_reference=self.reference,
                suggested_fix="Ensure proper documentation and management assessment of internal controls",
            ))
        return violations

    def _check_round_figures(self, text: str) -> List[ComplianceViolation]:
        """Flag exact multiples of $1M that appear in a financial context."""
        violations = []
        for match in CURRENCY_AMOUNT.finditer(text):
            amount = parse_currency(match.group(0))
            if amount is None or amount < ROUND_FIGURE_UNIT or amount % ROUND_FIGURE_UNIT != 0:
                continue

            context = context_window(text, match.start(), match.end(), self.figure_context_radius)
            if not contains_any(context, self.FINANCIAL_TERMS):
                continue

            violations.append(make_violation(
                self._round_figure_rule, ViolationType.PATTERN_MATCH,
                TextMatch(match.start(), match.end(), match.group(0)), 70,
                description="Suspiciously round financial figure detected",
                regulatory_reference="SOX Section 302",
                suggested_fix="Verify accuracy of financial figures and provide supporting documentation",
            ))
        return violations


def parse_currency(text: str) -> Optional[Decimal]:
    """Decimal value of a "$1,000,000.00" style amount, None if malformed."""
    try:
        return Decimal(text.replace("$", "").replace(",", ""))
    except InvalidOperation:
        return None
