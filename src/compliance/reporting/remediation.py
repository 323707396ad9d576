from typing import Dict, List, Sequence, Tuple

from src.compliance.models.compliance_models import (
    ComplianceViolation, Domain, RemediationPlan, RemediationStatus, Severity, ViolationType
)
from src.compliance.reasoning.impact_analyzer import remediation_effort, remediation_priority

TYPE_ACTIONS: Dict[ViolationType, Tuple[str, ...]] = {
    ViolationType.KEYWORD_MATCH: (
        "Review and modify flagged content",
        "Consider alternative phrasing",
    ),
    ViolationType.PATTERN_MATCH: (
        "Update content to match required patterns",
        "Validate against regulatory templates",
    ),
    ViolationType.SEMANTIC_MATCH: (
        "Conduct thorough content review",
        "Consult with legal/compliance team",
    ),
}

# Domain -> (regulation marker, recommendation)
DOMAIN_RECOMMENDATIONS: Dict[Domain, Tuple[str, str]] = {
    Domain.HEALTHCARE: (
        "HIPAA",
        "Ensure all patient information is properly protected and anonymized according to HIPAA requirements.",
    ),
    Domain.FINANCIAL: (
        "SOX",
        "Review financial disclosures and ensure accuracy of all numerical data per SOX requirements.",
    ),
    Domain.LEGAL: (
        "GDPR",
        "Verify data processing consent and implement proper data subject rights handling per GDPR.",
    ),
}


class RemediationPlanner:
    """Builds remediation plans and report-level recommendations."""

    def create_plan(self, violation: ComplianceViolation) -> RemediationPlan:
        """
        Originate a remediation plan for a violation.

        Args:
            violation: Detected violation

        Returns:
            A pending plan with priority, effort and ordered actions
        """
        return RemediationPlan(
            priority=remediation_priority(violation.severity, violation.confidence),
            estimated_effort=remediation_effort(violation),
            suggested_actions=tuple(self.suggested_actions(violation)),
            status=RemediationStatus.PENDING,
        )

    def suggested_actions(self, violation: ComplianceViolation) -> List[str]:
        actions = []
        if violation.suggested_fix:
            actions.append(violation.suggested_fix)
        actions.extend(TYPE_ACTIONS.get(violation.violation_type, ()))
        actions.append(f"Verify compliance with {violation.rule.regulation}")
        actions.append("Document remediation steps taken")
        return actions

    def generate_recommendations(self, violations: Sequence[ComplianceViolation], domain: Domain) -> List[str]:
        """Report-level recommendations from severity counts and the regulations involved."""
        recommendations = []

        critical = sum(1 for v in violations if v.severity == Severity.CRITICAL)
        high = sum(1 for v in violations if v.severity == Severity.HIGH)

        if critical > 0:
            recommendations.append(
                f"Immediate action required: {critical} critical compliance violations detected. "
                "Review and remediate immediately to avoid regulatory penalties."
            )
        if high > 0:
            recommendations.append(
                f"High priority: {high} high-severity violations require attention within 24-48 hours."
            )

        domain_recommendation = DOMAIN_RECOMMENDATIONS.get(Domain(domain))
        if domain_recommendation:
            marker, text = domain_recommendation
            if any(marker in v.rule.regulation for v in violations):
                recommendations.append(text)

        return recommendations
