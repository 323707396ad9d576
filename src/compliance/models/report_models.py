import datetime
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple

from src.compliance.models.audit_models import AuditEntry
from src.compliance.models.compliance_models import (
    ComplianceViolation, RemediationPlan, RiskLevel, Severity, Urgency
)
from src.compliance.models.regulatory_models import (
    ComplianceGuidance, RegulatoryReference
)


class ReportType(str, Enum):
    VIOLATION_SUMMARY = "violation_summary"
    DETAILED_ANALYSIS = "detailed_analysis"
    REGULATORY_COMPLIANCE = "regulatory_compliance"
    TREND_ANALYSIS = "trend_analysis"


class ExportFormat(str, Enum):
    JSON = "json"
    CSV = "csv"
    XML = "xml"
    PDF = "pdf"


class TrendDirection(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


@dataclass(frozen=True)
class ComplianceReportSummary:
    total_violations: int
    violations_by_severity: Dict[str, int]
    overall_risk: RiskLevel
    compliance_score: int
    checked_rules: int
    passed_rules: int
    failed_rules: int


@dataclass(frozen=True)
class RegulatoryContext:
    """Regulatory background attached to a single violation report."""
    regulation: str
    section: str
    description: str
    penalties: Tuple[str, ...]
    precedents: Tuple[str, ...]
    last_updated: datetime.datetime
    references: Tuple[RegulatoryReference, ...] = ()
    guidance: Optional[ComplianceGuidance] = None


@dataclass(frozen=True)
class ComplianceViolationReport:
    violation: ComplianceViolation
    impact: Severity
    urgency: Urgency
    remediation: RemediationPlan
    regulatory_context: RegulatoryContext


@dataclass(frozen=True)
class ReportReference:
    """Regulation-level reference collected across a report's violations."""
    regulation: str
    section: str
    title: str
    description: str
    effective_date: datetime.datetime
    jurisdiction: str
    applicable_domains: Tuple[str, ...]
    url: Optional[str] = None


@dataclass(frozen=True)
class ComplianceReport:
    """A generated report. Never mutated after construction."""
    id: str
    session_id: str
    organization_id: str
    domain: str
    generated_at: datetime.datetime
    report_type: ReportType
    summary: ComplianceReportSummary
    violations: Tuple[ComplianceViolationReport, ...]
    recommendations: Tuple[str, ...]
    regulatory_references: Tuple[ReportReference, ...]
    audit_trail: Tuple[AuditEntry, ...] = ()


@dataclass(frozen=True)
class ViolationTrend:
    date: datetime.date
    count: int
    severity: str = "mixed"


@dataclass(frozen=True)
class TopViolationType:
    rule_id: str
    regulation: str
    count: int
    trend: TrendDirection = TrendDirection.STABLE


@dataclass(frozen=True)
class DomainCompliance:
    score: int
    violations: int
    risk_level: RiskLevel


@dataclass(frozen=True)
class ComplianceMetrics:
    compliance_score: int
    risk_level: RiskLevel
    violation_trends: Tuple[ViolationTrend, ...]
    top_violation_types: Tuple[TopViolationType, ...]
    compliance_by_domain: Dict[str, DomainCompliance] = field(default_factory=dict)
