import datetime
import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class AuditAction(str, Enum):
    """Closed set of lifecycle events the engine records."""
    COMPLIANCE_CHECK_STARTED = "compliance_check_started"
    COMPLIANCE_CHECK_COMPLETED = "compliance_check_completed"
    COMPLIANCE_CHECK_FAILED = "compliance_check_failed"
    VIOLATION_DETECTED = "violation_detected"
    VIOLATION_RESOLVED = "violation_resolved"
    RULE_APPLIED = "rule_applied"
    RULE_SKIPPED = "rule_skipped"
    RULE_CREATED = "rule_created"
    RULE_UPDATED = "rule_updated"
    RULE_DELETED = "rule_deleted"
    COMPLIANCE_REPORT_STARTED = "compliance_report_started"
    COMPLIANCE_REPORT_GENERATED = "compliance_report_generated"
    COMPLIANCE_REPORT_FAILED = "compliance_report_failed"
    COMPLIANCE_REPORT_EXPORTED = "compliance_report_exported"
    COMPLIANCE_REPORT_ACCESSED = "compliance_report_accessed"
    REMEDIATION_STARTED = "remediation_started"
    REMEDIATION_COMPLETED = "remediation_completed"
    REGULATORY_REFERENCE_ACCESSED = "regulatory_reference_accessed"
    COMPLIANCE_THRESHOLD_EXCEEDED = "compliance_threshold_exceeded"
    COMPLIANCE_POLICY_UPDATED = "compliance_policy_updated"
    COMPLIANCE_TRAINING_COMPLETED = "compliance_training_completed"


class AuditSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


VIOLATION_ACTIONS = frozenset({AuditAction.VIOLATION_DETECTED, AuditAction.VIOLATION_RESOLVED})
REMEDIATION_ACTIONS = frozenset({AuditAction.REMEDIATION_STARTED, AuditAction.REMEDIATION_COMPLETED})
RULE_MANAGEMENT_ACTIONS = frozenset({
    AuditAction.RULE_CREATED, AuditAction.RULE_UPDATED, AuditAction.RULE_DELETED
})
REPORTING_ACTIONS = frozenset({
    AuditAction.COMPLIANCE_REPORT_GENERATED,
    AuditAction.COMPLIANCE_REPORT_EXPORTED,
    AuditAction.COMPLIANCE_REPORT_ACCESSED,
})


@dataclass
class AuditEntry:
    """Data class representing a single compliance audit log entry."""
    session_id: str
    action: AuditAction
    component: str
    details: Dict[str, Any] = field(default_factory=dict)
    severity: AuditSeverity = AuditSeverity.INFO
    success: bool = True
    user_id: Optional[str] = None
    organization_id: Optional[str] = None
    error_message: Optional[str] = None
    timestamp: datetime.datetime = field(default_factory=datetime.datetime.now)
    entry_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["action"] = self.action.value
        data["severity"] = self.severity.value
        data["timestamp"] = self.timestamp.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditEntry":
        values = dict(data)
        values["action"] = AuditAction(values["action"])
        values["severity"] = AuditSeverity(values.get("severity", AuditSeverity.INFO))
        timestamp = values.get("timestamp")
        if isinstance(timestamp, str):
            values["timestamp"] = datetime.datetime.fromisoformat(timestamp)
        return cls(**values)


@dataclass
class AuditQuery:
    """Filter for audit queries. Unset fields do not constrain the result."""
    session_id: Optional[str] = None
    user_id: Optional[str] = None
    organization_id: Optional[str] = None
    action: Optional[AuditAction] = None
    severity: Optional[AuditSeverity] = None
    start_date: Optional[datetime.datetime] = None
    end_date: Optional[datetime.datetime] = None
    rule_id: Optional[str] = None
    regulation: Optional[str] = None
    domain: Optional[str] = None
    limit: int = 100
    offset: int = 0

    def matches(self, entry: AuditEntry) -> bool:
        if self.session_id and entry.session_id != self.session_id:
            return False
        if self.user_id and entry.user_id != self.user_id:
            return False
        if self.organization_id and entry.organization_id != self.organization_id:
            return False
        if self.action and entry.action != self.action:
            return False
        if self.severity and entry.severity != self.severity:
            return False
        if self.start_date and entry.timestamp < self.start_date:
            return False
        if self.end_date and entry.timestamp > self.end_date:
            return False
        if self.rule_id and entry.details.get("rule_id") != self.rule_id:
            return False
        if self.regulation and entry.details.get("regulation") != self.regulation:
            return False
        if self.domain and entry.details.get("domain") != self.domain:
            return False
        return True


@dataclass
class RuleEventCount:
    rule_id: str
    regulation: str
    event_count: int


@dataclass
class UserEventCount:
    user_id: str
    event_count: int


@dataclass
class AuditSummary:
    total_events: int
    events_by_action: Dict[str, int]
    events_by_severity: Dict[str, int]
    violation_events: int
    remediation_events: int
    rule_management_events: int
    reporting_events: int
    time_range: Tuple[Optional[datetime.datetime], Optional[datetime.datetime]]
    top_rules: List[RuleEventCount] = field(default_factory=list)
    top_users: List[UserEventCount] = field(default_factory=list)
