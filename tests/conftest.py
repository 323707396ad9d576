import datetime

import pytest

from src.compliance.knowledge_base.regulatory_knowledge_base import RegulatoryReferenceManager
from src.compliance.knowledge_base.rule_repository import InMemoryComplianceRepository, default_rules
from src.compliance.knowledge_base.rules_engine import RulesEngine
from src.compliance.models.compliance_models import (
    ComplianceRule, ComplianceViolation, Domain, Severity, TextSpan, ViolationType
)
from src.compliance.monitoring.audit_log import ComplianceAuditLogger
from src.compliance.monitoring.audit_repository import AuditRepository, InMemoryAuditRepository
from src.compliance.reporting.compliance_reporter import ComplianceReporter
from src.compliance.verification.verifier import ComplianceValidator

FIXED_NOW = datetime.datetime(2026, 3, 2, 9, 30)


class FailingAuditRepository(AuditRepository):
    """Audit store whose every operation fails."""

    def create_entry(self, entry):
        raise RuntimeError("audit store unavailable")

    def get_entries_by_session(self, session_id):
        raise RuntimeError("audit store unavailable")

    def query_entries(self, query):
        raise RuntimeError("audit store unavailable")


class SteppingClock:
    """Clock that advances by a fixed step on every call."""

    def __init__(self, start=FIXED_NOW, step=datetime.timedelta(0)):
        self.current = start
        self.step = step

    def __call__(self):
        value = self.current
        self.current = self.current + self.step
        return value


@pytest.fixture
def now():
    return FIXED_NOW


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def stepping_clock():
    return SteppingClock


@pytest.fixture
def rule_repository(clock):
    return InMemoryComplianceRepository(default_rules(FIXED_NOW), clock=clock)


@pytest.fixture
def empty_repository(clock):
    return InMemoryComplianceRepository(clock=clock)


@pytest.fixture
def audit_repository():
    return InMemoryAuditRepository()


@pytest.fixture
def failing_audit_repository():
    return FailingAuditRepository()


@pytest.fixture
def audit_logger(audit_repository):
    return ComplianceAuditLogger(audit_repository)


@pytest.fixture
def rules_engine(rule_repository, audit_logger, clock):
    return RulesEngine(rule_repository, audit_logger, clock=clock)


@pytest.fixture
def validator(rules_engine, rule_repository, audit_logger, clock):
    return ComplianceValidator(rules_engine, rule_repository, audit_logger, clock=clock)


@pytest.fixture
def reference_manager(clock):
    return RegulatoryReferenceManager(clock=clock)


@pytest.fixture
def reporter(rule_repository, audit_logger, reference_manager, clock):
    return ComplianceReporter(rule_repository, audit_logger, reference_manager, clock=clock)


@pytest.fixture
def rule_factory():
    def _make(**overrides):
        fields = {
            "id": "test-rule-001",
            "rule_text": "Test rule text",
            "regulation": "TEST",
            "jurisdiction": "US",
            "domain": Domain.LEGAL,
            "severity": Severity.MEDIUM,
            "last_updated": FIXED_NOW,
        }
        fields.update(overrides)
        return ComplianceRule.from_dict(fields)
    return _make


@pytest.fixture
def violation_factory(rule_factory):
    def _make(rule=None, severity=None, violation_type=ViolationType.KEYWORD_MATCH,
              confidence=80, description="Test violation", suggested_fix=None,
              start=0, end=4, text="test"):
        rule = rule or rule_factory()
        return ComplianceViolation(
            rule_id=rule.id,
            rule=rule,
            violation_type=violation_type,
            location=TextSpan(start, end, text),
            confidence=confidence,
            severity=severity or rule.severity,
            description=description,
            regulatory_reference=f"{rule.regulation} - {rule.rule_text}",
            suggested_fix=suggested_fix,
        )
    return _make
