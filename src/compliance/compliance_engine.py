import datetime
import logging
from typing import Any, List, Mapping, Optional, Union

from src.compliance.knowledge_base.regulatory_knowledge_base import RegulatoryReferenceManager
from src.compliance.knowledge_base.rule_repository import (
    ComplianceRepository, InMemoryComplianceRepository, TimeRange, default_rules
)
from src.compliance.knowledge_base.rules_engine import RuleInput, RulesEngine
from src.compliance.models.audit_models import AuditEntry, AuditQuery, AuditSummary
from src.compliance.models.compliance_models import (
    ComplianceCheckResult, ComplianceRule, Domain, RuleValidationResult, ViolationStats
)
from src.compliance.models.report_models import (
    ComplianceMetrics, ComplianceReport, ExportFormat, ReportType
)
from src.compliance.monitoring.audit_log import ComplianceAuditLogger
from src.compliance.monitoring.audit_repository import (
    AuditRepository, InMemoryAuditRepository, JsonFileAuditRepository
)
from src.compliance.reporting.compliance_reporter import ComplianceReporter
from src.compliance.verification.verifier import ComplianceValidator, ContentInput
from src.utils.config.config_manager import ConfigManager, EngineSettings, configure_logging

logger = logging.getLogger("compliance.engine")


class ComplianceEngine:
    """
    Compliance validation and reporting engine.

    Wires the rule store, validator, reference catalog, reporter and audit
    emitter from one set of settings and exposes the operations the API
    layer calls.
    """

    def __init__(self,
                 settings: Optional[EngineSettings] = None,
                 repository: Optional[ComplianceRepository] = None,
                 audit_repository: Optional[AuditRepository] = None,
                 clock=None):
        """
        Initialize the compliance engine.

        Args:
            settings: Engine settings (defaults when omitted)
            repository: Rule store; an in-memory store is created when omitted
            audit_repository: Audit store; built from the audit settings when omitted
            clock: Callable returning the current datetime
        """
        self.settings = settings or EngineSettings()
        self._clock = clock or datetime.datetime.now

        if repository is None:
            seed = default_rules(self._clock()) if self.settings.rules.seed_default_rules else []
            repository = InMemoryComplianceRepository(seed, clock=self._clock)
        self.repository = repository

        self.audit_repository = audit_repository or self._build_audit_repository()
        self.audit_logger = ComplianceAuditLogger(self.audit_repository, self.settings.audit.model_dump())

        self.rules_engine = RulesEngine(
            self.repository, self.audit_logger, self.settings.rules.model_dump(), clock=self._clock
        )
        self.reference_manager = RegulatoryReferenceManager(
            self.settings.references.model_dump(), clock=self._clock
        )
        self.validator = ComplianceValidator(
            self.rules_engine, self.repository, self.audit_logger,
            self.settings.validator.model_dump(), clock=self._clock,
        )
        self.reporter = ComplianceReporter(
            self.repository, self.audit_logger, self.reference_manager,
            config=self.settings.reporting.model_dump(), clock=self._clock,
        )

        if self.settings.rules.rules_path:
            self.rules_engine.load_rules_file(self.settings.rules.rules_path)

        logger.info(f"Compliance engine initialized with {len(self.repository.get_all_rules())} rules")

    @classmethod
    def from_config(cls, path: Optional[str] = None, **kwargs) -> "ComplianceEngine":
        """
        Build an engine from a YAML/JSON configuration file and
        COMPLIANCE_-prefixed environment overrides.
        """
        settings = ConfigManager(path).settings()
        configure_logging(settings.logging)
        return cls(settings, **kwargs)

    # Validation

    def validate_compliance(self, content: ContentInput, domain: Domain, jurisdiction: str = "US",
                            session_id: Optional[str] = None, user_id: Optional[str] = None,
                            organization_id: Optional[str] = None) -> ComplianceCheckResult:
        return self.validator.validate_compliance(
            content, domain, jurisdiction, session_id=session_id,
            user_id=user_id, organization_id=organization_id,
        )

    # Rule administration

    def add_rule(self, rule: RuleInput, user_id: Optional[str] = None) -> ComplianceRule:
        return self.rules_engine.add_rule(rule, user_id=user_id)

    def update_rule(self, rule_id: str, updates: Mapping[str, Any],
                    user_id: Optional[str] = None) -> ComplianceRule:
        return self.rules_engine.update_rule(rule_id, updates, user_id=user_id)

    def deactivate_rule(self, rule_id: str, user_id: Optional[str] = None) -> ComplianceRule:
        return self.rules_engine.deactivate_rule(rule_id, user_id=user_id)

    def delete_rule(self, rule_id: str, user_id: Optional[str] = None) -> None:
        self.rules_engine.delete_rule(rule_id, user_id=user_id)

    def clone_rule(self, rule_id: str, overrides: Optional[Mapping[str, Any]] = None,
                   user_id: Optional[str] = None) -> ComplianceRule:
        return self.rules_engine.clone_rule(rule_id, overrides, user_id=user_id)

    def validate_rule(self, rule: RuleInput) -> RuleValidationResult:
        return self.rules_engine.validate_rule(rule)

    def get_outdated_rules(self, max_age_days: Optional[int] = None) -> List[ComplianceRule]:
        return self.rules_engine.get_outdated_rules(max_age_days)

    # Reporting

    def generate_report(self, session_id: str, organization_id: str, domain: Domain,
                        check_result: ComplianceCheckResult,
                        report_type: Optional[ReportType] = None) -> ComplianceReport:
        report_type = report_type or ReportType(self.settings.reporting.default_report_type)
        return self.reporter.generate_report(session_id, organization_id, domain, check_result, report_type)

    def export_report(self, report: ComplianceReport, export_format: Union[ExportFormat, str],
                      user_id: Optional[str] = None) -> str:
        return self.reporter.export_report(report, export_format, user_id=user_id)

    def generate_metrics(self, organization_id: str, domain: Optional[Domain] = None,
                         time_range: Optional[TimeRange] = None) -> ComplianceMetrics:
        return self.reporter.generate_metrics(organization_id, domain, time_range)

    def get_violation_stats(self, domain: Optional[Domain] = None,
                            time_range: Optional[TimeRange] = None) -> ViolationStats:
        return self.repository.get_violation_stats(Domain(domain) if domain else None, time_range)

    # Audit

    def query_audit_events(self, query: Optional[AuditQuery] = None) -> List[AuditEntry]:
        self.audit_logger.flush()
        return self.audit_logger.query_events(query)

    def generate_audit_summary(self, query: Optional[AuditQuery] = None) -> AuditSummary:
        self.audit_logger.flush()
        return self.audit_logger.generate_audit_summary(query)

    def close(self) -> None:
        """Flush pending audit writes and stop the audit worker."""
        self.audit_logger.close()

    def _build_audit_repository(self) -> AuditRepository:
        audit = self.settings.audit
        if audit.storage == "json_file":
            return JsonFileAuditRepository(
                audit.audit_log_path, buffer_size=audit.buffer_size, retention_days=audit.retention_days
            )
        return InMemoryAuditRepository(max_entries=audit.buffer_size)
