import datetime
import logging
import uuid
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from src.compliance.knowledge_base.rule_repository import ComplianceRepository
from src.compliance.models.compliance_models import (
    RULE_FIELDS, RULE_KEY_ALIASES, ComplianceRule, Domain, RuleValidationResult, Severity, parse_timestamp
)
from src.utils.config.config_manager import load_structured_file
from src.utils.error.compliance_error import InvalidRuleError, RuleNotFoundError
from src.utils.text.regex_pattern_matcher import pattern_error

logger = logging.getLogger("compliance.rules")

RuleInput = Union[ComplianceRule, Mapping[str, Any]]

_VALID_DOMAINS = {domain.value for domain in Domain}
_VALID_SEVERITIES = {severity.value for severity in Severity}
_LIST_FIELDS = ("keywords", "patterns", "examples")


def _enum_value(value: Any) -> Any:
    return value.value if hasattr(value, "value") else value


def _is_valid_choice(value: Any, choices) -> bool:
    value = _enum_value(value)
    return isinstance(value, str) and value in choices


def validate_rule(rule: RuleInput) -> RuleValidationResult:
    """
    Structural validation of a (possibly partial) rule.

    Never raises; every problem is reported as a message.

    Args:
        rule: Rule object or mapping of rule fields

    Returns:
        Validation result with the list of errors found
    """
    data = rule.to_dict() if isinstance(rule, ComplianceRule) else dict(rule)
    data = {RULE_KEY_ALIASES.get(key, key): value for key, value in data.items()}
    errors: List[str] = []

    for key in data:
        if key not in RULE_FIELDS:
            errors.append(f"Unknown rule field: {key}")

    if not str(data.get("rule_text") or "").strip():
        errors.append("Rule text is required")

    if not str(data.get("regulation") or "").strip():
        errors.append("Regulation is required")

    if not _is_valid_choice(data.get("domain"), _VALID_DOMAINS):
        errors.append("Valid domain is required (legal, financial, healthcare, insurance)")

    if not _is_valid_choice(data.get("severity"), _VALID_SEVERITIES):
        errors.append("Valid severity is required (low, medium, high, critical)")

    if not str(data.get("jurisdiction") or "").strip():
        errors.append("Jurisdiction is required")

    for key in _LIST_FIELDS:
        if data.get(key) is not None and not isinstance(data[key], (list, tuple)):
            errors.append(f"{key.capitalize()} must be a list")

    patterns = data.get("patterns")
    for pattern in patterns if isinstance(patterns, (list, tuple)) else ():
        if not isinstance(pattern, str) or pattern_error(pattern) is not None:
            errors.append(f"Invalid regex pattern: {pattern}")

    if data.get("last_updated") is not None:
        try:
            parse_timestamp(data["last_updated"])
        except (TypeError, ValueError):
            errors.append(f"Invalid last updated timestamp: {data['last_updated']}")

    return RuleValidationResult(is_valid=not errors, errors=tuple(errors))


class RulesEngine:
    """
    Adapter over the rule store: selection, validation and administration
    of compliance rules.
    """

    def __init__(self, repository: ComplianceRepository, audit_logger=None,
                 config: Optional[Dict[str, Any]] = None, clock=None):
        """
        Initialize the rules engine.

        Args:
            repository: Rule store collaborator
            audit_logger: Optional ComplianceAuditLogger for mutation events
            config: Rule settings (outdated_after_days)
            clock: Callable returning the current datetime
        """
        self.repository = repository
        self.audit_logger = audit_logger
        self.config = config or {}
        self.outdated_after_days = self.config.get("outdated_after_days", 365)
        self._clock = clock or datetime.datetime.now

    def get_applicable_rules(self, domain: Domain, jurisdiction: str) -> List[ComplianceRule]:
        """Active rules for the domain whose jurisdiction matches or is GLOBAL."""
        domain = Domain(domain)
        rules = self.repository.get_rules_by_domain(domain)
        applicable = [rule for rule in rules if rule.applies_to(domain, jurisdiction)]
        logger.debug(f"{len(applicable)} applicable rules for {domain.value}/{jurisdiction}")
        return applicable

    def get_rule_by_id(self, rule_id: str) -> ComplianceRule:
        rule = self.repository.get_rule_by_id(rule_id)
        if rule is None:
            raise RuleNotFoundError(rule_id)
        return rule

    def get_all_rules(self) -> List[ComplianceRule]:
        return self.repository.get_all_rules()

    def validate_rule(self, rule: RuleInput) -> RuleValidationResult:
        return validate_rule(rule)

    def add_rule(self, rule: RuleInput, user_id: Optional[str] = None) -> ComplianceRule:
        """
        Validate and store a new rule.

        Raises:
            InvalidRuleError: If the rule fails structural validation
        """
        self._ensure_valid(rule)
        if not isinstance(rule, ComplianceRule):
            data = {RULE_KEY_ALIASES.get(key, key): value for key, value in rule.items()}
            rule = ComplianceRule.from_dict({**data, "last_updated": data.get("last_updated") or self._clock()})

        created = self.repository.create_rule(rule)
        logger.info(f"Created rule {created.id} ({created.regulation})")
        if self.audit_logger:
            self.audit_logger.log_rule_created(created, user_id=user_id)
        return created

    def update_rule(self, rule_id: str, updates: Mapping[str, Any],
                    user_id: Optional[str] = None) -> ComplianceRule:
        """
        Apply a partial update to an existing rule.

        The merged rule is validated before anything is written.

        Raises:
            RuleNotFoundError: If no rule has this identifier
            InvalidRuleError: If the merged rule fails validation
        """
        existing = self.get_rule_by_id(rule_id)
        updates = dict(updates)
        self._ensure_valid({**existing.to_dict(), **updates})

        updates["last_updated"] = self._clock()
        updated = self.repository.update_rule(rule_id, updates)
        logger.info(f"Updated rule {rule_id}")
        if self.audit_logger:
            self.audit_logger.log_rule_updated(updated, updates, user_id=user_id)
        return updated

    def deactivate_rule(self, rule_id: str, user_id: Optional[str] = None) -> ComplianceRule:
        return self.update_rule(rule_id, {"is_active": False}, user_id=user_id)

    def delete_rule(self, rule_id: str, user_id: Optional[str] = None) -> None:
        rule = self.get_rule_by_id(rule_id)
        self.repository.delete_rule(rule_id)
        logger.info(f"Deleted rule {rule_id}")
        if self.audit_logger:
            self.audit_logger.log_rule_deleted(rule, user_id=user_id)

    def clone_rule(self, rule_id: str, overrides: Optional[Mapping[str, Any]] = None,
                   user_id: Optional[str] = None) -> ComplianceRule:
        """
        Copy an existing rule under a new identifier.

        Args:
            rule_id: Rule to copy
            overrides: Fields to change on the copy, including an optional "id"
            user_id: Optional acting user for the audit trail

        Returns:
            The stored copy, stamped with the current time
        """
        source = self.get_rule_by_id(rule_id)
        data = {**source.to_dict(), **dict(overrides or {})}
        if not (overrides or {}).get("id"):
            data["id"] = f"{rule_id}-copy-{uuid.uuid4().hex[:8]}"
        data["last_updated"] = self._clock()
        return self.add_rule(data, user_id=user_id)

    def import_rules(self, rules: Iterable[RuleInput], user_id: Optional[str] = None) -> List[ComplianceRule]:
        """Add each rule, logging and skipping the ones that fail."""
        imported = []
        for rule in rules:
            try:
                imported.append(self.add_rule(rule, user_id=user_id))
            except (InvalidRuleError, ValueError, TypeError) as e:
                rule_id = rule.id if isinstance(rule, ComplianceRule) else rule.get("id", "<unnamed>")
                logger.error(f"Failed to import rule {rule_id}: {str(e)}")
        logger.info(f"Imported {len(imported)} rules")
        return imported

    def load_rules_file(self, path: str, user_id: Optional[str] = None) -> List[ComplianceRule]:
        """Import rules from a YAML or JSON file holding a list or a "rules" key."""
        data = load_structured_file(path) or []
        if isinstance(data, dict):
            data = data.get("rules", [])
        return self.import_rules(data, user_id=user_id)

    def get_outdated_rules(self, max_age_days: Optional[int] = None) -> List[ComplianceRule]:
        """Rules last updated before the cutoff. Used for maintenance scans."""
        days = self.outdated_after_days if max_age_days is None else max_age_days
        cutoff = self._clock() - datetime.timedelta(days=days)
        return [rule for rule in self.repository.get_all_rules() if rule.last_updated < cutoff]

    def _ensure_valid(self, rule: RuleInput):
        result = validate_rule(rule)
        if not result.is_valid:
            raise InvalidRuleError(result.errors)
