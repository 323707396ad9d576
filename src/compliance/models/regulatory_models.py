import datetime
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional, Tuple

from src.compliance.models.compliance_models import Domain, Severity


class DocumentStatus(str, Enum):
    ACTIVE = "active"
    SUPERSEDED = "superseded"
    PROPOSED = "proposed"
    WITHDRAWN = "withdrawn"


class DocumentType(str, Enum):
    LAW = "law"
    REGULATION = "regulation"
    GUIDANCE = "guidance"
    STANDARD = "standard"
    POLICY = "policy"


class UpdateType(str, Enum):
    NEW_RULE = "new_rule"
    RULE_CHANGE = "rule_change"
    INTERPRETATION = "interpretation"
    ENFORCEMENT_ACTION = "enforcement_action"


def _as_date(value: Any) -> datetime.date:
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    return datetime.date.fromisoformat(str(value))


@dataclass(frozen=True)
class RegulatoryDocument:
    """An entry of the static regulatory catalog."""
    id: str
    title: str
    regulation: str
    jurisdiction: str
    applicable_domains: Tuple[Domain, ...]
    effective_date: datetime.date
    last_updated: datetime.date
    description: str = ""
    section: Optional[str] = None
    url: Optional[str] = None
    document_type: DocumentType = DocumentType.REGULATION
    status: DocumentStatus = DocumentStatus.ACTIVE
    keywords: Tuple[str, ...] = ()
    related_documents: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RegulatoryDocument":
        """Build a catalog document from a YAML/JSON mapping."""
        values = dict(data)
        values["applicable_domains"] = tuple(Domain(d) for d in values.get("applicable_domains", ()))
        values["effective_date"] = _as_date(values["effective_date"])
        values["last_updated"] = _as_date(values.get("last_updated", values["effective_date"]))
        values["document_type"] = DocumentType(values.get("document_type", DocumentType.REGULATION))
        values["status"] = DocumentStatus(values.get("status", DocumentStatus.ACTIVE))
        values["keywords"] = tuple(values.get("keywords", ()))
        values["related_documents"] = tuple(values.get("related_documents", ()))
        if not values.get("id"):
            values["id"] = document_id_for(values["regulation"], values.get("section"))
        return cls(**values)


def document_id_for(regulation: str, section: Optional[str] = None) -> str:
    """Stable catalog identifier derived from regulation and section."""
    doc_id = "-".join(regulation.lower().split())
    if section:
        doc_id += "-" + "-".join(section.lower().replace(".", "-").split())
    return doc_id


@dataclass(frozen=True)
class RegulatoryReference:
    """A document scored against one rule. Computed on demand."""
    document_id: str
    document: RegulatoryDocument
    relevant_sections: Tuple[str, ...]
    citation_text: str
    context: str
    applicability_score: int


@dataclass(frozen=True)
class ComplianceGuidance:
    rule_id: str
    regulation: str
    guidance: str
    examples: Tuple[str, ...] = ()
    common_violations: Tuple[str, ...] = ()
    best_practices: Tuple[str, ...] = ()
    related_rules: Tuple[str, ...] = ()
    last_reviewed: Optional[datetime.date] = None
    reviewed_by: Optional[str] = None


@dataclass(frozen=True)
class RegulatoryUpdate:
    id: str
    regulation: str
    update_type: UpdateType
    title: str
    description: str
    effective_date: datetime.date
    severity: Severity
    impacted_rules: Tuple[str, ...] = ()
    action_required: bool = False
    deadline: Optional[datetime.date] = None
    source: str = ""
    url: Optional[str] = None


@dataclass(frozen=True)
class RegulatoryContextBundle:
    """Everything the resolver knows about the regulation behind a rule."""
    primary_references: Tuple[RegulatoryReference, ...]
    guidance: Optional[ComplianceGuidance]
    related_updates: Tuple[RegulatoryUpdate, ...]
    enforcement_history: Tuple[str, ...]
    penalties: Tuple[str, ...]
