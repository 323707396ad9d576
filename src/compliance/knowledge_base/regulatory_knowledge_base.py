import datetime
import logging
import threading
import time
import uuid
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from src.compliance.models.compliance_models import ComplianceRule, Domain, Severity
from src.compliance.models.regulatory_models import (
    ComplianceGuidance, DocumentStatus, RegulatoryContextBundle, RegulatoryDocument,
    RegulatoryReference, RegulatoryUpdate, UpdateType
)
from src.utils.cache.lru_cache import LRUCache
from src.utils.config.config_manager import load_structured_file

logger = logging.getLogger("compliance.references")

# Applicability weights
REGULATION_MATCH_SCORE = 40
DOMAIN_MATCH_SCORE = 20
JURISDICTION_MATCH_SCORE = 15
KEYWORD_MATCH_SCORE = 5
RECENCY_BONUS = 10
APPLICABILITY_THRESHOLD = 30

# Search weights
SEARCH_TITLE_SCORE = 10
SEARCH_DESCRIPTION_SCORE = 5
SEARCH_KEYWORD_SCORE = 8

GENERAL_PROVISIONS_SECTION = "General Provisions"

DEFAULT_DOCUMENTS = [
    {
        "title": "Health Insurance Portability and Accountability Act (HIPAA)",
        "regulation": "HIPAA",
        "section": "164.502",
        "url": "https://www.hhs.gov/hipaa/for-professionals/privacy/laws-regulations/index.html",
        "description": "Federal law that provides data privacy and security provisions for safeguarding medical information",
        "effective_date": "1996-08-21",
        "last_updated": "2013-01-25",
        "jurisdiction": "US",
        "applicable_domains": ["healthcare"],
        "document_type": "law",
        "keywords": ["privacy", "medical records", "protected health information", "PHI"],
    },
    {
        "title": "HIPAA Security Rule",
        "regulation": "HIPAA",
        "section": "164.312",
        "url": "https://www.hhs.gov/hipaa/for-professionals/security/index.html",
        "description": "Technical safeguards for electronic protected health information",
        "effective_date": "2003-04-21",
        "last_updated": "2013-01-25",
        "jurisdiction": "US",
        "applicable_domains": ["healthcare"],
        "document_type": "regulation",
        "keywords": ["access control", "audit controls", "encryption", "electronic protected health information"],
        "related_documents": ["hipaa-164-502"],
    },
    {
        "title": "Sarbanes-Oxley Act (SOX)",
        "regulation": "SOX",
        "section": "302",
        "url": "https://www.sec.gov/about/laws/soa2002.pdf",
        "description": "Federal law that establishes auditing and financial regulations for public companies",
        "effective_date": "2002-07-30",
        "last_updated": "2010-07-21",
        "jurisdiction": "US",
        "applicable_domains": ["financial"],
        "document_type": "law",
        "keywords": ["financial reporting", "internal controls", "auditing", "corporate governance"],
    },
    {
        "title": "Sarbanes-Oxley Act (SOX) Management Assessment of Internal Controls",
        "regulation": "SOX",
        "section": "404",
        "url": "https://www.sec.gov/about/laws/soa2002.pdf",
        "description": "Annual management assessment and auditor attestation of internal control over financial reporting",
        "effective_date": "2002-07-30",
        "last_updated": "2010-07-21",
        "jurisdiction": "US",
        "applicable_domains": ["financial"],
        "document_type": "law",
        "keywords": ["internal controls", "management assessment", "material weakness", "auditor attestation"],
        "related_documents": ["sox-302"],
    },
    {
        "title": "General Data Protection Regulation (GDPR)",
        "regulation": "GDPR",
        "section": "Article 6",
        "url": "https://gdpr-info.eu/",
        "description": "European Union regulation on data protection and privacy",
        "effective_date": "2018-05-25",
        "last_updated": "2018-05-25",
        "jurisdiction": "EU",
        "applicable_domains": ["legal", "healthcare", "financial", "insurance"],
        "document_type": "regulation",
        "keywords": ["data protection", "privacy", "consent", "personal data"],
    },
    {
        "title": "GDPR Transfers of Personal Data to Third Countries",
        "regulation": "GDPR",
        "section": "Chapter V",
        "url": "https://gdpr-info.eu/chapter-5/",
        "description": "Conditions for transfers of personal data to third countries or international organisations",
        "effective_date": "2018-05-25",
        "last_updated": "2018-05-25",
        "jurisdiction": "EU",
        "applicable_domains": ["legal", "healthcare", "financial", "insurance"],
        "document_type": "regulation",
        "keywords": ["international transfer", "third country", "adequacy decision", "standard contractual clauses"],
        "related_documents": ["gdpr-article-6"],
    },
    {
        "title": "NAIC Unfair Claims Settlement Practices Model Act",
        "regulation": "State Insurance Code",
        "section": "Model 900",
        "description": "Model act defining unfair claims settlement practices for insurers",
        "effective_date": "1990-01-01",
        "last_updated": "1997-01-01",
        "jurisdiction": "US",
        "applicable_domains": ["insurance"],
        "document_type": "standard",
        "keywords": ["claim denial", "unfair practice", "claims handling", "discrimination"],
    },
]

DEFAULT_GUIDANCE = [
    {
        "rule_id": "hipaa-phi-disclosure",
        "regulation": "HIPAA",
        "guidance": "Protected Health Information (PHI) must not be disclosed without proper authorization or legal basis.",
        "examples": (
            "Patient names, addresses, and medical record numbers",
            "Diagnosis and treatment information",
            "Insurance information and billing records",
        ),
        "common_violations": (
            "Unauthorized disclosure of patient information",
            "Inadequate access controls",
            "Improper disposal of PHI",
        ),
        "best_practices": (
            "Implement role-based access controls",
            "Use encryption for PHI transmission",
            "Conduct regular privacy training",
            "Maintain audit logs of PHI access",
        ),
        "related_rules": ("hipaa-minimum-necessary", "hipaa-security-rule"),
        "reviewed_by": "Compliance Team",
    },
]

ENFORCEMENT_HISTORY: Dict[str, Tuple[str, ...]] = {
    "HIPAA": (
        "2023: $240,000 fine for unauthorized PHI disclosure",
        "2022: $1.2M settlement for inadequate security measures",
        "2021: $400,000 penalty for improper disposal of PHI",
    ),
    "SOX": (
        "2023: $50M fine for financial reporting violations",
        "2022: $25M penalty for inadequate internal controls",
        "2021: $75M settlement for accounting irregularities",
    ),
    "GDPR": (
        "2023: €1.2B fine for data processing violations",
        "2022: €405M penalty for inadequate consent mechanisms",
        "2021: €746M fine for privacy policy violations",
    ),
}

PENALTIES: Dict[str, Tuple[str, ...]] = {
    "HIPAA": (
        "Tier 1: $100-$50,000 per violation",
        "Tier 2: $1,000-$50,000 per violation",
        "Tier 3: $10,000-$50,000 per violation",
        "Tier 4: $50,000+ per violation",
        "Maximum annual penalty: $1.5M per violation category",
    ),
    "SOX": (
        "Civil penalties up to $5M for individuals",
        "Civil penalties up to $25M for entities",
        "Criminal penalties up to 20 years imprisonment",
        "Disgorgement of profits",
    ),
    "GDPR": (
        "Administrative fines up to €20M",
        "Administrative fines up to 4% of annual global turnover",
        "Compensation for damages",
        "Corrective measures and compliance orders",
    ),
}

DEFAULT_PENALTIES = ("Regulatory penalties may apply",)

DocumentInput = Union[RegulatoryDocument, Mapping[str, Any]]


def meets_applicability_threshold(score: int, threshold: int = APPLICABILITY_THRESHOLD) -> bool:
    """A reference is kept only when its score is strictly above the threshold."""
    return score > threshold


def overlapping_keywords(rule_keywords: Iterable[str], document_keywords: Iterable[str]) -> List[str]:
    """Rule keywords that contain, or are contained in, some document keyword."""
    doc_keywords = [k.lower() for k in document_keywords]
    matches = []
    for keyword in rule_keywords:
        keyword = keyword.lower()
        if any(dk in keyword or keyword in dk for dk in doc_keywords):
            matches.append(keyword)
    return matches


class RegulatoryReferenceManager:
    """
    Scores a catalog of regulatory documents against compliance rules.

    The catalog is an immutable snapshot: administration methods swap in a new
    snapshot and bump the catalog version, which also retires cached lookups.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None, clock=None,
                 documents: Optional[Iterable[DocumentInput]] = None):
        """
        Initialize the reference manager.

        Args:
            config: Reference settings (documents_path, applicability_threshold,
                max_references, recency_days, cache_size)
            clock: Callable returning the current datetime
            documents: Extra documents added on top of the built-in catalog
        """
        self.config = config or {}
        self.threshold = self.config.get("applicability_threshold", APPLICABILITY_THRESHOLD)
        self.max_references = self.config.get("max_references", 3)
        self.recency_days = self.config.get("recency_days", 365)
        self._clock = clock or datetime.datetime.now
        self._extra_documents = list(documents or ())

        self._lock = threading.Lock()
        self._version = 0
        self._cache = LRUCache(maxsize=self.config.get("cache_size", 256))
        self._documents: Dict[str, RegulatoryDocument] = {}
        self._guidance: Dict[str, ComplianceGuidance] = {}
        self._updates: List[RegulatoryUpdate] = []

        self.reload_documents()
        self._initialize_guidance()

    @property
    def documents(self) -> List[RegulatoryDocument]:
        return list(self._documents.values())

    def get_document(self, document_id: str) -> Optional[RegulatoryDocument]:
        return self._documents.get(document_id)

    def get_regulatory_references(self, rule: ComplianceRule) -> List[RegulatoryReference]:
        """
        Score every active catalog document against a rule.

        Args:
            rule: Rule to find references for

        Returns:
            References scoring above the applicability threshold, most
            relevant first
        """
        today = self._clock().date()
        cache_key = (rule, self._version, today)
        cached = self._cache.get(cache_key)
        if cached is not None:
            return list(cached)

        references = []
        for doc_id, document in self._documents.items():
            if document.status != DocumentStatus.ACTIVE:
                continue

            score = self.calculate_applicability_score(document, rule, today)
            if not meets_applicability_threshold(score, self.threshold):
                continue

            sections = self.find_relevant_sections(document, rule)
            references.append(RegulatoryReference(
                document_id=doc_id,
                document=document,
                relevant_sections=tuple(sections),
                citation_text=self.generate_citation(document, sections),
                context=self.generate_context(document, rule),
                applicability_score=score,
            ))

        references.sort(key=lambda ref: ref.applicability_score, reverse=True)
        self._cache[cache_key] = tuple(references)
        return references

    def calculate_applicability_score(self, document: RegulatoryDocument, rule: ComplianceRule,
                                      today: Optional[datetime.date] = None) -> int:
        """Applicability of a document to a rule on a 0-100 scale."""
        today = today or self._clock().date()
        score = 0

        if document.regulation == rule.regulation:
            score += REGULATION_MATCH_SCORE
        if Domain(rule.domain) in document.applicable_domains:
            score += DOMAIN_MATCH_SCORE
        if document.jurisdiction == rule.jurisdiction:
            score += JURISDICTION_MATCH_SCORE

        score += KEYWORD_MATCH_SCORE * len(overlapping_keywords(rule.keywords, document.keywords))

        if (today - document.last_updated).days < self.recency_days:
            score += RECENCY_BONUS

        return max(0, min(100, score))

    def find_relevant_sections(self, document: RegulatoryDocument, rule: ComplianceRule) -> List[str]:
        sections = []
        if document.section:
            sections.append(document.section)
        if overlapping_keywords(rule.keywords, document.keywords):
            sections.append(GENERAL_PROVISIONS_SECTION)
        return sections

    def generate_citation(self, document: RegulatoryDocument, sections: Optional[Iterable[str]] = None) -> str:
        """
        Format a citation for a document.

        Args:
            document: Cited document
            sections: Relevant sections; the document's own section is not repeated

        Returns:
            Citation such as "Title, Section 302, General Provisions (2002). Available at: url"
        """
        citation = document.title
        if document.section:
            citation += f", Section {document.section}"

        extra_sections = [s for s in (sections or ()) if s != document.section]
        if extra_sections:
            citation += f", {', '.join(extra_sections)}"

        if document.effective_date:
            citation += f" ({document.effective_date.year})"
        if document.url:
            citation += f". Available at: {document.url}"
        return citation

    def generate_context(self, document: RegulatoryDocument, rule: ComplianceRule) -> str:
        return (
            f"This rule is based on {document.title}, which applies to {Domain(rule.domain).value} "
            f"organizations in {document.jurisdiction}. The regulation requires compliance with "
            f"{rule.regulation} standards."
        )

    def get_compliance_guidance(self, rule_id: str) -> Optional[ComplianceGuidance]:
        return self._guidance.get(rule_id)

    def update_compliance_guidance(self, rule_id: str, guidance: Mapping[str, Any]) -> ComplianceGuidance:
        """Store guidance for a rule, stamped as reviewed today."""
        fields = dict(guidance)
        fields.pop("rule_id", None)
        fields.pop("last_reviewed", None)
        for key in ("examples", "common_violations", "best_practices", "related_rules"):
            fields[key] = tuple(fields.get(key, ()))

        full_guidance = ComplianceGuidance(rule_id=rule_id, last_reviewed=self._clock().date(), **fields)
        with self._lock:
            self._guidance[rule_id] = full_guidance
        logger.info(f"Updated compliance guidance for rule {rule_id}")
        return full_guidance

    def add_regulatory_document(self, document: DocumentInput) -> RegulatoryDocument:
        """Add a document to the catalog, replacing any document with the same ID."""
        if not isinstance(document, RegulatoryDocument):
            document = RegulatoryDocument.from_dict(document)

        with self._lock:
            if document.id in self._documents:
                logger.warning(f"Replacing regulatory document {document.id}")
            documents = dict(self._documents)
            documents[document.id] = document
            self._swap_catalog(documents)
        logger.info(f"Added regulatory document {document.id} ({document.regulation})")
        return document

    def reload_documents(self, documents_path: Optional[str] = None) -> int:
        """
        Rebuild the catalog from the built-in documents, the constructor's
        extra documents and an optional YAML/JSON file.

        Returns:
            Number of documents in the new catalog
        """
        documents_path = documents_path or self.config.get("documents_path")
        entries: List[DocumentInput] = list(DEFAULT_DOCUMENTS) + self._extra_documents
        if documents_path:
            data = load_structured_file(documents_path) or []
            if isinstance(data, dict):
                data = data.get("documents", [])
            entries.extend(data)

        documents: Dict[str, RegulatoryDocument] = {}
        for entry in entries:
            document = entry if isinstance(entry, RegulatoryDocument) else RegulatoryDocument.from_dict(entry)
            documents[document.id] = document

        with self._lock:
            self._swap_catalog(documents)
        logger.info(f"Loaded {len(documents)} regulatory documents")
        return len(documents)

    def add_regulatory_update(self, update: Mapping[str, Any]) -> RegulatoryUpdate:
        fields = dict(update)
        fields["id"] = f"update-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"
        fields["update_type"] = UpdateType(fields["update_type"])
        fields["severity"] = Severity(fields["severity"])
        fields["impacted_rules"] = tuple(fields.get("impacted_rules", ()))
        full_update = RegulatoryUpdate(**fields)

        with self._lock:
            self._updates = self._updates + [full_update]
        logger.info(f"Recorded regulatory update {full_update.id} for {full_update.regulation}")
        return full_update

    def get_related_updates(self, regulation: str, limit: int = 5) -> List[RegulatoryUpdate]:
        """Most recent updates for a regulation, matched by name or title."""
        needle = regulation.lower()
        related = [
            update for update in self._updates
            if update.regulation == regulation or needle in update.title.lower()
        ]
        related.sort(key=lambda update: update.effective_date, reverse=True)
        return related[:limit]

    def search_documents(self, keywords: Iterable[str], domain: Optional[Domain] = None,
                         jurisdiction: Optional[str] = None) -> List[RegulatoryDocument]:
        """
        Rank catalog documents against free keywords.

        Args:
            keywords: Search terms
            domain: Optional domain to favour
            jurisdiction: Optional jurisdiction to favour

        Returns:
            Documents with a positive score, best first
        """
        keywords = [k.lower() for k in keywords]
        domain = Domain(domain) if domain else None
        results = []

        for document in self._documents.values():
            score = 0
            if domain and domain in document.applicable_domains:
                score += DOMAIN_MATCH_SCORE
            if jurisdiction and document.jurisdiction == jurisdiction:
                score += JURISDICTION_MATCH_SCORE

            for keyword in keywords:
                if keyword in document.title.lower():
                    score += SEARCH_TITLE_SCORE
                if keyword in document.description.lower():
                    score += SEARCH_DESCRIPTION_SCORE
                if any(keyword in k.lower() for k in document.keywords):
                    score += SEARCH_KEYWORD_SCORE

            if score > 0:
                results.append((score, document))

        results.sort(key=lambda item: item[0], reverse=True)
        return [document for _, document in results]

    def get_enforcement_history(self, regulation: str) -> List[str]:
        return list(ENFORCEMENT_HISTORY.get(regulation, ()))

    def get_penalties(self, regulation: str) -> List[str]:
        return list(PENALTIES.get(regulation, DEFAULT_PENALTIES))

    def generate_regulatory_context(self, rule: ComplianceRule) -> RegulatoryContextBundle:
        """Top references, guidance, updates, enforcement history and penalties for a rule."""
        references = self.get_regulatory_references(rule)
        return RegulatoryContextBundle(
            primary_references=tuple(references[:self.max_references]),
            guidance=self.get_compliance_guidance(rule.id),
            related_updates=tuple(self.get_related_updates(rule.regulation)),
            enforcement_history=tuple(self.get_enforcement_history(rule.regulation)),
            penalties=tuple(self.get_penalties(rule.regulation)),
        )

    def _swap_catalog(self, documents: Dict[str, RegulatoryDocument]):
        # Caller holds the lock
        self._documents = documents
        self._version += 1
        self._cache.clear()

    def _initialize_guidance(self):
        reviewed = self._clock().date()
        for item in DEFAULT_GUIDANCE:
            self._guidance[item["rule_id"]] = ComplianceGuidance(last_reviewed=reviewed, **item)
