import datetime
import json

import pytest

from src.compliance.knowledge_base.regulatory_knowledge_base import (
    GENERAL_PROVISIONS_SECTION, RegulatoryReferenceManager, meets_applicability_threshold,
    overlapping_keywords
)
from src.compliance.models.compliance_models import Domain, Severity
from src.compliance.models.regulatory_models import RegulatoryDocument, document_id_for

HIPAA_CITATION = (
    "Health Insurance Portability and Accountability Act (HIPAA), Section 164.502, "
    "General Provisions (1996). Available at: "
    "https://www.hhs.gov/hipaa/for-professionals/privacy/laws-regulations/index.html"
)


def _document(**overrides):
    data = {
        "id": "acme-doc",
        "title": "ACME Health Guidance",
        "regulation": "OTHER",
        "jurisdiction": "XX",
        "applicable_domains": ["healthcare"],
        "effective_date": "2025-06-01",
        "last_updated": "2026-01-15",
    }
    data.update(overrides)
    return data


@pytest.fixture
def acme_rule(rule_factory):
    return rule_factory(id="acme-rule", regulation="ACME", jurisdiction="CA", domain=Domain.HEALTHCARE)


class TestApplicabilityThreshold:

    @pytest.mark.parametrize("score,expected", [(29, False), (30, False), (31, True), (100, True)])
    def test_strictly_above_threshold(self, score, expected):
        assert meets_applicability_threshold(score) is expected

    def test_document_scoring_exactly_30_is_excluded(self, clock, acme_rule):
        # domain +20, recency +10
        manager = RegulatoryReferenceManager(clock=clock, documents=[_document()])

        document = manager.get_document("acme-doc")
        assert manager.calculate_applicability_score(document, acme_rule) == 30
        assert manager.get_regulatory_references(acme_rule) == []

    def test_document_above_30_is_included(self, clock, acme_rule):
        # domain +20, jurisdiction +15
        manager = RegulatoryReferenceManager(clock=clock, documents=[
            _document(jurisdiction="CA", last_updated="2020-01-01"),
        ])

        references = manager.get_regulatory_references(acme_rule)
        assert [(ref.document_id, ref.applicability_score) for ref in references] == [("acme-doc", 35)]

    def test_inactive_documents_are_not_scored(self, clock, acme_rule):
        manager = RegulatoryReferenceManager(clock=clock, documents=[
            _document(jurisdiction="CA", status="superseded"),
        ])
        assert manager.get_regulatory_references(acme_rule) == []


class TestRegulatoryReferences:

    def test_hipaa_rule_references(self, reference_manager, rule_repository):
        rule = rule_repository.get_rule_by_id("hipaa-phi-001")

        references = reference_manager.get_regulatory_references(rule)

        assert [(ref.document_id, ref.applicability_score) for ref in references] == [
            ("hipaa-164-502", 85),
            ("hipaa-164-312", 80),
        ]
        best = references[0]
        assert best.relevant_sections == ("164.502", GENERAL_PROVISIONS_SECTION)
        assert best.citation_text == HIPAA_CITATION
        assert best.context == (
            "This rule is based on Health Insurance Portability and Accountability Act (HIPAA), "
            "which applies to healthcare organizations in US. "
            "The regulation requires compliance with HIPAA standards."
        )

    def test_gdpr_rule_references(self, reference_manager, rule_repository):
        rule = rule_repository.get_rule_by_id("gdpr-privacy-001")
        document_ids = [ref.document_id for ref in reference_manager.get_regulatory_references(rule)]
        assert document_ids[0] == "gdpr-article-6"
        assert "gdpr-chapter-v" in document_ids

    def test_lookups_are_cached_until_catalog_changes(self, reference_manager, rule_repository):
        rule = rule_repository.get_rule_by_id("sox-financial-001")
        first = reference_manager.get_regulatory_references(rule)
        assert reference_manager.get_regulatory_references(rule) == first

        reference_manager.add_regulatory_document(_document(
            id="sox-extra", regulation="SOX", jurisdiction="US", applicable_domains=["financial"],
        ))
        document_ids = [ref.document_id for ref in reference_manager.get_regulatory_references(rule)]
        assert "sox-extra" in document_ids

    def test_recency_bonus_uses_clock(self, rule_repository):
        rule = rule_repository.get_rule_by_id("hipaa-phi-001")
        document = RegulatoryDocument.from_dict(_document(regulation="HIPAA", jurisdiction="US"))

        fresh = RegulatoryReferenceManager(clock=lambda: datetime.datetime(2026, 3, 1))
        stale = RegulatoryReferenceManager(clock=lambda: datetime.datetime(2027, 3, 1))

        assert fresh.calculate_applicability_score(document, rule) == 85
        assert stale.calculate_applicability_score(document, rule) == 75


class TestCitations:

    def test_citation_without_url(self, reference_manager):
        document = reference_manager.get_document("state-insurance-code-model-900")
        assert reference_manager.generate_citation(document, [document.section]) == (
            "NAIC Unfair Claims Settlement Practices Model Act, Section Model 900 (1990)"
        )

    def test_overlapping_keywords_match_either_direction(self):
        assert overlapping_keywords(
            ["medical record", "PHI data", "ssn"], ["medical records", "phi"]
        ) == ["medical record", "phi data"]

    def test_document_ids(self):
        assert document_id_for("HIPAA", "164.502") == "hipaa-164-502"
        assert document_id_for("State Insurance Code", "Model 900") == "state-insurance-code-model-900"
        assert document_id_for("SOX") == "sox"


class TestCatalogAdministration:

    def test_reload_from_file(self, tmp_path, clock):
        path = tmp_path / "documents.json"
        path.write_text(json.dumps({"documents": [_document(id="file-doc")]}))
        manager = RegulatoryReferenceManager({"documents_path": str(path)}, clock=clock)

        assert manager.get_document("file-doc").title == "ACME Health Guidance"
        assert len(manager.documents) == 8

    def test_search_documents(self, reference_manager):
        results = reference_manager.search_documents(["privacy"], Domain.HEALTHCARE, "US")
        assert results[0].id == "hipaa-164-502"

    def test_search_without_matches(self, reference_manager):
        assert reference_manager.search_documents(["zebra"]) == []

    def test_guidance(self, reference_manager, now):
        assert reference_manager.get_compliance_guidance("hipaa-phi-disclosure").regulation == "HIPAA"
        assert reference_manager.get_compliance_guidance("unknown") is None

        guidance = reference_manager.update_compliance_guidance("sox-financial-001", {
            "regulation": "SOX",
            "guidance": "Figures must be reconciled",
            "best_practices": ["Quarterly reconciliation"],
        })

        assert guidance.last_reviewed == now.date()
        assert guidance.best_practices == ("Quarterly reconciliation",)
        assert reference_manager.get_compliance_guidance("sox-financial-001") == guidance

    def test_related_updates(self, reference_manager):
        for day, title in ((1, "Older"), (20, "Newer")):
            reference_manager.add_regulatory_update({
                "regulation": "HIPAA",
                "update_type": "rule_change",
                "title": title,
                "description": "Change",
                "effective_date": datetime.date(2026, 1, day),
                "severity": "high",
            })

        updates = reference_manager.get_related_updates("HIPAA")
        assert [u.title for u in updates] == ["Newer", "Older"]
        assert updates[0].id.startswith("update-")
        assert updates[0].severity == Severity.HIGH
        assert reference_manager.get_related_updates("HIPAA", limit=1)[0].title == "Newer"

    def test_penalties_and_enforcement(self, reference_manager):
        assert reference_manager.get_penalties("GDPR")[0] == "Administrative fines up to €20M"
        assert reference_manager.get_penalties("ACME") == ["Regulatory penalties may apply"]
        assert len(reference_manager.get_enforcement_history("SOX")) == 3
        assert reference_manager.get_enforcement_history("ACME") == []

    def test_regulatory_context_bundle(self, rule_repository):
        manager = RegulatoryReferenceManager({"max_references": 1})
        rule = rule_repository.get_rule_by_id("hipaa-phi-001")

        bundle = manager.generate_regulatory_context(rule)

        assert [ref.document_id for ref in bundle.primary_references] == ["hipaa-164-502"]
        assert bundle.guidance is None
        assert bundle.penalties[-1] == "Maximum annual penalty: $1.5M per violation category"
        assert list(bundle.penalties) == manager.get_penalties(rule.regulation)
        assert bundle.enforcement_history[0].startswith("2023:")
