"""
appealground Test Configuration
================================

Shared fixtures, factories, and helpers for the entire test suite.
"""

from __future__ import annotations

import os
from typing import Optional

import pytest

# ── Ensure test mode ────────────────────────────────────────────
os.environ.setdefault("APPEALGROUND_LOG_LEVEL", "WARNING")
os.environ.pop("APPEALGROUND_EMBEDDING__ENABLED", None)

from appealground.config import AppealGroundConfig
from appealground.ingest.chunker import DocumentChunker
from appealground.ingest.store import KnowledgeStore
from appealground.retrieve.index import RetrievalIndex
from appealground.schemas.case import (
    DenialCase,
    DenialCategory,
    PolicyReference,
    ServiceItem,
    ServiceStatus,
    SourceSpan,
)
from appealground.schemas.evidence import DocMeta, DocType, KnowledgeDoc
from appealground.schemas.letter import Citation, CitationKind, LetterSection


# ── Markers ─────────────────────────────────────────────────────

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: fast unit tests")
    config.addinivalue_line("markers", "integration: multi-component tests")


# ── Sample Texts ────────────────────────────────────────────────

POLICY_TEXT = (
    "Aetna Clinical Policy Bulletin CPB 0325: Physical Therapy.\n\n"
    "Outpatient physical therapy is limited to 20 visits per calendar year. "
    "Additional visits may be approved when medical necessity is documented and "
    "functional improvement is measurable. Therapeutic exercise (CPT 97110) must be "
    "supported by a plan of care signed by the treating provider."
)

PRIOR_APPEAL_TEXT = (
    "Appeal decision: approved. The member exceeded the 20 visit physical therapy limit. "
    "The reviewer approved 12 additional sessions after progress notes documented "
    "functional improvement in range of motion and gait."
)

CLINICAL_TEXT = (
    "Physical therapy progress note. Patient completed 20 sessions of therapeutic "
    "exercise, CPT 97110. Oswestry disability score improved from 48% to 30%. "
    "Continued skilled therapy is recommended to restore independent ambulation."
)

TEMPLATE_TEXT = (
    "Appeal letter template for benefit limit denials. State the denied service, "
    "quote the denial reason, and request a medical necessity exception supported "
    "by clinical documentation."
)

OTHER_PAYER_TEXT = (
    "UnitedHealthcare chiropractic manipulation policy. Spinal manipulation requires "
    "documented subluxation and is reviewed annually."
)

DENIAL_LETTER_TEXT = (
    "Aetna Appeals Unit\n"
    "PO Box 14463\n"
    "Lexington, KY 40512\n"
    "\n"
    "Jane Doe\n"
    "42 Maple Street\n"
    "Springfield, IL 62704\n"
    "\n"
    "Member Name: JANE DOE\n"
    "Member ID: W123456789\n"
    "Claim Number: CLM-2026-00123\n"
    "Account #: 778812\n"
    "\n"
    "Service: Therapeutic exercise, CPT 97110 and 97140\n"
    "Reason Code: CO-119\n"
    "Remark: CARC 45 applies to the billed amount.\n"
    "\n"
    "Reason for denial: Your plan limits outpatient physical therapy to 20 visits per "
    "calendar year and the benefit maximum has been reached.\n"
    "\n"
    "You may appeal within 180 days of this letter.\n"
)


# ── Fixtures ────────────────────────────────────────────────────

@pytest.fixture
def config(tmp_path) -> AppealGroundConfig:
    """Default config with storage under a temp directory."""
    return AppealGroundConfig(storage_path=tmp_path / "data")


@pytest.fixture
def chunker() -> DocumentChunker:
    """Zero overlap: each sample document fits one window, one chunk per doc."""
    return DocumentChunker(chunk_size=900, overlap=0)


@pytest.fixture
def knowledge_docs() -> list[KnowledgeDoc]:
    """Small knowledge base: one doc per type plus another payer's policy."""
    return [
        make_doc("policy_cpb0325", POLICY_TEXT, DocType.POLICY, payer="Aetna",
                 tags=["pt", "benefit_limit"]),
        make_doc("appeal_2023_pt", PRIOR_APPEAL_TEXT, DocType.PRIOR_APPEAL_ACCEPTED,
                 payer="Aetna"),
        make_doc("clinical_pt_notes", CLINICAL_TEXT, DocType.CLINICAL),
        make_doc("template_benefit_limit", TEMPLATE_TEXT, DocType.TEMPLATE),
        make_doc("uhc_chiro_policy", OTHER_PAYER_TEXT, DocType.POLICY,
                 payer="UnitedHealthcare"),
    ]


@pytest.fixture
def store(knowledge_docs, chunker) -> KnowledgeStore:
    """Knowledge store populated with ``knowledge_docs``."""
    return make_store(knowledge_docs, chunker)


@pytest.fixture
def index(store) -> RetrievalIndex:
    return RetrievalIndex(store)


@pytest.fixture
def benefit_limit_case() -> DenialCase:
    """Benefit-limit PT denial with provenance spans on the key fields."""
    return make_case()


# ── Factories ───────────────────────────────────────────────────

def make_doc(
    doc_id: str = "doc_0",
    text: str = "Default document text.",
    doc_type: DocType = DocType.OTHER,
    payer: Optional[str] = None,
    tags: Optional[list[str]] = None,
) -> KnowledgeDoc:
    """Factory for knowledge-base documents."""
    return KnowledgeDoc(
        doc_id=doc_id,
        filename=f"{doc_id}.txt",
        text=text,
        meta=DocMeta(doc_type=doc_type, payer_name=payer, tags=tags or []),
    )


def make_store(
    docs: list[KnowledgeDoc],
    chunker: Optional[DocumentChunker] = None,
) -> KnowledgeStore:
    """Store with every doc chunked and upserted in order (one chunk per short doc)."""
    chunker = chunker or DocumentChunker(overlap=0)
    store = KnowledgeStore()
    for doc in docs:
        store.upsert_doc(doc, chunker.chunk_document(doc.text, doc.doc_id))
    return store


def make_citation(
    snippet: str = "Default snippet.",
    doc_id: str = "denial_letter",
    kind: CitationKind = CitationKind.DENIAL_CASE_SPAN,
    start: int = 0,
    end: Optional[int] = None,
    label: str = "",
) -> Citation:
    """Factory for citations."""
    return Citation(
        kind=kind,
        doc_id=doc_id,
        start=start,
        end=start + len(snippet) if end is None else end,
        snippet=snippet,
        label=label,
    )


def make_section(
    content: str,
    section_id: str = "rebuttal",
    title: Optional[str] = None,
    citations: Optional[list[Citation]] = None,
    warnings: Optional[list[str]] = None,
) -> LetterSection:
    """Factory for letter sections; the title defaults from the ID."""
    return LetterSection(
        id=section_id,
        title=title or section_id.replace("_", " ").title(),
        content=content,
        citations=citations or [],
        warnings=warnings,
    )


def _field(value, snippet: Optional[str] = None, label: str = "", start: int = 0, confidence: float = 0.9):
    spans = []
    if snippet:
        spans.append(SourceSpan(
            doc_id="denial_letter", start=start, end=start + len(snippet),
            snippet=snippet, label=label,
        ))
    # Plain dict: validated into each field's parametrized ExtractedField[...]
    return {"value": value, "confidence": confidence, "spans": spans}


def make_case(
    case_id: str = "case_001",
    category: DenialCategory = DenialCategory.BENEFIT_LIMIT,
    payer: Optional[str] = "Aetna",
    policy_ids: Optional[list[str]] = None,
    appeal_window_days: Optional[int] = 180,
    with_spans: bool = True,
) -> DenialCase:
    """
    Factory for denial cases.

    With ``with_spans`` the member, claim, date and amount fields carry
    denial-letter spans so letter sections get denial_case_span citations.
    """
    if policy_ids is None:
        policy_ids = ["CPB 0325"]

    def field(value, snippet=None, label="", start=0):
        return _field(value, snippet if with_spans else None, label, start)

    return DenialCase(
        case_id=case_id,
        payer_name=field(payer, f"{payer} Health Plans" if payer else None, "payerName", 0),
        payer_address=field("PO Box 14463, Lexington, KY 40512"),
        letter_date=field("March 3, 2025", "Date: March 3, 2025", "letterDate", 40),
        member_name=field("Jane Doe", "Member: Jane Doe", "memberName", 80),
        member_id=field("W123456789", "Member ID: W123456789", "memberId", 100),
        claim_number=field("CLM-2025-000871", "Claim number: CLM-2025-000871", "claimNumber", 130),
        provider_name=field("Riverside Physical Therapy", "Provider: Riverside Physical Therapy",
                            "providerName", 170),
        service_date=field("2025-02-14", "Date of service: 2025-02-14", "serviceDate", 210),
        services=field(
            [ServiceItem(
                service_name="Physical therapy, therapeutic exercise",
                cpt_codes=["97110"],
                amount_requested=1250.0,
                status=ServiceStatus.DENIED,
            )],
            "Therapeutic exercise CPT 97110, billed $1,250.00, DENIED",
            "services",
            250,
        ),
        denial_category=field(category),
        denial_reason_summary=field(
            "Your plan covers 20 physical therapy visits per calendar year and this limit has been reached.",
            "Your plan covers 20 physical therapy visits per calendar year and this limit has been reached.",
            "denialReason",
            320,
        ),
        policy_references=field(
            [PolicyReference(policy_id=p) for p in policy_ids] or None,
            ", ".join(policy_ids) or None,
            "policyReferences",
            430,
        ),
        patient_responsibility_amount=field(1250.0, "You may owe: $1,250.00",
                                            "patientResponsibility", 460),
        appeal_window_days=field(
            appeal_window_days,
            f"You have {appeal_window_days} days to appeal" if appeal_window_days else None,
            "appealWindowDays",
            490,
        ),
        appeal_submission_methods=field(["mail", "fax"], "Submit by mail or fax",
                                        "submissionMethods", 530),
        required_attachments=field(["Therapy progress notes"],
                                   "Include therapy progress notes", "requiredAttachments", 560),
        raw_text="(denial letter text)",
    )
