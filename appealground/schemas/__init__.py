"""
appealground Data Schemas
==========================

Pydantic v2 models for the data contracts of the grounding pipeline:

1. Evidence: documents, chunks, chunk records, retrieval results
2. Case: the structured denial case driving retrieval
3. Letter: citations, sections, verification outcome, appeal letter

All schemas support runtime validation, JSON Schema export, and
JSON round-tripping for the knowledge store.
"""

from appealground.schemas.evidence import (
    Candidate,
    Chunk,
    ChunkRecord,
    DenseVector,
    DocMeta,
    DocType,
    KnowledgeDoc,
    RetrievedItem,
    SearchFilters,
    TermVector,
    TextSpan,
)
from appealground.schemas.case import (
    DenialCase,
    DenialCategory,
    ExtractedField,
    Identifier,
    PolicyReference,
    ServiceItem,
    SourceSpan,
    UserContext,
)
from appealground.schemas.letter import (
    ActionItem,
    AppealLetter,
    Argument,
    ArgumentPlan,
    AttachmentItem,
    Citation,
    CitationKind,
    GenerateOptions,
    LetterSection,
    PlanResult,
    VerificationOutcome,
)

__all__ = [
    # Evidence
    "Candidate",
    "Chunk",
    "ChunkRecord",
    "DenseVector",
    "DocMeta",
    "DocType",
    "KnowledgeDoc",
    "RetrievedItem",
    "SearchFilters",
    "TermVector",
    "TextSpan",
    # Case
    "DenialCase",
    "DenialCategory",
    "ExtractedField",
    "Identifier",
    "PolicyReference",
    "ServiceItem",
    "SourceSpan",
    "UserContext",
    # Letter
    "ActionItem",
    "AppealLetter",
    "Argument",
    "ArgumentPlan",
    "AttachmentItem",
    "Citation",
    "CitationKind",
    "GenerateOptions",
    "LetterSection",
    "PlanResult",
    "VerificationOutcome",
]
