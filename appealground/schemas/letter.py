"""
Letter Schema
==============

Defines the appeal letter structures and the verifier output:
- Citations pointing back into source documents
- Letter sections (prose + attached citations)
- Verification outcome (patched sections, evidence gaps, warnings)
- Argument plans and the assembled AppealLetter

Invariant (after verification):
    Every sentence with a detected numeric claim is either covered by a
    citation whose snippet contains the claimed value, or carries a
    [NEEDS EVIDENCE: ...] marker naming what is missing.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from appealground.schemas.evidence import RetrievedItem


class CitationKind(str, Enum):
    """Where a citation points."""
    DENIAL_CASE_SPAN = "denial_case_span"
    KB_CHUNK = "kb_chunk"


class Citation(BaseModel):
    """
    Pointer from a generated claim back to the source text supporting it.

    Invariant:
        0 <= start <= end, and snippet is a (possibly truncated,
        whitespace-normalized) excerpt of document[start:end].
    """
    kind: CitationKind
    doc_id: str = Field(description="Referenced document")
    start: int = Field(ge=0, description="Start offset in the document")
    end: int = Field(ge=0, description="End offset in the document (exclusive)")
    snippet: str = Field(min_length=1, description="Short human-readable excerpt")
    label: str = Field(default="", description="Semantic role, e.g. 'policyReference'")

    @model_validator(mode="after")
    def validate_range(self) -> "Citation":
        if self.start > self.end:
            raise ValueError(f"Citation start ({self.start}) must be <= end ({self.end})")
        if not self.snippet.strip():
            raise ValueError("Citation snippet must not be blank")
        return self

    @property
    def inline_tag(self) -> str:
        """Inline citation tag used in the assembled full text."""
        return f"[CITE:{self.kind.value}:{self.doc_id}:{self.start}-{self.end}]"


class LetterSection(BaseModel):
    """A titled block of letter prose with its supporting citations."""
    id: str
    title: str
    content: str
    citations: list[Citation] = Field(default_factory=list)
    warnings: Optional[list[str]] = None


class VerificationOutcome(BaseModel):
    """
    Output of the grounding verifier.

    ``unresolved_claims`` lists the sentences patched during this run;
    re-verifying already-patched sections leaves it empty while
    sections, evidence gaps and warnings stay identical.
    """
    sections: list[LetterSection] = Field(description="Sections with markers inserted")
    evidence_gaps: list[str] = Field(
        default_factory=list, description="Deduplicated NEEDS EVIDENCE items"
    )
    unresolved_claims: list[str] = Field(
        default_factory=list, description="Numeric claims patched in this run"
    )
    warnings: list[str] = Field(default_factory=list, description="Non-fatal section warnings")


# ── Argument Plan ──────────────────────────────────────────────────

class Argument(BaseModel):
    claim: str
    required_evidence: list[str] = Field(default_factory=list)
    retrieval_queries: list[str] = Field(default_factory=list)


class ArgumentPlan(BaseModel):
    primary_denial_category: str
    thesis: str
    arguments: list[Argument] = Field(default_factory=list)


class PlanResult(BaseModel):
    plan: ArgumentPlan
    retrieved_context: list[RetrievedItem] = Field(default_factory=list)
    missing_evidence: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


# ── Appeal Letter ──────────────────────────────────────────────────

class GenerateOptions(BaseModel):
    tone: str = "professional"
    include_citations_inline: bool = True


class AttachmentItem(BaseModel):
    item: str
    required: bool
    citations: list[Citation] = Field(default_factory=list)


class ActionPriority(str, Enum):
    P0 = "p0"
    P1 = "p1"
    P2 = "p2"


class ActionItem(BaseModel):
    priority: ActionPriority
    action: str
    why: str
    citations: list[Citation] = Field(default_factory=list)


class AppealLetter(BaseModel):
    """The assembled, verified appeal letter."""
    letter_id: str
    case_id: str
    payer_name: Optional[str] = None
    created_at: str
    tone: str = "professional"
    sections: list[LetterSection] = Field(default_factory=list)
    full_text: str = ""
    attachment_checklist: list[AttachmentItem] = Field(default_factory=list)
    missing_evidence: list[str] = Field(default_factory=list)
    action_items: list[ActionItem] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
