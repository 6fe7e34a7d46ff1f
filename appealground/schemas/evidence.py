"""
Evidence Schema
================

Defines the records flowing through ingestion and retrieval:
- Document metadata, validated once at the store boundary
- Chunks with stable character offsets into the source document
- Persisted chunk records carrying a term vector or dense embedding
- Ephemeral retrieval results

Design Decisions:
    - Offsets are character offsets into the original document text,
      so citations built from chunks point at the exact source span
    - Chunk records are immutable; re-ingesting a document replaces
      its records rather than mutating them
    - Metadata is an explicit tagged structure, not a free-form dict

Data Flow:
    Document text → Chunker → ChunkRecord (+ vector) → Store → RetrievedItem
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

# Sparse term → weight mapping (absent key = weight 0)
TermVector = dict[str, float]
# Dense embedding
DenseVector = list[float]


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class DocType(str, Enum):
    """Role of a knowledge-base document in an appeal."""
    POLICY = "policy"
    TEMPLATE = "template"
    PRIOR_APPEAL_ACCEPTED = "prior_appeal_accepted"
    PRIOR_APPEAL_DENIED = "prior_appeal_denied"
    CLINICAL = "clinical"
    BENEFITS = "benefits"
    OTHER = "other"


class DocMeta(BaseModel):
    """
    Metadata for a knowledge-base document.

    ``payer_name`` is the owner key: documents without one are shared
    across payers and match any payer filter.
    """
    doc_type: DocType = Field(default=DocType.OTHER, description="Document role")
    payer_name: Optional[str] = Field(default=None, description="Owning payer, None = shared")
    tags: list[str] = Field(default_factory=list, description="Free-form tags for soft boosting")
    created_at: str = Field(default_factory=_utc_now, description="ISO-8601 creation timestamp")


class KnowledgeDoc(BaseModel):
    """A full source document stored in the knowledge base."""
    doc_id: str = Field(min_length=1, description="Unique document identifier")
    filename: str = Field(default="", description="Original file name")
    mime_type: str = Field(default="text/plain", description="MIME type of the original file")
    text: str = Field(description="Extracted plain text")
    meta: DocMeta = Field(default_factory=DocMeta)


class Chunk(BaseModel):
    """
    A bounded, offset-tracked window of a document.

    ``text`` is ``source[start:end]`` with surrounding whitespace trimmed.
    For a fixed (text, chunk_size, overlap) the chunker always yields the
    same sequence of chunks.
    """
    model_config = ConfigDict(frozen=True)

    index: int = Field(ge=0, description="Ordinal position within the document")
    text: str = Field(min_length=1, description="Trimmed chunk text")
    start: int = Field(ge=0, description="Start character offset in the document")
    end: int = Field(ge=0, description="End character offset in the document (exclusive)")

    @model_validator(mode="after")
    def validate_offsets(self) -> "Chunk":
        if self.start >= self.end:
            raise ValueError(f"Chunk start ({self.start}) must be < end ({self.end})")
        return self


class ChunkRecord(BaseModel):
    """
    Persisted chunk: the stable record shape shared by every store.

    Schema:
        {
          "chunk_id": "chk_1a2b3c4d5e6f7a8b",
          "doc_id": "policy_cpb045",
          "index": 0,
          "text": "...",
          "start": 0, "end": 874,
          "vector": {"therapy": 1.09, "session_limit": 0.69}
        }
    """
    model_config = ConfigDict(frozen=True)

    chunk_id: str = Field(description="Stable chunk ID (format: 'chk_{hash}')")
    doc_id: str = Field(description="Parent document ID")
    index: int = Field(ge=0, description="Ordinal position within the document")
    text: str = Field(description="Chunk text")
    start: int = Field(ge=0, description="Start offset in the document")
    end: int = Field(ge=0, description="End offset in the document (exclusive)")
    vector: Union[TermVector, DenseVector] = Field(
        default_factory=dict,
        description="TF term vector, or a dense embedding",
    )

    @property
    def is_dense(self) -> bool:
        return isinstance(self.vector, list)


class TextSpan(BaseModel):
    """Character range in a source document."""
    start: int = Field(ge=0)
    end: int = Field(ge=0)


class SearchFilters(BaseModel):
    """
    Retrieval filters.

    ``payer_name`` and ``doc_type`` narrow the candidate set by equality
    (a payer filter also admits shared documents). ``tags`` only boost
    ranking and never exclude a candidate.
    """
    payer_name: Optional[str] = None
    doc_type: Optional[DocType] = None
    tags: list[str] = Field(default_factory=list)


class Candidate(BaseModel):
    """A chunk record joined with its document metadata, as listed by the store."""
    model_config = ConfigDict(frozen=True)

    record: ChunkRecord
    meta: DocMeta


class RetrievedItem(BaseModel):
    """
    A ranked retrieval result. Produced per query, never persisted.
    """
    chunk_id: str = Field(description="Identity key of the retrieved chunk")
    doc_id: str = Field(description="Parent document ID")
    text: str = Field(description="Chunk text")
    score: float = Field(description="Similarity score after tag boosting")
    spans: list[TextSpan] = Field(default_factory=list, description="Source spans in the document")
    meta: DocMeta = Field(default_factory=DocMeta)
