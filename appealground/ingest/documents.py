"""
Document Ingestion
===================

Entry point that turns raw document text into stored chunk records.

Pipeline (per input):
    1. Reject blank text (warning, nothing stored)
    2. Truncate beyond ``max_chars`` (warning)
    3. Resolve a stable doc ID (explicit, or hash of filename + text head)
    4. Chunk, then vectorize: dense embeddings when an embedder is given,
       TF vectors otherwise (and as fallback when embedding fails)
    5. Upsert the document and its chunks into the store

Failures never abort the batch; they become warnings on the result.
"""

from __future__ import annotations

import logging
from typing import Optional

from pydantic import BaseModel, Field

from appealground.ingest.chunker import DocumentChunker
from appealground.ingest.embedder import DocumentEmbedder
from appealground.ingest.store import KnowledgeStore
from appealground.schemas.evidence import ChunkRecord, DocMeta, KnowledgeDoc
from appealground.utils import stable_id

logger = logging.getLogger("appealground.ingest.documents")

# Leading characters hashed into a derived doc ID
DOC_ID_HEAD_CHARS = 200


class IngestInput(BaseModel):
    """One document to ingest. Text extraction happens upstream."""
    doc_id: Optional[str] = Field(default=None, description="Explicit ID, derived when omitted")
    filename: str = Field(min_length=1)
    mime_type: str = "text/plain"
    text: str
    meta: DocMeta = Field(default_factory=DocMeta)


class IngestResult(BaseModel):
    doc_id: str
    chunks: int = 0
    warnings: list[str] = Field(default_factory=list)


def _embed_records(
    records: list[ChunkRecord],
    embedder: DocumentEmbedder,
    warnings: list[str],
) -> list[ChunkRecord]:
    """Swap TF vectors for dense embeddings; keep TF vectors on failure."""
    if not records:
        return records
    try:
        embeddings = embedder.embed([r.text for r in records])
    except Exception as e:
        logger.warning(f"Embedding failed, falling back to TF vectors: {e}", exc_info=True)
        warnings.append(f"Embedding failed ({e}); stored TF vectors instead")
        return records

    return [
        record.model_copy(update={"vector": embedding.tolist()})
        for record, embedding in zip(records, embeddings)
    ]


def ingest_documents(
    store: KnowledgeStore,
    inputs: list[IngestInput],
    chunker: Optional[DocumentChunker] = None,
    embedder: Optional[DocumentEmbedder] = None,
    max_chars: int = 800_000,
) -> list[IngestResult]:
    """
    Ingest documents into the knowledge store.

    Args:
        store: Target store; documents with an existing ID are replaced.
        inputs: Documents to ingest.
        chunker: Chunker to use (defaults: 900 chars, 150 overlap).
        embedder: Optional dense embedder.
        max_chars: Text beyond this length is truncated.

    Returns:
        One IngestResult per input, in input order.
    """
    chunker = chunker or DocumentChunker()
    results: list[IngestResult] = []

    for item in inputs:
        warnings: list[str] = []
        raw_text = item.text

        if not raw_text.strip():
            warnings.append(f"No text extracted from {item.filename}")
            results.append(IngestResult(doc_id=item.doc_id or "unknown", warnings=warnings))
            continue

        text = raw_text
        if len(raw_text) > max_chars:
            text = raw_text[:max_chars]
            warnings.append(f"Text truncated to {max_chars} chars (original: {len(raw_text)})")

        doc_id = (item.doc_id or "").strip() or stable_id(item.filename, text[:DOC_ID_HEAD_CHARS])
        doc = KnowledgeDoc(
            doc_id=doc_id,
            filename=item.filename,
            mime_type=item.mime_type,
            text=text,
            meta=item.meta,
        )

        records = chunker.chunk_document(text, doc_id)
        if embedder is not None:
            records = _embed_records(records, embedder, warnings)

        store.upsert_doc(doc, records)
        results.append(IngestResult(doc_id=doc_id, chunks=len(records), warnings=warnings))
        logger.info(f"Ingested document '{doc_id}' ({item.filename}): {len(records)} chunks")

    return results
