"""
Knowledge Store
================

In-memory store for knowledge-base documents, their chunk records and
registered denial cases, with JSON persistence.

Design Decisions:
    - Chunks belong to exactly one document; ``upsert_doc`` replaces
      every chunk of that document atomically (dict swap)
    - ``list_candidates`` is deterministic: document insertion order,
      then chunk index
    - Records are validated once on the way in; stored metadata is
      trusted thereafter

Data Flow:
    ingest_documents → KnowledgeStore.upsert_doc → list_candidates → RetrievalIndex
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional, Union

from appealground.schemas.case import DenialCase
from appealground.schemas.evidence import (
    Candidate,
    ChunkRecord,
    DenseVector,
    KnowledgeDoc,
    SearchFilters,
    TermVector,
)
from appealground.utils import load_json, save_json

logger = logging.getLogger("appealground.ingest.store")

STORE_FORMAT_VERSION = 1


class KnowledgeStore:
    """
    Document, chunk and case registry.

    Usage:
        store = KnowledgeStore()
        store.upsert_doc(doc, records)
        candidates = store.list_candidates(SearchFilters(payer_name="Aetna"))
        store.save(Path("data/appealground.json"))
    """

    def __init__(self):
        self._docs: dict[str, KnowledgeDoc] = {}
        self._chunks: dict[str, list[ChunkRecord]] = {}
        self._cases: dict[str, DenialCase] = {}

    # ── Documents ──────────────────────────────────────────────────

    def upsert_doc(self, doc: KnowledgeDoc, chunks: list[ChunkRecord]) -> None:
        """
        Insert or replace a document together with all of its chunks.

        Raises:
            ValueError: If a chunk record belongs to a different document.
        """
        foreign = [c.chunk_id for c in chunks if c.doc_id != doc.doc_id]
        if foreign:
            raise ValueError(
                f"Chunks {foreign} do not belong to document '{doc.doc_id}'"
            )

        replaced = doc.doc_id in self._docs
        self._docs[doc.doc_id] = doc
        self._chunks[doc.doc_id] = sorted(chunks, key=lambda c: c.index)
        logger.debug(
            f"{'Replaced' if replaced else 'Stored'} document '{doc.doc_id}' "
            f"({len(chunks)} chunks)"
        )

    def get_doc(self, doc_id: str) -> Optional[KnowledgeDoc]:
        """Look up a document by ID. Returns None if not found."""
        return self._docs.get(doc_id)

    def get_chunks(self, doc_id: str) -> list[ChunkRecord]:
        """Chunk records of one document, in index order."""
        return list(self._chunks.get(doc_id, []))

    def list_candidates(self, filters: Optional[SearchFilters] = None) -> list[Candidate]:
        """
        List chunk records whose document passes the filters.

        A ``payer_name`` filter admits documents owned by that payer and
        documents with no owner. ``doc_type`` is an equality filter.
        Tags never exclude anything.
        """
        filters = filters or SearchFilters()
        candidates: list[Candidate] = []
        for doc_id, doc in self._docs.items():
            meta = doc.meta
            if filters.payer_name and meta.payer_name not in (None, filters.payer_name):
                continue
            if filters.doc_type is not None and meta.doc_type != filters.doc_type:
                continue
            candidates.extend(
                Candidate(record=record, meta=meta) for record in self._chunks.get(doc_id, [])
            )
        return candidates

    def update_chunk_vector(
        self,
        chunk_id: str,
        vector: Union[TermVector, DenseVector],
    ) -> bool:
        """
        Replace the vector of one chunk record.

        Returns:
            True if the chunk was found and updated.
        """
        for records in self._chunks.values():
            for i, record in enumerate(records):
                if record.chunk_id == chunk_id:
                    records[i] = record.model_copy(update={"vector": vector})
                    return True
        logger.warning(f"update_chunk_vector: unknown chunk '{chunk_id}'")
        return False

    # ── Case Registry ──────────────────────────────────────────────

    def save_case(self, case: DenialCase) -> None:
        self._cases[case.case_id] = case

    def get_case(self, case_id: str) -> Optional[DenialCase]:
        """Look up a registered case. Returns None if unknown."""
        return self._cases.get(case_id)

    # ── Stats & Persistence ────────────────────────────────────────

    def stats(self) -> dict[str, int]:
        return {
            "docs": len(self._docs),
            "chunks": sum(len(records) for records in self._chunks.values()),
            "cases": len(self._cases),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": STORE_FORMAT_VERSION,
            "docs": [
                {
                    "doc": doc.model_dump(mode="json"),
                    "chunks": [c.model_dump(mode="json") for c in self._chunks.get(doc_id, [])],
                }
                for doc_id, doc in self._docs.items()
            ],
            "cases": [case.model_dump(mode="json") for case in self._cases.values()],
        }

    def save(self, path: Union[str, Path]) -> Path:
        """Write the whole store to one JSON file."""
        path = save_json(self.to_dict(), path)
        stats = self.stats()
        logger.info(
            f"Saved knowledge store to {path} "
            f"({stats['docs']} docs, {stats['chunks']} chunks, {stats['cases']} cases)"
        )
        return path

    @classmethod
    def load(cls, path: Union[str, Path]) -> "KnowledgeStore":
        """
        Load a store written by ``save``.

        Raises:
            FileNotFoundError: If the file does not exist.
            pydantic.ValidationError: If a stored record is malformed.
        """
        data = load_json(path)
        store = cls()
        for entry in data.get("docs", []):
            doc = KnowledgeDoc.model_validate(entry["doc"])
            chunks = [ChunkRecord.model_validate(c) for c in entry.get("chunks", [])]
            store.upsert_doc(doc, chunks)
        for case_data in data.get("cases", []):
            store.save_case(DenialCase.model_validate(case_data))

        stats = store.stats()
        logger.info(
            f"Loaded knowledge store from {path} "
            f"({stats['docs']} docs, {stats['chunks']} chunks, {stats['cases']} cases)"
        )
        return store
