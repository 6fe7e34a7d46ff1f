"""
Retrieval Index
================

Filtered top-k search over the knowledge store.

Architecture:
    Query + Filters → Store.list_candidates → Scorer (IDF over candidates)
                    → Tag boost → Stable sort → top-k RetrievedItems

Key Properties:
    - Filters narrow the candidate set (and therefore the IDF basis)
    - Tags only re-rank: score *= 1 + tag_boost * matching_tags
    - Ties keep candidate order (stable sort), so results are
      deterministic for a fixed store
    - Never raises for well-formed input: blank queries, empty
      candidate sets and non-positive top_k all return []
"""

from __future__ import annotations

import logging
from typing import Optional

from appealground.ingest.store import KnowledgeStore
from appealground.retrieve.scoring import SimilarityScorer, TfidfScorer
from appealground.schemas.evidence import RetrievedItem, SearchFilters, TextSpan

logger = logging.getLogger("appealground.retrieve.index")


class RetrievalIndex:
    """
    Search facade over a KnowledgeStore.

    Usage:
        index = RetrievalIndex(store)
        items = index.search(
            "physical therapy session limit",
            SearchFilters(payer_name="Aetna", tags=["pt"]),
            top_k=5,
        )

    Args:
        store: Knowledge store providing candidates.
        scorer: Similarity scorer (TF-IDF by default).
        tag_boost: Multiplicative boost per matching tag.
    """

    def __init__(
        self,
        store: KnowledgeStore,
        scorer: Optional[SimilarityScorer] = None,
        tag_boost: float = 0.1,
    ):
        self.store = store
        self.scorer = scorer or TfidfScorer()
        self.tag_boost = tag_boost

    def search(
        self,
        query: str,
        filters: Optional[SearchFilters] = None,
        top_k: int = 8,
    ) -> list[RetrievedItem]:
        """
        Rank candidate chunks for a query.

        Args:
            query: Free-text query.
            filters: Payer / doc-type filters and boost tags.
            top_k: Maximum number of results.

        Returns:
            At most top_k items, sorted by score descending.
        """
        if top_k <= 0 or not query or not query.strip():
            return []

        filters = filters or SearchFilters()
        candidates = self.store.list_candidates(filters)
        if not candidates:
            logger.debug(f"No candidates for filters {filters.model_dump(exclude_defaults=True)}")
            return []

        scores = self.scorer.score(query, candidates)

        if filters.tags:
            for i, candidate in enumerate(candidates):
                doc_tags = set(candidate.meta.tags)
                matches = sum(1 for tag in filters.tags if tag in doc_tags)
                if matches > 0:
                    scores[i] *= 1 + self.tag_boost * matches

        # sorted() is stable: equal scores keep candidate order
        ranked = sorted(range(len(candidates)), key=lambda i: scores[i], reverse=True)

        results = []
        for i in ranked[:top_k]:
            record = candidates[i].record
            results.append(RetrievedItem(
                chunk_id=record.chunk_id,
                doc_id=record.doc_id,
                text=record.text,
                score=scores[i],
                spans=[TextSpan(start=record.start, end=record.end)],
                meta=candidates[i].meta.model_copy(deep=True),
            ))

        logger.debug(
            f"Search '{query[:60]}' ({self.scorer.name}): "
            f"{len(candidates)} candidates → {len(results)} results"
        )
        return results
