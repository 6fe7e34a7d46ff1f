"""
Similarity Scorers
===================

Scorers rank a query against a candidate set. The retrieval index is
parametric over this interface so the lexical and dense paths share
filtering, boosting, ordering and truncation.

Implementations:
    - TfidfScorer: IDF computed over exactly the candidate set, query
      vector built against it, cosine against stored TF vectors
    - DenseScorer: cosine between an embedded query and stored dense
      embeddings (numpy)

TfidfScorer treats dense vectors as empty. DenseScorer falls back to
TfidfScorer for records holding TF vectors and scores a dense vector of
the wrong dimension 0.0.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Sequence

import numpy as np

from appealground.ingest.embedder import DocumentEmbedder
from appealground.ingest.tfidf import (
    build_vector,
    compute_inverse_document_frequency,
    cosine_similarity,
)
from appealground.schemas.evidence import Candidate

logger = logging.getLogger("appealground.retrieve.scoring")


class SimilarityScorer(ABC):
    """Scores one query against every candidate, preserving order."""

    name: str = "base"

    @abstractmethod
    def score(self, query: str, candidates: Sequence[Candidate]) -> list[float]:
        """
        Args:
            query: Non-blank query text.
            candidates: Filtered candidate set.

        Returns:
            One score per candidate, same order.
        """
        ...


class TfidfScorer(SimilarityScorer):
    """
    Lexical TF-IDF cosine scorer (the default).

    IDF depends on which candidates passed the filters, so the same
    chunk can score differently under different filters.
    """

    name = "tfidf"

    def score(self, query: str, candidates: Sequence[Candidate]) -> list[float]:
        vectors = [c.record.vector if not c.record.is_dense else {} for c in candidates]
        idf = compute_inverse_document_frequency(vectors)
        query_vector = build_vector(query, idf)
        return [cosine_similarity(query_vector, vec) for vec in vectors]


class DenseScorer(SimilarityScorer):
    """
    Dense-embedding cosine scorer.

    Records stored with TF vectors (ingested while the embedding backend
    was down) are scored lexically by ``TfidfScorer`` over the sparse
    subset, so they stay reachable beside the embedded records.

    Usage:
        scorer = DenseScorer(DocumentEmbedder(mode="local", model_name="..."))
        index = RetrievalIndex(store, scorer=scorer)

    Args:
        embedder: Embedder used for the query; must match the one used
            at ingestion time.
    """

    name = "dense"

    def __init__(self, embedder: DocumentEmbedder):
        self.embedder = embedder
        self._lexical = TfidfScorer()

    def score(self, query: str, candidates: Sequence[Candidate]) -> list[float]:
        if not candidates:
            return []

        scores = [0.0] * len(candidates)
        sparse = [i for i, c in enumerate(candidates) if not c.record.is_dense]
        if sparse:
            lexical = self._lexical.score(query, [candidates[i] for i in sparse])
            for i, value in zip(sparse, lexical):
                scores[i] = value
            logger.debug(f"DenseScorer: {len(sparse)} candidates without embeddings scored lexically")

        if len(sparse) == len(candidates):
            return scores

        query_vec = np.asarray(self.embedder.embed_query(query), dtype=np.float32)
        query_norm = float(np.linalg.norm(query_vec))

        for i, candidate in enumerate(candidates):
            record = candidate.record
            if not record.is_dense or len(record.vector) != query_vec.shape[0]:
                continue
            vec = np.asarray(record.vector, dtype=np.float32)
            denom = query_norm * float(np.linalg.norm(vec))
            scores[i] = 0.0 if denom == 0 else float(np.dot(query_vec, vec) / denom)
        return scores
