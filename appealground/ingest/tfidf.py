"""
TF-IDF Term Weighting
======================

Sparse lexical scoring used by the default retrieval scorer. Runs fully
in-process and is deterministic for a fixed corpus.

Algorithm:
    1. Tokenize → lowercase unigrams (stop words removed) + adjacent bigrams
    2. TF:  ln(1 + count(t, d))
    3. IDF: ln((N + 1) / (df(t) + 1)) + 1, smoothed, computed over the
            candidate set at query time
    4. Cosine similarity between the query vector and each stored vector

Stored chunk vectors hold TF weights only; IDF is applied to the query
side at search time, so the corpus can grow without re-weighting
persisted records.

All functions are pure: no module state besides the constant stop list.
"""

from __future__ import annotations

import math
import re
from typing import Mapping, Sequence

from appealground.schemas.evidence import TermVector

STOP_WORDS: frozenset[str] = frozenset({
    "a", "an", "the", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with",
    "by", "from", "up", "about", "into", "through", "during", "is", "are", "was", "were",
    "be", "been", "being", "have", "has", "had", "do", "does", "did", "will", "would",
    "could", "should", "may", "might", "shall", "can", "not", "no", "nor", "so", "yet",
    "both", "either", "neither", "each", "few", "more", "most", "other", "some", "such",
    "than", "too", "very", "just", "as", "if", "then", "that", "this", "these", "those",
    "it", "its", "he", "she", "they", "we", "you", "i", "me", "my", "our", "your", "their",
    "his", "her", "which", "who", "whom", "what", "when", "where", "why", "how",
})

# Anything that is not a lowercase letter, digit, whitespace, hyphen or '#'
_NON_TOKEN_CHARS = re.compile(r"[^a-z0-9\s\-#]")

# Weight for query terms the candidate corpus has never seen
UNSEEN_TERM_WEIGHT = math.log(2)


def tokenize(text: str) -> list[str]:
    """
    Split text into unigrams followed by adjacent-pair bigrams.

    Example:
        >>> tokenize("Physical therapy CPT 97110")
        ['physical', 'therapy', 'cpt', '97110', 'physical_therapy', 'therapy_cpt', 'cpt_97110']
    """
    cleaned = _NON_TOKEN_CHARS.sub(" ", text.lower())
    words = [w for w in cleaned.split() if len(w) > 1 and w not in STOP_WORDS]

    tokens = list(words)
    # Bigrams help phrase matches like "medical necessity" or "cpt 97110"
    tokens.extend(f"{a}_{b}" for a, b in zip(words, words[1:]))
    return tokens


def compute_term_frequency(tokens: Sequence[str]) -> TermVector:
    """Log-normalized term frequency: ln(1 + count)."""
    counts: dict[str, int] = {}
    for token in tokens:
        counts[token] = counts.get(token, 0) + 1
    return {term: math.log(1 + count) for term, count in counts.items()}


def compute_inverse_document_frequency(vectors: Sequence[Mapping[str, float]]) -> TermVector:
    """
    Smoothed IDF over a set of term vectors (one per chunk).

    Every term present in at least one vector gets a weight >= 1.
    Returns an empty mapping for an empty corpus.
    """
    n_docs = len(vectors)
    if n_docs == 0:
        return {}

    doc_freq: dict[str, int] = {}
    for vec in vectors:
        for term in vec:
            doc_freq[term] = doc_freq.get(term, 0) + 1

    return {
        term: math.log((n_docs + 1) / (df + 1)) + 1
        for term, df in doc_freq.items()
    }


def build_vector(text: str, idf: Mapping[str, float]) -> TermVector:
    """TF-IDF vector for ``text``; terms missing from ``idf`` are weighted ln(2)."""
    tf = compute_term_frequency(tokenize(text))
    return {term: weight * idf.get(term, UNSEEN_TERM_WEIGHT) for term, weight in tf.items()}


def build_tf_vector(text: str) -> TermVector:
    """TF-only vector, the form persisted on chunk records."""
    return compute_term_frequency(tokenize(text))


def cosine_similarity(a: Mapping[str, float], b: Mapping[str, float]) -> float:
    """
    Cosine similarity between two sparse vectors.

    Returns 0.0 when either vector has zero norm, never NaN.
    """
    dot = 0.0
    norm_a = 0.0
    for term, weight in a.items():
        norm_a += weight * weight
        other = b.get(term)
        if other is not None:
            dot += weight * other
    norm_b = sum(weight * weight for weight in b.values())

    denom = math.sqrt(norm_a) * math.sqrt(norm_b)
    if denom == 0:
        return 0.0
    return dot / denom


def score_query(query: str, stored: Mapping[str, float], idf: Mapping[str, float]) -> float:
    """Score a query string against one stored vector under the given IDF."""
    return cosine_similarity(build_vector(query, idf), stored)
