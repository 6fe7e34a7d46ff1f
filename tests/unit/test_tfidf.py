"""
TF-IDF Weighting Tests
=======================

Tokenizer, term frequency, inverse document frequency and cosine
similarity. These functions back every lexical search, so the
monotonicity and identity properties are checked directly.
"""

from __future__ import annotations

import math

import pytest

from appealground.ingest.tfidf import (
    UNSEEN_TERM_WEIGHT,
    build_tf_vector,
    build_vector,
    compute_inverse_document_frequency,
    compute_term_frequency,
    cosine_similarity,
    score_query,
    tokenize,
)
from tests.conftest import CLINICAL_TEXT, OTHER_PAYER_TEXT, POLICY_TEXT


class TestTokenize:
    """Unigrams (stop words removed) followed by bigrams."""

    def test_unigrams_then_bigrams(self):
        assert tokenize("Physical therapy CPT 97110") == [
            "physical", "therapy", "cpt", "97110",
            "physical_therapy", "therapy_cpt", "cpt_97110",
        ]

    def test_stop_words_and_single_chars_removed(self):
        assert tokenize("The patient is a 5 star") == ["patient", "star", "patient_star"]

    def test_keeps_hyphens_and_hash(self):
        tokens = tokenize("Limit: 20-visit #3!")
        assert tokens[:3] == ["limit", "20-visit", "#3"]

    def test_lowercases(self):
        assert tokenize("MEDICAL Necessity") == ["medical", "necessity", "medical_necessity"]

    @pytest.mark.parametrize("text", ["", "   ", "the and of", "a b c"])
    def test_empty_token_streams(self, text):
        assert tokenize(text) == []


class TestTermFrequency:

    def test_log_normalized(self):
        tf = compute_term_frequency(["visit", "visit", "limit"])
        assert tf["visit"] == pytest.approx(math.log(3))
        assert tf["limit"] == pytest.approx(math.log(2))

    def test_monotonic_in_count(self):
        """count(a) > count(b) implies TF(a) > TF(b)."""
        tf = compute_term_frequency(["a1"] * 5 + ["b1"] * 2)
        assert tf["a1"] > tf["b1"]

    def test_empty(self):
        assert compute_term_frequency([]) == {}


class TestInverseDocumentFrequency:

    def test_smoothed_formula(self):
        idf = compute_inverse_document_frequency([{"x": 1.0}, {"x": 1.0, "y": 1.0}])
        assert idf["x"] == pytest.approx(1.0)
        assert idf["y"] == pytest.approx(math.log(3 / 2) + 1)

    def test_common_term_weighs_less(self):
        """A term in every document has lower IDF than one in a single document."""
        idf = compute_inverse_document_frequency([
            build_tf_vector("therapy visit limit"),
            build_tf_vector("therapy coding modifier"),
        ])
        assert idf["therapy"] < idf["visit"]
        assert idf["therapy"] < idf["modifier"]

    def test_empty_corpus(self):
        assert compute_inverse_document_frequency([]) == {}


class TestCosineSimilarity:

    def test_identity(self):
        v = {"therapy": 1.2, "limit": 0.7}
        assert cosine_similarity(v, v) == pytest.approx(1.0)

    def test_orthogonal(self):
        assert cosine_similarity({"therapy": 1.0}, {"coding": 2.0}) == pytest.approx(0.0)

    def test_zero_norm_is_zero_not_nan(self):
        assert cosine_similarity({}, {"therapy": 1.0}) == 0.0
        assert cosine_similarity({"therapy": 0.0}, {"therapy": 1.0}) == 0.0

    def test_symmetric(self):
        a = {"x": 1.0, "y": 2.0}
        b = {"y": 1.0, "z": 3.0}
        assert cosine_similarity(a, b) == pytest.approx(cosine_similarity(b, a))


class TestQueryVectors:

    def test_unseen_terms_use_fallback_weight(self):
        vec = build_vector("chiropractic", idf={})
        assert vec == pytest.approx({"chiropractic": math.log(2) * UNSEEN_TERM_WEIGHT})

    def test_relative_ranking(self):
        """A query sharing vocabulary with the policy ranks it above unrelated text."""
        corpus = [build_tf_vector(POLICY_TEXT), build_tf_vector(OTHER_PAYER_TEXT)]
        idf = compute_inverse_document_frequency(corpus)
        query = "physical therapy visits limited per calendar year"

        policy_score = score_query(query, corpus[0], idf)
        unrelated_score = score_query(query, corpus[1], idf)
        assert policy_score > unrelated_score
        assert unrelated_score == pytest.approx(0.0)

    def test_bigrams_reward_phrase_matches(self):
        corpus = [
            build_tf_vector("physical therapy session"),
            build_tf_vector("therapy for physical pain"),
        ]
        idf = compute_inverse_document_frequency(corpus)
        phrase = score_query("physical therapy", corpus[0], idf)
        scattered = score_query("physical therapy", corpus[1], idf)
        assert phrase > scattered

    def test_clinical_text_vector_nonempty(self):
        vec = build_tf_vector(CLINICAL_TEXT)
        assert "97110" in vec
        assert all(weight > 0 for weight in vec.values())
