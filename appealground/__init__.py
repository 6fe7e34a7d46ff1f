"""
appealground: Citation-Grounded Insurance Appeal Letters
==========================================================

appealground retrieves supporting evidence for a denied insurance claim
and assembles an appeal letter in which every factual assertion is
traceable to a source. Numeric claims that no citation supports are
never asserted silently: they are patched with explicit
``[NEEDS EVIDENCE: ...]`` markers and surfaced as evidence gaps.

Architecture Overview:
    Document → Chunk → TF vectors → Store
    DenialCase → Multi-query retrieval → Letter sections → Verify (patch gaps)

Modules:
    - ingest:    Deterministic chunking, TF-IDF term weighting, knowledge store
    - retrieve:  Cosine-ranked retrieval index + multi-query aggregation
    - verify:    Grounding verifier for numeric claims
    - render:    Argument planning and appeal letter assembly
    - pipeline:  End-to-end orchestrator
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
