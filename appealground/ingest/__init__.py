"""
appealground Ingestion
=======================

Turns knowledge-base documents into scored, retrievable chunk records.

Components:
    - tfidf.py:     Tokenizer, TF / IDF weighting, sparse cosine similarity
    - chunker.py:   Deterministic offset-tracked chunking
    - store.py:     In-memory knowledge store with JSON persistence
    - embedder.py:  Optional dense embeddings (OpenAI / sentence-transformers)
    - documents.py: Ingestion entry point (validate → chunk → vectorize → store)
    - denial_parser.py: Regex extraction of a DenialCase from denial letter text
    - denial_codes.py:  Local CARC dictionary and denial category inference
"""
