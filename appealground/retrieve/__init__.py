"""
appealground Retrieval
=======================

Ranked evidence retrieval over the knowledge store.

Components:
    - scoring.py:    Pluggable similarity scorers (TF-IDF default, dense optional)
    - index.py:      Filtered, tag-boosted top-k search
    - aggregator.py: Multi-query evidence gathering for a denial case
"""
