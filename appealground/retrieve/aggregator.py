"""
Multi-Query Aggregator
=======================

Gathers evidence for one denial case by running several targeted
queries and merging their results.

Queries (derived from the case):
    1. payer_policy:    payer + policy IDs + category + "denial appeal"
    2. cpt_necessity:   CPT codes + category + medical-necessity terms
    3. prior_appeals:   payer + services + "successful appeal" (accepted appeals)
    4. policy_exact:    policy IDs alone (policy docs), only if any exist
    5. clinical:        services + category + documentation terms (clinical docs)
    6. template:        category + "appeal letter template" (templates)

Merge Rule:
    Results are keyed by chunk_id; a chunk returned by several queries
    keeps its highest score. The merged list is sorted by score
    (stable, first-seen order on ties) and capped at ``max_total``.
"""

from __future__ import annotations

import logging
from typing import NamedTuple

from appealground.retrieve.index import RetrievalIndex
from appealground.schemas.case import DenialCase
from appealground.schemas.evidence import DocType, RetrievedItem, SearchFilters

logger = logging.getLogger("appealground.retrieve.aggregator")


class CaseQuery(NamedTuple):
    """One targeted retrieval query for a case."""
    label: str
    text: str
    filters: SearchFilters


def _join(*parts: str) -> str:
    return " ".join(p.strip() for p in parts if p and p.strip())


def build_case_queries(case: DenialCase) -> list[CaseQuery]:
    """
    Derive the targeted queries for a case.

    Blank queries are kept here and skipped by ``retrieve_for_case``.
    """
    payer = case.payer_name.value or ""
    category = case.category.value
    cpt_codes = " ".join(case.cpt_codes)
    policy_refs = " ".join(case.policy_ids)
    service_names = " ".join(svc.service_name for svc in case.service_list)
    payer_filter = payer or None

    queries = [
        CaseQuery(
            "payer_policy",
            _join(payer, policy_refs, category, "denial appeal"),
            SearchFilters(payer_name=payer_filter),
        ),
        CaseQuery(
            "cpt_necessity",
            _join(cpt_codes, category, "appeal medical necessity functional improvement"),
            SearchFilters(),
        ),
        CaseQuery(
            "prior_appeals",
            _join(payer, service_names, "successful appeal", category),
            SearchFilters(payer_name=payer_filter, doc_type=DocType.PRIOR_APPEAL_ACCEPTED),
        ),
    ]
    if policy_refs.strip():
        queries.append(CaseQuery(
            "policy_exact",
            policy_refs.strip(),
            SearchFilters(doc_type=DocType.POLICY),
        ))
    queries.extend([
        CaseQuery(
            "clinical",
            _join(service_names, category, "clinical documentation sessions benefit limit"),
            SearchFilters(doc_type=DocType.CLINICAL),
        ),
        CaseQuery(
            "template",
            _join(category, "appeal letter template"),
            SearchFilters(doc_type=DocType.TEMPLATE),
        ),
    ])
    return queries


def retrieve_for_case(
    index: RetrievalIndex,
    case: DenialCase,
    top_k_per_query: int = 5,
    max_total: int = 15,
) -> list[RetrievedItem]:
    """
    Run every case query and merge the results.

    Args:
        index: Retrieval index to search.
        case: The denial case driving the queries.
        top_k_per_query: Results requested per query.
        max_total: Cap on the merged list.

    Returns:
        Unique-by-chunk items, score descending, at most ``max_total``.
    """
    merged: dict[str, RetrievedItem] = {}

    for query in build_case_queries(case):
        if not query.text.strip():
            continue
        results = index.search(query.text, query.filters, top_k_per_query)
        logger.debug(f"Case '{case.case_id}' query {query.label}: {len(results)} results")
        for item in results:
            existing = merged.get(item.chunk_id)
            if existing is None or item.score > existing.score:
                merged[item.chunk_id] = item

    ranked = sorted(merged.values(), key=lambda item: item.score, reverse=True)[:max_total]
    logger.info(
        f"Retrieved {len(ranked)} evidence chunks for case '{case.case_id}' "
        f"({len(merged)} unique before cap)"
    )
    return ranked
