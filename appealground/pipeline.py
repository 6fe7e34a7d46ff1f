"""
appealground End-to-End Pipeline
=================================

Wires configuration into the grounding components:
    Documents → Ingest (chunk + vectorize) → KnowledgeStore
    Denial letter → DenialLetterParser → DenialCase (registered)
    DenialCase → Multi-query retrieval → Plan / Letter → Grounding verifier

The core components never read configuration themselves; this class
resolves every tunable from AppealGroundConfig and passes it in.

Usage:
    from appealground.pipeline import AppealPipeline

    pipeline = AppealPipeline.from_config()
    pipeline.ingest([IngestInput(filename="cpb_0325.txt", text="...",
                                 meta=DocMeta(doc_type=DocType.POLICY))])
    letter = pipeline.generate(case)
    pipeline.save()
"""

from __future__ import annotations

import logging
import time
from datetime import date
from typing import Optional, Sequence

from appealground.config import AppealGroundConfig, get_config
from appealground.ingest.chunker import DocumentChunker
from appealground.ingest.denial_codes import CodeAnalysis, analyze_codes
from appealground.ingest.denial_parser import DenialLetterParser
from appealground.ingest.documents import IngestInput, IngestResult, ingest_documents
from appealground.ingest.embedder import DocumentEmbedder
from appealground.ingest.store import KnowledgeStore
from appealground.render.letter import generate_appeal_letter
from appealground.render.plan import run_plan
from appealground.retrieve.aggregator import retrieve_for_case
from appealground.retrieve.index import RetrievalIndex
from appealground.retrieve.scoring import DenseScorer, TfidfScorer
from appealground.schemas.case import DenialCase, UserContext
from appealground.schemas.evidence import RetrievedItem, SearchFilters
from appealground.schemas.letter import (
    AppealLetter,
    GenerateOptions,
    LetterSection,
    PlanResult,
    VerificationOutcome,
)
from appealground.verify.grounding import GroundingVerifier

logger = logging.getLogger("appealground.pipeline")


class AppealPipeline:
    """
    Orchestrates ingestion, retrieval, planning, letter generation and
    verification over one knowledge store.

    Args:
        config: appealground configuration (env / .env / YAML).
        store: Knowledge store to use; when omitted, the store file under
            ``config.storage_path`` is loaded if it exists.
    """

    def __init__(
        self,
        config: Optional[AppealGroundConfig] = None,
        store: Optional[KnowledgeStore] = None,
    ):
        self.config = config or get_config()

        if store is None:
            store_file = self.config.store_file
            store = KnowledgeStore.load(store_file) if store_file.exists() else KnowledgeStore()
        self.store = store

        self.chunker = DocumentChunker(
            chunk_size=self.config.chunking.chunk_size,
            overlap=self.config.chunking.chunk_overlap,
        )

        self.embedder: Optional[DocumentEmbedder] = None
        if self.config.use_embeddings:
            emb = self.config.embedding
            self.embedder = DocumentEmbedder(
                mode=emb.mode,
                model_name=emb.api_model if emb.mode == "api" else emb.local_model,
                api_key=self.config.openai_api_key,
                batch_size=emb.batch_size,
            )

        scorer = DenseScorer(self.embedder) if self.embedder else TfidfScorer()
        self.index = RetrievalIndex(
            self.store, scorer=scorer, tag_boost=self.config.retrieval.tag_boost
        )
        self.verifier = GroundingVerifier(
            exempt_section_ids=self.config.verification.exempt_section_ids,
            sentence_preview_chars=self.config.verification.sentence_preview_chars,
        )
        logger.info(
            f"Pipeline initialized (scorer={scorer.name}, config={self.config.config_hash()})"
        )

    @classmethod
    def from_config(cls, config_path: Optional[str] = None) -> "AppealPipeline":
        """Create pipeline from config file or environment."""
        return cls(get_config(config_path))

    # ── Ingestion ──────────────────────────────────────────────────

    def ingest(self, inputs: Sequence[IngestInput]) -> list[IngestResult]:
        t0 = time.time()
        results = ingest_documents(
            self.store,
            list(inputs),
            chunker=self.chunker,
            embedder=self.embedder,
            max_chars=self.config.chunking.max_chars,
        )
        elapsed = time.time() - t0
        logger.info(
            f"Ingestion complete: {len(results)} docs → "
            f"{sum(r.chunks for r in results)} chunks in {elapsed:.1f}s"
        )
        return results

    # ── Retrieval ──────────────────────────────────────────────────

    def search(
        self,
        query: str,
        filters: Optional[SearchFilters] = None,
        top_k: Optional[int] = None,
    ) -> list[RetrievedItem]:
        return self.index.search(query, filters, top_k or self.config.retrieval.top_k)

    def retrieve_for_case(self, case: DenialCase) -> list[RetrievedItem]:
        return retrieve_for_case(
            self.index,
            case,
            top_k_per_query=self.config.retrieval.top_k_per_query,
            max_total=self.config.retrieval.max_total,
        )

    # ── Cases ──────────────────────────────────────────────────────

    def register_case(self, case: DenialCase) -> None:
        self.store.save_case(case)

    def get_case(self, case_id: str) -> Optional[DenialCase]:
        return self.store.get_case(case_id)

    def parse_denial(
        self,
        text: str,
        case_id: Optional[str] = None,
        payer_name: Optional[str] = None,
        filename: str = "",
        doc_id: str = "denial_letter",
    ) -> DenialCase:
        """Parse denial letter text into a DenialCase and register it."""
        case = DenialLetterParser(doc_id=doc_id).parse(
            text, case_id=case_id, payer_name=payer_name, filename=filename,
        )
        self.register_case(case)
        return case

    def analyze_codes(self, codes: Sequence[str]) -> list[CodeAnalysis]:
        return analyze_codes(codes)

    # ── Planning & Letters ─────────────────────────────────────────

    def plan(self, case: DenialCase, user_context: Optional[UserContext] = None) -> PlanResult:
        return run_plan(
            self.index,
            case,
            user_context,
            top_k_per_query=self.config.retrieval.top_k_per_query,
            max_total=self.config.retrieval.max_total,
        )

    def generate(
        self,
        case: DenialCase,
        options: Optional[GenerateOptions] = None,
        user_context: Optional[UserContext] = None,
        today: Optional[date] = None,
    ) -> AppealLetter:
        """Generate a verified appeal letter; options default to the letter config."""
        options = options or GenerateOptions(
            tone=self.config.letter.tone,
            include_citations_inline=self.config.letter.include_citations_inline,
        )
        return generate_appeal_letter(
            self.index,
            case,
            options=options,
            user_context=user_context,
            verifier=self.verifier,
            today=today,
            top_k_per_query=self.config.retrieval.top_k_per_query,
            max_total=self.config.retrieval.max_total,
            snippet_chars=self.config.letter.snippet_chars,
        )

    def verify(self, sections: Sequence[LetterSection]) -> VerificationOutcome:
        return self.verifier.verify(sections)

    # ── Persistence ────────────────────────────────────────────────

    def save(self) -> None:
        """Persist the knowledge store under the configured storage path."""
        self.config.ensure_dirs()
        self.store.save(self.config.store_file)
