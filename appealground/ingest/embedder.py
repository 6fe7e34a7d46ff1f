"""
Document Embedder
==================

Optional dense embeddings for chunk records. Lexical TF-IDF scoring is
the default; when embeddings are enabled, chunk records carry a dense
vector and retrieval uses the dense scorer instead.

Two Modes:
    - api:   OpenAI embeddings API (text-embedding-3-small)
    - local: sentence-transformers model running in-process

All embeddings are L2-normalized such that cosine similarity = dot product.

Data Flow:
    ChunkRecord.text → Embedder → numpy array → ChunkRecord.vector → DenseScorer
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

logger = logging.getLogger("appealground.ingest.embedder")

# The embeddings API rejects inputs beyond its context window
API_MAX_INPUT_CHARS = 8000


def l2_normalize(embeddings: np.ndarray) -> np.ndarray:
    """Row-wise L2 normalization; zero rows stay zero."""
    norms = np.linalg.norm(embeddings, axis=1, keepdims=True)
    norms = np.maximum(norms, 1e-12)
    return embeddings / norms


class DocumentEmbedder:
    """
    Generates dense vector embeddings for chunk and query text.

    Usage:
        # API mode
        embedder = DocumentEmbedder(mode="api", api_key="sk-...")
        vectors = embedder.embed(["Physical therapy notes", "Policy CPB 0325"])

        # Local mode
        embedder = DocumentEmbedder(mode="local",
                                    model_name="sentence-transformers/all-MiniLM-L6-v2")
        query_vec = embedder.embed_query("benefit limit appeal")

    Args:
        mode: "api" (OpenAI) or "local" (sentence-transformers).
        model_name: OpenAI model name (api) or HuggingFace model ID (local).
        api_key: OpenAI API key (api mode only).
        batch_size: Batch size for encoding / API calls.
    """

    def __init__(
        self,
        mode: str = "api",
        model_name: str = "text-embedding-3-small",
        api_key: Optional[str] = None,
        batch_size: int = 64,
    ):
        if mode not in ("api", "local"):
            raise ValueError(f"Unknown embedding mode: {mode}. Use 'api' or 'local'")
        self.mode = mode
        self.model_name = model_name
        self.api_key = api_key
        self.batch_size = batch_size
        self._model = None
        self._client = None

    def _load_model(self) -> None:
        """Lazy-load the sentence-transformers model (local mode only)."""
        if self._model is not None:
            return
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError:
            raise RuntimeError(
                "sentence-transformers required for local embeddings. "
                "Install with: pip install 'appealground[embeddings]'"
            )

        logger.info(f"Loading embedding model: {self.model_name}")
        self._model = SentenceTransformer(self.model_name)
        logger.info(
            f"Embedding model loaded. Dimension: "
            f"{self._model.get_sentence_embedding_dimension()}"
        )

    def _get_client(self):
        if self._client is not None:
            return self._client
        try:
            from openai import OpenAI
        except ImportError:
            raise RuntimeError(
                "openai package required for API embeddings. "
                "Install with: pip install 'appealground[embeddings]'"
            )
        if not self.api_key:
            raise ValueError("OpenAI API key required for API embeddings")
        self._client = OpenAI(api_key=self.api_key)
        return self._client

    def embed(self, texts: list[str]) -> np.ndarray:
        """
        Generate embeddings for a list of texts.

        Returns:
            numpy array of shape (len(texts), dimension), L2-normalized.

        Raises:
            RuntimeError: If the embedding backend is not installed.
            ValueError: If api mode has no API key.
        """
        if not texts:
            return np.zeros((0, 0), dtype=np.float32)

        if self.mode == "api":
            return self._embed_openai(texts)
        return self._embed_local(texts)

    def _embed_openai(self, texts: list[str]) -> np.ndarray:
        client = self._get_client()
        all_embeddings = []

        for i in range(0, len(texts), self.batch_size):
            batch = [t[:API_MAX_INPUT_CHARS] for t in texts[i:i + self.batch_size]]
            logger.debug(f"Embedding batch {i // self.batch_size + 1}")

            response = client.embeddings.create(model=self.model_name, input=batch)
            all_embeddings.extend(item.embedding for item in response.data)

        return l2_normalize(np.array(all_embeddings, dtype=np.float32))

    def _embed_local(self, texts: list[str]) -> np.ndarray:
        self._load_model()
        logger.info(f"Embedding {len(texts)} texts with batch_size={self.batch_size}")
        embeddings = self._model.encode(
            texts,
            batch_size=self.batch_size,
            show_progress_bar=len(texts) > 100,
            normalize_embeddings=True,
        )
        return np.array(embeddings, dtype=np.float32)

    def embed_query(self, query: str) -> np.ndarray:
        """Embed one query; returns shape (dimension,)."""
        return self.embed([query])[0]
