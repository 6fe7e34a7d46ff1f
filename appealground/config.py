"""
appealground Configuration System
==================================

Central configuration using Pydantic Settings. Supports:
- Environment variables (APPEALGROUND_ prefix)
- .env file loading
- YAML config file overrides

The core components (tokenizer, chunker, retrieval index, verifier)
never read this object themselves. The pipeline and CLI resolve the
values here and pass them in as explicit parameters.

Usage:
    from appealground.config import get_config
    cfg = get_config()                      # loads from env / .env
    cfg = get_config("configs/strict.yaml")  # loads with YAML overrides
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# ── Sub-configs ────────────────────────────────────────────────────
class ChunkingConfig(BaseModel):
    """Configuration for document chunking at ingestion time."""
    chunk_size: int = Field(default=900, gt=0, description="Target chunk size in characters")
    chunk_overlap: int = Field(default=150, ge=0, description="Character overlap between chunks")
    max_chars: int = Field(
        default=800_000,
        gt=0,
        description="Documents longer than this are truncated before chunking",
    )


class RetrievalConfig(BaseModel):
    """Configuration for the retrieval index and multi-query aggregation."""
    top_k: int = Field(default=8, gt=0, description="Default results per search")
    top_k_per_query: int = Field(default=5, gt=0, description="Results per case query")
    max_total: int = Field(default=15, gt=0, description="Cap on merged case evidence")
    tag_boost: float = Field(
        default=0.1,
        ge=0.0,
        description="Multiplicative boost per matching tag (score *= 1 + boost * matches)",
    )


class VerificationConfig(BaseModel):
    """Configuration for the grounding verifier."""
    exempt_section_ids: list[str] = Field(
        default_factory=lambda: ["header", "closing"],
        description="Sections excluded from the missing-citation rule",
    )
    sentence_preview_chars: int = Field(
        default=80,
        gt=0,
        description="Sentence prefix length quoted in unresolved-claim descriptions",
    )


class EmbeddingConfig(BaseModel):
    """Configuration for the optional dense-embedding scorer."""
    enabled: bool = Field(default=False, description="Store dense embeddings instead of TF vectors")
    mode: str = Field(default="api", description="'api' (OpenAI) or 'local' (sentence-transformers)")
    api_model: str = Field(default="text-embedding-3-small", description="OpenAI embedding model")
    local_model: str = Field(
        default="sentence-transformers/all-MiniLM-L6-v2",
        description="Local embedding model (HuggingFace ID)",
    )
    batch_size: int = Field(default=64, gt=0, description="Batch size for embedding calls")


class LetterConfig(BaseModel):
    """Configuration for appeal letter assembly."""
    tone: str = Field(default="professional", description="'professional', 'firm' or 'concise'")
    include_citations_inline: bool = Field(
        default=True, description="Append [CITE:...] tags to the assembled full text"
    )
    snippet_chars: int = Field(default=120, gt=0, description="Max snippet length for KB citations")


# ── Main Config ────────────────────────────────────────────────────
class AppealGroundConfig(BaseSettings):
    """
    Root configuration for appealground.

    Loads from environment variables (APPEALGROUND_ prefix) and .env file.
    Can be extended with YAML overrides via `get_config(yaml_path)`.

    Example:
        export APPEALGROUND_STORAGE_PATH=/var/lib/appealground
        export APPEALGROUND_LOG_LEVEL=DEBUG
    """
    model_config = SettingsConfigDict(
        env_prefix="APPEALGROUND_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # ── Top-level settings ─────────────────────────────────────────
    storage_path: Path = Field(default=Path("./data"), description="Knowledge store directory")
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="text", description="Log format: 'json' or 'text'")

    # ── OpenAI API (optional embeddings) ───────────────────────────
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API key")

    # ── Sub-configs ────────────────────────────────────────────────
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    verification: VerificationConfig = Field(default_factory=VerificationConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    letter: LetterConfig = Field(default_factory=LetterConfig)

    @property
    def store_file(self) -> Path:
        """JSON file backing the knowledge store."""
        return self.storage_path / "appealground.json"

    @property
    def use_embeddings(self) -> bool:
        """Dense embeddings need both the toggle and a usable backend."""
        if not self.embedding.enabled:
            return False
        return self.embedding.mode == "local" or bool(self.openai_api_key)

    def config_hash(self) -> str:
        """
        Produce a deterministic SHA-256 hash of the configuration.

        Secrets are excluded so the hash can be logged and stamped on
        generated letters.
        """
        config_dict = self.model_dump(mode="json", exclude={"openai_api_key"})
        canonical = json.dumps(config_dict, sort_keys=True, default=str)
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]

    def ensure_dirs(self) -> None:
        """Create the storage directory if it doesn't exist."""
        self.storage_path.mkdir(parents=True, exist_ok=True)


# ── Config Loading ─────────────────────────────────────────────────
def get_config(yaml_path: Optional[str] = None) -> AppealGroundConfig:
    """
    Load appealground configuration.

    Priority (highest to lowest):
        1. Values from the YAML file (if provided)
        2. Environment variables (APPEALGROUND_ prefix)
        3. .env file
        4. Default values

    Args:
        yaml_path: Optional path to a YAML config file for overrides.

    Returns:
        Fully resolved AppealGroundConfig instance.
    """
    if yaml_path:
        import yaml
        with open(yaml_path, encoding="utf-8") as f:
            overrides = yaml.safe_load(f) or {}
        return AppealGroundConfig(**overrides)
    return AppealGroundConfig()
