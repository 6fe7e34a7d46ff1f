"""
appealground Utilities
=======================

Shared helpers for logging, stable identifiers, and text/file handling
used across all modules.
"""

from __future__ import annotations

import hashlib
import json
import logging
import sys
from pathlib import Path
from typing import Any


# ── Hashing & Stable IDs ───────────────────────────────────────────

def compute_hash(data: str | bytes | dict, length: int = 16) -> str:
    """
    Compute a truncated SHA-256 hash.

    Used for:
    - Document IDs derived from content
    - Chunk IDs derived from (doc_id, index)
    - Letter IDs derived from (case_id, created_at)

    Args:
        data: String, bytes, or dict to hash.
        length: Number of hex characters to return (max 64).

    Returns:
        Hex digest string of specified length.
    """
    if isinstance(data, dict):
        data = json.dumps(data, sort_keys=True, default=str)
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()[:length]


def stable_id(*parts: str) -> str:
    """Stable ID from multiple string parts."""
    return compute_hash("|".join(parts))


def chunk_id(doc_id: str, index: int) -> str:
    """
    Chunk ID from doc_id + chunk index.

    Re-ingesting the same document yields the same chunk IDs, so
    citations keep pointing at the same records.
    """
    return f"chk_{compute_hash(doc_id + str(index))}"


def letter_id(case_id: str, created_at: str) -> str:
    """Letter ID, deterministic per (case_id, created_at)."""
    return f"ltr_{compute_hash(case_id + created_at)}"


# ── Logging ────────────────────────────────────────────────────────

def setup_logging(
    level: str = "INFO",
    format_style: str = "text",
    run_id: str | None = None
) -> logging.Logger:
    """
    Configure structured logging for appealground.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR).
        format_style: "json" for structured logs, "text" for human-readable.
        run_id: Optional run ID to include in all log entries.

    Returns:
        Configured Logger instance.
    """
    logger = logging.getLogger("appealground")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Remove existing handlers
    logger.handlers.clear()

    # stdout is reserved for command output
    handler = logging.StreamHandler(sys.stderr)

    if format_style == "json":
        class JsonFormatter(logging.Formatter):
            def format(self, record):
                log_entry = {
                    "timestamp": self.formatTime(record),
                    "level": record.levelname,
                    "module": record.module,
                    "message": record.getMessage(),
                }
                if run_id:
                    log_entry["run_id"] = run_id
                if record.exc_info:
                    log_entry["exception"] = self.formatException(record.exc_info)
                return json.dumps(log_entry)

        handler.setFormatter(JsonFormatter())
    else:
        fmt = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
        if run_id:
            fmt = f"%(asctime)s | %(levelname)-8s | {run_id} | %(name)s | %(message)s"
        handler.setFormatter(logging.Formatter(fmt, datefmt="%H:%M:%S"))

    logger.addHandler(handler)
    return logger


# ── Text Processing Helpers ────────────────────────────────────────

def normalize_whitespace(text: str) -> str:
    """Collapse multiple whitespace characters into single spaces and strip."""
    return " ".join(text.split())


def truncate(text: str, max_chars: int, suffix: str = "...") -> str:
    """Cut text to max_chars, appending suffix only when something was cut."""
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + suffix


# ── File I/O Helpers ───────────────────────────────────────────────

def save_json(data: Any, path: str | Path, indent: int = 2) -> Path:
    """Save data as formatted JSON file with UTF-8 encoding."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=indent, ensure_ascii=False, default=str)
    return path


def load_json(path: str | Path) -> Any:
    """Load a JSON file."""
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)
