"""
Document Chunker
=================

Deterministic character-window chunking with offset tracking.

Architecture:
    Raw Text → Cursor Walk (boundary search) → Chunk → ChunkRecord (+ TF vector)

Key Properties:
    1. Same (text, chunk_size, overlap) always yields the same chunks
    2. chunk.text == text[chunk.start:chunk.end].strip(), never empty
    3. The first chunk of non-blank text starts at offset 0
    4. Consecutive chunks overlap by up to ``overlap`` characters
    5. The walk ends only when the cursor reaches the end of the text, so
       with a non-zero overlap the tail of the text is re-emitted as
       shorter suffix chunks (at least one character of progress each)

Boundary Search:
    Near the end of each window the chunker prefers, in order, a
    paragraph break, a sentence boundary, then a space. A boundary that
    would leave the chunk shorter than 40% of ``chunk_size`` is ignored
    and the raw window end is used instead.
"""

from __future__ import annotations

import bisect
import logging
import re
from typing import NamedTuple, Optional

from appealground.ingest.tfidf import build_tf_vector
from appealground.schemas.evidence import Chunk, ChunkRecord, KnowledgeDoc
from appealground.utils import chunk_id

logger = logging.getLogger("appealground.ingest.chunker")

# How far back from the window end to look for a natural break
BOUNDARY_LOOKBACK = 200
# Minimum chunk length as a fraction of chunk_size before a break is honoured
MIN_CHUNK_RATIO = 0.4

_SENTENCE_BOUNDARY = re.compile(r"[.!?]\s+[A-Z]")


def _find_split(text: str, pos: int, end: int, chunk_size: int) -> int:
    """Pick the split offset for the window text[pos:end]."""
    base = max(end - BOUNDARY_LOOKBACK, pos)
    window = text[base:end]

    split_at = end
    para_break = window.rfind("\n\n")
    if para_break != -1:
        split_at = base + para_break + 2
    else:
        sentence = _SENTENCE_BOUNDARY.search(window)
        if sentence is not None:
            split_at = base + sentence.start() + 1
        else:
            space = window.rfind(" ")
            if space != -1:
                split_at = base + space + 1

    if split_at <= pos + int(chunk_size * MIN_CHUNK_RATIO):
        split_at = end
    return split_at


def chunk_text(text: str, chunk_size: int = 900, overlap: int = 150) -> list[Chunk]:
    """
    Split text into overlapping, boundary-aligned chunks.

    Args:
        text: Full document text.
        chunk_size: Maximum chunk length in characters.
        overlap: Characters re-read at the start of the next chunk.

    Returns:
        Ordered list of Chunks (empty for blank text).

    Example:
        >>> chunks = chunk_text("First paragraph.\\n\\nSecond one.", chunk_size=20, overlap=0)
        >>> [c.text for c in chunks]
        ['First paragraph.', 'Second one.']
    """
    if not text or not text.strip():
        return []

    chunks: list[Chunk] = []
    length = len(text)
    pos = 0

    while pos < length:
        end = min(pos + chunk_size, length)
        split_at = end if end >= length else _find_split(text, pos, end, chunk_size)

        body = text[pos:split_at].strip()
        if body:
            chunks.append(Chunk(index=len(chunks), text=body, start=pos, end=split_at))

        pos = max(split_at - overlap, pos + 1)

    return chunks


# ── Line Index ─────────────────────────────────────────────────────

class LineEntry(NamedTuple):
    """One line of a document: 1-based number and [start, end) offsets."""
    line: int
    start: int
    end: int


def build_line_index(text: str) -> list[LineEntry]:
    """Map every line of ``text`` to its character range (newline excluded)."""
    index: list[LineEntry] = []
    line_start = 0
    for line_no, line in enumerate(text.split("\n"), start=1):
        index.append(LineEntry(line_no, line_start, line_start + len(line)))
        line_start += len(line) + 1
    return index


def line_for_offset(line_index: list[LineEntry], offset: int) -> int:
    """1-based line number containing ``offset`` (clamped to the last line)."""
    if not line_index:
        return 1
    starts = [entry.start for entry in line_index]
    pos = bisect.bisect_right(starts, offset) - 1
    return line_index[max(pos, 0)].line


# ── Record Builder ─────────────────────────────────────────────────

class DocumentChunker:
    """
    Chunks documents into persisted ChunkRecords.

    Each record gets a stable ID derived from (doc_id, index) and a TF
    term vector, so re-ingesting an unchanged document reproduces the
    same records.

    Usage:
        chunker = DocumentChunker(chunk_size=900, overlap=150)
        records = chunker.chunk_document(text="...", doc_id="policy_cpb045")

    Args:
        chunk_size: Maximum chunk length in characters.
        overlap: Character overlap between consecutive chunks.
    """

    def __init__(self, chunk_size: int = 900, overlap: int = 150):
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        if overlap < 0:
            raise ValueError(f"overlap must be non-negative, got {overlap}")
        self.chunk_size = chunk_size
        self.overlap = overlap

    def split(self, text: str) -> list[Chunk]:
        """Offset-tracked chunks without vectors."""
        return chunk_text(text, self.chunk_size, self.overlap)

    def chunk_document(
        self,
        text: str,
        doc_id: str,
        chunks: Optional[list[Chunk]] = None,
    ) -> list[ChunkRecord]:
        """
        Build chunk records (with TF vectors) for one document.

        Args:
            text: Full document text.
            doc_id: Parent document ID.
            chunks: Pre-computed chunks of ``text``; computed when omitted.

        Returns:
            ChunkRecords in chunk order.
        """
        if chunks is None:
            chunks = self.split(text)

        records = [
            ChunkRecord(
                chunk_id=chunk_id(doc_id, chunk.index),
                doc_id=doc_id,
                index=chunk.index,
                text=chunk.text,
                start=chunk.start,
                end=chunk.end,
                vector=build_tf_vector(chunk.text),
            )
            for chunk in chunks
        ]

        logger.debug(f"Chunked document '{doc_id}': {len(text)} chars → {len(records)} chunks")
        return records

    def chunk_documents(self, documents: list[KnowledgeDoc]) -> list[ChunkRecord]:
        """Chunk several documents into one flat list of records."""
        all_records: list[ChunkRecord] = []
        for doc in documents:
            all_records.extend(self.chunk_document(doc.text, doc.doc_id))

        logger.info(f"Chunked {len(documents)} documents → {len(all_records)} total chunks")
        return all_records
