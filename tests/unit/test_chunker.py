"""
Chunker Tests
==============

Determinism, coverage and boundary selection of the character-window
chunker. Chunk offsets are what citations point at, so every chunk must
be reproducible and must map back onto the source text exactly.
"""

from __future__ import annotations

import pytest

from appealground.ingest.chunker import (
    DocumentChunker,
    build_line_index,
    chunk_text,
    line_for_offset,
)
from appealground.utils import chunk_id
from tests.conftest import POLICY_TEXT, make_doc

LONG_TEXT = "\n\n".join(
    f"Section {n}. Outpatient therapy visits are reviewed against the plan limit. "
    f"Additional visits require documentation of functional improvement and a signed "
    f"plan of care from the treating provider."
    for n in range(1, 25)
)


class TestChunkTextInvariants:
    """Properties that hold for every input."""

    @pytest.mark.parametrize("text", ["", "   ", "\n\n\t"])
    def test_blank_input_yields_nothing(self, text):
        assert chunk_text(text) == []
        assert chunk_text(text, chunk_size=10, overlap=2) == []

    def test_deterministic(self):
        first = chunk_text(LONG_TEXT, chunk_size=300, overlap=50)
        second = chunk_text(LONG_TEXT, chunk_size=300, overlap=50)
        assert first == second

    @pytest.mark.parametrize("chunk_size,overlap", [(300, 50), (900, 150), (120, 0), (80, 40)])
    def test_coverage(self, chunk_size, overlap):
        """First chunk starts at 0, last chunk reaches at least 80% of the text."""
        chunks = chunk_text(LONG_TEXT, chunk_size, overlap)
        assert chunks[0].start == 0
        assert chunks[-1].end >= 0.8 * len(LONG_TEXT)
        assert all(c.text.strip() for c in chunks)

    def test_text_matches_offsets(self):
        for chunk in chunk_text(LONG_TEXT, chunk_size=250, overlap=40):
            assert chunk.text == LONG_TEXT[chunk.start:chunk.end].strip()
            assert chunk.end - chunk.start <= 250

    def test_indices_are_sequential(self):
        chunks = chunk_text(LONG_TEXT, chunk_size=200, overlap=30)
        assert [c.index for c in chunks] == list(range(len(chunks)))

    def test_consecutive_chunks_overlap(self):
        chunks = chunk_text(LONG_TEXT, chunk_size=300, overlap=50)
        for prev, nxt in zip(chunks, chunks[1:]):
            assert nxt.start < prev.end
            assert prev.end - nxt.start <= 50

    def test_short_text_single_chunk_without_overlap(self):
        chunks = chunk_text("Short policy note.", overlap=0)
        assert len(chunks) == 1
        assert (chunks[0].start, chunks[0].end) == (0, len("Short policy note."))

    def test_short_text_with_overlap_walks_to_end(self):
        """Each step advances at least one character until the cursor hits the end."""
        text = "Short policy note."
        chunks = chunk_text(text)
        assert [c.start for c in chunks] == list(range(len(text)))
        assert all(c.end == len(text) for c in chunks)
        assert chunks[0].text == text
        assert chunks[-1].text == "."

    def test_overlap_not_smaller_than_chunk_size_terminates(self):
        text = "word " * 100
        chunks = chunk_text(text, chunk_size=50, overlap=80)
        assert chunks
        assert chunks[-1].end == len(text)

    def test_tail_reemitted_until_cursor_reaches_end(self):
        text = "x" * 120
        chunks = chunk_text(text, chunk_size=100, overlap=30)
        assert [c.start for c in chunks] == [0, 70] + list(range(90, 120))
        assert chunks[0].end == 100
        assert all(c.end == 120 for c in chunks[1:])

    def test_whitespace_tail_suffixes_skipped(self):
        text = "x" * 100 + "   "
        chunks = chunk_text(text, chunk_size=100, overlap=10)
        assert all(c.text for c in chunks)
        assert chunks[-1].start < 100


class TestBoundarySelection:
    """Paragraph > sentence > space, unless the chunk would be too short."""

    def test_prefers_paragraph_break(self):
        text = "x " * 35 + "\n\n" + "y " * 60
        chunks = chunk_text(text, chunk_size=100, overlap=0)
        assert chunks[0].end == 72
        assert chunks[1].start == 72

    def test_sentence_boundary_without_paragraph(self):
        text = "w" * 60 + ". Next " + "z" * 100
        chunks = chunk_text(text, chunk_size=100, overlap=0)
        assert chunks[0].text == "w" * 60 + "."
        assert chunks[0].end == 61

    def test_space_when_no_sentence_boundary(self):
        text = "a" * 70 + " " + "b" * 100
        chunks = chunk_text(text, chunk_size=100, overlap=0)
        assert chunks[0].end == 71
        assert chunks[0].text == "a" * 70

    def test_tiny_break_ignored(self):
        """A break before 40% of chunk_size falls back to the raw window end."""
        text = "ab\n\n" + "c" * 200
        chunks = chunk_text(text, chunk_size=100, overlap=0)
        assert chunks[0].end == 100


class TestLineIndex:

    def test_build_line_index(self):
        index = build_line_index("ab\ncd\n")
        assert [tuple(e) for e in index] == [(1, 0, 2), (2, 3, 5), (3, 6, 6)]

    @pytest.mark.parametrize("offset,line", [(0, 1), (2, 1), (3, 2), (4, 2), (99, 3)])
    def test_line_for_offset(self, offset, line):
        index = build_line_index("ab\ncd\n")
        assert line_for_offset(index, offset) == line

    def test_empty_index(self):
        assert line_for_offset([], 10) == 1


class TestDocumentChunker:

    def test_rejects_invalid_arguments(self):
        with pytest.raises(ValueError):
            DocumentChunker(chunk_size=0)
        with pytest.raises(ValueError):
            DocumentChunker(chunk_size=100, overlap=-1)

    def test_records_have_stable_ids_and_vectors(self):
        chunker = DocumentChunker(chunk_size=200, overlap=20)
        records = chunker.chunk_document(POLICY_TEXT, "policy_cpb0325")

        assert records and records[0].vector
        for record in records:
            assert record.chunk_id == chunk_id("policy_cpb0325", record.index)
            assert record.doc_id == "policy_cpb0325"
            assert isinstance(record.vector, dict)
            assert not record.is_dense

    def test_reingest_reproduces_records(self):
        chunker = DocumentChunker(chunk_size=200, overlap=20)
        assert (chunker.chunk_document(POLICY_TEXT, "p1")
                == chunker.chunk_document(POLICY_TEXT, "p1"))

    def test_precomputed_chunks_are_used(self):
        chunker = DocumentChunker(chunk_size=200, overlap=20)
        chunks = chunker.split(POLICY_TEXT)[:1]
        records = chunker.chunk_document(POLICY_TEXT, "p1", chunks=chunks)
        assert len(records) == 1
        assert records[0].text == chunks[0].text

    def test_chunk_documents_flattens(self):
        chunker = DocumentChunker(chunk_size=900, overlap=150)
        docs = [make_doc("a", "First document text."), make_doc("b", "Second document text.")]
        records = chunker.chunk_documents(docs)
        assert list(dict.fromkeys(r.doc_id for r in records)) == ["a", "b"]
        assert [r.index for r in records if r.doc_id == "a"][0] == 0
