"""
Grounding Verifier
===================

Enforces that no numeric fact in a letter section stands without
support. Each sentence carrying a numeric claim (amount, date, count,
deadline, limit, procedure or diagnosis code) must be backed by a
citation whose snippet contains one of the sentence's values; otherwise
an explicit marker is inserted right after it:

    Patient owes $450.00 for this service. [NEEDS EVIDENCE: source for $450.00]

Architecture:
    Section.content → Segmenter (pieces with offsets, markers attached)
                    → Claim detection → Coverage check → Marker insertion
                    → Section rule (citation or marker required)
                    → Evidence-gap collection over all sections

Key Properties:
    1. Never raises for well-formed sections; problems become markers,
       warnings and gaps
    2. Idempotent: verifying the patched sections again changes nothing
       (a sentence that already carries a marker is skipped, and the
       section rule is evaluated on the patched content)
    3. Markers are inserted at the offending sentence's own offsets, so a
       sentence repeated verbatim in one section is patched in place
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, NamedTuple, Optional, Sequence

from appealground.schemas.letter import Citation, LetterSection, VerificationOutcome
from appealground.utils import truncate

logger = logging.getLogger("appealground.verify.grounding")

# ── Patterns ───────────────────────────────────────────────────────

_MONTHS = (
    "January|February|March|April|May|June|July|August|"
    "September|October|November|December"
)

NUMERIC_CLAIM_PATTERNS: tuple[re.Pattern, ...] = (
    re.compile(r"\$[\d,]+(?:\.\d{2})?"),                              # currency
    re.compile(r"\b\d{1,3}(?:,\d{3})*(?:\.\d+)?\s*(?:dollars?|USD)", re.I),
    re.compile(r"\b\d{4}-\d{2}-\d{2}\b"),                             # ISO date
    re.compile(rf"\b(?:{_MONTHS})\s+\d{{1,2}},?\s+\d{{4}}\b", re.I),  # long date
    re.compile(r"\b\d+\s+(?:days?|sessions?|visits?|units?)\b", re.I),
    re.compile(r"\b\d+%"),
    re.compile(r"\bwithin\s+\d+\s+days?\b", re.I),
    re.compile(r"\blimit(?:ed)?\s+to\s+\d+\b", re.I),
    re.compile(r"\bCPT\s+\d{4,5}\b", re.I),
    re.compile(r"\bICD-?\d+\b", re.I),
)

MARKER_PATTERN = re.compile(r"\[NEEDS EVIDENCE:[^\]]+\]", re.I)
_MARKER_PREFIX = re.compile(r"^\[NEEDS EVIDENCE:\s*", re.I)

_DOLLAR_AMOUNT = re.compile(r"\$[\d,]+(?:\.\d{2})?")
_NUMERIC_TOKEN = re.compile(r"\b\d[\d,]*(?:\.\d+)?\b")
_CPT_CODE = re.compile(r"\bCPT\s+\d{4,5}\b", re.I)
_CPT_PREFIX = re.compile(r"CPT\s+", re.I)
_COUNT_PHRASE = re.compile(r"\b\d+\s+(?:days?|sessions?|visits?)\b", re.I)

# Sentence separators: after .!? before a capital or '[', after a newline
# before a capital or '[', or newlines following ':' / '.'
_SENTENCE_SEPARATOR = re.compile(
    r"(?<=[.!?])\s+(?=[A-Z\[])|(?<=\n)\s*(?=[A-Z\[])|(?<=[:.])\n+"
)

GENERIC_MARKER_TEXT = "citation for numeric claim in this sentence"


def needs_evidence_marker(description: str) -> str:
    """Format a marker literal; the inverse of ``collect_evidence_gaps``."""
    return f"[NEEDS EVIDENCE: {description}]"


# ── Claim Detection & Coverage ─────────────────────────────────────

def has_evidence_marker(text: str) -> bool:
    return MARKER_PATTERN.search(text) is not None


def has_numeric_claim(sentence: str) -> bool:
    """True if the sentence matches any numeric-claim pattern."""
    return any(pattern.search(sentence) for pattern in NUMERIC_CLAIM_PATTERNS)


def extract_claim_values(sentence: str) -> list[str]:
    """
    Values a covering citation must contain: dollar amounts, numeric
    tokens and CPT codes, with commas and the 'CPT' prefix removed.
    """
    raw = (
        _DOLLAR_AMOUNT.findall(sentence)
        + _NUMERIC_TOKEN.findall(sentence)
        + _CPT_CODE.findall(sentence)
    )
    values = []
    for value in raw:
        needle = _CPT_PREFIX.sub("", value.replace(",", ""), count=1).strip()
        if needle:
            values.append(needle)
    return values


def citation_covers_value(sentence: str, citations: Sequence[Citation]) -> bool:
    """
    True if the sentence needs no support, or some citation snippet
    (comma-stripped) contains at least one of its values.
    """
    needles = extract_claim_values(sentence)
    if not needles:
        return True

    for citation in citations:
        snippet = citation.snippet.replace(",", "")
        if any(needle in snippet for needle in needles):
            return True
    return False


def describe_missing_values(sentence: str) -> str:
    """Marker description naming the amounts, counts and codes in a sentence."""
    values = (
        _DOLLAR_AMOUNT.findall(sentence)
        + _COUNT_PHRASE.findall(sentence)
        + _CPT_CODE.findall(sentence)
    )
    if values:
        return f"source for {', '.join(values)}"
    return GENERIC_MARKER_TEXT


# ── Segmentation ───────────────────────────────────────────────────

class Piece(NamedTuple):
    """A sentence span [start, end) of the section content."""
    start: int
    end: int


def _stripped_span(text: str, start: int, end: int) -> Optional[Piece]:
    chunk = text[start:end]
    lead = len(chunk) - len(chunk.lstrip())
    trail = len(chunk) - len(chunk.rstrip())
    if lead + trail >= len(chunk):
        return None
    return Piece(start + lead, end - trail)


def segment_sentences(content: str) -> list[Piece]:
    """
    Split content into sentence pieces with offsets.

    A marker opening a piece on the same line as the previous sentence
    is attached to that sentence; whatever follows the marker becomes a
    piece of its own.
    """
    raw: list[Piece] = []
    cursor = 0
    for match in _SENTENCE_SEPARATOR.finditer(content):
        span = _stripped_span(content, cursor, match.start())
        if span is not None:
            raw.append(span)
        cursor = match.end()
    span = _stripped_span(content, cursor, len(content))
    if span is not None:
        raw.append(span)

    pieces: list[Piece] = []
    for piece in raw:
        current: Optional[Piece] = piece
        while current is not None:
            marker = MARKER_PATTERN.match(content, current.start, current.end)
            if marker is None:
                pieces.append(current)
                break
            if pieces and "\n" not in content[pieces[-1].end:current.start]:
                pieces[-1] = Piece(pieces[-1].start, marker.end())
            else:
                pieces.append(Piece(current.start, marker.end()))
            current = _stripped_span(content, marker.end(), current.end)
    return pieces


def split_sentences(content: str) -> list[str]:
    """Sentence texts of ``content`` (markers attached to their sentence)."""
    return [content[p.start:p.end] for p in segment_sentences(content)]


# ── Evidence Gaps ──────────────────────────────────────────────────

def collect_evidence_gaps(sections: Iterable[LetterSection]) -> list[str]:
    """
    Every marker description across the sections, unwrapped, trimmed and
    deduplicated in first-seen order.
    """
    gaps: list[str] = []
    for section in sections:
        for match in MARKER_PATTERN.finditer(section.content):
            gap = _MARKER_PREFIX.sub("", match.group(0))
            if gap.endswith("]"):
                gap = gap[:-1]
            gap = gap.strip()
            if gap and gap not in gaps:
                gaps.append(gap)
    return gaps


# ── Verifier ───────────────────────────────────────────────────────

class GroundingVerifier:
    """
    Verifies and patches letter sections.

    Usage:
        verifier = GroundingVerifier()
        outcome = verifier.verify(sections)
        outcome.sections        # patched copies, inputs untouched
        outcome.evidence_gaps   # ["source for $450.00", ...]
        outcome.warnings        # section-level problems

    Args:
        exempt_section_ids: Sections excluded from the "needs a citation
            or marker" rule (numeric claims are still checked).
        sentence_preview_chars: Sentence prefix quoted in unresolved claims.
    """

    def __init__(
        self,
        exempt_section_ids: Sequence[str] = ("header", "closing"),
        sentence_preview_chars: int = 80,
    ):
        self.exempt_section_ids = frozenset(exempt_section_ids)
        self.sentence_preview_chars = sentence_preview_chars

    def _patch_content(
        self,
        section: LetterSection,
        unresolved: list[str],
    ) -> str:
        content = section.content
        segments: list[str] = []
        cursor = 0

        for piece in segment_sentences(content):
            sentence = content[piece.start:piece.end]
            if not has_numeric_claim(sentence) or has_evidence_marker(sentence):
                continue
            if citation_covers_value(sentence, section.citations):
                continue

            segments.append(content[cursor:piece.end])
            segments.append(" " + needs_evidence_marker(describe_missing_values(sentence)))
            cursor = piece.end

            preview = truncate(sentence, self.sentence_preview_chars)
            unresolved.append(f'{section.title}: numeric claim needs citation ("{preview}")')

        segments.append(content[cursor:])
        return "".join(segments)

    def verify(self, sections: Sequence[LetterSection]) -> VerificationOutcome:
        """
        Patch uncovered numeric claims and check every section has support.

        Args:
            sections: Letter sections in display order.

        Returns:
            VerificationOutcome with patched sections, evidence gaps,
            this run's unresolved claims and warnings.
        """
        patched: list[LetterSection] = []
        unresolved: list[str] = []
        warnings: list[str] = []

        for section in sections:
            content = self._patch_content(section, unresolved)
            section_warnings = list(section.warnings or [])

            # Checked per section: one citation or marker anywhere covers
            # every paragraph, paragraphs are not checked separately.
            if (
                section.id not in self.exempt_section_ids
                and not section.citations
                and not has_evidence_marker(content)
            ):
                local = f'Section "{section.title}" has no citations and no NEEDS EVIDENCE placeholders.'
                if local not in section_warnings:
                    section_warnings.append(local)
                message = f'Section "{section.title}" missing citations, verify supporting evidence'
                if message not in warnings:
                    warnings.append(message)

            patched.append(section.model_copy(update={
                "content": content,
                "warnings": section_warnings or None,
            }))

        gaps = collect_evidence_gaps(patched)
        logger.info(
            f"Verified {len(patched)} sections: {len(unresolved)} claims patched, "
            f"{len(gaps)} evidence gaps, {len(warnings)} warnings"
        )
        return VerificationOutcome(
            sections=patched,
            evidence_gaps=gaps,
            unresolved_claims=unresolved,
            warnings=warnings,
        )
