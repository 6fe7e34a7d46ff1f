"""
Denial Letter Parser
=====================

Deterministic regex extraction of a DenialCase from the plain text of a
denial letter or EOB. No model calls: every value comes from a labelled
pattern, and every extracted field carries the span it was read from so
the letter generator can cite the denial letter itself.

Extracted:
    claim number, member name, member address, member ID, labelled
    identifiers (account #, reference #, auth #, ...), denial codes
    (group-prefixed like CO-96, or labelled like "CARC 45"), CPT/HCPCS
    codes (as service lines), denial reason, denial category

Data Flow:
    Letter text → Normalize (\\r → \\n, offsets preserved)
                → Field patterns → ExtractedFields with SourceSpans
                → Category inference (codes first, then reason text)
                → DenialCase

Fields that are not found stay empty and are listed in
``missing_information``; they surface later as NEEDS EVIDENCE markers.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from appealground.ingest.denial_codes import (
    category_from_codes,
    infer_denial_category,
    normalize_code,
)
from appealground.schemas.case import (
    CaseDocMeta,
    DenialCategory,
    DenialCase,
    ExtractedField,
    Identifier,
    ServiceItem,
    SourceSpan,
)
from appealground.utils import normalize_whitespace, stable_id

logger = logging.getLogger("appealground.ingest.denial_parser")

REASON_NOT_FOUND = "Reason not clearly found in document."

# ── Patterns ───────────────────────────────────────────────────────

# (pattern, confidence); group 1 is the value
CLAIM_PATTERNS: tuple[tuple[re.Pattern, float], ...] = (
    (re.compile(r"claim\s*(?:id|number|no\.?|#)\s*[:#-]?\s*([A-Z0-9-]{5,})", re.I), 0.9),
    (re.compile(r"control\s*number\s*[:#-]?\s*([A-Z0-9-]{5,})", re.I), 0.7),
)

NAME_PATTERNS: tuple[tuple[re.Pattern, float], ...] = (
    (re.compile(
        r"(?:patient\s*name|member\s*name|subscriber\s*name)\s*[:#-]?\s*([A-Z][A-Z ,.'-]{3,})",
        re.I,
    ), 0.8),
    # A bare "Name:" label only at the start of a line
    (re.compile(r"^[ \t]*name\s*[:#-]?\s*([A-Z][A-Z ,.'-]{3,})", re.I | re.M), 0.5),
)

STREET_LINE = re.compile(r"\d{1,5}\s+[A-Z0-9 .'-]{3,}", re.I)
ZIP_LINE = re.compile(r"\b[A-Z]{2}\s+\d{5}(?:-\d{4})?\b", re.I)

GROUP_CODE = re.compile(r"\b(?:CO|PR|OA|PI)\s*-\s*\d{1,3}\b", re.I)
LABELLED_CODE = re.compile(
    r"\b(?:CARC|(?:adjustment\s*)?reason\s*code|denial\s*code)s?\s*[:#-]?\s*(\d{1,3})\b",
    re.I,
)

CPT_LIST = re.compile(
    r"\b(?:cpt|hcpcs|procedure|proc)(?:\s*codes?)?\s*[:#-]?\s*"
    r"([A-Z]?\d{4,5}(?:\s*(?:,|and|&)\s*[A-Z]?\d{4,5})*)\b",
    re.I,
)
CPT_CODE = re.compile(r"[A-Z]?\d{4,5}", re.I)

REASON_PATTERNS: tuple[re.Pattern, ...] = (
    re.compile(r"(?:denial\s*reason|reason\s*for\s*(?:the\s*)?denial)[\s:.-]*([\s\S]{0,1200})", re.I),
    re.compile(r"explanation(?:\s*of\s*benefits)?[\s:.-]*([\s\S]{0,1200})", re.I),
)
_PARAGRAPH_BREAK = re.compile(r"\n{2,}")

IDENTIFIER_LABELS: tuple[str, ...] = (
    r"member\s*id",
    r"subscriber\s*id",
    r"account\s*#?",
    r"policy\s*#?",
    r"reference\s*#?",
    r"auth\s*#?",
    r"authorization\s*#?",
)
IDENTIFIER_PATTERNS: tuple[re.Pattern, ...] = tuple(
    re.compile(rf"\b({label})\s*[:#-]?\s*([A-Z0-9-]{{4,}})", re.I)
    for label in IDENTIFIER_LABELS
)
MEMBER_ID_LABELS = ("member_id", "subscriber_id")

_HAS_DIGIT = re.compile(r"\d")


def title_case(value: str) -> str:
    """'JANE  q. DOE' → 'Jane Q. Doe'."""
    return " ".join(token[:1].upper() + token[1:] for token in value.lower().split())


class DenialLetterParser:
    """
    Regex parser for denial letters.

    Usage:
        parser = DenialLetterParser()
        case = parser.parse(letter_text, payer_name="Aetna")
        case.denial_code_list     # ["CO-96", "PR-204"]
        case.category             # DenialCategory.BENEFIT_LIMIT

    Args:
        doc_id: Document ID written into every SourceSpan.
        min_reason_chars: Shorter reason paragraphs are treated as not found.
    """

    def __init__(self, doc_id: str = "denial_letter", min_reason_chars: int = 20):
        self.doc_id = doc_id
        self.min_reason_chars = min_reason_chars

    def _span(self, text: str, start: int, end: int, label: str) -> SourceSpan:
        return SourceSpan(
            doc_id=self.doc_id, start=start, end=end,
            snippet=text[start:end], label=label,
        )

    # ── Field extractors ───────────────────────────────────────────

    def extract_claim_number(self, text: str) -> ExtractedField[str]:
        for pattern, confidence in CLAIM_PATTERNS:
            for match in pattern.finditer(text):
                value = match.group(1).strip("-")
                if _HAS_DIGIT.search(value):
                    return ExtractedField[str](
                        value=value, confidence=confidence,
                        spans=[self._span(text, match.start(), match.end(), "claimNumber")],
                    )
        return ExtractedField[str]()

    def extract_member_name(self, text: str) -> ExtractedField[str]:
        for pattern, confidence in NAME_PATTERNS:
            match = pattern.search(text)
            if match is None:
                continue
            # Labels laid out in columns: stop at the first wide gap
            raw = re.split(r"\s{2,}", match.group(1).strip())[0].rstrip(" ,.'-")
            if len(raw) < 3:
                continue
            end = match.start(1) + len(raw)
            return ExtractedField[str](
                value=title_case(raw), confidence=confidence,
                spans=[self._span(text, match.start(), end, "memberName")],
            )
        return ExtractedField[str]()

    def extract_member_address(self, text: str) -> ExtractedField[str]:
        """First street line directly followed by a 'ST 12345' line."""
        lines = []
        for match in re.finditer(r"[^\n]+", text):
            stripped = match.group(0).strip()
            if stripped:
                start = match.start() + match.group(0).index(stripped)
                lines.append((stripped, start, start + len(stripped)))

        for (current, start, _), (following, _, end) in zip(lines, lines[1:]):
            if STREET_LINE.search(current) and ZIP_LINE.search(following):
                return ExtractedField[str](
                    value=f"{title_case(current)}, {following.upper()}",
                    confidence=0.5,
                    spans=[self._span(text, start, end, "memberAddress")],
                    notes="First street/ZIP line pair; may be the payer's address",
                )
        return ExtractedField[str]()

    def extract_identifiers(self, text: str) -> ExtractedField[list[Identifier]]:
        found: dict[tuple[str, str], Identifier] = {}
        spans: list[SourceSpan] = []
        for pattern in IDENTIFIER_PATTERNS:
            for match in pattern.finditer(text):
                label = "_".join(match.group(1).lower().split())
                value = match.group(2).strip()
                if not _HAS_DIGIT.search(value) or (label, value) in found:
                    continue
                found[(label, value)] = Identifier(label=label, value=value)
                spans.append(self._span(text, match.start(), match.end(), label))

        if not found:
            return ExtractedField[list[Identifier]]()
        return ExtractedField[list[Identifier]](
            value=list(found.values()), confidence=0.8, spans=spans,
        )

    def extract_denial_codes(self, text: str) -> ExtractedField[list[str]]:
        """Group-prefixed codes first, then labelled bare codes; one entry per reason code."""
        hits: list[tuple[str, int, int]] = [
            ("".join(m.group(0).split()).upper(), m.start(), m.end())
            for m in GROUP_CODE.finditer(text)
        ]
        hits.extend((m.group(1), m.start(), m.end()) for m in LABELLED_CODE.finditer(text))

        codes: list[str] = []
        spans: list[SourceSpan] = []
        seen_group: set[str] = set()
        seen_reason: set[str] = set()
        for code, start, end in hits:
            reason = normalize_code(code)
            if code in seen_group or (code.isdigit() and reason in seen_reason):
                continue
            seen_group.add(code)
            seen_reason.add(reason)
            codes.append(code)
            spans.append(self._span(text, start, end, "denialCode"))

        if not codes:
            return ExtractedField[list[str]]()
        return ExtractedField[list[str]](value=codes, confidence=0.9, spans=spans)

    def extract_services(self, text: str) -> ExtractedField[list[ServiceItem]]:
        codes: list[str] = []
        spans: list[SourceSpan] = []
        for match in CPT_LIST.finditer(text):
            added = False
            for code in CPT_CODE.findall(match.group(1)):
                code = code.upper()
                if code not in codes:
                    codes.append(code)
                    added = True
            if added:
                spans.append(self._span(text, match.start(), match.end(), "cptCodes"))

        if not codes:
            return ExtractedField[list[ServiceItem]]()
        return ExtractedField[list[ServiceItem]](
            value=[ServiceItem(service_name=f"CPT {code}", cpt_codes=[code]) for code in codes],
            confidence=0.7,
            spans=spans,
            notes="Service lines built from labelled CPT/HCPCS codes",
        )

    def extract_denial_reason(self, text: str) -> ExtractedField[str]:
        for pattern in REASON_PATTERNS:
            match = pattern.search(text)
            if match is None:
                continue
            paragraph = _PARAGRAPH_BREAK.split(match.group(1))[0]
            stripped = paragraph.strip()
            if len(stripped) < self.min_reason_chars:
                continue
            start = match.start(1) + paragraph.index(stripped)
            end = start + len(stripped)
            return ExtractedField[str](
                value=normalize_whitespace(stripped), confidence=0.7,
                spans=[self._span(text, start, end, "denialReason")],
            )
        return ExtractedField[str](notes=REASON_NOT_FOUND)

    # ── Assembly ───────────────────────────────────────────────────

    def parse(
        self,
        text: str,
        case_id: Optional[str] = None,
        payer_name: Optional[str] = None,
        filename: str = "",
    ) -> DenialCase:
        """
        Parse a denial letter into a DenialCase.

        Args:
            text: Plain text of the letter.
            case_id: Case ID (default: stable hash of doc ID and text head).
            payer_name: Payer, when known from outside the letter.
            filename: Original file name, recorded in ``doc_meta``.

        Returns:
            DenialCase with spans into the normalized text (``raw_text``).
        """
        # Same length as the input, so span offsets hold for both
        text = text.replace("\r", "\n")
        case_id = case_id or f"case_{stable_id(self.doc_id, text[:200])}"

        claim_number = self.extract_claim_number(text)
        member_name = self.extract_member_name(text)
        member_address = self.extract_member_address(text)
        identifiers = self.extract_identifiers(text)
        denial_codes = self.extract_denial_codes(text)
        services = self.extract_services(text)
        reason = self.extract_denial_reason(text)

        member_id = ExtractedField[str]()
        for ident, span in zip(identifiers.value or [], identifiers.spans):
            if ident.label in MEMBER_ID_LABELS:
                member_id = ExtractedField[str](value=ident.value, confidence=0.8, spans=[span])
                break

        codes = denial_codes.value or []
        category = infer_denial_category(codes, reason.value)
        if category is None:
            denial_category = ExtractedField[DenialCategory](
                notes="No denial code or reason keyword matched",
            )
        elif category_from_codes(codes) is not None:
            deciding = next(
                span for code, span in zip(codes, denial_codes.spans)
                if category_from_codes([code]) is not None
            )
            denial_category = ExtractedField[DenialCategory](
                value=category, confidence=0.8, spans=[deciding],
                notes="Inferred from denial codes",
            )
        else:
            denial_category = ExtractedField[DenialCategory](
                value=category, confidence=0.6, spans=reason.spans,
                notes="Inferred from denial reason text",
            )

        fields = {
            "claim number": claim_number,
            "member name": member_name,
            "member ID": member_id,
            "denial codes": denial_codes,
            "CPT codes": services,
            "denial reason": reason,
        }
        missing = [name for name, field in fields.items() if not field.value]

        case = DenialCase(
            case_id=case_id,
            payer_name=ExtractedField[str](
                value=payer_name, confidence=1.0 if payer_name else 0.0,
            ),
            member_name=member_name,
            member_address=member_address,
            member_id=member_id,
            claim_number=claim_number,
            services=services,
            denial_category=denial_category,
            denial_reason_summary=reason,
            denial_codes=denial_codes,
            identifiers=identifiers,
            missing_information=ExtractedField[list[str]](value=missing, confidence=1.0),
            raw_text=text,
            doc_meta=CaseDocMeta(doc_id=self.doc_id, filename=filename),
        )
        logger.info(
            f"Parsed denial letter '{self.doc_id}' as case '{case_id}': "
            f"{len(fields) - len(missing)}/{len(fields)} key fields, "
            f"{len(codes)} denial codes, category={case.category.value}"
        )
        return case


def parse_denial_letter(text: str, **kwargs) -> DenialCase:
    """Convenience wrapper around ``DenialLetterParser().parse``."""
    return DenialLetterParser().parse(text, **kwargs)
