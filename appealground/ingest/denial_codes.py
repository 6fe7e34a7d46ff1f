"""
Denial Code Analysis
=====================

Local dictionary of Claim Adjustment Reason Codes (CARC) and the rules
that turn printed denial codes into a denial category.

Codes are printed in many shapes ("CO-45", "co 45", "CARC 45", "45");
``normalize_code`` reduces all of them to the trailing 1-3 digit reason
code used as the dictionary key.

Category Inference:
    1. The first code (in order) that appears in a category table wins
    2. Otherwise the denial reason text is matched against keyword rules
    3. Otherwise no category (the case falls back to OTHER)

Usage:
    analyses = analyze_codes(["CO-45", "16", "PR-204"])
    category = infer_denial_category(["CO-50"], "not medically necessary")
"""

from __future__ import annotations

import logging
import re
from typing import NamedTuple, Optional, Sequence

from pydantic import BaseModel, Field

from appealground.schemas.case import DenialCategory

logger = logging.getLogger("appealground.ingest.denial_codes")


class CarcEntry(NamedTuple):
    title: str
    explanation: str
    recommended_action: str
    note: str


CARC_CODES: dict[str, CarcEntry] = {
    "16": CarcEntry(
        title="Claim/service lacks information or has submission/billing error(s)",
        explanation=(
            "The payer needs corrected or additional claim information before "
            "adjudication can complete."
        ),
        recommended_action=(
            "Validate required claim fields, attach missing documentation, and resubmit "
            "a corrected claim."
        ),
        note=(
            "CARC 16 often indicates missing claim data, invalid coding details, or absent "
            "documentation required for payment review."
        ),
    ),
    "22": CarcEntry(
        title="This care may be covered by another payer per coordination of benefits",
        explanation="The payer believes another plan should process the claim first.",
        recommended_action=(
            "Confirm primary payer, submit to correct primary insurer, then bill secondary "
            "with EOB."
        ),
        note=(
            "CARC 22 typically points to Coordination of Benefits conflicts where another "
            "carrier must adjudicate first."
        ),
    ),
    "27": CarcEntry(
        title="Expenses incurred after coverage terminated",
        explanation="Date of service falls outside the patient's active coverage period.",
        recommended_action=(
            "Verify eligibility dates, correct member details if needed, or redirect to "
            "self-pay/alternate coverage."
        ),
        note=(
            "CARC 27 indicates services rendered after termination of policy coverage or "
            "outside active eligibility windows."
        ),
    ),
    "45": CarcEntry(
        title="Charge exceeds fee schedule/maximum allowable or contracted amount",
        explanation="The billed amount is above contractual or regulatory allowable rates.",
        recommended_action=(
            "Review payer contract terms, reconcile expected allowable, and adjust or appeal "
            "as contractually appropriate."
        ),
        note=(
            "CARC 45 is commonly tied to fee schedule reductions, contractual adjustments, "
            "or maximum allowable limits."
        ),
    ),
    "96": CarcEntry(
        title="Non-covered charge(s)",
        explanation=(
            "The service is considered non-covered under the member's plan benefit design."
        ),
        recommended_action=(
            "Review plan exclusions and policy criteria, then submit medical necessity "
            "support if an exception is warranted."
        ),
        note=(
            "CARC 96 is used for non-covered services and may require benefit "
            "interpretation or exception-based appeal support."
        ),
    ),
}

UNKNOWN_CODE_EXPLANATION = (
    "Unknown code in local CARC dictionary. Consult the payer's remittance advice "
    "or the published CARC list for additional context."
)

# Reason codes per category, checked in this order for each printed code.
# Experimental/investigational (55) appeals argue medical necessity.
CATEGORY_CODES: tuple[tuple[DenialCategory, frozenset[str]], ...] = (
    (DenialCategory.MEDICAL_NECESSITY, frozenset({"50", "55", "49"})),
    (DenialCategory.AUTHORIZATION, frozenset({"39", "136", "197"})),
    (DenialCategory.CODING, frozenset({"4", "5", "6", "9", "11", "16", "97", "236"})),
    (DenialCategory.ELIGIBILITY, frozenset({"22", "26", "27", "31", "32"})),
    (DenialCategory.TIMELY_FILING, frozenset({"29"})),
    (DenialCategory.BENEFIT_LIMIT, frozenset({"35", "119", "204"})),
)

CATEGORY_REASON_PATTERNS: tuple[tuple[DenialCategory, re.Pattern], ...] = (
    (DenialCategory.MEDICAL_NECESSITY,
     re.compile(r"medical.?necessity|not.?medically.?necessary", re.I)),
    (DenialCategory.AUTHORIZATION, re.compile(r"prior.?auth|pre.?cert|authorization", re.I)),
    (DenialCategory.TIMELY_FILING, re.compile(r"timely.?filing|filing.?limit", re.I)),
    (DenialCategory.MEDICAL_NECESSITY, re.compile(r"experimental|investigational", re.I)),
    (DenialCategory.ELIGIBILITY, re.compile(r"eligib|coverage.?termin|not.?covered", re.I)),
    (DenialCategory.BENEFIT_LIMIT, re.compile(r"benefit.?max|limit.?reached", re.I)),
)

_TRAILING_CODE = re.compile(r"(\d{1,3})$")


class CodeAnalysis(BaseModel):
    """Dictionary lookup result for one printed denial code."""
    input_code: str
    normalized_code: str
    found: bool
    title: Optional[str] = None
    explanation: str
    recommended_action: Optional[str] = None
    note: Optional[str] = Field(default=None, description="Background on how payers use the code")


def normalize_code(raw_code: str) -> str:
    """
    Reduce a printed code to its reason-code key.

    Example:
        >>> normalize_code(" co - 45 ")
        '45'
        >>> normalize_code("N130")
        '130'
    """
    cleaned = "".join(raw_code.strip().upper().split())
    match = _TRAILING_CODE.search(cleaned)
    return match.group(1) if match else cleaned


def analyze_codes(codes: Sequence[str]) -> list[CodeAnalysis]:
    """Look up each code in the local CARC dictionary, preserving order."""
    analyses = []
    for code in codes:
        normalized = normalize_code(code)
        entry = CARC_CODES.get(normalized)
        if entry is None:
            analyses.append(CodeAnalysis(
                input_code=code,
                normalized_code=normalized,
                found=False,
                explanation=UNKNOWN_CODE_EXPLANATION,
            ))
            continue
        analyses.append(CodeAnalysis(
            input_code=code,
            normalized_code=normalized,
            found=True,
            title=entry.title,
            explanation=entry.explanation,
            recommended_action=entry.recommended_action,
            note=entry.note,
        ))

    unknown = sum(1 for a in analyses if not a.found)
    if unknown:
        logger.debug(f"{unknown} of {len(analyses)} denial codes not in the local dictionary")
    return analyses


def category_from_codes(codes: Sequence[str]) -> Optional[DenialCategory]:
    for code in codes:
        normalized = normalize_code(code)
        for category, table in CATEGORY_CODES:
            if normalized in table:
                return category
    return None


def category_from_reason(reason: str) -> Optional[DenialCategory]:
    for category, pattern in CATEGORY_REASON_PATTERNS:
        if pattern.search(reason):
            return category
    return None


def infer_denial_category(
    codes: Sequence[str],
    reason: Optional[str] = None,
) -> Optional[DenialCategory]:
    """
    Denial category from printed codes, falling back to the reason text.

    Returns None when neither codes nor reason match a rule.
    """
    return category_from_codes(codes) or category_from_reason(reason or "")
