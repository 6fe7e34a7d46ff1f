"""
Appeal Letter Assembly
=======================

Assembles a template-mode appeal letter from a denial case and the
evidence retrieved for it, then runs the grounding verifier so every
numeric fact is either cited or marked [NEEDS EVIDENCE: ...].

Architecture:
    DenialCase ─┬→ retrieve_for_case → RetrievedItems ─┐
                └──────────────────────────────────────┴→ Section builders
                                                          → GroundingVerifier
                                                          → Evidence gaps
                                                          → Action items + checklist
                                                          → AppealLetter

Sections (in order):
    header, service_details, request, denial_summary, rebuttal,
    attachments, closing

Citations:
    - denial_case_span: spans of the denial letter a case field came from
    - kb_chunk: retrieved knowledge-base chunk (document offsets, snippet =
      first 120 chars, whitespace-normalized)
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Optional, Sequence

from appealground.ingest.denial_codes import analyze_codes
from appealground.retrieve.aggregator import retrieve_for_case
from appealground.retrieve.index import RetrievalIndex
from appealground.schemas.case import DenialCase, DenialCategory, ExtractedField, UserContext
from appealground.schemas.evidence import DocType, RetrievedItem
from appealground.schemas.letter import (
    ActionItem,
    ActionPriority,
    AppealLetter,
    AttachmentItem,
    Citation,
    CitationKind,
    GenerateOptions,
    LetterSection,
)
from appealground.utils import letter_id, normalize_whitespace
from appealground.verify.grounding import GroundingVerifier

logger = logging.getLogger("appealground.render.letter")

SECTION_SEPARATOR = "\n\n" + "─" * 40 + "\n\n"

# Doc types whose chunks may back the rebuttal
REBUTTAL_DOC_TYPES = (
    DocType.POLICY,
    DocType.PRIOR_APPEAL_ACCEPTED,
    DocType.CLINICAL,
    DocType.TEMPLATE,
)
MAX_REBUTTAL_CITATIONS = 4

REQUEST_OUTCOMES = {
    "pay_claim": "reverse this denial and approve payment for the services rendered",
    "approve_service": "approve authorization for the requested service",
    "reprocess": "reprocess this claim and issue correct payment",
    "reduce_patient_resp": "reduce the patient financial responsibility to the correct contracted rate",
    "other": "reconsider this claim in light of the evidence provided",
}

CLINICAL_CATEGORIES = (DenialCategory.BENEFIT_LIMIT, DenialCategory.MEDICAL_NECESSITY)


# ── Citation Helpers ───────────────────────────────────────────────

def span_citations(field: ExtractedField, label: str) -> list[Citation]:
    """Citations for the denial-letter spans of one case field."""
    citations = []
    for span in field.spans:
        if not span.snippet.strip() or span.start > span.end:
            logger.debug(f"Skipping unusable span for '{label}' in {span.doc_id}")
            continue
        citations.append(Citation(
            kind=CitationKind.DENIAL_CASE_SPAN,
            doc_id=span.doc_id,
            start=span.start,
            end=span.end,
            snippet=span.snippet,
            label=label,
        ))
    return citations


def chunk_citation(item: RetrievedItem, label: str, snippet_chars: int = 120) -> Citation:
    """Citation pointing at a retrieved chunk's document span."""
    if item.spans:
        start, end = item.spans[0].start, item.spans[0].end
    else:
        start, end = 0, len(item.text)
    return Citation(
        kind=CitationKind.KB_CHUNK,
        doc_id=item.doc_id,
        start=start,
        end=end,
        snippet=normalize_whitespace(item.text)[:snippet_chars],
        label=label,
    )


def _has_doc_type(items: Sequence[RetrievedItem], doc_type: DocType) -> bool:
    return any(item.meta.doc_type == doc_type for item in items)


def _format_date(day: date) -> str:
    return f"{day:%B} {day.day}, {day.year}"


# ── Section Builders ───────────────────────────────────────────────

def build_header_section(case: DenialCase, user_context: UserContext, today: date) -> LetterSection:
    today_str = _format_date(today)
    member_name = case.member_name.value or "[Member Name]"
    letter_date = case.letter_date.value or today_str

    citations = (
        span_citations(case.member_name, "memberName")
        + span_citations(case.member_id, "memberId")
        + span_citations(case.claim_number, "claimNumber")
        + span_citations(case.payer_name, "payerName")
        + span_citations(case.letter_date, "letterDate")
        + span_citations(case.member_address, "memberAddress")
    )

    patient_lines = [member_name]
    address = user_context.patient_address or case.member_address.value
    if address:
        patient_lines.append(address)
        if user_context.patient_phone:
            patient_lines.append(user_context.patient_phone)

    content = "\n".join([
        today_str,
        "",
        *patient_lines,
        "",
        case.payer_name.value or "[Payer Name]",
        case.payer_address.value or "[Payer Address]",
        "",
        "Re: INTERNAL APPEAL - Denial of Claim",
        f"Member Name: {member_name}",
        f"Member ID: {case.member_id.value or '[Member ID]'}",
        f"Claim Number: {case.claim_number.value or '[Claim Number]'}",
        f"Date of Original Denial Letter: {letter_date}",
    ])
    return LetterSection(id="header", title="Header", content=content, citations=citations)


def build_service_details_section(case: DenialCase) -> LetterSection:
    citations = (
        span_citations(case.services, "services")
        + span_citations(case.service_date, "serviceDate")
        + span_citations(case.provider_name, "providerName")
    )

    lines = []
    for svc in case.service_list:
        cpts = f" (CPT: {', '.join(svc.cpt_codes)})" if svc.cpt_codes else ""
        amount = (
            f", Billed Amount: {svc.currency} {svc.amount_requested:.2f}"
            if svc.amount_requested is not None else ""
        )
        lines.append(f"  • {svc.service_name}{cpts}{amount}, Status: {svc.status.value}")
    service_lines = "\n".join(lines) or (
        "  • [NEEDS EVIDENCE: service details not extracted from denial letter]"
    )

    provider_note = (
        f"provided by {case.provider_name.value}" if case.provider_name.value
        else "[NEEDS EVIDENCE: provider name not found, obtain from claim or EOB]"
    )
    service_date = case.service_date.value or "[Date of Service]"

    content = (
        "Dear Claims Review Department,\n\n"
        f"We are writing to formally appeal the denial of the following service(s) "
        f"{provider_note} on {service_date}:\n\n"
        f"{service_lines}\n\n"
        "Please review the complete record and clinical justification presented below."
    )
    return LetterSection(
        id="service_details", title="Service and Claim Details",
        content=content, citations=citations,
    )


def build_request_section(case: DenialCase, user_context: UserContext) -> LetterSection:
    outcome = REQUEST_OUTCOMES.get(user_context.requested_outcome, "reverse this denial")
    claim_number = case.claim_number.value or "[Claim Number]"
    content = (
        f"We respectfully request that you {outcome} for claim number {claim_number}. "
        "We have enclosed all supporting clinical documentation and evidence demonstrating "
        "that this service is covered and medically warranted."
    )
    return LetterSection(
        id="request", title="Request for Review", content=content,
        citations=span_citations(case.claim_number, "claimNumber"),
    )


def build_denial_summary_section(case: DenialCase) -> LetterSection:
    citations = (
        span_citations(case.denial_reason_summary, "denialReason")
        + span_citations(case.denial_codes, "denialCodes")
        + span_citations(case.policy_references, "policyReferences")
        + span_citations(case.letter_date, "letterDate")
    )
    refs = case.policy_references.value or []
    policy_str = ""
    if refs:
        described = [f"{r.policy_id} ({r.title})" if r.title else r.policy_id for r in refs]
        policy_str = f" citing {', '.join(described)}"

    codes_str = ""
    if case.denial_code_list:
        described = [
            f"{a.input_code} ({a.title})" if a.found else a.input_code
            for a in analyze_codes(case.denial_code_list)
        ]
        codes_str = f"The denial cites adjustment reason code(s) {', '.join(described)}.\n\n"

    content = (
        f"In your letter dated {case.letter_date.value or '[date]'}, you denied coverage "
        f"for the above service(s){policy_str}, stating:\n\n"
        f"\"{case.denial_reason_summary.value or '[Denial reason not extracted]'}\"\n\n"
        f"{codes_str}"
        "We respectfully contest this determination on the grounds set forth below."
    )
    return LetterSection(
        id="denial_summary", title="Summary of Denial Reason",
        content=content, citations=citations,
    )


def _rebuttal_body(
    case: DenialCase,
    retrieved: Sequence[RetrievedItem],
    user_context: UserContext,
) -> str:
    category = case.category
    has_clinical = _has_doc_type(retrieved, DocType.CLINICAL)
    policy_str = ", ".join(case.policy_ids) or None

    if category == DenialCategory.BENEFIT_LIMIT:
        policy_line = (
            f"Your denial references {policy_str}, which limits coverage under standard circumstances."
            if policy_str else
            "[NEEDS EVIDENCE: cite the specific policy provision that applies]"
        )
        if not _has_doc_type(retrieved, DocType.POLICY):
            policy_line += (
                " [NEEDS EVIDENCE: obtain and attach the referenced Clinical Policy "
                "Bulletin to verify the stated session limit]"
            )
        necessity = (
            "Clinical documentation enclosed herewith demonstrates ongoing functional "
            "deficits requiring continued skilled intervention."
            if has_clinical else
            "[NEEDS EVIDENCE: PT progress notes documenting current functional status and deficits]"
        )
        improvement = (
            "Enclosed clinical records demonstrate measurable functional improvement, "
            "evidencing that therapy is producing the expected results and should continue."
            if has_clinical else
            "[NEEDS EVIDENCE: PT progress notes showing functional improvement measurements "
            "(e.g., outcome scores, range of motion, pain scale)]."
        )
        return (
            "REBUTTAL: Benefit Limit Exception\n\n"
            f"{policy_line}\n\n"
            "We assert that this patient's circumstances warrant an exception for the "
            "following reasons:\n\n"
            "1. Documented Medical Necessity: The treating provider has determined that "
            f"continued services are medically necessary. {necessity}\n\n"
            f"2. Functional Improvement: {improvement}\n\n"
            "3. Session Count Verification: We request verification of the session count "
            "used in this determination. If any sessions were miscounted or improperly "
            "attributed, the limit has not been reached. [NEEDS EVIDENCE: payer's session "
            "count record for this member and benefit year]\n\n"
            "Accordingly, we request that the payer invoke its medical necessity exception "
            "process and approve additional sessions as documented by the treating provider."
        )

    if category == DenialCategory.MEDICAL_NECESSITY:
        diagnosis = f" for {user_context.diagnosis}" if user_context.diagnosis else ""
        clinical = (
            "Enclosed clinical notes and provider documentation demonstrate:\n"
            "  • Diagnosis and functional deficits requiring skilled intervention\n"
            "  • Treatment plan aligned with evidence-based clinical guidelines\n"
            "  • Progress toward measurable functional goals"
            if has_clinical else
            "[NEEDS EVIDENCE: clinical notes documenting diagnosis, functional deficits, "
            "treatment plan, and measurable goals]"
        )
        criteria = (
            f"The plan's criteria under {policy_str}" if policy_str
            else "The applicable clinical policy criteria"
        )
        return (
            "REBUTTAL: Medical Necessity\n\n"
            f"The denied services are medically necessary{diagnosis} and meet the criteria "
            "for coverage under the member's plan. The treating provider has documented "
            "clinical findings that support this determination.\n\n"
            f"{clinical}\n\n"
            f"{criteria} are satisfied as shown in the enclosed documentation. We request "
            "immediate reversal of this denial based on the attached evidence."
        )

    if category == DenialCategory.AUTHORIZATION:
        reason = (case.denial_reason_summary.value or "").lower()
        opening = (
            "The services were provided on an emergency basis, which is exempt from prior "
            "authorization requirements under applicable regulations."
            if "emergenc" in reason else
            "We contest the denial based on authorization for the following reasons:"
        )
        return (
            "REBUTTAL: Authorization\n\n"
            f"{opening}\n\n"
            "[NEEDS EVIDENCE: one of the following: (a) authorization number if obtained, "
            "(b) documentation that authorization was not required for this service/setting, "
            "or (c) timeline showing timely authorization attempt and any payer delay]\n\n"
            "We request that you review the authorization status and reprocess this claim "
            "accordingly."
        )

    if category == DenialCategory.CODING:
        cpt_str = ", ".join(case.cpt_codes) or "[NEEDS EVIDENCE: CPT codes]"
        return (
            "REBUTTAL: Coding and Billing\n\n"
            f"The services billed under CPT code(s) {cpt_str} accurately represent the "
            "services rendered and are properly documented in the clinical record.\n\n"
            "[NEEDS EVIDENCE: AMA CPT code definition printout for billed codes, and "
            "provider documentation supporting code selection]\n\n"
            "We request that you reprocess this claim using the correct adjudication criteria."
        )

    if category == DenialCategory.ELIGIBILITY:
        return (
            "REBUTTAL: Member Eligibility\n\n"
            "The member was eligible for benefits under this plan at the time services were "
            "rendered. [NEEDS EVIDENCE: eligibility verification record showing active "
            "coverage on date of service]\n\n"
            "We request that you verify eligibility using the correct member ID and date of "
            "service and reprocess accordingly."
        )

    if category == DenialCategory.TIMELY_FILING:
        return (
            "REBUTTAL: Timely Filing\n\n"
            "The claim was submitted within the plan's required filing window. [NEEDS "
            "EVIDENCE: original claim submission confirmation, date stamp, or clearinghouse "
            "records demonstrating timely filing]\n\n"
            "We request that you verify the original submission date and reprocess this claim."
        )

    support = (
        "We have identified supporting documentation in the knowledge base that is attached hereto."
        if retrieved else
        "[NEEDS EVIDENCE: supporting documentation to rebut the stated denial reason]"
    )
    return (
        "REBUTTAL\n\n"
        "Based on a thorough review of the applicable coverage provisions and clinical "
        f"record, we believe the denial of this claim is improper. {support}\n\n"
        "We respectfully request that you conduct a full clinical review of the enclosed "
        "evidence and reverse this determination."
    )


def build_rebuttal_section(
    case: DenialCase,
    retrieved: Sequence[RetrievedItem],
    user_context: UserContext,
    snippet_chars: int = 120,
) -> LetterSection:
    relevant = [item for item in retrieved if item.meta.doc_type in REBUTTAL_DOC_TYPES]
    citations = [
        chunk_citation(item, f"kb:{item.meta.doc_type.value}", snippet_chars)
        for item in relevant[:MAX_REBUTTAL_CITATIONS]
    ]

    warnings = None
    if not citations:
        warnings = [
            "Rebuttal section has no knowledge-base citations; ingest relevant policy and "
            "clinical documents to strengthen this argument."
        ]

    return LetterSection(
        id="rebuttal",
        title="Rebuttal and Supporting Arguments",
        content=_rebuttal_body(case, retrieved, user_context),
        citations=citations,
        warnings=warnings,
    )


def build_attachments_section(
    case: DenialCase,
    retrieved: Sequence[RetrievedItem],
    snippet_chars: int = 120,
) -> LetterSection:
    has_clinical = _has_doc_type(retrieved, DocType.CLINICAL)
    attachments = list(case.required_attachments.value or [])
    if has_clinical:
        attachments.append("Clinical notes (enclosed from provider records)")
    if case.category in CLINICAL_CATEGORIES:
        attachments.extend([
            "Physician / provider letter of medical necessity",
            "Functional outcome measures",
        ])
    attachments.extend([
        "Completed Appeal Request Form",
        "Copy of original denial letter",
        "Proof of appeal submission",
    ])
    unique = list(dict.fromkeys(attachments))

    clinical_items = [i for i in retrieved if i.meta.doc_type == DocType.CLINICAL][:2]
    citations = span_citations(case.required_attachments, "requiredAttachments") + [
        chunk_citation(item, "clinical_evidence", snippet_chars) for item in clinical_items
    ]

    listing = "\n".join(f"{n}. {item}" for n, item in enumerate(unique, start=1))
    content = f"The following documents are enclosed in support of this appeal:\n\n{listing}"
    return LetterSection(
        id="attachments", title="Enclosed Documentation",
        content=content, citations=citations,
    )


def build_closing_section(case: DenialCase, user_context: UserContext) -> LetterSection:
    member_name = case.member_name.value or "[Member Name]"
    methods = case.appeal_submission_methods.value or []
    method_str = " or ".join(methods) if methods else "the address on file"
    contact = (
        f"\n\nIf you have any questions, please contact us at {user_context.patient_phone}."
        if user_context.patient_phone else ""
    )
    urgency = (
        "This appeal is time-sensitive; please process within your standard internal "
        "appeal timeline."
        if case.appeal_window_days.value else
        "[NEEDS EVIDENCE: confirm appeal deadline from denial letter or plan documents]"
    )
    citations = (
        span_citations(case.member_name, "memberName")
        + span_citations(case.appeal_window_days, "appealWindowDays")
        + span_citations(case.appeal_submission_methods, "submissionMethods")
    )

    content = (
        f"{urgency}\n\n"
        "We trust you will give this appeal full and fair consideration. We are available "
        f"to provide any additional documentation you require.{contact}\n\n"
        "Sincerely,\n\n"
        f"{member_name}\n"
        "Member / Patient Representative\n\n"
        f"Submission method: {method_str}"
    )
    return LetterSection(
        id="closing", title="Closing and Signature", content=content, citations=citations,
    )


def build_sections(
    case: DenialCase,
    retrieved: Sequence[RetrievedItem],
    user_context: UserContext,
    today: date,
    snippet_chars: int = 120,
) -> list[LetterSection]:
    """All seven letter sections, unverified."""
    return [
        build_header_section(case, user_context, today),
        build_service_details_section(case),
        build_request_section(case, user_context),
        build_denial_summary_section(case),
        build_rebuttal_section(case, retrieved, user_context, snippet_chars),
        build_attachments_section(case, retrieved, snippet_chars),
        build_closing_section(case, user_context),
    ]


# ── Action Items & Checklist ───────────────────────────────────────

def build_action_items(
    case: DenialCase,
    missing_evidence: Sequence[str],
    retrieved: Sequence[RetrievedItem],
    snippet_chars: int = 120,
) -> list[ActionItem]:
    """Prioritized next steps for the person filing the appeal."""
    category = case.category
    window = case.appeal_window_days.value
    methods = case.appeal_submission_methods.value or []
    items: list[ActionItem] = []

    items.append(ActionItem(
        priority=ActionPriority.P0,
        action=(
            f"Confirm and calendar the appeal deadline: {window} days from the denial letter "
            "date. File before this date to preserve your rights."
            if window else
            "Confirm the appeal deadline from the denial letter. "
            "[NEEDS EVIDENCE: appeal window not extracted]"
        ),
        why="Missing the appeal deadline permanently waives your right to an internal appeal.",
        citations=span_citations(case.appeal_window_days, "appealWindowDays"),
    ))

    if category in CLINICAL_CATEGORIES:
        clinical = [i for i in retrieved if i.meta.doc_type == DocType.CLINICAL]
        items.append(ActionItem(
            priority=ActionPriority.P0,
            action=(
                "Obtain complete PT/clinical progress notes for all treatment sessions and "
                "include them in the appeal packet."
                if clinical else
                "Contact provider to obtain: (1) progress notes for all sessions, (2) functional "
                "outcome measures, (3) physician letter of medical necessity. These are your "
                "strongest evidence."
            ),
            why=(
                "Benefit limit exceptions require documented functional improvement and "
                "clinical necessity."
                if category == DenialCategory.BENEFIT_LIMIT else
                "Medical necessity denials are overturned most reliably with complete "
                "clinical documentation."
            ),
            citations=[chunk_citation(i, "clinical", snippet_chars) for i in clinical[:1]],
        ))

    items.append(ActionItem(
        priority=ActionPriority.P1,
        action=(
            "Request a physician letter of medical necessity addressing the specific denial "
            "reason, functional deficits, and why additional services are warranted."
        ),
        why="A physician's direct attestation carries significant weight in the clinical review process.",
        citations=span_citations(case.denial_reason_summary, "denialReason"),
    ))

    code_citations = span_citations(case.denial_codes, "denialCodes")
    for analysis in analyze_codes(case.denial_code_list):
        if not analysis.found:
            continue
        items.append(ActionItem(
            priority=ActionPriority.P1,
            action=f"Address {analysis.input_code} ({analysis.title}): {analysis.recommended_action}",
            why=analysis.explanation,
            citations=[c for c in code_citations if analysis.input_code in c.snippet],
        ))

    policy_ids = case.policy_ids
    if policy_ids:
        refs = ", ".join(policy_ids)
        items.append(ActionItem(
            priority=ActionPriority.P1,
            action=(
                f"Review retrieved policy excerpts for {refs} and ensure your clinical "
                "documentation satisfies every listed criterion."
                if _has_doc_type(retrieved, DocType.POLICY) else
                f"Obtain {refs} from the payer website and ingest it to strengthen "
                "evidence matching."
            ),
            why=(
                "Rebutting a policy-specific denial requires demonstrating compliance with "
                "that exact policy's criteria."
            ),
            citations=span_citations(case.policy_references, "policyReferences"),
        ))

    items.append(ActionItem(
        priority=ActionPriority.P2,
        action=(
            f"Submit appeal via {' or '.join(methods)} and obtain proof of submission "
            "(certified mail receipt, fax confirmation, or portal upload confirmation)."
            if methods else
            "Confirm where to submit the appeal (mail, fax, or portal) from the denial letter "
            "or payer website, then submit and retain proof."
        ),
        why="Proof of timely submission protects you if the payer claims non-receipt.",
        citations=span_citations(case.appeal_submission_methods, "submissionMethods"),
    ))

    if missing_evidence:
        listed = "; ".join(missing_evidence[:3])
        more = f" (and {len(missing_evidence) - 3} more)" if len(missing_evidence) > 3 else ""
        items.append(ActionItem(
            priority=ActionPriority.P2,
            action=f"Resolve missing evidence items before submission: {listed}{more}.",
            why="NEEDS EVIDENCE placeholders in the letter indicate gaps that weaken the appeal.",
        ))

    return items


def build_attachment_checklist(
    case: DenialCase,
    retrieved: Sequence[RetrievedItem],
) -> list[AttachmentItem]:
    """Deduplicated checklist; required items cite the denial letter's attachment list."""
    entries: list[tuple[str, bool]] = [
        ("Completed Appeal Request Form", True),
        ("Copy of original denial letter", True),
        ("Physician / provider letter of medical necessity", True),
    ]
    entries.extend((item, True) for item in case.required_attachments.value or [])
    if case.category in CLINICAL_CATEGORIES:
        entries.extend([
            ("PT/clinical progress notes for all sessions", True),
            ("Functional outcome measurement scores", True),
            ("Treatment plan (initial and current)", False),
        ])
    if _has_doc_type(retrieved, DocType.CLINICAL):
        entries.append(("Enclosed clinical notes (from knowledge base)", False))
    entries.append(("Proof of submission (certified mail receipt / fax confirmation)", False))

    required_citations = span_citations(case.required_attachments, "requiredAttachments")[:1]
    checklist: list[AttachmentItem] = []
    seen: set[str] = set()
    for item, required in entries:
        if item in seen:
            continue
        seen.add(item)
        checklist.append(AttachmentItem(
            item=item,
            required=required,
            citations=required_citations if required else [],
        ))
    return checklist


# ── Full Text ──────────────────────────────────────────────────────

def assemble_full_text(sections: Sequence[LetterSection], include_citations_inline: bool = True) -> str:
    """Join section contents, optionally followed by their inline [CITE:...] tags."""
    parts = []
    for section in sections:
        text = section.content
        if include_citations_inline and section.citations:
            text = f"{text}\n{' '.join(c.inline_tag for c in section.citations)}"
        parts.append(text)
    return SECTION_SEPARATOR.join(parts)


# ── Entry Point ────────────────────────────────────────────────────

def generate_appeal_letter(
    index: RetrievalIndex,
    case: DenialCase,
    options: Optional[GenerateOptions] = None,
    user_context: Optional[UserContext] = None,
    verifier: Optional[GroundingVerifier] = None,
    today: Optional[date] = None,
    created_at: Optional[str] = None,
    top_k_per_query: int = 5,
    max_total: int = 15,
    snippet_chars: int = 120,
) -> AppealLetter:
    """
    Retrieve evidence, assemble, verify and package an appeal letter.

    Args:
        index: Retrieval index over the knowledge store.
        case: The denial being appealed.
        options: Tone and inline-citation options.
        user_context: Patient/provider supplied facts.
        verifier: Grounding verifier (default exemptions: header, closing).
        today: Date printed in the header (defaults to the current date).
        created_at: ISO timestamp for the letter ID (defaults to now, UTC).

    Returns:
        The verified AppealLetter.
    """
    options = options or GenerateOptions()
    user_context = user_context or UserContext()
    verifier = verifier or GroundingVerifier()
    created_at = created_at or datetime.now(timezone.utc).isoformat()
    today = today or date.today()

    retrieved = retrieve_for_case(index, case, top_k_per_query, max_total)
    sections = build_sections(case, retrieved, user_context, today, snippet_chars)

    outcome = verifier.verify(sections)
    missing = outcome.evidence_gaps

    letter = AppealLetter(
        letter_id=letter_id(case.case_id, created_at),
        case_id=case.case_id,
        payer_name=case.payer_name.value,
        created_at=created_at,
        tone=options.tone,
        sections=outcome.sections,
        full_text=assemble_full_text(outcome.sections, options.include_citations_inline),
        attachment_checklist=build_attachment_checklist(case, retrieved),
        missing_evidence=missing,
        action_items=build_action_items(case, missing, retrieved, snippet_chars),
        warnings=outcome.warnings,
    )
    logger.info(
        f"Generated letter {letter.letter_id} for case '{case.case_id}': "
        f"{len(retrieved)} evidence chunks, {len(missing)} evidence gaps, "
        f"{len(outcome.unresolved_claims)} claims patched"
    )
    return letter
