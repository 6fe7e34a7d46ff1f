"""
Argument Planner
=================

Builds the argument plan for an appeal: a one-sentence thesis chosen by
denial category, followed by the claims the letter must support, the
evidence each claim needs, and follow-up retrieval queries.

Data Flow:
    DenialCase + RetrievedItems + UserContext → ArgumentPlan
    run_plan additionally retrieves evidence and lists missing inputs.
"""

from __future__ import annotations

import logging
from typing import Optional

from appealground.retrieve.aggregator import retrieve_for_case
from appealground.retrieve.index import RetrievalIndex
from appealground.schemas.case import DenialCase, DenialCategory, UserContext
from appealground.schemas.evidence import DocType, RetrievedItem
from appealground.schemas.letter import Argument, ArgumentPlan, PlanResult

logger = logging.getLogger("appealground.render.plan")

OUTCOME_PHRASES = {
    "pay_claim": "reverse the denial and approve payment",
    "approve_service": "approve authorization for the service",
    "reprocess": "reprocess the claim correctly",
    "reduce_patient_resp": "reduce the patient financial responsibility",
    "other": "review and reconsider this claim",
}


def _query(*parts: str) -> str:
    return " ".join(" ".join(parts).split())


def build_thesis(case: DenialCase, user_context: UserContext) -> str:
    """One-sentence thesis for the denial category."""
    payer = case.payer_name.value
    payer_possessive = f"{payer}'s" if payer else "the payer's"
    diagnosis = f" for the treatment of {user_context.diagnosis}" if user_context.diagnosis else ""
    outcome = OUTCOME_PHRASES.get(user_context.requested_outcome, "reverse the denial")
    emergency = "emergenc" in (user_context.notes or "").lower()

    theses = {
        DenialCategory.BENEFIT_LIMIT: (
            "The denial citing benefit limit is improper because the documented clinical "
            "need exceeds the plan's standard limitations, and an exception is "
            f"warranted{diagnosis}."
        ),
        DenialCategory.MEDICAL_NECESSITY: (
            f"The denied services are medically necessary{diagnosis} as evidenced by "
            "clinical documentation demonstrating functional need and the treating "
            "provider's professional judgment."
        ),
        DenialCategory.AUTHORIZATION: (
            "The denial based on authorization requirements is improper because the "
            "services were "
            + ("provided on an emergency basis." if emergency
               else "clinically appropriate and timely.")
        ),
        DenialCategory.CODING: (
            "The denial based on coding is incorrect; the submitted CPT codes accurately "
            "reflect the services rendered and are supported by the clinical record."
        ),
        DenialCategory.ELIGIBILITY: (
            "The denial based on eligibility is in error; the member was eligible for "
            "benefits at the time services were provided."
        ),
        DenialCategory.TIMELY_FILING: (
            "The denial based on timely filing is improper; the claim was submitted "
            f"within {payer_possessive} required filing window."
        ),
    }
    default = (
        f"We respectfully request {payer_possessive} claims review department to "
        f"{outcome} based on the evidence presented in this appeal."
    )
    return theses.get(case.category, default)


def _category_arguments(
    case: DenialCase,
    retrieved: list[RetrievedItem],
    user_context: UserContext,
) -> list[Argument]:
    category = case.category
    cpt = " ".join(case.cpt_codes)
    policy_ids = case.policy_ids
    diagnosis = user_context.diagnosis
    args: list[Argument] = []

    if category == DenialCategory.BENEFIT_LIMIT:
        policy_evidence = (
            [f"Policy document {p}" for p in policy_ids]
            or ["Applicable clinical policy bulletin"]
        )
        args.append(Argument(
            claim=(
                "The plan's benefit limit does not preclude coverage when medical necessity "
                "warrants an exception or when the session count was miscalculated."
            ),
            required_evidence=[
                "Session count record from payer or provider",
                "Plan benefit summary showing applicable limit",
                *policy_evidence,
                "Provider documentation of remaining functional deficits",
            ],
            retrieval_queries=[
                _query(" ".join(policy_ids), "session limit exception medical necessity"),
                _query("benefit limit appeal physical therapy", cpt),
            ],
        ))
        args.append(Argument(
            claim=(
                "Significant functional improvement has been documented and continuation "
                "of therapy is medically necessary."
            ),
            required_evidence=[
                "PT progress notes showing functional improvement measurements",
                "Functional outcome measures (e.g., FIM, Oswestry)",
                "Physician attestation of medical necessity",
                *([f"Clinical evidence for {diagnosis}"] if diagnosis else []),
            ],
            retrieval_queries=[
                "functional improvement documentation physical therapy",
                "medical necessity exception benefit limit appeal",
            ],
        ))

    elif category == DenialCategory.MEDICAL_NECESSITY:
        args.append(Argument(
            claim=(
                "The treating provider has determined these services are medically "
                "necessary based on clinical evaluation."
            ),
            required_evidence=[
                "Physician letter of medical necessity",
                "Clinical notes supporting diagnosis and treatment plan",
                "Evidence-based guidelines supporting treatment",
                *([f"Published clinical criteria for {diagnosis}"] if diagnosis else []),
            ],
            retrieval_queries=[
                _query("medical necessity", cpt, "clinical guidelines"),
                _query(diagnosis or "physical therapy", "evidence based treatment necessity"),
            ],
        ))
        if any(item.meta.doc_type == DocType.CLINICAL for item in retrieved):
            args.append(Argument(
                claim=(
                    "Clinical documentation in the record satisfies the payer's medical "
                    "necessity criteria."
                ),
                required_evidence=[
                    "Complete clinical notes for all treatment sessions",
                    "Standardized outcome measures",
                ],
                retrieval_queries=["clinical policy bulletin criteria physical therapy"],
            ))

    elif category == DenialCategory.AUTHORIZATION:
        args.append(Argument(
            claim=(
                "Prior authorization was either obtained, not required, or excused by "
                "clinical circumstances."
            ),
            required_evidence=[
                "Authorization number if obtained",
                "Plan evidence showing authorization exemption",
                "Timeline documentation of authorization attempt",
            ],
            retrieval_queries=[
                "prior authorization waiver emergency retroactive approval",
                _query("authorization exception", cpt),
            ],
        ))

    elif category == DenialCategory.CODING:
        args.append(Argument(
            claim=(
                "The CPT codes billed accurately represent the services rendered and are "
                "not subject to bundling edits."
            ),
            required_evidence=[
                "AMA CPT code definitions",
                "CMS or payer fee schedule for billed codes",
                "Provider documentation supporting code selection",
            ],
            retrieval_queries=[
                _query(cpt, "unbundling modifier documentation"),
                "coding appeal correct CPT medical record",
            ],
        ))

    return args


def build_argument_plan(
    case: DenialCase,
    retrieved: list[RetrievedItem],
    user_context: Optional[UserContext] = None,
) -> ArgumentPlan:
    """
    Build the argument plan for a case.

    The plan always opens with a services-as-billed argument and closes
    with a procedural-compliance argument; category-specific arguments
    sit in between.
    """
    user_context = user_context or UserContext()
    cpt_codes = case.cpt_codes
    window = case.appeal_window_days.value

    arguments = [Argument(
        claim=(
            "The services described in the denial letter were provided as billed and "
            "are accurately coded."
        ),
        required_evidence=[
            "Itemized bill or superbill from provider",
            f"CPT code documentation for {', '.join(cpt_codes) or 'billed services'}",
            "Provider's treatment notes for date of service",
        ],
        retrieval_queries=[
            _query(" ".join(cpt_codes), "documentation requirements"),
            "claim accuracy itemized bill",
        ],
    )]
    arguments.extend(_category_arguments(case, retrieved, user_context))
    arguments.append(Argument(
        claim=(
            "This appeal is submitted within the payer's stated appeal window and "
            "complies with all procedural requirements."
        ),
        required_evidence=[
            f"Appeal filed within {window if window is not None else '[UNKNOWN]'} days of denial date",
            "Completed appeal request form",
            "Proof of submission (certified mail / fax confirmation / portal receipt)",
        ],
        retrieval_queries=[
            "internal appeal submission requirements timeline",
            _query(case.payer_name.value or "payer", "appeal process requirements"),
        ],
    ))

    return ArgumentPlan(
        primary_denial_category=case.category.value,
        thesis=build_thesis(case, user_context),
        arguments=arguments,
    )


def find_missing_evidence(case: DenialCase, retrieved: list[RetrievedItem]) -> list[str]:
    """Inputs the letter will lack, phrased as follow-up actions."""
    missing = []
    if not case.appeal_window_days.value:
        missing.append("Appeal deadline / window days not found in denial letter")
    if not case.provider_name.value:
        missing.append("Provider name not identified; obtain from claim or EOB")
    if not case.patient_responsibility_amount.value:
        missing.append("Patient responsibility amount not found")

    needs_clinical = case.category in (
        DenialCategory.MEDICAL_NECESSITY, DenialCategory.BENEFIT_LIMIT
    )
    has_clinical = any(item.meta.doc_type == DocType.CLINICAL for item in retrieved)
    if needs_clinical and not has_clinical:
        missing.append(
            "No clinical notes or PT progress notes found in knowledge base; "
            "ingest provider records"
        )
    if not case.policy_ids:
        missing.append(
            "No policy references found; ingest the payer's clinical policy bulletin if available"
        )
    return missing


def run_plan(
    index: RetrievalIndex,
    case: DenialCase,
    user_context: Optional[UserContext] = None,
    top_k_per_query: int = 5,
    max_total: int = 15,
) -> PlanResult:
    """Retrieve evidence for a case and plan its arguments."""
    retrieved = retrieve_for_case(index, case, top_k_per_query, max_total)
    plan = build_argument_plan(case, retrieved, user_context)

    warnings = []
    if not case.appeal_window_days.value:
        warnings.append(
            "Appeal window days not extracted; check the denial letter for deadline language"
        )

    missing = find_missing_evidence(case, retrieved)
    logger.info(
        f"Planned case '{case.case_id}': {len(plan.arguments)} arguments, "
        f"{len(missing)} missing evidence items"
    )
    return PlanResult(
        plan=plan,
        retrieved_context=retrieved,
        missing_evidence=missing,
        warnings=warnings,
    )
