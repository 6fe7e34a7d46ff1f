"""
Denial Case Schema
===================

Structured record of a parsed insurance denial letter. Every extracted
field carries its value, an extraction confidence, and the source spans
it was read from, so the letter generator can cite the denial letter
itself as evidence.

Data Flow:
    Denial letter → DenialLetterParser (regex) or an external extractor
                  → DenialCase → Retrieval queries
                               → Letter sections
"""

from __future__ import annotations

from enum import Enum
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class SourceSpan(BaseModel):
    """A labelled span of the denial letter an extracted value came from."""
    doc_id: str = Field(description="Document the span points into")
    start: int = Field(ge=0, description="Start character offset")
    end: int = Field(ge=0, description="End character offset (exclusive)")
    snippet: str = Field(description="Verbatim excerpt of the span")
    label: str = Field(default="", description="Semantic role, e.g. 'memberId'")


class ExtractedField(BaseModel, Generic[T]):
    """An extracted value with confidence and provenance."""
    value: Optional[T] = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    spans: list[SourceSpan] = Field(default_factory=list)
    notes: Optional[str] = None


class DenialCategory(str, Enum):
    """Reason class of the denial; drives queries and rebuttal strategy."""
    MEDICAL_NECESSITY = "medical_necessity"
    AUTHORIZATION = "authorization"
    BENEFIT_LIMIT = "benefit_limit"
    CODING = "coding"
    ELIGIBILITY = "eligibility"
    TIMELY_FILING = "timely_filing"
    OTHER = "other"


class ServiceStatus(str, Enum):
    DENIED = "DENIED"
    APPROVED = "APPROVED"
    PARTIAL = "PARTIAL"
    UNKNOWN = "UNKNOWN"


class ServiceItem(BaseModel):
    """A billed service line from the denial letter."""
    service_name: str
    cpt_codes: list[str] = Field(default_factory=list)
    amount_requested: Optional[float] = None
    currency: str = "USD"
    status: ServiceStatus = ServiceStatus.UNKNOWN


class PolicyReference(BaseModel):
    policy_id: str
    title: Optional[str] = None


class Identifier(BaseModel):
    """A labelled reference number from the denial letter, e.g. account_#."""
    label: str
    value: str


class CaseDocMeta(BaseModel):
    doc_id: str = ""
    filename: str = ""
    mime_type: str = "text/plain"


class DenialCase(BaseModel):
    """
    A parsed denial letter.

    Only ``case_id`` is required; every other field defaults to an empty
    ExtractedField so partially-extracted cases still flow through
    retrieval and letter assembly (gaps become NEEDS EVIDENCE markers).
    """
    case_id: str = Field(min_length=1)
    payer_name: ExtractedField[str] = Field(default_factory=ExtractedField[str])
    payer_address: ExtractedField[str] = Field(default_factory=ExtractedField[str])
    letter_date: ExtractedField[str] = Field(default_factory=ExtractedField[str])
    member_name: ExtractedField[str] = Field(default_factory=ExtractedField[str])
    member_address: ExtractedField[str] = Field(default_factory=ExtractedField[str])
    member_id: ExtractedField[str] = Field(default_factory=ExtractedField[str])
    claim_number: ExtractedField[str] = Field(default_factory=ExtractedField[str])
    provider_name: ExtractedField[str] = Field(default_factory=ExtractedField[str])
    service_date: ExtractedField[str] = Field(default_factory=ExtractedField[str])
    services: ExtractedField[list[ServiceItem]] = Field(
        default_factory=ExtractedField[list[ServiceItem]]
    )
    denial_category: ExtractedField[DenialCategory] = Field(
        default_factory=ExtractedField[DenialCategory]
    )
    denial_reason_summary: ExtractedField[str] = Field(default_factory=ExtractedField[str])
    denial_codes: ExtractedField[list[str]] = Field(
        default_factory=ExtractedField[list[str]],
        description="Claim adjustment reason codes as printed, e.g. 'CO-96'",
    )
    policy_references: ExtractedField[list[PolicyReference]] = Field(
        default_factory=ExtractedField[list[PolicyReference]]
    )
    patient_responsibility_amount: ExtractedField[float] = Field(
        default_factory=ExtractedField[float]
    )
    appeal_window_days: ExtractedField[int] = Field(default_factory=ExtractedField[int])
    appeal_submission_methods: ExtractedField[list[str]] = Field(
        default_factory=ExtractedField[list[str]]
    )
    appeal_instructions: ExtractedField[str] = Field(default_factory=ExtractedField[str])
    required_attachments: ExtractedField[list[str]] = Field(
        default_factory=ExtractedField[list[str]]
    )
    missing_information: ExtractedField[list[str]] = Field(
        default_factory=ExtractedField[list[str]]
    )
    identifiers: ExtractedField[list[Identifier]] = Field(
        default_factory=ExtractedField[list[Identifier]]
    )
    raw_text: str = ""
    doc_meta: CaseDocMeta = Field(default_factory=CaseDocMeta)

    # ── Convenience accessors ──────────────────────────────────────
    @property
    def category(self) -> DenialCategory:
        return self.denial_category.value or DenialCategory.OTHER

    @property
    def service_list(self) -> list[ServiceItem]:
        return self.services.value or []

    @property
    def cpt_codes(self) -> list[str]:
        return [code for svc in self.service_list for code in svc.cpt_codes]

    @property
    def denial_code_list(self) -> list[str]:
        return self.denial_codes.value or []

    @property
    def policy_ids(self) -> list[str]:
        return [ref.policy_id for ref in (self.policy_references.value or [])]


class UserContext(BaseModel):
    """Optional facts supplied by the patient or provider."""
    patient_address: Optional[str] = None
    patient_phone: Optional[str] = None
    diagnosis: Optional[str] = None
    provider_contact: Optional[str] = None
    requested_outcome: str = "pay_claim"
    notes: Optional[str] = None
