from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ApplicationStatus(str, Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    IN_REVIEW = "IN_REVIEW"
    DOCS_PENDING = "DOCS_PENDING"
    CORRECTIONS_PENDING = "CORRECTIONS_PENDING"
    COUNTER_OFFERED = "COUNTER_OFFERED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"
    DISBURSED = "DISBURSED"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    DEFAULT = "DEFAULT"

    @property
    def label(self) -> str:
        return _STATUS_LABELS[self]

    @property
    def is_final(self) -> bool:
        return self in FINAL_STATUSES


_STATUS_LABELS = {
    ApplicationStatus.DRAFT: "Draft",
    ApplicationStatus.SUBMITTED: "Submitted",
    ApplicationStatus.IN_REVIEW: "In review",
    ApplicationStatus.DOCS_PENDING: "Documents pending",
    ApplicationStatus.CORRECTIONS_PENDING: "Corrections pending",
    ApplicationStatus.COUNTER_OFFERED: "Counter-offered",
    ApplicationStatus.APPROVED: "Approved",
    ApplicationStatus.REJECTED: "Rejected",
    ApplicationStatus.CANCELLED: "Cancelled",
    ApplicationStatus.DISBURSED: "Disbursed",
    ApplicationStatus.ACTIVE: "Active",
    ApplicationStatus.COMPLETED: "Completed",
    ApplicationStatus.DEFAULT: "In default",
}

FINAL_STATUSES = frozenset(
    {
        ApplicationStatus.REJECTED,
        ApplicationStatus.CANCELLED,
        ApplicationStatus.COMPLETED,
        ApplicationStatus.DEFAULT,
    }
)


class PaymentFrequency(str, Enum):
    WEEKLY = "WEEKLY"
    BIWEEKLY = "BIWEEKLY"
    MONTHLY = "MONTHLY"


class VersionedRequest(BaseModel):
    """Mutations may carry the version the caller last read; a mismatch is a conflict."""

    version: int | None = Field(default=None, ge=1)


class StatusChangeRequest(VersionedRequest):
    model_config = ConfigDict(use_enum_values=False)

    status: ApplicationStatus
    reason: str | None = Field(default=None, max_length=1000)
    disbursement_reference: str | None = Field(default=None, max_length=100)


class CounterOfferRequest(VersionedRequest):
    amount: Decimal = Field(ge=1000)
    term_months: int = Field(ge=1, le=120)
    interest_rate: Decimal | None = Field(default=None, ge=0, le=100)
    payment_frequency: PaymentFrequency | None = None
    reason: str | None = Field(default=None, max_length=1000)


class AssignRequest(VersionedRequest):
    assignee_id: UUID
    reason: str | None = Field(default=None, max_length=500)


class NoteRequest(VersionedRequest):
    content: str = Field(min_length=1, max_length=2000)

    @field_validator("content")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("content must not be blank")
        return value


class CounterOfferDTO(BaseModel):
    amount: Decimal
    term_months: int
    interest_rate: Decimal | None = None
    payment_frequency: PaymentFrequency | None = None
    reason: str | None = None
    offered_at: datetime | None = None


class ApplicationSummaryDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    org_id: str
    applicant_id: UUID
    product_id: UUID | None = None
    status: ApplicationStatus
    requested_amount: Decimal
    requested_term_months: int
    approved_amount: Decimal | None = None
    term_months: int | None = None
    interest_rate: Decimal | None = None
    payment_frequency: PaymentFrequency | None = None
    counter_offer: CounterOfferDTO | None = None
    assigned_to: UUID | None = None
    assigned_at: datetime | None = None
    disbursement_reference: str | None = None
    rejection_reason: str | None = None
    approved_at: datetime | None = None
    rejected_at: datetime | None = None
    disbursed_at: datetime | None = None
    version: int
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ApplicationDetailDTO(ApplicationSummaryDTO):
    status_label: str
    is_final: bool
    allowed_next_statuses: list[ApplicationStatus] = Field(default_factory=list)
