from __future__ import annotations

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ReferenceResult(str, Enum):
    VERIFIED = "VERIFIED"
    NOT_VERIFIED = "NOT_VERIFIED"
    NO_ANSWER = "NO_ANSWER"

    @property
    def label(self) -> str:
        return {
            ReferenceResult.VERIFIED: "Verified",
            ReferenceResult.NOT_VERIFIED: "Not verified",
            ReferenceResult.NO_ANSWER: "No answer",
        }[self]


class ReferenceStatus(str, Enum):
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"
    UNREACHABLE = "UNREACHABLE"


RESULT_TO_REFERENCE_STATUS = {
    ReferenceResult.VERIFIED: ReferenceStatus.VERIFIED,
    ReferenceResult.NOT_VERIFIED: ReferenceStatus.REJECTED,
    ReferenceResult.NO_ANSWER: ReferenceStatus.UNREACHABLE,
}


class ReferenceVerifyRequest(BaseModel):
    result: ReferenceResult
    notes: str | None = Field(default=None, max_length=1000)
    version: int | None = Field(default=None, ge=1)


class ReferenceDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    applicant_id: UUID
    full_name: str
    phone: str | None = None
    relation_type: str | None = None
    verification_status: ReferenceStatus
    verification_result: ReferenceResult | None = None
    verification_notes: str | None = None
    verified_at: datetime | None = None
    verified_by: UUID | None = None


class BankAccountVerifyRequest(BaseModel):
    method: str = Field(default="MANUAL", max_length=30)
    notes: str | None = Field(default=None, max_length=500)
    version: int | None = Field(default=None, ge=1)


class BankAccountDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    applicant_id: UUID
    bank_name: str
    account_holder: str
    clabe_masked: str
    is_primary: bool
    is_verified: bool
    verification_method: str | None = None
    verified_at: datetime | None = None
    verified_by: UUID | None = None
    unverified_at: datetime | None = None

