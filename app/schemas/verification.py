from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator


class VerifiableField(str, Enum):
    FIRST_NAME = "first_name"
    LAST_NAME_1 = "last_name_1"
    LAST_NAME_2 = "last_name_2"
    CURP = "curp"
    RFC = "rfc"
    INE_CLAVE = "ine_clave"
    BIRTH_DATE = "birth_date"
    PHONE = "phone"
    EMAIL = "email"
    ADDRESS = "address"
    EMPLOYMENT = "employment"
    # Written only by automated identity checks.
    INE_DOCUMENT_FRONT = "ine_document_front"
    INE_DOCUMENT_BACK = "ine_document_back"
    SELFIE_DOCUMENT = "selfie_document"
    FACE_MATCH = "face_match"

    @property
    def label(self) -> str:
        return _FIELD_LABELS.get(self, self.value.replace("_", " ").capitalize())


_FIELD_LABELS = {
    VerifiableField.FIRST_NAME: "First name",
    VerifiableField.LAST_NAME_1: "Paternal surname",
    VerifiableField.LAST_NAME_2: "Maternal surname",
    VerifiableField.CURP: "CURP",
    VerifiableField.RFC: "RFC",
    VerifiableField.INE_CLAVE: "INE voter key",
    VerifiableField.BIRTH_DATE: "Date of birth",
    VerifiableField.PHONE: "Phone",
    VerifiableField.EMAIL: "Email",
    VerifiableField.ADDRESS: "Address",
    VerifiableField.EMPLOYMENT: "Employment",
    VerifiableField.INE_DOCUMENT_FRONT: "INE (front)",
    VerifiableField.INE_DOCUMENT_BACK: "INE (back)",
    VerifiableField.SELFIE_DOCUMENT: "Selfie",
    VerifiableField.FACE_MATCH: "Face match",
}

MANUAL_FIELDS = frozenset(
    {
        VerifiableField.FIRST_NAME,
        VerifiableField.LAST_NAME_1,
        VerifiableField.LAST_NAME_2,
        VerifiableField.CURP,
        VerifiableField.RFC,
        VerifiableField.INE_CLAVE,
        VerifiableField.BIRTH_DATE,
        VerifiableField.PHONE,
        VerifiableField.EMAIL,
        VerifiableField.ADDRESS,
        VerifiableField.EMPLOYMENT,
    }
)


def field_label(field_name: str | None) -> str:
    if not field_name:
        return ""
    try:
        return VerifiableField(field_name).label
    except ValueError:
        return field_name.replace("_", " ").capitalize()


class VerificationMethod(str, Enum):
    MANUAL = "MANUAL"
    OTP = "OTP"
    API = "API"
    DOCUMENT = "DOCUMENT"
    BUREAU = "BUREAU"
    KYC_INE_OCR = "KYC_INE_OCR"
    KYC_FACE_MATCH = "KYC_FACE_MATCH"
    KYC_CURP_RENAPO = "KYC_CURP_RENAPO"
    KYC_RFC_SAT = "KYC_RFC_SAT"

    @property
    def is_automated(self) -> bool:
        return self in AUTOMATED_METHODS


AUTOMATED_METHODS = frozenset(
    {
        VerificationMethod.OTP,
        VerificationMethod.API,
        VerificationMethod.BUREAU,
        VerificationMethod.KYC_INE_OCR,
        VerificationMethod.KYC_FACE_MATCH,
        VerificationMethod.KYC_CURP_RENAPO,
        VerificationMethod.KYC_RFC_SAT,
    }
)

STAFF_METHODS = frozenset(
    {
        VerificationMethod.MANUAL,
        VerificationMethod.OTP,
        VerificationMethod.API,
        VerificationMethod.DOCUMENT,
        VerificationMethod.BUREAU,
    }
)


class VerificationAction(str, Enum):
    VERIFY = "verify"
    REJECT = "reject"
    UNVERIFY = "unverify"


class VerificationStatus(str, Enum):
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"
    PENDING = "PENDING"


ACTION_TO_STATUS = {
    VerificationAction.VERIFY: VerificationStatus.VERIFIED,
    VerificationAction.REJECT: VerificationStatus.REJECTED,
    VerificationAction.UNVERIFY: VerificationStatus.PENDING,
}


class Provenance(BaseModel):
    """Where an automated verification came from."""

    source: str
    method: str | None = None
    confidence: float | None = Field(default=None, ge=0, le=1)
    # Set when a legacy KYC indicator key was present in the raw metadata.
    flagged: bool = False


class FieldVerificationRequest(BaseModel):
    field: VerifiableField
    action: VerificationAction
    method: VerificationMethod = VerificationMethod.MANUAL
    notes: str | None = Field(default=None, max_length=1000)
    rejection_reason: str | None = Field(default=None, max_length=500)
    version: int | None = Field(default=None, ge=1)

    @model_validator(mode="after")
    def _check_rules(self) -> "FieldVerificationRequest":
        if self.field not in MANUAL_FIELDS:
            raise ValueError(f"field '{self.field.value}' cannot be verified manually")
        if self.method not in STAFF_METHODS:
            raise ValueError(f"method '{self.method.value}' is not available to staff")
        if self.action == VerificationAction.REJECT and not (self.rejection_reason or "").strip():
            raise ValueError("rejection_reason is required when action is reject")
        return self


class VerificationRecordDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    applicant_id: UUID
    field_name: str
    field_value: str | None = None
    status: VerificationStatus
    method: str
    notes: str | None = None
    rejection_reason: str | None = None
    is_locked: bool
    verified_by: UUID | None = None
    created_at: datetime


class FieldState(BaseModel):
    field: str
    label: str
    status: VerificationStatus
    method: str | None = None
    is_locked: bool = False
    rejection_reason: str | None = None
    verified_by: UUID | None = None
    updated_at: datetime | None = None
    history_count: int = 0


class VerificationStateDTO(BaseModel):
    applicant_id: UUID
    fields: list[FieldState]
    summary: dict[str, Any]


class FieldVerificationResponse(BaseModel):
    record: VerificationRecordDTO
    current: FieldState
    application_status: str
    application_status_changed: bool
