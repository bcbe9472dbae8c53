from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class DocumentType(str, Enum):
    INE_FRONT = "INE_FRONT"
    INE_BACK = "INE_BACK"
    CURP = "CURP"
    SELFIE = "SELFIE"
    SIGNATURE = "SIGNATURE"
    PROOF_ADDRESS = "PROOF_ADDRESS"
    PROOF_INCOME = "PROOF_INCOME"
    BANK_STATEMENT = "BANK_STATEMENT"
    RFC_CONSTANCIA = "RFC_CONSTANCIA"
    TAX_RETURN = "TAX_RETURN"
    PAYSLIP_1 = "PAYSLIP_1"
    PAYSLIP_2 = "PAYSLIP_2"
    PAYSLIP_3 = "PAYSLIP_3"
    VEHICLE_INVOICE = "VEHICLE_INVOICE"
    BIRTH_CERTIFICATE = "BIRTH_CERTIFICATE"
    MARRIAGE_CERTIFICATE = "MARRIAGE_CERTIFICATE"
    BUSINESS_LICENSE = "BUSINESS_LICENSE"
    CONSTITUTIVE_ACT = "CONSTITUTIVE_ACT"
    POWER_OF_ATTORNEY = "POWER_OF_ATTORNEY"

    @property
    def label(self) -> str:
        return _DOCUMENT_LABELS[self]


_DOCUMENT_LABELS = {
    DocumentType.INE_FRONT: "INE (front)",
    DocumentType.INE_BACK: "INE (back)",
    DocumentType.CURP: "CURP",
    DocumentType.SELFIE: "Selfie",
    DocumentType.SIGNATURE: "Signature",
    DocumentType.PROOF_ADDRESS: "Proof of address",
    DocumentType.PROOF_INCOME: "Proof of income",
    DocumentType.BANK_STATEMENT: "Bank statement",
    DocumentType.RFC_CONSTANCIA: "Tax status certificate",
    DocumentType.TAX_RETURN: "Tax return",
    DocumentType.PAYSLIP_1: "Payslip 1",
    DocumentType.PAYSLIP_2: "Payslip 2",
    DocumentType.PAYSLIP_3: "Payslip 3",
    DocumentType.VEHICLE_INVOICE: "Vehicle invoice",
    DocumentType.BIRTH_CERTIFICATE: "Birth certificate",
    DocumentType.MARRIAGE_CERTIFICATE: "Marriage certificate",
    DocumentType.BUSINESS_LICENSE: "Business license",
    DocumentType.CONSTITUTIVE_ACT: "Articles of incorporation",
    DocumentType.POWER_OF_ATTORNEY: "Power of attorney",
}


def document_label(document_type: str | None) -> str:
    if not document_type:
        return ""
    try:
        return DocumentType(document_type).label
    except ValueError:
        return document_type


class DocumentStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class DocumentRejectRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=500)
    comment: str | None = Field(default=None, max_length=1000)
    version: int | None = Field(default=None, ge=1)


class DocumentReviewRequest(BaseModel):
    version: int | None = Field(default=None, ge=1)


class DocumentDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    application_id: UUID
    document_type: DocumentType
    file_name: str
    content_type: str | None = None
    status: DocumentStatus
    rejection_reason: str | None = None
    rejection_comment: str | None = None
    reviewed_by: UUID | None = None
    reviewed_at: datetime | None = None
    kyc_locked: bool = False
    provenance: dict[str, Any] | None = None
    created_at: datetime | None = None


class DocumentReviewResponse(BaseModel):
    document: DocumentDTO
    application_status: str
    application_status_changed: bool


class DocumentAccessDTO(BaseModel):
    url: str
    expires_at: datetime
