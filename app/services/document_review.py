from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Mapping

from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.exceptions import InvalidState, PermissionDenied, ValidationError
from app.models.application import Application
from app.models.application_document import ApplicationDocument
from app.models.user import StaffUser
from app.schemas.application import ApplicationStatus
from app.schemas.document import DocumentStatus, DocumentType, document_label
from app.schemas.events import LifecycleAction, StatusChangeKind
from app.schemas.verification import Provenance, VerifiableField, VerificationMethod
from app.services import signals, status_machine, verification_ledger
from app.services.audit import model_snapshot, record_audit_log
from app.services.event_log import append_event

logger = logging.getLogger(__name__)

_KYC_FLAGS = (
    "kyc_validated",
    "nubarium_validated",
    "ine_valid",
    "face_match_passed",
    "face_match",
    "validated_by_kyc",
)
_KYC_SOURCES = frozenset({"kyc", "nubarium"})
_KYC_METHODS = frozenset({VerificationMethod.KYC_INE_OCR.value, VerificationMethod.KYC_FACE_MATCH.value})

IDENTITY_FIELDS: dict[str, tuple[str, ...]] = {
    DocumentType.SELFIE.value: (VerifiableField.SELFIE_DOCUMENT.value, VerifiableField.FACE_MATCH.value),
    DocumentType.INE_FRONT.value: (VerifiableField.INE_DOCUMENT_FRONT.value,),
    DocumentType.INE_BACK.value: (VerifiableField.INE_DOCUMENT_BACK.value,),
}

_REVIEW_FIELDS = (
    "status",
    "rejection_reason",
    "rejection_comment",
    "reviewed_by",
    "reviewed_at",
)


def _normalize_score(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        score = float(value)
    except (TypeError, ValueError):
        return None
    if score > 1:
        score = score / 100
    return max(0.0, min(score, 1.0))


def provenance_from_metadata(metadata: Mapping[str, Any] | None) -> Provenance | None:
    """Fold the loosely typed metadata keys into one typed provenance, or None."""
    data = metadata or {}
    flagged = any(data.get(key) is True for key in _KYC_FLAGS)
    source = str(data.get("source") or "").strip() or None
    method = str(data.get("validation_method") or "").strip() or None
    confidence = _normalize_score(data.get("face_match_score"))
    if not (flagged or source or method or confidence is not None):
        return None
    if source is None:
        if data.get("nubarium_validated") is True:
            source = "nubarium"
        else:
            source = "kyc" if flagged else "upload"
    if method is None and flagged:
        if data.get("face_match_passed") is True or data.get("face_match") is True:
            method = VerificationMethod.KYC_FACE_MATCH.value
        elif data.get("ine_valid") is True:
            method = VerificationMethod.KYC_INE_OCR.value
        else:
            method = "KYC"
    return Provenance(source=source, method=method, confidence=confidence, flagged=flagged)


def provenance_locks(provenance: Provenance | None, document_type: str | None) -> bool:
    if provenance is None:
        return False
    if provenance.flagged or provenance.source in _KYC_SOURCES or provenance.method in _KYC_METHODS:
        return True
    return document_type == DocumentType.SELFIE.value and (provenance.confidence or 0) > 0


def metadata_indicates_kyc(metadata: Mapping[str, Any] | None, document_type: str | None = None) -> bool:
    return provenance_locks(provenance_from_metadata(metadata), document_type)


def apply_kyc_provenance(document: ApplicationDocument) -> Provenance | None:
    """Derive provenance and the lock flag from the metadata once, at write time."""
    provenance = provenance_from_metadata(document.doc_metadata)
    document.provenance = provenance.model_dump() if provenance else None
    document.kyc_locked = bool(document.kyc_locked) or provenance_locks(provenance, document.document_type)
    return provenance


async def is_kyc_locked(db: AsyncSession, ctx: deps.TenantContext, document: ApplicationDocument) -> bool:
    if document.kyc_locked:
        return True
    # Rows written before the flag existed only carry the raw metadata.
    if metadata_indicates_kyc(document.doc_metadata, document.document_type):
        return True
    fields = IDENTITY_FIELDS.get(document.document_type)
    if not fields:
        return False
    return await verification_ledger.has_locked_verified(db, ctx, document.applicant_id, fields)


def _document_payload(document: ApplicationDocument, **extra: Any) -> dict[str, Any]:
    payload = {
        "document_id": document.id,
        "document_type": document.document_type,
        "document_label": document_label(document.document_type),
        "file_name": document.file_name,
    }
    payload.update(extra)
    return payload


def _require_status(document: ApplicationDocument, expected: DocumentStatus, verb: str) -> None:
    if document.status != expected.value:
        raise InvalidState(
            f"Only {expected.value} documents can be {verb}; this one is {document.status}",
            details={"document_id": str(document.id), "status": document.status},
        )


async def approve(
    db: AsyncSession,
    ctx: deps.TenantContext,
    application: Application,
    document: ApplicationDocument,
    *,
    actor: StaffUser,
) -> ApplicationDocument:
    _require_status(document, DocumentStatus.PENDING, "approved")
    old_snapshot = model_snapshot(document, include=_REVIEW_FIELDS)
    document.status = DocumentStatus.APPROVED.value
    document.reviewed_by = actor.id
    document.reviewed_at = datetime.now(timezone.utc)
    document.rejection_reason = None
    document.rejection_comment = None
    db.add(document)
    append_event(
        db,
        ctx,
        application,
        LifecycleAction.DOC_APPROVED,
        actor_id=actor.id,
        payload=_document_payload(document),
    )
    record_audit_log(
        db,
        ctx,
        actor_id=actor.id,
        action="document.approved",
        resource_type="application_document",
        resource_id=document.id,
        old_value=old_snapshot,
        new_value=model_snapshot(document, include=_REVIEW_FIELDS),
    )
    await signals.publish(signals.document_approved, document, db=db, ctx=ctx, application=application, actor=actor)
    return document


async def reject(
    db: AsyncSession,
    ctx: deps.TenantContext,
    application: Application,
    document: ApplicationDocument,
    *,
    reason: str,
    comment: str | None = None,
    actor: StaffUser,
) -> ApplicationDocument:
    cleaned = (reason or "").strip()
    if not cleaned:
        raise ValidationError("A rejection reason is required", details={"field": "reason"})
    _require_status(document, DocumentStatus.PENDING, "rejected")
    old_snapshot = model_snapshot(document, include=_REVIEW_FIELDS)
    document.status = DocumentStatus.REJECTED.value
    document.rejection_reason = cleaned
    document.rejection_comment = comment
    document.reviewed_by = actor.id
    document.reviewed_at = datetime.now(timezone.utc)
    db.add(document)
    append_event(
        db,
        ctx,
        application,
        LifecycleAction.DOC_REJECTED,
        actor_id=actor.id,
        payload=_document_payload(document, reason=cleaned, comment=comment),
    )
    record_audit_log(
        db,
        ctx,
        actor_id=actor.id,
        action="document.rejected",
        resource_type="application_document",
        resource_id=document.id,
        old_value=old_snapshot,
        new_value=model_snapshot(document, include=_REVIEW_FIELDS),
    )
    if application.status == ApplicationStatus.IN_REVIEW.value:
        await status_machine.transition(
            db,
            ctx,
            application,
            ApplicationStatus.DOCS_PENDING,
            actor=actor,
            reason=f"Document rejected: {document_label(document.document_type)}",
            kind=StatusChangeKind.AUTOMATIC,
        )
    return document


async def unapprove(
    db: AsyncSession,
    ctx: deps.TenantContext,
    application: Application,
    document: ApplicationDocument,
    *,
    actor: StaffUser,
) -> ApplicationDocument:
    if document.status == DocumentStatus.PENDING.value:
        raise InvalidState(
            "Document is already pending review",
            details={"document_id": str(document.id), "status": document.status},
        )
    if await is_kyc_locked(db, ctx, document):
        logger.warning(
            "Unapprove of KYC-locked document %s refused",
            document.id,
            extra={"application_id": str(application.id)},
        )
        raise PermissionDenied(
            "This document was validated by an automated identity check and cannot be reverted",
            details={"document_id": str(document.id), "document_type": document.document_type},
        )
    previous_status = document.status
    old_snapshot = model_snapshot(document, include=_REVIEW_FIELDS)
    document.status = DocumentStatus.PENDING.value
    document.reviewed_by = None
    document.reviewed_at = None
    document.rejection_reason = None
    document.rejection_comment = None
    db.add(document)
    append_event(
        db,
        ctx,
        application,
        LifecycleAction.DOC_UNAPPROVED,
        actor_id=actor.id,
        payload=_document_payload(document, previous_status=previous_status),
    )
    record_audit_log(
        db,
        ctx,
        actor_id=actor.id,
        action="document.unapproved",
        resource_type="application_document",
        resource_id=document.id,
        old_value=old_snapshot,
        new_value=model_snapshot(document, include=_REVIEW_FIELDS),
    )
    return document
