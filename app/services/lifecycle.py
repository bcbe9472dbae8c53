from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.api import deps
from app.core.exceptions import ConcurrentModification, InvalidState, NotFound
from app.models.applicant import Applicant
from app.models.applicant_reference import ApplicantReference
from app.models.application import Application
from app.models.application_document import ApplicationDocument
from app.models.audit_log import AuditLog
from app.models.bank_account import BankAccount
from app.models.user import StaffUser
from app.schemas.application import (
    ApplicationDetailDTO,
    ApplicationStatus,
    ApplicationSummaryDTO,
    AssignRequest,
    CounterOfferRequest,
    NoteRequest,
    StatusChangeRequest,
)
from app.schemas.contacts import (
    RESULT_TO_REFERENCE_STATUS,
    BankAccountDTO,
    BankAccountVerifyRequest,
    ReferenceDTO,
    ReferenceVerifyRequest,
)
from app.schemas.document import (
    DocumentAccessDTO,
    DocumentDTO,
    DocumentRejectRequest,
    DocumentReviewResponse,
)
from app.schemas.events import LifecycleAction
from app.schemas.timeline import TimelineResponse
from app.schemas.verification import (
    FieldVerificationRequest,
    FieldVerificationResponse,
    Provenance,
    VerificationMethod,
    VerificationRecordDTO,
    VerificationStateDTO,
)
from app.services import (
    document_access,
    document_review,
    lifecycle_hooks,  # noqa: F401  connects the signal receivers
    status_machine,
    timeline,
    verification_ledger,
)
from app.services.audit import record_audit_log
from app.services.event_log import append_event

logger = logging.getLogger(__name__)

NOTE_PREVIEW_LENGTH = 50


@asynccontextmanager
async def unit_of_work(db: AsyncSession) -> AsyncIterator[None]:
    """Commit everything done inside the block, or nothing.

    Stale versions and event sequence collisions both mean another writer got
    to the application first.
    """
    try:
        yield
        await db.commit()
    except (StaleDataError, IntegrityError) as exc:
        await db.rollback()
        logger.warning("Concurrent modification detected: %s", exc.__class__.__name__)
        raise ConcurrentModification(
            "The application was modified by another request; reload and retry"
        ) from exc
    except Exception:
        await db.rollback()
        raise


async def get_application(
    db: AsyncSession,
    ctx: deps.TenantContext,
    application_id,
    *,
    for_update: bool = False,
) -> Application:
    stmt = select(Application).where(Application.id == application_id, Application.org_id == ctx.org_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    application = result.scalar_one_or_none()
    # Another tenant's application is reported exactly like a missing one.
    if application is None or application.org_id != ctx.org_id:
        raise NotFound("Application not found")
    return application


def _check_version(application: Application, expected: int | None) -> None:
    if expected is not None and application.version != expected:
        raise ConcurrentModification(
            "The application changed since it was loaded",
            details={"expected_version": expected, "current_version": application.version},
        )


async def _load_for_update(
    db: AsyncSession,
    ctx: deps.TenantContext,
    application_id,
    expected_version: int | None = None,
) -> Application:
    application = await get_application(db, ctx, application_id, for_update=True)
    _check_version(application, expected_version)
    return application


async def _get_applicant(db: AsyncSession, ctx: deps.TenantContext, application: Application) -> Applicant:
    stmt = select(Applicant).where(Applicant.id == application.applicant_id, Applicant.org_id == ctx.org_id)
    applicant = (await db.execute(stmt)).scalar_one_or_none()
    if applicant is None:
        raise NotFound("Applicant not found")
    return applicant


async def _get_document(
    db: AsyncSession,
    ctx: deps.TenantContext,
    application: Application,
    document_id,
) -> ApplicationDocument:
    stmt = select(ApplicationDocument).where(
        ApplicationDocument.id == document_id,
        ApplicationDocument.org_id == ctx.org_id,
        ApplicationDocument.application_id == application.id,
    )
    document = (await db.execute(stmt)).scalar_one_or_none()
    if document is None:
        raise NotFound("Document not found")
    return document


def to_detail(application: Application, allowed: list[ApplicationStatus]) -> ApplicationDetailDTO:
    summary = ApplicationSummaryDTO.model_validate(application)
    status = ApplicationStatus(application.status)
    return ApplicationDetailDTO(
        **summary.model_dump(),
        status_label=status.label,
        is_final=status.is_final,
        allowed_next_statuses=allowed,
    )


async def get_application_detail(
    db: AsyncSession,
    ctx: deps.TenantContext,
    application_id,
    *,
    actor: StaffUser,
) -> ApplicationDetailDTO:
    application = await get_application(db, ctx, application_id)
    allowed = await status_machine.allowed_next_statuses(db, ctx, application, actor)
    return to_detail(application, allowed)


async def change_status(
    db: AsyncSession,
    ctx: deps.TenantContext,
    application_id,
    payload: StatusChangeRequest,
    *,
    actor: StaffUser,
) -> Application:
    async with unit_of_work(db):
        application = await _load_for_update(db, ctx, application_id, payload.version)
        await status_machine.transition(
            db,
            ctx,
            application,
            payload.status,
            actor=actor,
            reason=payload.reason,
            disbursement_reference=payload.disbursement_reference,
        )
    return application


async def make_counter_offer(
    db: AsyncSession,
    ctx: deps.TenantContext,
    application_id,
    payload: CounterOfferRequest,
    *,
    actor: StaffUser,
) -> Application:
    async with unit_of_work(db):
        application = await _load_for_update(db, ctx, application_id, payload.version)
        await status_machine.counter_offer(
            db,
            ctx,
            application,
            actor=actor,
            amount=payload.amount,
            term_months=payload.term_months,
            interest_rate=payload.interest_rate,
            payment_frequency=payload.payment_frequency,
            reason=payload.reason,
        )
    return application


async def assign_application(
    db: AsyncSession,
    ctx: deps.TenantContext,
    application_id,
    payload: AssignRequest,
    *,
    actor: StaffUser,
) -> Application:
    async with unit_of_work(db):
        application = await _load_for_update(db, ctx, application_id, payload.version)
        stmt = select(StaffUser).where(
            StaffUser.id == payload.assignee_id,
            StaffUser.org_id == ctx.org_id,
            StaffUser.is_active.is_(True),
        )
        assignee = (await db.execute(stmt)).scalar_one_or_none()
        if assignee is None:
            raise NotFound("Assignee not found")
        status_machine.assign(db, ctx, application, assignee=assignee, actor=actor, reason=payload.reason)
    return application


async def add_note(
    db: AsyncSession,
    ctx: deps.TenantContext,
    application_id,
    payload: NoteRequest,
    *,
    actor: StaffUser,
) -> Application:
    content = payload.content.strip()
    async with unit_of_work(db):
        application = await _load_for_update(db, ctx, application_id, payload.version)
        append_event(
            db,
            ctx,
            application,
            LifecycleAction.NOTE_ADDED,
            actor_id=actor.id,
            payload={"preview": content[:NOTE_PREVIEW_LENGTH], "content": content},
        )
        record_audit_log(
            db,
            ctx,
            actor_id=actor.id,
            action="application.note_added",
            resource_type="application",
            resource_id=application.id,
            new_value={"length": len(content)},
        )
    return application


async def verify_field(
    db: AsyncSession,
    ctx: deps.TenantContext,
    application_id,
    payload: FieldVerificationRequest,
    *,
    actor: StaffUser,
) -> FieldVerificationResponse:
    async with unit_of_work(db):
        application = await _load_for_update(db, ctx, application_id, payload.version)
        applicant = await _get_applicant(db, ctx, application)
        status_before = application.status
        record = await verification_ledger.record_verification(
            db,
            ctx,
            application,
            applicant,
            field=payload.field,
            action=payload.action,
            method=payload.method,
            notes=payload.notes,
            rejection_reason=payload.rejection_reason,
            actor=actor,
        )
        current = await verification_ledger.field_summary(db, ctx, application.applicant_id, record.field_name)
    return FieldVerificationResponse(
        record=VerificationRecordDTO.model_validate(record),
        current=current,
        application_status=application.status,
        application_status_changed=application.status != status_before,
    )


async def get_verification_state(
    db: AsyncSession,
    ctx: deps.TenantContext,
    application_id,
) -> VerificationStateDTO:
    application = await get_application(db, ctx, application_id)
    records = await verification_ledger.list_records(db, ctx, application.applicant_id)
    return verification_ledger.build_state(application.applicant_id, records)


async def _review_document(db, ctx, application_id, document_id, version, operation, **kwargs) -> DocumentReviewResponse:
    async with unit_of_work(db):
        application = await _load_for_update(db, ctx, application_id, version)
        document = await _get_document(db, ctx, application, document_id)
        status_before = application.status
        await operation(db, ctx, application, document, **kwargs)
    return DocumentReviewResponse(
        document=DocumentDTO.model_validate(document),
        application_status=application.status,
        application_status_changed=application.status != status_before,
    )


async def approve_document(db, ctx, application_id, document_id, *, actor: StaffUser, version: int | None = None):
    return await _review_document(db, ctx, application_id, document_id, version, document_review.approve, actor=actor)


async def reject_document(
    db,
    ctx,
    application_id,
    document_id,
    payload: DocumentRejectRequest,
    *,
    actor: StaffUser,
) -> DocumentReviewResponse:
    return await _review_document(
        db,
        ctx,
        application_id,
        document_id,
        payload.version,
        document_review.reject,
        reason=payload.reason,
        comment=payload.comment,
        actor=actor,
    )


async def unapprove_document(db, ctx, application_id, document_id, *, actor: StaffUser, version: int | None = None):
    return await _review_document(db, ctx, application_id, document_id, version, document_review.unapprove, actor=actor)


async def ingest_kyc_result(
    db: AsyncSession,
    ctx: deps.TenantContext,
    application_id,
    document_id,
    *,
    metadata: dict[str, Any],
) -> ApplicationDocument:
    """Merge automated check output into a document and lock what it validated."""
    async with unit_of_work(db):
        application = await _load_for_update(db, ctx, application_id)
        document = await _get_document(db, ctx, application, document_id)
        applicant = await _get_applicant(db, ctx, application)
        document.doc_metadata = {**(document.doc_metadata or {}), **metadata}
        provenance = document_review.apply_kyc_provenance(document)
        db.add(document)
        fields = document_review.IDENTITY_FIELDS.get(document.document_type, ())
        if document.kyc_locked and fields:
            method = _automated_method(provenance)
            for field in fields:
                await verification_ledger.record_automated_verification(
                    db,
                    ctx,
                    application,
                    applicant,
                    field=field,
                    method=method,
                    provenance=provenance or Provenance(source="kyc"),
                    notes=f"Validated from {document.document_type}",
                    value=document.file_name,
                )
    return document


def _automated_method(provenance: Provenance | None) -> VerificationMethod:
    if provenance is not None and provenance.method:
        try:
            method = VerificationMethod(provenance.method)
        except ValueError:
            method = None
        if method is not None and method.is_automated:
            return method
    return VerificationMethod.API


async def get_document_access(
    db: AsyncSession,
    ctx: deps.TenantContext,
    application_id,
    document_id,
) -> DocumentAccessDTO:
    application = await get_application(db, ctx, application_id)
    document = await _get_document(db, ctx, application, document_id)
    url, expires_at = document_access.sign_document_url(document.storage_object_key)
    return DocumentAccessDTO(url=url, expires_at=expires_at)


async def verify_reference(
    db: AsyncSession,
    ctx: deps.TenantContext,
    application_id,
    reference_id,
    payload: ReferenceVerifyRequest,
    *,
    actor: StaffUser,
) -> ReferenceDTO:
    async with unit_of_work(db):
        application = await _load_for_update(db, ctx, application_id, payload.version)
        stmt = select(ApplicantReference).where(
            ApplicantReference.id == reference_id,
            ApplicantReference.org_id == ctx.org_id,
            ApplicantReference.applicant_id == application.applicant_id,
        )
        reference = (await db.execute(stmt)).scalar_one_or_none()
        if reference is None:
            raise NotFound("Reference not found")
        old_value = {"verification_status": reference.verification_status, "verification_result": reference.verification_result}
        reference.verification_status = RESULT_TO_REFERENCE_STATUS[payload.result].value
        reference.verification_result = payload.result.value
        reference.verification_notes = payload.notes
        reference.verified_at = datetime.now(timezone.utc)
        reference.verified_by = actor.id
        db.add(reference)
        append_event(
            db,
            ctx,
            application,
            LifecycleAction.REF_VERIFIED,
            actor_id=actor.id,
            payload={
                "reference_id": reference.id,
                "reference_name": reference.full_name,
                "result": payload.result.value,
                "status": reference.verification_status,
                "notes": payload.notes,
            },
        )
        record_audit_log(
            db,
            ctx,
            actor_id=actor.id,
            action="reference.verified",
            resource_type="applicant_reference",
            resource_id=reference.id,
            old_value=old_value,
            new_value={"verification_status": reference.verification_status, "verification_result": reference.verification_result},
        )
    return ReferenceDTO.model_validate(reference)


async def _get_bank_account(db, ctx, application: Application, account_id) -> BankAccount:
    stmt = select(BankAccount).where(
        BankAccount.id == account_id,
        BankAccount.org_id == ctx.org_id,
        BankAccount.applicant_id == application.applicant_id,
    )
    account = (await db.execute(stmt)).scalar_one_or_none()
    if account is None:
        raise NotFound("Bank account not found")
    return account


def _bank_account_event(db, ctx, application, account: BankAccount, action: LifecycleAction, *, actor: StaffUser) -> None:
    append_event(
        db,
        ctx,
        application,
        action,
        actor_id=actor.id,
        payload={
            "bank_account_id": account.id,
            "bank_name": account.bank_name,
            "account_masked": account.clabe_masked,
            "method": account.verification_method,
        },
    )
    record_audit_log(
        db,
        ctx,
        actor_id=actor.id,
        action="bank_account.verified" if account.is_verified else "bank_account.unverified",
        resource_type="bank_account",
        resource_id=account.id,
        old_value={"is_verified": not account.is_verified},
        new_value={"is_verified": account.is_verified, "method": account.verification_method},
    )


async def verify_bank_account(
    db: AsyncSession,
    ctx: deps.TenantContext,
    application_id,
    account_id,
    payload: BankAccountVerifyRequest,
    *,
    actor: StaffUser,
) -> BankAccountDTO:
    async with unit_of_work(db):
        application = await _load_for_update(db, ctx, application_id, payload.version)
        account = await _get_bank_account(db, ctx, application, account_id)
        if account.is_verified:
            raise InvalidState("Bank account is already verified", details={"bank_account_id": str(account.id)})
        account.is_verified = True
        account.verification_method = payload.method
        account.verification_notes = payload.notes
        account.verified_at = datetime.now(timezone.utc)
        account.verified_by = actor.id
        account.unverified_at = None
        db.add(account)
        _bank_account_event(db, ctx, application, account, LifecycleAction.BANK_ACCOUNT_VERIFIED, actor=actor)
    return BankAccountDTO.model_validate(account)


async def unverify_bank_account(
    db: AsyncSession,
    ctx: deps.TenantContext,
    application_id,
    account_id,
    *,
    actor: StaffUser,
    version: int | None = None,
) -> BankAccountDTO:
    async with unit_of_work(db):
        application = await _load_for_update(db, ctx, application_id, version)
        account = await _get_bank_account(db, ctx, application, account_id)
        if not account.is_verified:
            raise InvalidState("Bank account is not verified", details={"bank_account_id": str(account.id)})
        account.is_verified = False
        account.verified_at = None
        account.verified_by = None
        account.unverified_at = datetime.now(timezone.utc)
        db.add(account)
        _bank_account_event(db, ctx, application, account, LifecycleAction.BANK_ACCOUNT_UNVERIFIED, actor=actor)
    return BankAccountDTO.model_validate(account)


async def get_timeline(db: AsyncSession, ctx: deps.TenantContext, application_id) -> TimelineResponse:
    application = await get_application(db, ctx, application_id)
    entries = await timeline.build_timeline(db, ctx, application)
    return TimelineResponse(application_id=str(application.id), total=len(entries), items=list(entries))


async def list_audit_logs(
    db: AsyncSession,
    ctx: deps.TenantContext,
    application_id,
    *,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[AuditLog], int]:
    application = await get_application(db, ctx, application_id)
    conditions = (
        AuditLog.org_id == ctx.org_id,
        AuditLog.resource_type == "application",
        AuditLog.resource_id == str(application.id),
    )
    count_result = await db.execute(select(func.count()).select_from(AuditLog).where(*conditions))
    total = int(count_result.scalar_one() or 0)
    stmt = (
        select(AuditLog)
        .where(*conditions)
        .order_by(AuditLog.created_at.desc())
        .offset(offset)
        .limit(limit)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all()), total
