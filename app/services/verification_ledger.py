from __future__ import annotations

import json
import logging
import uuid
from datetime import date, datetime, timezone
from typing import Any, Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.exceptions import InvalidField, MissingReason, PermissionDenied, ValidationError
from app.models.applicant import Applicant
from app.models.application import Application
from app.models.user import StaffUser
from app.models.verification_record import VerificationRecord
from app.schemas.events import LifecycleAction
from app.schemas.verification import (
    ACTION_TO_STATUS,
    MANUAL_FIELDS,
    FieldState,
    Provenance,
    VerifiableField,
    VerificationAction,
    VerificationMethod,
    VerificationStateDTO,
    VerificationStatus,
    field_label,
)
from app.services import signals
from app.services.audit import record_audit_log
from app.services.event_log import append_event

logger = logging.getLogger(__name__)

AUTOMATED_FIELDS = frozenset(
    {
        VerifiableField.INE_DOCUMENT_FRONT,
        VerifiableField.INE_DOCUMENT_BACK,
        VerifiableField.SELFIE_DOCUMENT,
        VerifiableField.FACE_MATCH,
    }
)

_MIRRORS = {
    VerifiableField.PHONE: "phone_verified_at",
    VerifiableField.EMAIL: "email_verified_at",
    VerifiableField.CURP: "identity_verified_at",
}


def _coerce_field(field: VerifiableField | str, allowed: Iterable[VerifiableField]) -> VerifiableField:
    try:
        value = VerifiableField(field)
    except ValueError as exc:
        raise InvalidField(f"'{field}' is not a verifiable field", details={"field": str(field)}) from exc
    if value not in allowed:
        raise InvalidField(f"'{value.value}' cannot be verified here", details={"field": value.value})
    return value


def _snapshot_value(applicant: Applicant | None, field: VerifiableField) -> str | None:
    if applicant is None:
        return None
    raw = getattr(applicant, field.value, None)
    if raw is None:
        return None
    if isinstance(raw, (dict, list)):
        return json.dumps(raw, sort_keys=True, default=str)
    if isinstance(raw, (date, datetime)):
        return raw.isoformat()
    return str(raw)


def _record_key(record: VerificationRecord) -> tuple:
    return (record.created_at, str(record.id))


def current_state_from_records(records: Iterable[VerificationRecord]) -> dict[str, VerificationRecord]:
    """Latest record per field, by creation time.

    Ties on ``created_at`` are broken by id so the answer never depends on the
    order the rows arrived in.
    """
    latest: dict[str, VerificationRecord] = {}
    for record in records:
        held = latest.get(record.field_name)
        if held is None or _record_key(record) > _record_key(held):
            latest[record.field_name] = record
    return latest


async def list_records(
    db: AsyncSession,
    ctx: deps.TenantContext,
    applicant_id,
    *,
    fields: Iterable[str] | None = None,
) -> list[VerificationRecord]:
    stmt = select(VerificationRecord).where(
        VerificationRecord.org_id == ctx.org_id,
        VerificationRecord.applicant_id == applicant_id,
    )
    if fields is not None:
        stmt = stmt.where(VerificationRecord.field_name.in_(list(fields)))
    stmt = stmt.order_by(VerificationRecord.created_at.asc())
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def current_state(
    db: AsyncSession,
    ctx: deps.TenantContext,
    applicant_id,
) -> dict[str, VerificationRecord]:
    return current_state_from_records(await list_records(db, ctx, applicant_id))


def field_state(field: str, record: VerificationRecord | None, history_count: int) -> FieldState:
    if record is None:
        return FieldState(field=field, label=field_label(field), status=VerificationStatus.PENDING)
    return FieldState(
        field=field,
        label=field_label(field),
        status=VerificationStatus(record.status),
        method=record.method,
        is_locked=bool(record.is_locked),
        rejection_reason=record.rejection_reason,
        verified_by=record.verified_by,
        updated_at=record.created_at,
        history_count=history_count,
    )


async def field_summary(
    db: AsyncSession,
    ctx: deps.TenantContext,
    applicant_id,
    field: str,
) -> FieldState:
    """Current state and history size of one field, including unflushed writes."""
    await db.flush()
    records = await list_records(db, ctx, applicant_id, fields=[field])
    latest = current_state_from_records(records)
    return field_state(field, latest.get(field), len(records))


def build_state(applicant_id, records: list[VerificationRecord]) -> VerificationStateDTO:
    latest = current_state_from_records(records)
    counts: dict[str, int] = {}
    for record in records:
        counts[record.field_name] = counts.get(record.field_name, 0) + 1
    fields = [
        field_state(field.value, latest.get(field.value), counts.get(field.value, 0))
        for field in VerifiableField
    ]
    summary: dict[str, Any] = {status.value.lower(): 0 for status in VerificationStatus}
    for state in fields:
        summary[state.status.value.lower()] += 1
    summary["total"] = len(fields)
    summary["locked"] = sum(1 for state in fields if state.is_locked)
    return VerificationStateDTO(applicant_id=applicant_id, fields=fields, summary=summary)


async def has_rejected_fields(db: AsyncSession, ctx: deps.TenantContext, applicant_id) -> bool:
    latest = await current_state(db, ctx, applicant_id)
    return any(record.status == VerificationStatus.REJECTED.value for record in latest.values())


async def has_locked_verified(
    db: AsyncSession,
    ctx: deps.TenantContext,
    applicant_id,
    fields: Iterable[str],
) -> bool:
    wanted = list(fields)
    if not wanted:
        return False
    stmt = (
        select(VerificationRecord.id)
        .where(
            VerificationRecord.org_id == ctx.org_id,
            VerificationRecord.applicant_id == applicant_id,
            VerificationRecord.field_name.in_(wanted),
            VerificationRecord.status == VerificationStatus.VERIFIED.value,
            VerificationRecord.is_locked.is_(True),
        )
        .limit(1)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none() is not None


def _update_mirror(applicant: Applicant | None, field: VerifiableField, status: VerificationStatus, now: datetime) -> None:
    attr = _MIRRORS.get(field)
    if applicant is None or attr is None:
        return
    setattr(applicant, attr, now if status == VerificationStatus.VERIFIED else None)


def _append_record(
    db: AsyncSession,
    ctx: deps.TenantContext,
    application: Application,
    applicant: Applicant | None,
    *,
    field: VerifiableField,
    action: VerificationAction,
    status: VerificationStatus,
    method: VerificationMethod,
    actor_id,
    notes: str | None,
    rejection_reason: str | None,
    is_locked: bool,
    provenance: Provenance | None,
    value: str | None,
) -> VerificationRecord:
    now = datetime.now(timezone.utc)
    record = VerificationRecord(
        id=uuid.uuid4(),
        org_id=ctx.org_id,
        applicant_id=application.applicant_id,
        application_id=application.id,
        field_name=field.value,
        field_value=value,
        status=status.value,
        method=method.value,
        notes=notes,
        rejection_reason=rejection_reason,
        is_locked=is_locked,
        provenance=provenance.model_dump() if provenance else None,
        verified_by=actor_id,
        created_at=now,
    )
    db.add(record)
    _update_mirror(applicant, field, status, now)
    if applicant is not None:
        db.add(applicant)
    append_event(
        db,
        ctx,
        application,
        LifecycleAction.DATA_VERIFIED,
        actor_id=actor_id,
        payload={
            "field": field.value,
            "action": action.value,
            "status": status.value,
            "method": method.value,
            "reason": rejection_reason,
            "notes": notes,
            "is_locked": is_locked,
        },
    )
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action=f"verification.{action.value}",
        resource_type="verification_record",
        resource_id=record.id,
        new_value={
            "applicant_id": application.applicant_id,
            "field": field.value,
            "status": status.value,
            "method": method.value,
            "rejection_reason": rejection_reason,
            "is_locked": is_locked,
        },
    )
    return record


async def _dispatch(db, ctx, application, record: VerificationRecord, actor: StaffUser | None) -> None:
    if record.status == VerificationStatus.REJECTED.value:
        await signals.publish(signals.field_rejected, record, db=db, ctx=ctx, application=application, actor=actor)
    elif record.status == VerificationStatus.VERIFIED.value:
        await signals.publish(signals.field_verified, record, db=db, ctx=ctx, application=application, actor=actor)


async def record_verification(
    db: AsyncSession,
    ctx: deps.TenantContext,
    application: Application,
    applicant: Applicant | None,
    *,
    field: VerifiableField | str,
    action: VerificationAction,
    method: VerificationMethod = VerificationMethod.MANUAL,
    notes: str | None = None,
    rejection_reason: str | None = None,
    actor: StaffUser,
) -> VerificationRecord:
    """Append a staff verification attempt for one applicant field.

    Nothing is written when validation fails. A locked, verified current
    record cannot be rejected or unverified by hand.
    """
    target = _coerce_field(field, MANUAL_FIELDS)
    reason = (rejection_reason or "").strip() or None
    if action == VerificationAction.REJECT and not reason:
        raise MissingReason("A rejection reason is required to reject a field", details={"field": target.value})

    if action in (VerificationAction.REJECT, VerificationAction.UNVERIFY):
        latest = current_state_from_records(
            await list_records(db, ctx, application.applicant_id, fields=[target.value])
        ).get(target.value)
        if latest is not None and latest.is_locked and latest.status == VerificationStatus.VERIFIED.value:
            logger.warning(
                "Manual %s of locked field %s refused",
                action.value,
                target.value,
                extra={"application_id": str(application.id)},
            )
            raise PermissionDenied(
                f"{target.label} was verified by an automated check and cannot be changed manually",
                details={"field": target.value, "method": latest.method},
            )

    record = _append_record(
        db,
        ctx,
        application,
        applicant,
        field=target,
        action=action,
        status=ACTION_TO_STATUS[action],
        method=method,
        actor_id=actor.id,
        notes=notes,
        rejection_reason=reason if action == VerificationAction.REJECT else None,
        is_locked=False,
        provenance=None,
        value=_snapshot_value(applicant, target),
    )
    await _dispatch(db, ctx, application, record, actor)
    return record


async def record_automated_verification(
    db: AsyncSession,
    ctx: deps.TenantContext,
    application: Application,
    applicant: Applicant | None,
    *,
    field: VerifiableField | str,
    method: VerificationMethod,
    provenance: Provenance,
    passed: bool = True,
    notes: str | None = None,
    value: str | None = None,
) -> VerificationRecord:
    """Ingest the outcome of an automated identity check as a system record.

    Passing checks lock the record against manual reversal.
    """
    target = _coerce_field(field, MANUAL_FIELDS | AUTOMATED_FIELDS)
    if not method.is_automated:
        raise ValidationError(
            f"'{method.value}' is not an automated verification method",
            details={"method": method.value},
        )
    action = VerificationAction.VERIFY if passed else VerificationAction.REJECT
    record = _append_record(
        db,
        ctx,
        application,
        applicant,
        field=target,
        action=action,
        status=ACTION_TO_STATUS[action],
        method=method,
        actor_id=None,
        notes=notes,
        rejection_reason=None if passed else (notes or f"{method.value} check failed"),
        is_locked=passed,
        provenance=provenance,
        value=value if value is not None else _snapshot_value(applicant, target),
    )
    await _dispatch(db, ctx, application, record, None)
    return record
