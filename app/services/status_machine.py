from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.exceptions import InvalidState, InvalidTransition, PermissionDenied
from app.core.permissions import PermissionCode
from app.models.application import Application
from app.models.lifecycle_event import LifecycleEvent
from app.models.user import StaffUser
from app.schemas.application import ApplicationStatus, PaymentFrequency
from app.schemas.events import LifecycleAction, StatusChangeKind
from app.services import authz
from app.services.audit import model_snapshot, record_audit_log, serialize_for_audit
from app.services.event_log import append_event

logger = logging.getLogger(__name__)

S = ApplicationStatus

TERMINAL_STATUSES = frozenset({S.COMPLETED, S.DEFAULT})

# Targets reachable from exactly one source; every other status is reachable
# from any non-terminal status.
GUARDED_SOURCES: dict[ApplicationStatus, ApplicationStatus] = {
    S.DISBURSED: S.APPROVED,
    S.ACTIVE: S.DISBURSED,
    S.COMPLETED: S.ACTIVE,
    S.DEFAULT: S.ACTIVE,
}

# Pre-submission state owned by onboarding; never a staff target.
UNREACHABLE_TARGETS = frozenset({S.DRAFT})

RESTRICTED_STATUSES = frozenset(
    {S.APPROVED, S.REJECTED, S.CANCELLED, S.DISBURSED, S.ACTIVE, S.COMPLETED, S.DEFAULT}
)

COUNTER_OFFER_SOURCES = frozenset({S.IN_REVIEW, S.DOCS_PENDING})

_SNAPSHOT_FIELDS = (
    "status",
    "approved_amount",
    "rejection_reason",
    "disbursement_reference",
    "approved_at",
    "rejected_at",
    "disbursed_at",
)


def current_status(application: Application) -> ApplicationStatus:
    return ApplicationStatus(application.status)


def is_terminal(status: ApplicationStatus) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(status: ApplicationStatus, target: ApplicationStatus) -> bool:
    if is_terminal(status) or target == status or target in UNREACHABLE_TARGETS:
        return False
    required = GUARDED_SOURCES.get(target)
    return required is None or status == required


def allowed_targets(status: ApplicationStatus) -> frozenset[ApplicationStatus]:
    return frozenset(target for target in ApplicationStatus if can_transition(status, target))


async def can_decide(db: AsyncSession | None, ctx: deps.TenantContext, actor: StaffUser | None) -> bool:
    if actor is None:
        return False
    return await authz.check_permission(actor, ctx, PermissionCode.APPLICATION_DECIDE, db)


async def allowed_next_statuses(
    db: AsyncSession | None,
    ctx: deps.TenantContext,
    application: Application,
    actor: StaffUser | None,
) -> list[ApplicationStatus]:
    targets = allowed_targets(current_status(application))
    if not await can_decide(db, ctx, actor):
        targets = targets - RESTRICTED_STATUSES
    return sorted(targets, key=lambda status: list(ApplicationStatus).index(status))


def _apply_side_effects(
    application: Application,
    target: ApplicationStatus,
    *,
    reason: str | None,
    disbursement_reference: str | None,
    now: datetime,
) -> None:
    if target == S.APPROVED:
        application.approved_at = now
        if application.approved_amount is None:
            offer = application.counter_offer or {}
            application.approved_amount = Decimal(str(offer["amount"])) if offer.get("amount") else application.requested_amount
    elif target == S.REJECTED:
        application.rejected_at = now
        application.rejection_reason = reason
    elif target == S.DISBURSED:
        application.disbursement_reference = disbursement_reference
        application.disbursed_at = now


def _apply_status(
    db: AsyncSession,
    ctx: deps.TenantContext,
    application: Application,
    target: ApplicationStatus,
    *,
    actor_id,
    reason: str | None,
    kind: StatusChangeKind,
    disbursement_reference: str | None = None,
    extra_payload: dict[str, Any] | None = None,
    audit_action: str = "application.status_changed",
) -> LifecycleEvent:
    old_snapshot = model_snapshot(application, include=_SNAPSHOT_FIELDS)
    old_status = application.status
    now = datetime.now(timezone.utc)
    application.status = target.value
    _apply_side_effects(
        application,
        target,
        reason=reason,
        disbursement_reference=disbursement_reference,
        now=now,
    )
    payload: dict[str, Any] = {
        "kind": kind.value,
        "old_status": old_status,
        "new_status": target.value,
        "reason": reason,
    }
    if disbursement_reference:
        payload["disbursement_reference"] = disbursement_reference
    if extra_payload:
        payload.update(extra_payload)
    event = append_event(
        db,
        ctx,
        application,
        LifecycleAction.STATUS_CHANGE,
        actor_id=actor_id,
        payload=payload,
    )
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action=audit_action,
        resource_type="application",
        resource_id=application.id,
        old_value=old_snapshot,
        new_value=model_snapshot(application, include=_SNAPSHOT_FIELDS),
    )
    logger.info(
        "Application %s moved %s -> %s",
        application.id,
        old_status,
        target.value,
        extra={"application_id": str(application.id), "action": kind.value},
    )
    return event


async def transition(
    db: AsyncSession,
    ctx: deps.TenantContext,
    application: Application,
    target: ApplicationStatus,
    *,
    actor: StaffUser | None,
    reason: str | None = None,
    disbursement_reference: str | None = None,
    kind: StatusChangeKind = StatusChangeKind.TRANSITION,
) -> LifecycleEvent:
    """Move ``application`` to ``target`` if the actor and the status guards allow it.

    Decision permission is checked before the guards. The caller must hold
    the application row lock; the guard reads and the write happen inside
    the same unit of work.
    """
    if target in RESTRICTED_STATUSES and not await can_decide(db, ctx, actor):
        logger.warning(
            "Restricted transition to %s refused",
            target.value,
            extra={"application_id": str(application.id)},
        )
        raise PermissionDenied(
            f"Changing status to {target.value} requires the approve/reject decision permission",
            details={"required_permission": PermissionCode.APPLICATION_DECIDE.value},
        )
    source = current_status(application)
    if not can_transition(source, target):
        raise InvalidTransition(
            f"Cannot change status from {source.value} to {target.value}",
            details={
                "from": source.value,
                "to": target.value,
                "allowed": sorted(status.value for status in allowed_targets(source)),
            },
        )
    reference = None
    if target == S.DISBURSED:
        reference = (disbursement_reference or "").strip() or None
        if not reference:
            raise InvalidState("A disbursement reference is required to mark the application as disbursed")
    return _apply_status(
        db,
        ctx,
        application,
        target,
        actor_id=actor.id if actor else None,
        reason=reason,
        kind=kind,
        disbursement_reference=reference,
    )


async def counter_offer(
    db: AsyncSession,
    ctx: deps.TenantContext,
    application: Application,
    *,
    actor: StaffUser,
    amount: Decimal,
    term_months: int,
    interest_rate: Decimal | None = None,
    payment_frequency: PaymentFrequency | None = None,
    reason: str | None = None,
) -> LifecycleEvent:
    source = current_status(application)
    if source not in COUNTER_OFFER_SOURCES:
        raise InvalidState(
            f"A counter-offer can only be made while the application is IN_REVIEW or DOCS_PENDING, not {source.value}",
            details={"status": source.value},
        )
    offer = serialize_for_audit(
        {
            "amount": amount,
            "term_months": term_months,
            "interest_rate": interest_rate,
            "payment_frequency": payment_frequency.value if payment_frequency else None,
            "reason": reason,
            "offered_at": datetime.now(timezone.utc),
        }
    )
    application.counter_offer = offer
    application.term_months = term_months
    if interest_rate is not None:
        application.interest_rate = interest_rate
    if payment_frequency is not None:
        application.payment_frequency = payment_frequency.value
    return _apply_status(
        db,
        ctx,
        application,
        S.COUNTER_OFFERED,
        actor_id=actor.id,
        reason=reason,
        kind=StatusChangeKind.COUNTER_OFFER,
        extra_payload={"offer": offer},
        audit_action="application.counter_offered",
    )


def assign(
    db: AsyncSession,
    ctx: deps.TenantContext,
    application: Application,
    *,
    assignee: StaffUser,
    actor: StaffUser,
    reason: str | None = None,
) -> LifecycleEvent:
    status = current_status(application)
    if is_terminal(status):
        raise InvalidState(
            f"Cannot assign an application in terminal status {status.value}",
            details={"status": status.value},
        )
    previous = application.assigned_to
    application.assigned_to = assignee.id
    application.assigned_at = datetime.now(timezone.utc)
    event = append_event(
        db,
        ctx,
        application,
        LifecycleAction.STATUS_CHANGE,
        actor_id=actor.id,
        payload={
            "kind": StatusChangeKind.REASSIGNED.value,
            "old_status": status.value,
            "new_status": status.value,
            "reason": reason,
            "previous_assignee_id": previous,
            "assignee_id": assignee.id,
            "assignee_name": assignee.full_name,
        },
    )
    record_audit_log(
        db,
        ctx,
        actor_id=actor.id,
        action="application.assigned",
        resource_type="application",
        resource_id=application.id,
        old_value={"assigned_to": previous},
        new_value={"assigned_to": assignee.id, "reason": reason},
    )
    return event
