"""Status side effects triggered by ledger and document review signals."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.models.application import Application
from app.models.application_document import ApplicationDocument
from app.models.user import StaffUser
from app.schemas.application import ApplicationStatus
from app.schemas.document import DocumentStatus
from app.schemas.events import StatusChangeKind
from app.schemas.verification import field_label
from app.services import signals, status_machine, verification_ledger

logger = logging.getLogger(__name__)

WAITING_STATUSES = frozenset({ApplicationStatus.DOCS_PENDING, ApplicationStatus.CORRECTIONS_PENDING})


async def has_open_documents(db: AsyncSession, ctx: deps.TenantContext, application_id) -> bool:
    stmt = (
        select(ApplicationDocument.id)
        .where(
            ApplicationDocument.org_id == ctx.org_id,
            ApplicationDocument.application_id == application_id,
            ApplicationDocument.replaced_at.is_(None),
            ApplicationDocument.status.in_([DocumentStatus.PENDING.value, DocumentStatus.REJECTED.value]),
        )
        .limit(1)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none() is not None


async def route_to_corrections(
    sender,
    *,
    db: AsyncSession,
    ctx: deps.TenantContext,
    application: Application,
    actor: StaffUser | None = None,
    **_,
) -> bool:
    current = status_machine.current_status(application)
    if current == ApplicationStatus.CORRECTIONS_PENDING:
        return False
    if status_machine.is_terminal(current):
        logger.info(
            "Field rejected on terminal application (%s); status left unchanged",
            current.value,
            extra={"application_id": str(application.id)},
        )
        return False
    await status_machine.transition(
        db,
        ctx,
        application,
        ApplicationStatus.CORRECTIONS_PENDING,
        actor=actor,
        reason=f"Field rejected: {field_label(sender.field_name)}",
        kind=StatusChangeKind.AUTOMATIC,
    )
    return True


async def try_auto_advance(
    sender,
    *,
    db: AsyncSession,
    ctx: deps.TenantContext,
    application: Application,
    actor: StaffUser | None = None,
    **_,
) -> bool:
    """Send a waiting application back to review once nothing blocks it."""
    current = status_machine.current_status(application)
    if current not in WAITING_STATUSES:
        return False
    # Pending review and ledger writes must be visible with autoflush disabled.
    await db.flush()
    if await verification_ledger.has_rejected_fields(db, ctx, application.applicant_id):
        return False
    if await has_open_documents(db, ctx, application.id):
        return False
    await status_machine.transition(
        db,
        ctx,
        application,
        ApplicationStatus.IN_REVIEW,
        actor=actor,
        reason="All corrections and documents resolved",
        kind=StatusChangeKind.AUTOMATIC,
    )
    return True


def connect_hooks() -> None:
    signals.field_rejected.connect(route_to_corrections, weak=False)
    signals.field_verified.connect(try_auto_advance, weak=False)
    signals.document_approved.connect(try_auto_advance, weak=False)


connect_hooks()
