from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.models.application import Application
from app.models.lifecycle_event import LifecycleEvent
from app.schemas.events import LifecycleAction
from app.services.audit import serialize_for_audit


def append_event(
    db: AsyncSession,
    ctx: deps.TenantContext,
    application: Application,
    action: LifecycleAction,
    *,
    actor_id=None,
    payload: dict[str, Any] | None = None,
) -> LifecycleEvent:
    """Append one event to the application's log.

    Bumping ``last_event_sequence`` dirties the application row, so every
    append also passes through the optimistic version check at flush time and
    two writers can never claim the same sequence.
    """
    sequence = (application.last_event_sequence or 0) + 1
    application.last_event_sequence = sequence
    event = LifecycleEvent(
        org_id=ctx.org_id,
        application_id=application.id,
        sequence=sequence,
        action=action.value,
        actor_id=actor_id,
        payload=serialize_for_audit(payload or {}),
        created_at=datetime.now(timezone.utc),
    )
    db.add(application)
    db.add(event)
    return event


async def list_events(
    db: AsyncSession,
    ctx: deps.TenantContext,
    application_id,
) -> list[LifecycleEvent]:
    stmt = (
        select(LifecycleEvent)
        .where(
            LifecycleEvent.org_id == ctx.org_id,
            LifecycleEvent.application_id == application_id,
        )
        .order_by(LifecycleEvent.created_at.asc(), LifecycleEvent.sequence.asc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())
