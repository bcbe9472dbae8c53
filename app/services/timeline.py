from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Iterator, Mapping, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.models.application import Application
from app.models.lifecycle_event import LifecycleEvent
from app.models.user import StaffUser
from app.schemas.application import ApplicationStatus
from app.schemas.contacts import ReferenceResult
from app.schemas.document import document_label
from app.schemas.events import LifecycleAction, StatusChangeKind
from app.schemas.timeline import TimelineEntry, TimelineMetadata
from app.schemas.verification import field_label
from app.services.event_log import list_events

SYSTEM_AUTHOR = "System"

_DATA_VERBS = {"verify": "verified", "reject": "rejected", "unverify": "unverified"}


def _status_label(value: str | None) -> str:
    if not value:
        return ""
    try:
        return ApplicationStatus(value).label
    except ValueError:
        return value


def _format_amount(value: Any) -> str:
    try:
        return f"{Decimal(str(value)):,.2f}"
    except (InvalidOperation, ValueError):
        return str(value)


def _describe_status_change(payload: Mapping[str, Any]) -> str:
    kind = payload.get("kind")
    if kind == StatusChangeKind.REASSIGNED.value:
        return f"Application assigned to {payload.get('assignee_name') or 'another reviewer'}"
    if kind == StatusChangeKind.COUNTER_OFFER.value:
        offer = payload.get("offer") or {}
        return f"Counter-offer: {_format_amount(offer.get('amount'))} over {offer.get('term_months')} months"
    text = f"Status changed to {_status_label(payload.get('new_status'))}"
    if payload.get("reason"):
        text = f"{text}: {payload['reason']}"
    return text


def _describe_reference(payload: Mapping[str, Any]) -> str:
    result = payload.get("result")
    try:
        result_label = ReferenceResult(result).label
    except ValueError:
        result_label = str(result)
    return f"Reference verified: {payload.get('reference_name')} ({result_label})"


def describe_event(action: str, payload: Mapping[str, Any] | None) -> str:
    data = payload or {}
    label = document_label(data.get("document_type"))
    if action == LifecycleAction.STATUS_CHANGE.value:
        return _describe_status_change(data)
    if action == LifecycleAction.DOC_UPLOADED.value:
        verb = "replaced" if data.get("is_replacement") else "uploaded"
        return f"Document {verb}: {label}"
    if action == LifecycleAction.DOC_APPROVED.value:
        return f"Document approved: {label}"
    if action == LifecycleAction.DOC_REJECTED.value:
        return f"Document rejected: {label} - {data.get('reason') or ''}".rstrip(" -")
    if action == LifecycleAction.DOC_UNAPPROVED.value:
        return f"Document review reverted: {label}"
    if action == LifecycleAction.REF_VERIFIED.value:
        return _describe_reference(data)
    if action == LifecycleAction.NOTE_ADDED.value:
        return f"Note added: {data.get('preview') or ''}"
    if action == LifecycleAction.DATA_VERIFIED.value:
        verb = _DATA_VERBS.get(data.get("action"), "updated")
        return f"Field {verb}: {field_label(data.get('field'))}"
    if action == LifecycleAction.DATA_CORRECTED.value:
        return (
            f"Field corrected: {field_label(data.get('field'))} "
            f"({data.get('old_value')} → {data.get('new_value')})"
        )
    if action == LifecycleAction.BANK_ACCOUNT_VERIFIED.value:
        return f"Bank account verified: {data.get('account_masked')}"
    if action == LifecycleAction.BANK_ACCOUNT_UNVERIFIED.value:
        return f"Bank account unverified: {data.get('account_masked')}"
    return action


def _metadata(action: str, payload: Mapping[str, Any]) -> TimelineMetadata:
    if action == LifecycleAction.STATUS_CHANGE.value:
        old_value, new_value = payload.get("old_status"), payload.get("new_status")
    else:
        old_value, new_value = payload.get("old_value"), payload.get("new_value")
    return TimelineMetadata(
        old_value=old_value,
        new_value=new_value,
        reason=payload.get("reason"),
        is_replacement=bool(payload.get("is_replacement")),
        old_file=payload.get("old_file"),
        new_file=payload.get("new_file"),
        document_label=document_label(payload.get("document_type")) or None,
        field=payload.get("field"),
    )


class Timeline:
    """Reverse-chronological view over an event log.

    Entries are rendered on iteration, so every pass produces the same
    output from the same events.
    """

    def __init__(self, events: Sequence[LifecycleEvent], actor_names: Mapping[str, str]) -> None:
        self._events = tuple(
            sorted(events, key=lambda event: (event.created_at, event.sequence), reverse=True)
        )
        self._actor_names = dict(actor_names)

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[TimelineEntry]:
        for event in self._events:
            yield self.render(event)

    def render(self, event: LifecycleEvent) -> TimelineEntry:
        payload = event.payload or {}
        actor_id = str(event.actor_id) if event.actor_id else None
        return TimelineEntry(
            id=event.sequence,
            action=LifecycleAction(event.action),
            description=describe_event(event.action, payload),
            author=self._actor_names.get(actor_id, SYSTEM_AUTHOR) if actor_id else SYSTEM_AUTHOR,
            actor_id=actor_id,
            created_at=event.created_at,
            metadata=_metadata(event.action, payload),
        )


async def resolve_actor_names(
    db: AsyncSession,
    ctx: deps.TenantContext,
    events: Sequence[LifecycleEvent],
) -> dict[str, str]:
    actor_ids = {event.actor_id for event in events if event.actor_id}
    if not actor_ids:
        return {}
    stmt = select(StaffUser).where(StaffUser.org_id == ctx.org_id, StaffUser.id.in_(list(actor_ids)))
    result = await db.execute(stmt)
    return {str(user.id): user.full_name or user.email for user in result.scalars().all()}


async def build_timeline(db: AsyncSession, ctx: deps.TenantContext, application: Application) -> Timeline:
    events = await list_events(db, ctx, application.id)
    return Timeline(events, await resolve_actor_names(db, ctx, events))
