from __future__ import annotations

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.permissions import PermissionCode
from app.db.session import get_db
from app.models.user import StaffUser
from app.schemas.application import (
    ApplicationDetailDTO,
    AssignRequest,
    CounterOfferRequest,
    NoteRequest,
    StatusChangeRequest,
)
from app.schemas.audit import AuditLogEntry, AuditLogListResponse
from app.schemas.timeline import TimelineResponse
from app.services import lifecycle, status_machine

router = APIRouter(prefix="/staff/applications", tags=["applications"])
logger = logging.getLogger(__name__)


async def _detail(db: AsyncSession, ctx: deps.TenantContext, application, actor: StaffUser) -> ApplicationDetailDTO:
    allowed = await status_machine.allowed_next_statuses(db, ctx, application, actor)
    return lifecycle.to_detail(application, allowed)


@router.get("/{application_id}", response_model=ApplicationDetailDTO, summary="Get an application")
async def get_application(
    application_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: StaffUser = Depends(deps.require_permission(PermissionCode.APPLICATION_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> ApplicationDetailDTO:
    return await lifecycle.get_application_detail(db, ctx, application_id, actor=current_user)


@router.post("/{application_id}/status", response_model=ApplicationDetailDTO, summary="Change application status")
async def change_status(
    application_id: UUID,
    payload: StatusChangeRequest,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: StaffUser = Depends(deps.require_permission(PermissionCode.APPLICATION_STATUS_CHANGE)),
    db: AsyncSession = Depends(get_db),
) -> ApplicationDetailDTO:
    application = await lifecycle.change_status(db, ctx, application_id, payload, actor=current_user)
    logger.info(
        "Application status changed",
        extra={"application_id": str(application_id), "action": "status_change"},
    )
    return await _detail(db, ctx, application, current_user)


@router.post(
    "/{application_id}/counter-offer",
    response_model=ApplicationDetailDTO,
    summary="Propose a counter-offer",
)
async def counter_offer(
    application_id: UUID,
    payload: CounterOfferRequest,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: StaffUser = Depends(deps.require_permission(PermissionCode.APPLICATION_STATUS_CHANGE)),
    db: AsyncSession = Depends(get_db),
) -> ApplicationDetailDTO:
    application = await lifecycle.make_counter_offer(db, ctx, application_id, payload, actor=current_user)
    return await _detail(db, ctx, application, current_user)


@router.post("/{application_id}/assign", response_model=ApplicationDetailDTO, summary="Assign a reviewer")
async def assign(
    application_id: UUID,
    payload: AssignRequest,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: StaffUser = Depends(deps.require_permission(PermissionCode.APPLICATION_ASSIGN)),
    db: AsyncSession = Depends(get_db),
) -> ApplicationDetailDTO:
    application = await lifecycle.assign_application(db, ctx, application_id, payload, actor=current_user)
    return await _detail(db, ctx, application, current_user)


@router.post(
    "/{application_id}/notes",
    response_model=ApplicationDetailDTO,
    status_code=201,
    summary="Add an internal note",
)
async def add_note(
    application_id: UUID,
    payload: NoteRequest,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: StaffUser = Depends(deps.require_permission(PermissionCode.APPLICATION_NOTE_ADD)),
    db: AsyncSession = Depends(get_db),
) -> ApplicationDetailDTO:
    application = await lifecycle.add_note(db, ctx, application_id, payload, actor=current_user)
    return await _detail(db, ctx, application, current_user)


@router.get("/{application_id}/timeline", response_model=TimelineResponse, summary="Application timeline")
async def get_timeline(
    application_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: StaffUser = Depends(deps.require_permission(PermissionCode.APPLICATION_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> TimelineResponse:
    return await lifecycle.get_timeline(db, ctx, application_id)


@router.get("/{application_id}/audit-logs", response_model=AuditLogListResponse, summary="Application audit trail")
async def list_audit_logs(
    application_id: UUID,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: StaffUser = Depends(deps.require_permission(PermissionCode.AUDIT_LOG_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> AuditLogListResponse:
    rows, total = await lifecycle.list_audit_logs(
        db,
        ctx,
        application_id,
        limit=page_size,
        offset=(page - 1) * page_size,
    )
    items = [AuditLogEntry.model_validate(row) for row in rows]
    return AuditLogListResponse(items=items, total=total)
