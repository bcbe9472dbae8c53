from __future__ import annotations

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Body, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.permissions import PermissionCode
from app.db.session import get_db
from app.models.user import StaffUser
from app.schemas.document import (
    DocumentAccessDTO,
    DocumentDTO,
    DocumentRejectRequest,
    DocumentReviewRequest,
    DocumentReviewResponse,
)
from app.services import lifecycle

router = APIRouter(prefix="/staff/applications/{application_id}/documents", tags=["application-documents"])


@router.post("/{document_id}/approve", response_model=DocumentReviewResponse, summary="Approve a document")
async def approve_document(
    application_id: UUID,
    document_id: UUID,
    payload: DocumentReviewRequest | None = None,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: StaffUser = Depends(deps.require_permission(PermissionCode.DOCUMENT_REVIEW)),
    db: AsyncSession = Depends(get_db),
) -> DocumentReviewResponse:
    return await lifecycle.approve_document(
        db,
        ctx,
        application_id,
        document_id,
        actor=current_user,
        version=payload.version if payload else None,
    )


@router.post("/{document_id}/reject", response_model=DocumentReviewResponse, summary="Reject a document")
async def reject_document(
    application_id: UUID,
    document_id: UUID,
    payload: DocumentRejectRequest,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: StaffUser = Depends(deps.require_permission(PermissionCode.DOCUMENT_REVIEW)),
    db: AsyncSession = Depends(get_db),
) -> DocumentReviewResponse:
    return await lifecycle.reject_document(db, ctx, application_id, document_id, payload, actor=current_user)


@router.post(
    "/{document_id}/unapprove",
    response_model=DocumentReviewResponse,
    summary="Send a reviewed document back to pending",
)
async def unapprove_document(
    application_id: UUID,
    document_id: UUID,
    payload: DocumentReviewRequest | None = None,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: StaffUser = Depends(deps.require_permission(PermissionCode.DOCUMENT_REVIEW)),
    db: AsyncSession = Depends(get_db),
) -> DocumentReviewResponse:
    return await lifecycle.unapprove_document(
        db,
        ctx,
        application_id,
        document_id,
        actor=current_user,
        version=payload.version if payload else None,
    )


@router.post(
    "/{document_id}/kyc-result",
    response_model=DocumentDTO,
    summary="Record the outcome of an automated identity check",
)
async def record_kyc_result(
    application_id: UUID,
    document_id: UUID,
    metadata: dict[str, Any] = Body(...),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: StaffUser = Depends(deps.require_permission(PermissionCode.APPLICANT_DATA_VERIFY)),
    db: AsyncSession = Depends(get_db),
) -> DocumentDTO:
    document = await lifecycle.ingest_kyc_result(db, ctx, application_id, document_id, metadata=metadata)
    return DocumentDTO.model_validate(document)


@router.get("/{document_id}/access", response_model=DocumentAccessDTO, summary="Short-lived document link")
async def document_access(
    application_id: UUID,
    document_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: StaffUser = Depends(deps.require_permission(PermissionCode.DOCUMENT_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> DocumentAccessDTO:
    return await lifecycle.get_document_access(db, ctx, application_id, document_id)
