from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.permissions import PermissionCode
from app.db.session import get_db
from app.models.user import StaffUser
from app.schemas.application import VersionedRequest
from app.schemas.contacts import (
    BankAccountDTO,
    BankAccountVerifyRequest,
    ReferenceDTO,
    ReferenceVerifyRequest,
)
from app.schemas.verification import (
    FieldVerificationRequest,
    FieldVerificationResponse,
    VerificationStateDTO,
)
from app.services import lifecycle

router = APIRouter(prefix="/staff/applications/{application_id}", tags=["application-verifications"])


@router.get("/verifications", response_model=VerificationStateDTO, summary="Current field verification state")
async def get_verifications(
    application_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: StaffUser = Depends(deps.require_permission(PermissionCode.APPLICATION_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> VerificationStateDTO:
    return await lifecycle.get_verification_state(db, ctx, application_id)


@router.post("/verifications", response_model=FieldVerificationResponse, summary="Verify, reject or unverify a field")
async def verify_field(
    application_id: UUID,
    payload: FieldVerificationRequest,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: StaffUser = Depends(deps.require_permission(PermissionCode.APPLICANT_DATA_VERIFY)),
    db: AsyncSession = Depends(get_db),
) -> FieldVerificationResponse:
    return await lifecycle.verify_field(db, ctx, application_id, payload, actor=current_user)


@router.post("/references/{reference_id}/verify", response_model=ReferenceDTO, summary="Record a reference check")
async def verify_reference(
    application_id: UUID,
    reference_id: UUID,
    payload: ReferenceVerifyRequest,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: StaffUser = Depends(deps.require_permission(PermissionCode.REFERENCE_VERIFY)),
    db: AsyncSession = Depends(get_db),
) -> ReferenceDTO:
    return await lifecycle.verify_reference(db, ctx, application_id, reference_id, payload, actor=current_user)


@router.post("/bank-accounts/{account_id}/verify", response_model=BankAccountDTO, summary="Verify a bank account")
async def verify_bank_account(
    application_id: UUID,
    account_id: UUID,
    payload: BankAccountVerifyRequest | None = None,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: StaffUser = Depends(deps.require_permission(PermissionCode.BANK_ACCOUNT_VERIFY)),
    db: AsyncSession = Depends(get_db),
) -> BankAccountDTO:
    return await lifecycle.verify_bank_account(
        db,
        ctx,
        application_id,
        account_id,
        payload or BankAccountVerifyRequest(),
        actor=current_user,
    )


@router.post("/bank-accounts/{account_id}/unverify", response_model=BankAccountDTO, summary="Revoke a bank account verification")
async def unverify_bank_account(
    application_id: UUID,
    account_id: UUID,
    payload: VersionedRequest | None = None,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: StaffUser = Depends(deps.require_permission(PermissionCode.BANK_ACCOUNT_VERIFY)),
    db: AsyncSession = Depends(get_db),
) -> BankAccountDTO:
    return await lifecycle.unverify_bank_account(
        db,
        ctx,
        application_id,
        account_id,
        actor=current_user,
        version=payload.version if payload else None,
    )
