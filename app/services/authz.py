from __future__ import annotations

from typing import TYPE_CHECKING, Any, Set

from app.core.permissions import PermissionCode
from app.models.user import StaffUser

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from app.api.deps import TenantContext


_ANALYST_PERMISSIONS = [
    PermissionCode.APPLICATION_VIEW,
    PermissionCode.APPLICATION_STATUS_CHANGE,
    PermissionCode.APPLICATION_NOTE_ADD,
    PermissionCode.DOCUMENT_VIEW,
    PermissionCode.DOCUMENT_REVIEW,
    PermissionCode.REFERENCE_VERIFY,
    PermissionCode.APPLICANT_DATA_VERIFY,
    PermissionCode.BANK_ACCOUNT_VERIFY,
]

_SUPERVISOR_PERMISSIONS = _ANALYST_PERMISSIONS + [
    PermissionCode.APPLICATION_VIEW_ALL,
    PermissionCode.APPLICATION_DECIDE,
    PermissionCode.APPLICATION_ASSIGN,
    PermissionCode.AUDIT_LOG_VIEW,
]

ROLE_DEFINITIONS = {
    "ANALYST": {
        "description": "Reviews documents and verifies applicant data",
        "permissions": PermissionCode.normalize(_ANALYST_PERMISSIONS),
    },
    "SUPERVISOR": {
        "description": "Analyst duties plus final decisions and assignment",
        "permissions": PermissionCode.normalize(_SUPERVISOR_PERMISSIONS),
    },
    "ADMIN": {
        "description": "Supervisor duties plus staff management",
        "permissions": PermissionCode.normalize(_SUPERVISOR_PERMISSIONS + [PermissionCode.STAFF_MANAGE]),
    },
    "SUPER_ADMIN": {
        "description": "Full control within the organization",
        "permissions": PermissionCode.list_all(),
    },
}


def permissions_for(user: StaffUser) -> Set[str]:
    definition = ROLE_DEFINITIONS.get(user.role or "")
    granted: set[str] = set(definition["permissions"]) if definition else set()
    granted.update(PermissionCode.normalize(user.extra_permissions or []))
    return granted


async def check_permission(
    user: StaffUser,
    ctx: "TenantContext",
    permission_code: PermissionCode | str,
    db: "AsyncSession | None" = None,
    **_: Any,
) -> bool:
    """Answer whether ``user`` holds ``permission_code`` inside the current tenant.

    Grants come from the staff role plus any explicit extra permissions. A user
    of another tenant, or an inactive one, holds nothing here.
    """
    if user is None or not user.is_active or user.org_id != ctx.org_id:
        return False
    target = permission_code.value if isinstance(permission_code, PermissionCode) else str(permission_code)
    return target in permissions_for(user)
