from enum import Enum
from typing import Iterable, List


class PermissionCode(str, Enum):
    # Applications
    APPLICATION_VIEW = "application.view"
    APPLICATION_VIEW_ALL = "application.view_all"
    APPLICATION_STATUS_CHANGE = "application.status.change"
    APPLICATION_DECIDE = "application.decide"
    APPLICATION_ASSIGN = "application.assign"
    APPLICATION_NOTE_ADD = "application.note.add"

    # Reviews / verification
    DOCUMENT_REVIEW = "document.review"
    DOCUMENT_VIEW = "document.view"
    REFERENCE_VERIFY = "reference.verify"
    APPLICANT_DATA_VERIFY = "applicant_data.verify"
    BANK_ACCOUNT_VERIFY = "bank_account.verify"

    # Administration
    AUDIT_LOG_VIEW = "audit_log.view"
    STAFF_MANAGE = "staff.manage"
    TENANT_CONFIGURE = "tenant.configure"

    @classmethod
    def list_all(cls) -> List[str]:
        return [code.value for code in cls]

    @classmethod
    def normalize(cls, values: Iterable[str]) -> List[str]:
        """Return unique permission codes that are valid members."""
        seen = set()
        normalized: list[str] = []
        for value in values:
            try:
                code = cls(value)
            except ValueError:
                continue
            if code.value not in seen:
                seen.add(code.value)
                normalized.append(code.value)
        return normalized
