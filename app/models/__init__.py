from app.models.applicant import Applicant
from app.models.applicant_reference import ApplicantReference
from app.models.application import Application
from app.models.application_document import ApplicationDocument
from app.models.audit_log import AuditLog
from app.models.bank_account import BankAccount
from app.models.lifecycle_event import LifecycleEvent
from app.models.org import Org
from app.models.user import StaffUser
from app.models.verification_record import VerificationRecord

__all__ = [
    "Applicant",
    "ApplicantReference",
    "Application",
    "ApplicationDocument",
    "AuditLog",
    "BankAccount",
    "LifecycleEvent",
    "Org",
    "StaffUser",
    "VerificationRecord",
]
