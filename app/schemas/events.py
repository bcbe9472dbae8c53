from __future__ import annotations

from enum import Enum


class LifecycleAction(str, Enum):
    STATUS_CHANGE = "STATUS_CHANGE"
    NOTE_ADDED = "NOTE_ADDED"
    DOC_UPLOADED = "DOC_UPLOADED"
    DOC_APPROVED = "DOC_APPROVED"
    DOC_REJECTED = "DOC_REJECTED"
    DOC_UNAPPROVED = "DOC_UNAPPROVED"
    REF_VERIFIED = "REF_VERIFIED"
    DATA_VERIFIED = "DATA_VERIFIED"
    DATA_CORRECTED = "DATA_CORRECTED"
    BANK_ACCOUNT_VERIFIED = "BANK_ACCOUNT_VERIFIED"
    BANK_ACCOUNT_UNVERIFIED = "BANK_ACCOUNT_UNVERIFIED"


class StatusChangeKind(str, Enum):
    """Marker stored in STATUS_CHANGE payloads to tell plain transitions apart."""

    TRANSITION = "transition"
    COUNTER_OFFER = "counter_offer"
    REASSIGNED = "reassigned"
    AUTOMATIC = "automatic"
