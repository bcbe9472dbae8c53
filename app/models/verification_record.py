import uuid

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID

from app.db.base import Base


class VerificationRecord(Base):
    """Insert-only ledger row: one attempt to verify one applicant field."""

    __tablename__ = "data_verifications"
    __table_args__ = (
        CheckConstraint(
            "status IN ('VERIFIED', 'REJECTED', 'PENDING')",
            name="ck_data_verifications_status",
        ),
        Index("ix_data_verifications_applicant_field", "applicant_id", "field_name", "created_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(String, ForeignKey("orgs.id", ondelete="CASCADE"), nullable=False, index=True)
    applicant_id = Column(UUID(as_uuid=True), ForeignKey("applicants.id", ondelete="CASCADE"), nullable=False)
    application_id = Column(
        UUID(as_uuid=True), ForeignKey("applications.id", ondelete="SET NULL"), nullable=True
    )
    field_name = Column(String(40), nullable=False)
    field_value = Column(Text, nullable=True)
    status = Column(String(20), nullable=False)
    method = Column(String(30), nullable=False)
    notes = Column(Text, nullable=True)
    rejection_reason = Column(String(500), nullable=True)
    is_locked = Column(Boolean, nullable=False, default=False)
    provenance = Column(JSONB, nullable=True)
    verified_by = Column(UUID(as_uuid=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
