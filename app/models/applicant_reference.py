import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.base import Base


class ApplicantReference(Base):
    __tablename__ = "applicant_references"
    __table_args__ = (
        CheckConstraint(
            "verification_status IN ('PENDING', 'VERIFIED', 'REJECTED', 'UNREACHABLE')",
            name="ck_applicant_references_status",
        ),
        CheckConstraint(
            "verification_result IS NULL OR verification_result IN ('VERIFIED', 'NOT_VERIFIED', 'NO_ANSWER')",
            name="ck_applicant_references_result",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(String, ForeignKey("orgs.id", ondelete="CASCADE"), nullable=False, index=True)
    applicant_id = Column(
        UUID(as_uuid=True), ForeignKey("applicants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    full_name = Column(String(255), nullable=False)
    phone = Column(String(20), nullable=True)
    relation_type = Column("relationship", String(50), nullable=True)
    verification_status = Column(String(20), nullable=False, default="PENDING")
    verification_result = Column(String(20), nullable=True)
    verification_notes = Column(Text, nullable=True)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    verified_by = Column(UUID(as_uuid=True), ForeignKey("staff_users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    applicant = relationship("Applicant", back_populates="references")
