import uuid

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import relationship

from app.db.base import Base


class ApplicationDocument(Base):
    __tablename__ = "application_documents"
    __allow_unmapped__ = True
    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'APPROVED', 'REJECTED')",
            name="ck_application_documents_status",
        ),
        Index("ix_application_documents_org_status", "org_id", "status"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(String, ForeignKey("orgs.id", ondelete="CASCADE"), nullable=False, index=True)
    application_id = Column(
        UUID(as_uuid=True), ForeignKey("applications.id", ondelete="CASCADE"), nullable=False, index=True
    )
    applicant_id = Column(UUID(as_uuid=True), ForeignKey("applicants.id", ondelete="CASCADE"), nullable=False)
    document_type = Column(String(40), nullable=False)
    file_name = Column(String(255), nullable=False)
    storage_object_key = Column(String(1024), nullable=False)
    content_type = Column(String(100), nullable=True)
    size_bytes = Column(BigInteger, nullable=True)
    status = Column(String(20), nullable=False, default="PENDING")
    rejection_reason = Column(String(500), nullable=True)
    rejection_comment = Column(String(1000), nullable=True)
    reviewed_by = Column(UUID(as_uuid=True), ForeignKey("staff_users.id", ondelete="SET NULL"), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    doc_metadata = Column("metadata", JSONB, nullable=False, default=dict)
    # Derived from the metadata once, when automated checks write it.
    kyc_locked = Column(Boolean, nullable=False, default=False)
    provenance = Column(JSONB, nullable=True)
    replaced_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    application = relationship("Application", back_populates="documents")
