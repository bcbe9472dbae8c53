import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import relationship

from app.db.base import Base

APPLICATION_STATUSES = (
    "DRAFT",
    "SUBMITTED",
    "IN_REVIEW",
    "DOCS_PENDING",
    "CORRECTIONS_PENDING",
    "COUNTER_OFFERED",
    "APPROVED",
    "REJECTED",
    "CANCELLED",
    "DISBURSED",
    "ACTIVE",
    "COMPLETED",
    "DEFAULT",
)


class Application(Base):
    __tablename__ = "applications"
    __allow_unmapped__ = True
    __table_args__ = (
        CheckConstraint(
            "status IN ('DRAFT', 'SUBMITTED', 'IN_REVIEW', 'DOCS_PENDING', 'CORRECTIONS_PENDING', "
            "'COUNTER_OFFERED', 'APPROVED', 'REJECTED', 'CANCELLED', 'DISBURSED', 'ACTIVE', "
            "'COMPLETED', 'DEFAULT')",
            name="ck_applications_status",
        ),
        CheckConstraint("requested_amount > 0", name="ck_applications_requested_positive"),
        CheckConstraint("approved_amount IS NULL OR approved_amount > 0", name="ck_applications_approved_positive"),
        CheckConstraint("requested_term_months >= 1", name="ck_applications_term_positive"),
        CheckConstraint(
            "payment_frequency IS NULL OR payment_frequency IN ('WEEKLY', 'BIWEEKLY', 'MONTHLY')",
            name="ck_applications_payment_frequency",
        ),
        CheckConstraint("last_event_sequence >= 0", name="ck_applications_event_sequence_nonneg"),
        CheckConstraint("version >= 1", name="ck_applications_version_positive"),
        Index("ix_applications_org_status", "org_id", "status"),
        Index("ix_applications_org_assigned", "org_id", "assigned_to"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(String, ForeignKey("orgs.id", ondelete="CASCADE"), nullable=False, index=True)
    applicant_id = Column(
        UUID(as_uuid=True), ForeignKey("applicants.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    product_id = Column(UUID(as_uuid=True), nullable=True)
    status = Column(String(30), nullable=False, default="SUBMITTED")
    requested_amount = Column(Numeric(14, 2), nullable=False)
    requested_term_months = Column(Integer, nullable=False)
    approved_amount = Column(Numeric(14, 2), nullable=True)
    term_months = Column(Integer, nullable=True)
    interest_rate = Column(Numeric(7, 4), nullable=True)
    payment_frequency = Column(String(20), nullable=True)
    counter_offer = Column(JSONB, nullable=True)
    assigned_to = Column(UUID(as_uuid=True), ForeignKey("staff_users.id", ondelete="SET NULL"), nullable=True)
    assigned_at = Column(DateTime(timezone=True), nullable=True)
    disbursement_reference = Column(String(100), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    disbursed_at = Column(DateTime(timezone=True), nullable=True)
    last_event_sequence = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    applicant = relationship("Applicant")
    documents = relationship("ApplicationDocument", back_populates="application")

    __mapper_args__ = {"version_id_col": version}
