import uuid

from sqlalchemy import Column, Date, DateTime, ForeignKey, String, func
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import relationship

from app.db.base import Base


class Applicant(Base):
    __tablename__ = "applicants"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(String, ForeignKey("orgs.id", ondelete="CASCADE"), nullable=False, index=True)
    first_name = Column(String(100), nullable=True)
    last_name_1 = Column(String(100), nullable=True)
    last_name_2 = Column(String(100), nullable=True)
    curp = Column(String(18), nullable=True, index=True)
    rfc = Column(String(13), nullable=True)
    ine_clave = Column(String(20), nullable=True)
    birth_date = Column(Date, nullable=True)
    phone = Column(String(20), nullable=True)
    email = Column(String(255), nullable=True)
    address = Column(JSONB, nullable=True)
    employment = Column(JSONB, nullable=True)
    # Mirrors of the verification ledger for cheap filtering; never read as truth.
    phone_verified_at = Column(DateTime(timezone=True), nullable=True)
    email_verified_at = Column(DateTime(timezone=True), nullable=True)
    identity_verified_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    references = relationship("ApplicantReference", back_populates="applicant")
    bank_accounts = relationship("BankAccount", back_populates="applicant")

    @property
    def full_name(self) -> str:
        parts = [self.first_name, self.last_name_1, self.last_name_2]
        return " ".join(part for part in parts if part)
