import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID

from app.db.base import Base

STAFF_ROLES = ("ANALYST", "SUPERVISOR", "ADMIN", "SUPER_ADMIN")


class StaffUser(Base):
    __tablename__ = "staff_users"
    __table_args__ = (
        UniqueConstraint("org_id", "email", name="uq_staff_users_org_email"),
        CheckConstraint(
            "role IN ('ANALYST', 'SUPERVISOR', 'ADMIN', 'SUPER_ADMIN')",
            name="ck_staff_users_role",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(String, ForeignKey("orgs.id", ondelete="CASCADE"), nullable=False, index=True)
    email = Column(String(255), nullable=False)
    full_name = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default="ANALYST")
    extra_permissions = Column(JSONB, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, server_default="true", default=True)
    token_version = Column(Integer, nullable=False, server_default="0", default=0)
    last_active_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
