"""Create tenant, staff, applicant, application lifecycle and audit tables"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_lifecycle_core"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "orgs",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("slug", sa.String(length=255), nullable=False, unique=True),
        sa.Column("status", sa.String(length=50), nullable=False, server_default=sa.text("'ACTIVE'")),
        *_timestamps(),
        sa.CheckConstraint("status IN ('ACTIVE', 'SUSPENDED')", name="ck_orgs_status"),
    )
    op.execute("INSERT INTO orgs (id, name, slug) VALUES ('default', 'Default', 'default')")

    op.create_table(
        "staff_users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("org_id", sa.String(), sa.ForeignKey("orgs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False, server_default=sa.text("'ANALYST'")),
        sa.Column("extra_permissions", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("token_version", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_active_at", sa.TIMESTAMP(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("org_id", "email", name="uq_staff_users_org_email"),
        sa.CheckConstraint("role IN ('ANALYST', 'SUPERVISOR', 'ADMIN', 'SUPER_ADMIN')", name="ck_staff_users_role"),
    )
    op.create_index("ix_staff_users_org_id", "staff_users", ["org_id"])

    op.create_table(
        "applicants",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("org_id", sa.String(), sa.ForeignKey("orgs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("first_name", sa.String(length=100), nullable=True),
        sa.Column("last_name_1", sa.String(length=100), nullable=True),
        sa.Column("last_name_2", sa.String(length=100), nullable=True),
        sa.Column("curp", sa.String(length=18), nullable=True),
        sa.Column("rfc", sa.String(length=13), nullable=True),
        sa.Column("ine_clave", sa.String(length=20), nullable=True),
        sa.Column("birth_date", sa.Date(), nullable=True),
        sa.Column("phone", sa.String(length=20), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("address", postgresql.JSONB(), nullable=True),
        sa.Column("employment", postgresql.JSONB(), nullable=True),
        sa.Column("phone_verified_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("email_verified_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("identity_verified_at", sa.TIMESTAMP(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_applicants_org_id", "applicants", ["org_id"])
    op.create_index("ix_applicants_curp", "applicants", ["curp"])

    op.create_table(
        "applications",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("org_id", sa.String(), sa.ForeignKey("orgs.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "applicant_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("applicants.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("product_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("status", sa.String(length=30), nullable=False, server_default=sa.text("'SUBMITTED'")),
        sa.Column("requested_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("requested_term_months", sa.Integer(), nullable=False),
        sa.Column("approved_amount", sa.Numeric(14, 2), nullable=True),
        sa.Column("term_months", sa.Integer(), nullable=True),
        sa.Column("interest_rate", sa.Numeric(7, 4), nullable=True),
        sa.Column("payment_frequency", sa.String(length=20), nullable=True),
        sa.Column("counter_offer", postgresql.JSONB(), nullable=True),
        sa.Column(
            "assigned_to",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("staff_users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("assigned_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("disbursement_reference", sa.String(length=100), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("approved_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("rejected_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("disbursed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("last_event_sequence", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('DRAFT', 'SUBMITTED', 'IN_REVIEW', 'DOCS_PENDING', 'CORRECTIONS_PENDING', "
            "'COUNTER_OFFERED', 'APPROVED', 'REJECTED', 'CANCELLED', 'DISBURSED', 'ACTIVE', "
            "'COMPLETED', 'DEFAULT')",
            name="ck_applications_status",
        ),
        sa.CheckConstraint("requested_amount > 0", name="ck_applications_requested_positive"),
        sa.CheckConstraint(
            "approved_amount IS NULL OR approved_amount > 0", name="ck_applications_approved_positive"
        ),
        sa.CheckConstraint("requested_term_months >= 1", name="ck_applications_term_positive"),
        sa.CheckConstraint(
            "payment_frequency IS NULL OR payment_frequency IN ('WEEKLY', 'BIWEEKLY', 'MONTHLY')",
            name="ck_applications_payment_frequency",
        ),
        sa.CheckConstraint("last_event_sequence >= 0", name="ck_applications_event_sequence_nonneg"),
        sa.CheckConstraint("version >= 1", name="ck_applications_version_positive"),
    )
    op.create_index("ix_applications_org_id", "applications", ["org_id"])
    op.create_index("ix_applications_applicant_id", "applications", ["applicant_id"])
    op.create_index("ix_applications_org_status", "applications", ["org_id", "status"])
    op.create_index("ix_applications_org_assigned", "applications", ["org_id", "assigned_to"])

    op.create_table(
        "application_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("org_id", sa.String(), sa.ForeignKey("orgs.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "application_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("applications.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(length=40), nullable=False),
        sa.Column("actor_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("payload", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.UniqueConstraint("application_id", "sequence", name="uq_application_events_sequence"),
    )
    op.create_index("ix_application_events_org_id", "application_events", ["org_id"])
    op.create_index("ix_application_events_application_id", "application_events", ["application_id"])
    # Insert-only: the log is never rewritten.
    op.execute(
        """
        CREATE OR REPLACE FUNCTION application_events_immutable() RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'application_events rows are append-only';
        END;
        $$ LANGUAGE plpgsql
        """
    )
    op.execute(
        "CREATE TRIGGER application_events_no_update BEFORE UPDATE OR DELETE ON application_events "
        "FOR EACH ROW EXECUTE FUNCTION application_events_immutable()"
    )

    op.create_table(
        "application_documents",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("org_id", sa.String(), sa.ForeignKey("orgs.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "application_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("applications.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "applicant_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("applicants.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("document_type", sa.String(length=40), nullable=False),
        sa.Column("file_name", sa.String(length=255), nullable=False),
        sa.Column("storage_object_key", sa.String(length=1024), nullable=False),
        sa.Column("content_type", sa.String(length=100), nullable=True),
        sa.Column("size_bytes", sa.BigInteger(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column("rejection_reason", sa.String(length=500), nullable=True),
        sa.Column("rejection_comment", sa.String(length=1000), nullable=True),
        sa.Column(
            "reviewed_by",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("staff_users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("reviewed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("metadata", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("kyc_locked", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("provenance", postgresql.JSONB(), nullable=True),
        sa.Column("replaced_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("status IN ('PENDING', 'APPROVED', 'REJECTED')", name="ck_application_documents_status"),
    )
    op.create_index("ix_application_documents_org_id", "application_documents", ["org_id"])
    op.create_index("ix_application_documents_application_id", "application_documents", ["application_id"])
    op.create_index("ix_application_documents_org_status", "application_documents", ["org_id", "status"])

    op.create_table(
        "data_verifications",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("org_id", sa.String(), sa.ForeignKey("orgs.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "applicant_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("applicants.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "application_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("applications.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("field_name", sa.String(length=40), nullable=False),
        sa.Column("field_value", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("method", sa.String(length=30), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("rejection_reason", sa.String(length=500), nullable=True),
        sa.Column("is_locked", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("provenance", postgresql.JSONB(), nullable=True),
        sa.Column("verified_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.CheckConstraint("status IN ('VERIFIED', 'REJECTED', 'PENDING')", name="ck_data_verifications_status"),
    )
    op.create_index("ix_data_verifications_org_id", "data_verifications", ["org_id"])
    op.create_index(
        "ix_data_verifications_applicant_field",
        "data_verifications",
        ["applicant_id", "field_name", "created_at"],
    )

    op.create_table(
        "applicant_references",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("org_id", sa.String(), sa.ForeignKey("orgs.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "applicant_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("applicants.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("phone", sa.String(length=20), nullable=True),
        sa.Column("relationship", sa.String(length=50), nullable=True),
        sa.Column("verification_status", sa.String(length=20), nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column("verification_result", sa.String(length=20), nullable=True),
        sa.Column("verification_notes", sa.Text(), nullable=True),
        sa.Column("verified_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "verified_by",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("staff_users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint(
            "verification_status IN ('PENDING', 'VERIFIED', 'REJECTED', 'UNREACHABLE')",
            name="ck_applicant_references_status",
        ),
        sa.CheckConstraint(
            "verification_result IS NULL OR verification_result IN ('VERIFIED', 'NOT_VERIFIED', 'NO_ANSWER')",
            name="ck_applicant_references_result",
        ),
    )
    op.create_index("ix_applicant_references_org_id", "applicant_references", ["org_id"])
    op.create_index("ix_applicant_references_applicant_id", "applicant_references", ["applicant_id"])

    op.create_table(
        "bank_accounts",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("org_id", sa.String(), sa.ForeignKey("orgs.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "applicant_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("applicants.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("bank_name", sa.String(length=100), nullable=False),
        sa.Column("account_holder", sa.String(length=255), nullable=False),
        sa.Column("clabe", sa.LargeBinary(), nullable=False),
        sa.Column("clabe_last4", sa.String(length=4), nullable=False),
        sa.Column("is_primary", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("verification_method", sa.String(length=30), nullable=True),
        sa.Column("verification_notes", sa.String(length=500), nullable=True),
        sa.Column("verified_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "verified_by",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("staff_users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("unverified_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_bank_accounts_org_id", "bank_accounts", ["org_id"])
    op.create_index("ix_bank_accounts_applicant_id", "bank_accounts", ["applicant_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("org_id", sa.String(), nullable=False),
        sa.Column("actor_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("resource_type", sa.String(length=255), nullable=False),
        sa.Column("resource_id", sa.String(length=255), nullable=False),
        sa.Column("old_value", sa.JSON(), nullable=True),
        sa.Column("new_value", sa.JSON(), nullable=True),
        sa.Column("changes", sa.JSON(), nullable=True),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("request_id", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id", "org_id"),
        postgresql_partition_by="LIST (org_id)",
    )
    op.create_index("ix_audit_logs_org_id", "audit_logs", ["org_id"])
    op.create_index("ix_audit_logs_org_resource", "audit_logs", ["org_id", "resource_type", "resource_id"])
    op.execute("CREATE TABLE audit_logs_default PARTITION OF audit_logs FOR VALUES IN ('default')")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS audit_logs_default")
    op.drop_index("ix_audit_logs_org_resource", table_name="audit_logs")
    op.drop_index("ix_audit_logs_org_id", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_table("bank_accounts")
    op.drop_table("applicant_references")
    op.drop_table("data_verifications")
    op.drop_table("application_documents")
    op.execute("DROP TRIGGER IF EXISTS application_events_no_update ON application_events")
    op.drop_table("application_events")
    op.execute("DROP FUNCTION IF EXISTS application_events_immutable()")
    op.drop_table("applications")
    op.drop_table("applicants")
    op.drop_table("staff_users")
    op.drop_table("orgs")
