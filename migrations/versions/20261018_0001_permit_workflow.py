"""permit workflow tables

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "permit_applications",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("application_number", sa.String(length=50), nullable=False),
        sa.Column("position_type", sa.String(length=40), nullable=False),
        sa.Column("building_type", sa.String(length=100), nullable=True),
        sa.Column("applicant_name", sa.String(length=255), nullable=False),
        sa.Column("applicant_email", sa.String(length=255), nullable=False),
        sa.Column("applicant_contact", sa.String(length=50), nullable=True),
        sa.Column("stage", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("chain_cycle", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("rejected_at_stage", sa.Integer(), nullable=True),
        sa.Column("rejection_comments", sa.Text(), nullable=True),
        sa.Column("rejected_by", sa.String(length=255), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_final", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("payment_amount", sa.BigInteger(), nullable=True),
        sa.Column("payment_reference", sa.String(length=100), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ee2_signed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ce2_signed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("certificate_issued_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("certificate_number", sa.String(length=64), nullable=True),
        sa.Column("certificate_valid_until", sa.Date(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint("stage BETWEEN 0 AND 10", name="ck_permit_app_stage"),
        sa.CheckConstraint("chain_cycle >= 1", name="ck_permit_app_chain_cycle_positive"),
        sa.CheckConstraint("version >= 1", name="ck_permit_app_version_positive"),
        sa.CheckConstraint(
            "payment_amount IS NULL OR payment_amount > 0",
            name="ck_permit_app_payment_positive",
        ),
        sa.CheckConstraint(
            "(stage = 10) = (rejected_at_stage IS NOT NULL)",
            name="ck_permit_app_rejection_iff_rejected",
        ),
        sa.CheckConstraint(
            "stage < 6 OR stage = 10 OR paid_at IS NOT NULL",
            name="ck_permit_app_paid_before_clerk",
        ),
        sa.CheckConstraint(
            "position_type IN ('ARCHITECT', 'LICENCE_ENGINEER', 'STRUCTURAL_ENGINEER', 'SUPERVISOR1', 'SUPERVISOR2')",
            name="ck_permit_app_position_type",
        ),
        sa.UniqueConstraint("certificate_number", name="uq_permit_applications_certificate_number"),
    )
    op.create_index(
        "ix_permit_applications_application_number",
        "permit_applications",
        ["application_number"],
        unique=True,
    )
    op.create_index(
        "ix_permit_applications_stage_position",
        "permit_applications",
        ["stage", "position_type"],
        unique=False,
    )
    op.create_index("ix_permit_applications_ee2_signed_at", "permit_applications", ["ee2_signed_at"])
    op.create_index("ix_permit_applications_ce2_signed_at", "permit_applications", ["ce2_signed_at"])

    op.create_table(
        "approval_entries",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("application_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("cycle", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("stage", sa.Integer(), nullable=False),
        sa.Column("actor_role", sa.String(length=40), nullable=False),
        sa.Column("actor_name", sa.String(length=255), nullable=False),
        sa.Column("comments", sa.Text(), nullable=True),
        sa.Column("signature_digest", sa.String(length=128), nullable=True),
        sa.Column("signed_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["application_id"], ["permit_applications.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("application_id", "cycle", "stage", name="uq_approval_entries_cycle_stage"),
    )
    op.create_index("ix_approval_entries_application_id", "approval_entries", ["application_id"])

    op.create_table(
        "otp_challenges",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("application_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("purpose", sa.String(length=60), nullable=False),
        sa.Column("stage", sa.Integer(), nullable=True),
        sa.Column("reference", sa.String(length=32), nullable=False),
        sa.Column("secret", sa.LargeBinary(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("failed_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("consumed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("invalidated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["application_id"], ["permit_applications.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("reference", name="uq_otp_challenges_reference"),
    )
    op.create_index(
        "uq_otp_challenges_live_purpose",
        "otp_challenges",
        ["application_id", "purpose"],
        unique=True,
        postgresql_where=sa.text("consumed_at IS NULL AND invalidated_at IS NULL"),
    )
    op.create_index("ix_otp_challenges_expires_at", "otp_challenges", ["expires_at"])
    op.create_index(
        "ix_otp_challenges_app_purpose_created",
        "otp_challenges",
        ["application_id", "purpose", "created_at"],
    )

    op.create_table(
        "download_access_tokens",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("application_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("token_hash", sa.String(length=64), nullable=False),
        sa.Column("applicant_name", sa.String(length=255), nullable=False),
        sa.Column("issued_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["application_id"], ["permit_applications.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("token_hash", name="uq_download_access_tokens_token_hash"),
    )
    op.create_index("ix_download_access_tokens_application_id", "download_access_tokens", ["application_id"])
    op.create_index("ix_download_access_tokens_expires_at", "download_access_tokens", ["expires_at"])

    op.create_table(
        "application_documents",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("application_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("kind", sa.String(length=40), nullable=False),
        sa.Column("file_name", sa.String(length=255), nullable=False),
        sa.Column("storage_provider", sa.String(length=20), nullable=False, server_default="local"),
        sa.Column("storage_key", sa.String(length=512), nullable=False),
        sa.Column("content_type", sa.String(length=100), nullable=False, server_default="application/pdf"),
        sa.Column("size_bytes", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["application_id"], ["permit_applications.id"], ondelete="CASCADE"),
        sa.CheckConstraint(
            "kind IN ('certificate', 'recommendation_form', 'challan')",
            name="ck_application_documents_kind",
        ),
        sa.UniqueConstraint("application_id", "kind", name="uq_application_documents_kind"),
    )
    op.create_index("ix_application_documents_application_id", "application_documents", ["application_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("actor", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("resource_type", sa.String(length=255), nullable=False),
        sa.Column("resource_id", sa.String(length=255), nullable=False),
        sa.Column("old_value", sa.JSON(), nullable=True),
        sa.Column("new_value", sa.JSON(), nullable=True),
        sa.Column("changes", sa.JSON(), nullable=True),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("request_id", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_audit_logs_resource", "audit_logs", ["resource_type", "resource_id"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_resource", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_application_documents_application_id", table_name="application_documents")
    op.drop_table("application_documents")
    op.drop_index("ix_download_access_tokens_expires_at", table_name="download_access_tokens")
    op.drop_index("ix_download_access_tokens_application_id", table_name="download_access_tokens")
    op.drop_table("download_access_tokens")
    op.drop_index("ix_otp_challenges_app_purpose_created", table_name="otp_challenges")
    op.drop_index("ix_otp_challenges_expires_at", table_name="otp_challenges")
    op.drop_index("uq_otp_challenges_live_purpose", table_name="otp_challenges")
    op.drop_table("otp_challenges")
    op.drop_index("ix_approval_entries_application_id", table_name="approval_entries")
    op.drop_table("approval_entries")
    op.drop_index("ix_permit_applications_ce2_signed_at", table_name="permit_applications")
    op.drop_index("ix_permit_applications_ee2_signed_at", table_name="permit_applications")
    op.drop_index("ix_permit_applications_stage_position", table_name="permit_applications")
    op.drop_index("ix_permit_applications_application_number", table_name="permit_applications")
    op.drop_table("permit_applications")
