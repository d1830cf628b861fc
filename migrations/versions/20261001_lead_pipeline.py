"""profiles, leads, lead notes and applications

Revision ID: 20261001_lead_pipeline
Revises:
Create Date: 2026-10-01
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "20261001_lead_pipeline"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "profiles",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="agent"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("email", name="uq_profiles_email"),
        sa.CheckConstraint("role IN ('admin', 'agent')", name="ck_profiles_role"),
    )

    op.create_table(
        "leads",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("app_no", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("mobile_no", sa.String(length=10), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=True),
        sa.Column("status", sa.String(length=40), nullable=True),
        sa.Column("final_status", sa.String(length=10), nullable=False, server_default="open"),
        sa.Column("agent_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("uploaded_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["agent_id"], ["profiles.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("app_no", name="uq_leads_app_no"),
        sa.CheckConstraint(
            "status IS NULL OR status IN ('cash salary', 'self employed', 'NI', 'ring more than 3 days', "
            "'salary low', 'cibil issue', 'banking received')",
            name="ck_leads_status",
        ),
        sa.CheckConstraint("final_status IN ('open', 'close')", name="ck_leads_final_status"),
        sa.CheckConstraint(
            "amount IS NULL OR (amount >= 40000 AND amount <= 1500000)",
            name="ck_leads_amount_range",
        ),
        sa.CheckConstraint("mobile_no ~ '^[0-9]{10}$'", name="ck_leads_mobile_no"),
    )
    op.create_index("ix_leads_mobile_no", "leads", ["mobile_no"])
    op.create_index("ix_leads_status", "leads", ["status"])
    op.create_index("ix_leads_final_status", "leads", ["final_status"])
    op.create_index("ix_leads_agent_created", "leads", ["agent_id", "created_at"])

    op.create_table(
        "lead_notes",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("lead_id", sa.BigInteger(), nullable=False),
        sa.Column("author_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("note", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["lead_id"], ["leads.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["author_id"], ["profiles.id"], ondelete="SET NULL"),
        sa.CheckConstraint("char_length(note) BETWEEN 1 AND 500", name="ck_lead_notes_length"),
    )
    op.create_index("ix_lead_notes_lead_id", "lead_notes", ["lead_id"])

    op.create_table(
        "applications",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("lead_id", sa.BigInteger(), nullable=False),
        sa.Column("agent_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("stage", sa.String(length=20), nullable=False, server_default="UnderReview"),
        sa.Column("loan_amount", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("interest_rate", sa.Numeric(6, 3), nullable=True),
        sa.Column("tenure_months", sa.Integer(), nullable=True),
        sa.Column("monthly_emi", sa.Numeric(14, 2), nullable=True),
        sa.Column("disbursed_amount", sa.Numeric(14, 2), nullable=True),
        sa.Column("disbursed_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["lead_id"], ["leads.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["agent_id"], ["profiles.id"], ondelete="SET NULL"),
        sa.CheckConstraint(
            "stage IN ('UnderReview', 'Approved', 'Reject', 'Disbursed')",
            name="ck_applications_stage",
        ),
        sa.CheckConstraint("loan_amount >= 0", name="ck_applications_loan_amount_nonneg"),
        sa.CheckConstraint(
            "stage <> 'Disbursed' OR (disbursed_amount IS NOT NULL AND disbursed_amount > 0)",
            name="ck_applications_disbursed_amount",
        ),
    )
    op.create_index("ix_applications_lead_id", "applications", ["lead_id"])
    op.create_index("ix_applications_agent_stage", "applications", ["agent_id", "stage"])


def downgrade() -> None:
    op.drop_index("ix_applications_agent_stage", table_name="applications")
    op.drop_index("ix_applications_lead_id", table_name="applications")
    op.drop_table("applications")
    op.drop_index("ix_lead_notes_lead_id", table_name="lead_notes")
    op.drop_table("lead_notes")
    op.drop_index("ix_leads_agent_created", table_name="leads")
    op.drop_index("ix_leads_final_status", table_name="leads")
    op.drop_index("ix_leads_status", table_name="leads")
    op.drop_index("ix_leads_mobile_no", table_name="leads")
    op.drop_table("leads")
    op.drop_table("profiles")
