"""create crm companies, contacts, opportunities and activities

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19 00:01:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610190001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "crm_company",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("industry", sa.String(length=128), nullable=True),
        sa.Column("website", sa.Text(), nullable=True),
        sa.Column("external_id", sa.String(length=255), nullable=True),
        sa.Column("custom_fields", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_crm_company_name", "crm_company", ["name"], unique=False)
    op.create_index("ix_crm_company_industry", "crm_company", ["industry"], unique=False)

    op.create_table(
        "crm_contact",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("first_name", sa.Text(), nullable=False),
        sa.Column("last_name", sa.Text(), nullable=False),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("phone", sa.String(length=64), nullable=True),
        sa.Column("role", sa.String(length=128), nullable=True),
        sa.Column("external_id", sa.String(length=255), nullable=True),
        sa.Column("custom_fields", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["company_id"], ["crm_company.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_crm_contact_company_id", "crm_contact", ["company_id"], unique=False)
    op.create_index("ix_crm_contact_email", "crm_contact", ["email"], unique=False)

    op.create_table(
        "crm_opportunity",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("contact_id", sa.Integer(), nullable=True),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="prospect"),
        sa.Column("close_date", sa.Date(), nullable=True),
        sa.Column("external_id", sa.String(length=255), nullable=True),
        sa.Column("custom_fields", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["company_id"], ["crm_company.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["contact_id"], ["crm_contact.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_crm_opportunity_company_id", "crm_opportunity", ["company_id"], unique=False)
    op.create_index("ix_crm_opportunity_contact_id", "crm_opportunity", ["contact_id"], unique=False)
    op.create_index("ix_crm_opportunity_status", "crm_opportunity", ["status"], unique=False)

    op.create_table(
        "crm_activity",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("contact_id", sa.Integer(), nullable=True),
        sa.Column("opportunity_id", sa.Integer(), nullable=True),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("details", sa.Text(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("custom_fields", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["company_id"], ["crm_company.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["contact_id"], ["crm_contact.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["opportunity_id"], ["crm_opportunity.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_crm_activity_company_id", "crm_activity", ["company_id"], unique=False)
    op.create_index("ix_crm_activity_contact_id", "crm_activity", ["contact_id"], unique=False)
    op.create_index("ix_crm_activity_opportunity_id", "crm_activity", ["opportunity_id"], unique=False)
    op.create_index("ix_crm_activity_type_occurred_at", "crm_activity", ["type", "occurred_at"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_crm_activity_type_occurred_at", table_name="crm_activity")
    op.drop_index("ix_crm_activity_opportunity_id", table_name="crm_activity")
    op.drop_index("ix_crm_activity_contact_id", table_name="crm_activity")
    op.drop_index("ix_crm_activity_company_id", table_name="crm_activity")
    op.drop_table("crm_activity")
    op.drop_index("ix_crm_opportunity_status", table_name="crm_opportunity")
    op.drop_index("ix_crm_opportunity_contact_id", table_name="crm_opportunity")
    op.drop_index("ix_crm_opportunity_company_id", table_name="crm_opportunity")
    op.drop_table("crm_opportunity")
    op.drop_index("ix_crm_contact_email", table_name="crm_contact")
    op.drop_index("ix_crm_contact_company_id", table_name="crm_contact")
    op.drop_table("crm_contact")
    op.drop_index("ix_crm_company_industry", table_name="crm_company")
    op.drop_index("ix_crm_company_name", table_name="crm_company")
    op.drop_table("crm_company")
