"""init schema

Revision ID: 0001_init
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa


revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "profiles",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("email", sa.String(length=200), nullable=False),
        sa.Column("full_name", sa.String(length=160), nullable=True),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="customer"),
        sa.Column("password_hash", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_profiles_email", "profiles", ["email"], unique=True)

    op.create_table(
        "appraisals",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="draft"),
        sa.Column("customer_id", sa.String(length=36), sa.ForeignKey("profiles.id"), nullable=False),
        sa.Column("agent_id", sa.String(length=36), sa.ForeignKey("profiles.id"), nullable=True),
        sa.Column("property_address", sa.String(length=255), nullable=False),
        sa.Column("property_type", sa.String(length=60), nullable=True),
        sa.Column("bedrooms", sa.Integer(), nullable=True),
        sa.Column("bathrooms", sa.Float(), nullable=True),
        sa.Column("land_size", sa.Float(), nullable=True),
        sa.Column("additional_notes", sa.Text(), nullable=True),
        sa.Column("estimated_value_min", sa.Float(), nullable=True),
        sa.Column("estimated_value_max", sa.Float(), nullable=True),
        sa.Column("final_value", sa.Float(), nullable=True),
        sa.Column("completion_notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("claimed_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "(agent_id IS NULL AND status IN ('draft','processing','published','cancelled')) OR "
            "(agent_id IS NOT NULL AND status IN ('claimed','completed'))",
            name="ck_appraisals_agent_matches_status",
        ),
    )
    op.create_index("ix_appraisals_status", "appraisals", ["status"])
    op.create_index("ix_appraisals_customer_id", "appraisals", ["customer_id"])
    op.create_index("ix_appraisals_agent_id", "appraisals", ["agent_id"])
    op.create_index("ix_appraisals_status_agent", "appraisals", ["status", "agent_id"])

    op.create_table(
        "comparable_properties",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("appraisal_id", sa.String(length=36), sa.ForeignKey("appraisals.id"), nullable=False),
        sa.Column("address", sa.String(length=255), nullable=False),
        sa.Column("sale_price", sa.Float(), nullable=False),
        sa.Column("property_type", sa.String(length=60), nullable=True),
        sa.Column("bedrooms", sa.Integer(), nullable=True),
        sa.Column("bathrooms", sa.Float(), nullable=True),
        sa.Column("land_size", sa.Float(), nullable=True),
        sa.Column("sold_date", sa.Date(), nullable=True),
        sa.Column("distance_km", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_comparable_properties_appraisal_id", "comparable_properties", ["appraisal_id"])

    op.create_table(
        "reports",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("appraisal_id", sa.String(length=36), sa.ForeignKey("appraisals.id"), nullable=False),
        sa.Column("kind", sa.String(length=20), nullable=False, server_default="final"),
        sa.Column("storage_key", sa.String(length=255), nullable=False),
        sa.Column("content_type", sa.String(length=80), nullable=False, server_default="application/pdf"),
        sa.Column("size_bytes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("generated_by", sa.String(length=36), sa.ForeignKey("profiles.id"), nullable=True),
        sa.Column("generated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_reports_appraisal_id", "reports", ["appraisal_id"])

    op.create_table(
        "appraisal_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("appraisal_id", sa.String(length=36), sa.ForeignKey("appraisals.id"), nullable=False),
        sa.Column("actor_id", sa.String(length=36), sa.ForeignKey("profiles.id"), nullable=True),
        sa.Column("transition", sa.String(length=40), nullable=False),
        sa.Column("from_status", sa.String(length=20), nullable=True),
        sa.Column("to_status", sa.String(length=20), nullable=False),
        sa.Column("payload_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_appraisal_events_appraisal_id", "appraisal_events", ["appraisal_id"])
    op.create_index("ix_appraisal_events_transition", "appraisal_events", ["transition"])

    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("actor_id", sa.String(length=36), sa.ForeignKey("profiles.id"), nullable=True),
        sa.Column("action", sa.String(length=80), nullable=False),
        sa.Column("entity_type", sa.String(length=80), nullable=False),
        sa.Column("entity_id", sa.String(length=80), nullable=False),
        sa.Column("before_json", sa.Text(), nullable=True),
        sa.Column("after_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_audit_events_entity", "audit_events", ["entity_type", "entity_id"])


def downgrade():
    op.drop_index("ix_audit_events_entity", table_name="audit_events")
    op.drop_table("audit_events")

    op.drop_index("ix_appraisal_events_transition", table_name="appraisal_events")
    op.drop_index("ix_appraisal_events_appraisal_id", table_name="appraisal_events")
    op.drop_table("appraisal_events")

    op.drop_index("ix_reports_appraisal_id", table_name="reports")
    op.drop_table("reports")

    op.drop_index("ix_comparable_properties_appraisal_id", table_name="comparable_properties")
    op.drop_table("comparable_properties")

    op.drop_index("ix_appraisals_status_agent", table_name="appraisals")
    op.drop_index("ix_appraisals_agent_id", table_name="appraisals")
    op.drop_index("ix_appraisals_customer_id", table_name="appraisals")
    op.drop_index("ix_appraisals_status", table_name="appraisals")
    op.drop_table("appraisals")

    op.drop_index("ix_profiles_email", table_name="profiles")
    op.drop_table("profiles")
