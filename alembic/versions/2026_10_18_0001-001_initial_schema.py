"""initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-18

All 5 tables as defined in app/models/database_models.py:
assessment_types, assessment_field_definitions, assessment_projects,
assessment_field_values, assessment_project_documents.
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ── Enum types ────────────────────────────────────────────────────────
    field_data_type = sa.Enum(
        "TEXT", "TEXT_AREA", "NUMBER", "DATE", "BOOLEAN", "ENUM_SINGLE", "ENUM_MULTI",
        name="fielddatatype",
    )
    project_status = sa.Enum("ACTIVE", "FINISHED", name="projectstatus")
    document_type = sa.Enum("INITIAL", "MODIFIED", "FINAL_PDF", name="documenttype")

    # ── assessment_types ──────────────────────────────────────────────────
    op.create_table(
        "assessment_types",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False, unique=True),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("template_file_names", sa.JSON, nullable=False),
    )

    # ── assessment_field_definitions ──────────────────────────────────────
    op.create_table(
        "assessment_field_definitions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "assessment_type_id",
            sa.String(64),
            sa.ForeignKey("assessment_types.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("field_key", sa.String(100), nullable=False),
        sa.Column("label", sa.String(255), nullable=False),
        sa.Column("field_type", field_data_type, nullable=False),
        sa.Column("options", sa.JSON, nullable=True),
        sa.Column("is_required", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("display_order", sa.Integer, nullable=False, server_default="0"),
        sa.Column("section", sa.String(100), nullable=True),
        sa.Column("default_text_if_empty", sa.Text, nullable=True),
        sa.UniqueConstraint("assessment_type_id", "field_key", name="uq_field_definition_type_key"),
    )

    # ── assessment_projects ───────────────────────────────────────────────
    op.create_table(
        "assessment_projects",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("display_name", sa.String(255), nullable=False),
        sa.Column(
            "assessment_type_id",
            sa.String(64),
            sa.ForeignKey("assessment_types.id", ondelete="RESTRICT"),
            nullable=False,
            index=True,
        ),
        sa.Column("assessor_id", sa.String(255), nullable=False, index=True),
        sa.Column("status", project_status, nullable=False, server_default="ACTIVE"),
        sa.Column("creation_timestamp", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column(
            "last_modification_timestamp", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.Column("public_access_id", sa.String(36), nullable=True, unique=True),
        sa.Column("document_storage_path", sa.Text, nullable=True),
        sa.Column("qr_code_data", sa.Text, nullable=True),
    )

    # ── assessment_field_values ───────────────────────────────────────────
    op.create_table(
        "assessment_field_values",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "project_id",
            sa.String(36),
            sa.ForeignKey("assessment_projects.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column(
            "field_definition_id",
            sa.String(36),
            sa.ForeignKey("assessment_field_definitions.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("single_value", sa.Text, nullable=True),
        sa.Column("multiple_values", sa.JSON, nullable=True),
        sa.UniqueConstraint("project_id", "field_definition_id", name="uq_field_value_project_definition"),
    )

    # ── assessment_project_documents ──────────────────────────────────────
    op.create_table(
        "assessment_project_documents",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "project_id",
            sa.String(36),
            sa.ForeignKey("assessment_projects.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("document_type", document_type, nullable=False, index=True),
        sa.Column("original_file_name", sa.String(255), nullable=False),
        sa.Column("stored_file_path", sa.Text, nullable=False),
        sa.Column("upload_timestamp", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("version_number", sa.Integer, nullable=False, server_default="1"),
    )


def downgrade() -> None:
    op.drop_table("assessment_project_documents")
    op.drop_table("assessment_field_values")
    op.drop_table("assessment_projects")
    op.drop_table("assessment_field_definitions")
    op.drop_table("assessment_types")

    for enum_name in ("documenttype", "projectstatus", "fielddatatype"):
        sa.Enum(name=enum_name).drop(op.get_bind(), checkfirst=True)
