"""initial price memory schema

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18 00:00:01
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20261018_0001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "materials",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(length=512), nullable=False),
        sa.Column("normalized_name", sa.String(length=512), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("hsn_code", sa.String(length=32), nullable=True),
        sa.Column("provenance", sa.String(length=16), nullable=False, server_default="master"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("normalized_name", "provenance", name="uq_materials_normalized_provenance"),
    )
    op.create_index("ix_materials_normalized_name", "materials", ["normalized_name"], unique=False)

    op.create_table(
        "clients",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("normalized_name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=True),
        sa.Column("contact_person", sa.String(length=255), nullable=True),
        sa.Column("provenance", sa.String(length=16), nullable=False, server_default="master"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("normalized_name", "provenance", name="uq_clients_normalized_provenance"),
    )
    op.create_index("ix_clients_normalized_name", "clients", ["normalized_name"], unique=False)
    op.create_index("ix_clients_email", "clients", ["email"], unique=False)

    op.create_table(
        "material_aliases",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("material_id", sa.Integer(), nullable=False),
        sa.Column("alias", sa.String(length=512), nullable=False),
        sa.Column("origin", sa.String(length=16), nullable=False, server_default="manual"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["material_id"], ["materials.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("alias"),
    )
    op.create_index("ix_material_aliases_material_id", "material_aliases", ["material_id"], unique=False)

    op.create_table(
        "client_aliases",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("client_id", sa.Integer(), nullable=False),
        sa.Column("alias", sa.String(length=255), nullable=False),
        sa.Column("origin", sa.String(length=16), nullable=False, server_default="manual"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["client_id"], ["clients.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("alias"),
    )
    op.create_index("ix_client_aliases_client_id", "client_aliases", ["client_id"], unique=False)

    op.create_table(
        "price_history",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("material_id", sa.Integer(), nullable=False),
        sa.Column("client_id", sa.Integer(), nullable=False),
        sa.Column("rate", sa.Numeric(precision=14, scale=2), nullable=False),
        sa.Column("currency", sa.String(length=8), nullable=False, server_default="INR"),
        sa.Column("unit", sa.String(length=16), nullable=False),
        sa.Column("quantity", sa.Float(), nullable=True),
        sa.Column("delivery_location", sa.String(length=255), nullable=True),
        sa.Column("delivery_terms", sa.String(length=255), nullable=True),
        sa.Column("tax_code", sa.String(length=32), nullable=True),
        sa.Column("quoted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("provenance", sa.String(length=16), nullable=False),
        sa.Column("source_thread_id", sa.String(length=255), nullable=True),
        sa.Column("source_message_id", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["material_id"], ["materials.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["client_id"], ["clients.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_price_history_material_id", "price_history", ["material_id"], unique=False)
    op.create_index("ix_price_history_client_id", "price_history", ["client_id"], unique=False)
    op.create_index("ix_price_history_source_message_id", "price_history", ["source_message_id"], unique=False)
    op.create_index(
        "ix_price_history_lookup",
        "price_history",
        ["material_id", "client_id", "quoted_at"],
        unique=False,
    )

    op.create_table(
        "ingestion_log",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("message_id", sa.String(length=255), nullable=False),
        sa.Column("thread_id", sa.String(length=255), nullable=True),
        sa.Column("subject", sa.String(length=998), nullable=True),
        sa.Column("sender", sa.String(length=320), nullable=True),
        sa.Column("items_extracted", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="success"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("message_id"),
    )
    op.create_index("ix_ingestion_log_thread_id", "ingestion_log", ["thread_id"], unique=False)

    op.create_table(
        "parsing_history",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("message_id", sa.String(length=255), nullable=True),
        sa.Column("method", sa.String(length=32), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("items_extracted", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("processing_time_ms", sa.Integer(), nullable=True),
        sa.Column("cost_usd", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("input_tokens", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("output_tokens", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_parsing_history_message_id", "parsing_history", ["message_id"], unique=False)
    op.create_index("ix_parsing_history_method", "parsing_history", ["method"], unique=False)

    op.create_table(
        "parsing_failures",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("message_id", sa.String(length=255), nullable=True),
        sa.Column("method", sa.String(length=32), nullable=False),
        sa.Column("error", sa.Text(), nullable=False),
        sa.Column("email_subject", sa.String(length=998), nullable=True),
        sa.Column("email_body_length", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_parsing_failures_message_id", "parsing_failures", ["message_id"], unique=False)

    op.create_table(
        "review_queue",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("source_message_id", sa.String(length=255), nullable=False),
        sa.Column("thread_id", sa.String(length=255), nullable=True),
        sa.Column("subject", sa.String(length=998), nullable=True),
        sa.Column("sender", sa.String(length=320), nullable=True),
        sa.Column("extracted_payload", sa.JSON(), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("method", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("reviewed_by", sa.String(length=255), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("corrections_json", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("source_message_id"),
    )
    op.create_index("ix_review_queue_status", "review_queue", ["status"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_review_queue_status", table_name="review_queue")
    op.drop_table("review_queue")
    op.drop_index("ix_parsing_failures_message_id", table_name="parsing_failures")
    op.drop_table("parsing_failures")
    op.drop_index("ix_parsing_history_method", table_name="parsing_history")
    op.drop_index("ix_parsing_history_message_id", table_name="parsing_history")
    op.drop_table("parsing_history")
    op.drop_index("ix_ingestion_log_thread_id", table_name="ingestion_log")
    op.drop_table("ingestion_log")
    op.drop_index("ix_price_history_lookup", table_name="price_history")
    op.drop_index("ix_price_history_source_message_id", table_name="price_history")
    op.drop_index("ix_price_history_client_id", table_name="price_history")
    op.drop_index("ix_price_history_material_id", table_name="price_history")
    op.drop_table("price_history")
    op.drop_index("ix_client_aliases_client_id", table_name="client_aliases")
    op.drop_table("client_aliases")
    op.drop_index("ix_material_aliases_material_id", table_name="material_aliases")
    op.drop_table("material_aliases")
    op.drop_index("ix_clients_email", table_name="clients")
    op.drop_index("ix_clients_normalized_name", table_name="clients")
    op.drop_table("clients")
    op.drop_index("ix_materials_normalized_name", table_name="materials")
    op.drop_table("materials")
