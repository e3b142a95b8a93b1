"""quote engine core schema

Revision ID: 0001_quote_engine_core
Revises:
Create Date: 2026-10-19
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_quote_engine_core"
down_revision = None
branch_labels = None
depends_on = None

MONEY = sa.Numeric(18, 4)
RATE = sa.Numeric(10, 6)


def _ts(name, nullable=False):
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade():
    # ─────────── quotes ───────────
    op.create_table(
        "quotes",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("organization_id", sa.String(length=64), nullable=False),
        sa.Column("quote_number", sa.String(length=32), nullable=False),
        sa.Column("customer_id", sa.String(length=64), nullable=False),
        sa.Column("project_id", sa.String(length=64), nullable=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default=sa.text("'draft'")),
        sa.Column("type", sa.String(length=32), nullable=False, server_default=sa.text("'project'")),
        _ts("valid_from"),
        _ts("valid_until"),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("exchange_rate", RATE, nullable=False, server_default=sa.text("1")),
        sa.Column("subtotal", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("tax_amount", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("discount_amount", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("total_amount", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("discount_type", sa.String(length=16), nullable=True),
        sa.Column("discount_value", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("terms_conditions", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("internal_notes", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(length=64), nullable=False),
        sa.Column("approved_by", sa.String(length=64), nullable=True),
        _ts("approved_at", nullable=True),
        _ts("sent_at", nullable=True),
        _ts("accepted_at", nullable=True),
        _ts("expires_at", nullable=True),
        sa.Column("metadata", postgresql.JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        _ts("created_at"),
        _ts("updated_at"),
        _ts("deleted_at", nullable=True),
    )
    op.create_index(
        "uq_quote_number_org",
        "quotes",
        ["organization_id", "quote_number"],
        unique=True,
        postgresql_where=sa.text("deleted_at IS NULL"),
    )
    op.create_index("ix_quotes_org_status", "quotes", ["organization_id", "status"])
    op.create_index("ix_quotes_org_created", "quotes", ["organization_id", "created_at"])
    op.create_index("ix_quotes_org_customer", "quotes", ["organization_id", "customer_id"])

    # ─────────── quote_line_items ───────────
    op.create_table(
        "quote_line_items",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("quote_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("quotes.id", ondelete="CASCADE"), nullable=False),
        sa.Column("line_number", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(length=16), nullable=False, server_default=sa.text("'service'")),
        sa.Column("sku", sa.String(length=50), nullable=True),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("quantity", MONEY, nullable=False),
        sa.Column("unit_price", MONEY, nullable=False),
        sa.Column("unit_cost", MONEY, nullable=True),
        sa.Column("unit", sa.String(length=20), nullable=False, server_default=sa.text("'hour'")),
        sa.Column("tax_inclusive", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("tax_rate", RATE, nullable=False, server_default=sa.text("0")),
        sa.Column("discount_type", sa.String(length=16), nullable=True),
        sa.Column("discount_value", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("percentage_discount", MONEY, nullable=True),
        sa.Column("fixed_discount", MONEY, nullable=True),
        sa.Column("service_category_id", sa.String(length=64), nullable=True),
        sa.Column("rate_card_id", sa.String(length=64), nullable=True),
        sa.Column("pricing_source", sa.String(length=16), nullable=False, server_default=sa.text("'rate_card'")),
        sa.Column("tax_amount", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("discount_amount", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("subtotal", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("total_amount", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("metadata", postgresql.JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        _ts("created_at"),
        _ts("updated_at"),
        sa.UniqueConstraint("quote_id", "line_number", name="uq_line_number_quote"),
        sa.CheckConstraint(
            "service_category_id IS NOT NULL OR rate_card_id IS NOT NULL",
            name="ck_line_item_pricing_ref",
        ),
    )
    op.create_index("ix_line_items_quote", "quote_line_items", ["quote_id"])

    # ─────────── quote_versions ───────────
    op.create_table(
        "quote_versions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("quote_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("quotes.id", ondelete="CASCADE"), nullable=False),
        sa.Column("organization_id", sa.String(length=64), nullable=False),
        sa.Column("version_number", sa.Integer(), nullable=False),
        sa.Column("quote_number", sa.String(length=32), nullable=False),
        sa.Column("customer_id", sa.String(length=64), nullable=False),
        sa.Column("project_id", sa.String(length=64), nullable=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False),
        _ts("valid_from"),
        _ts("valid_until"),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("exchange_rate", RATE, nullable=False),
        sa.Column("subtotal", MONEY, nullable=False),
        sa.Column("tax_amount", MONEY, nullable=False),
        sa.Column("discount_amount", MONEY, nullable=False),
        sa.Column("total_amount", MONEY, nullable=False),
        sa.Column("discount_type", sa.String(length=16), nullable=True),
        sa.Column("discount_value", MONEY, nullable=False),
        sa.Column("terms_conditions", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("internal_notes", sa.Text(), nullable=True),
        sa.Column("metadata", postgresql.JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("change_reason", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(length=64), nullable=False),
        _ts("created_at"),
        sa.UniqueConstraint("quote_id", "version_number", name="uq_quote_version_number"),
    )
    op.create_index("ix_quote_versions_quote", "quote_versions", ["quote_id"])

    op.create_table(
        "quote_line_item_versions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column(
            "quote_version_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("quote_versions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("original_line_item_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("line_number", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(length=16), nullable=False),
        sa.Column("sku", sa.String(length=50), nullable=True),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("quantity", MONEY, nullable=False),
        sa.Column("unit_price", MONEY, nullable=False),
        sa.Column("unit_cost", MONEY, nullable=True),
        sa.Column("unit", sa.String(length=20), nullable=False),
        sa.Column("tax_inclusive", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("tax_rate", RATE, nullable=False),
        sa.Column("discount_type", sa.String(length=16), nullable=True),
        sa.Column("discount_value", MONEY, nullable=False),
        sa.Column("percentage_discount", MONEY, nullable=True),
        sa.Column("fixed_discount", MONEY, nullable=True),
        sa.Column("service_category_id", sa.String(length=64), nullable=True),
        sa.Column("rate_card_id", sa.String(length=64), nullable=True),
        sa.Column("pricing_source", sa.String(length=16), nullable=False),
        sa.Column("tax_amount", MONEY, nullable=False),
        sa.Column("discount_amount", MONEY, nullable=False),
        sa.Column("subtotal", MONEY, nullable=False),
        sa.Column("total_amount", MONEY, nullable=False),
        sa.Column("metadata", postgresql.JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        _ts("created_at"),
    )
    op.create_index("ix_line_item_versions_version", "quote_line_item_versions", ["quote_version_id"])

    # ─────────── rate cards ───────────
    op.create_table(
        "rate_cards",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("organization_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("version", sa.String(length=32), nullable=False, server_default=sa.text("'1'")),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("currency", sa.String(length=3), nullable=False),
        _ts("effective_from"),
        _ts("effective_until", nullable=True),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_by", sa.String(length=64), nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_index("ix_rate_cards_org_active", "rate_cards", ["organization_id", "is_active"])
    op.create_index("ix_rate_cards_org_effective", "rate_cards", ["organization_id", "effective_from"])

    op.create_table(
        "rate_card_items",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("rate_card_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("rate_cards.id", ondelete="CASCADE"), nullable=False),
        sa.Column("service_category_id", sa.String(length=64), nullable=False),
        sa.Column("role_id", sa.String(length=64), nullable=True),
        sa.Column("item_code", sa.String(length=50), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("unit", sa.String(length=20), nullable=False, server_default=sa.text("'hour'")),
        sa.Column("base_rate", sa.Numeric(15, 4), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("tax_class", sa.String(length=32), nullable=False, server_default=sa.text("'standard'")),
        _ts("effective_from", nullable=True),
        _ts("effective_until", nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("metadata", postgresql.JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_index("ix_rate_card_items_card", "rate_card_items", ["rate_card_id"])
    op.create_index("ix_rate_card_items_card_code", "rate_card_items", ["rate_card_id", "item_code"])
    op.create_index("ix_rate_card_items_card_category", "rate_card_items", ["rate_card_id", "service_category_id"])

    # ─────────── idempotency ───────────
    op.create_table(
        "idempotency_key_records",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("idem_key", sa.String(length=128), nullable=False),
        sa.Column("organization_id", sa.String(length=64), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("route", sa.String(length=256), nullable=False),
        sa.Column("request_hash", sa.String(length=128), nullable=False),
        sa.Column("response_status", sa.Integer(), nullable=False, server_default=sa.text("200")),
        sa.Column("response_json", postgresql.JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        _ts("created_at"),
        _ts("expires_at"),
        sa.UniqueConstraint("idem_key", "organization_id", "user_id", "route", name="uq_idem_scope"),
    )
    op.create_index("ix_idem_expires", "idempotency_key_records", ["expires_at"])

    # ─────────── audit ───────────
    op.create_table(
        "audit_log_records",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        _ts("created_at"),
        sa.Column("request_id", sa.String(length=128), nullable=True),
        sa.Column("organization_id", sa.String(length=64), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("action", sa.String(length=96), nullable=False),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=False),
        sa.Column("old_values", postgresql.JSONB, nullable=True),
        sa.Column("new_values", postgresql.JSONB, nullable=True),
        sa.Column("metadata", postgresql.JSONB, nullable=True),
    )
    op.create_index("ix_audit_log_records_request_id", "audit_log_records", ["request_id"])
    op.create_index("ix_audit_org_entity", "audit_log_records", ["organization_id", "entity_type", "entity_id"])
    op.create_index("ix_audit_action", "audit_log_records", ["action"])
    op.create_index("ix_audit_created", "audit_log_records", ["created_at"])


def downgrade():
    op.drop_table("audit_log_records")
    op.drop_table("idempotency_key_records")
    op.drop_table("rate_card_items")
    op.drop_table("rate_cards")
    op.drop_table("quote_line_item_versions")
    op.drop_table("quote_versions")
    op.drop_table("quote_line_items")
    op.drop_index("uq_quote_number_org", table_name="quotes")
    op.drop_table("quotes")
