"""Initial schema for tracked sites, catalog, snapshots and signals.

Revision ID: 0001
Revises:
Create Date: 2026-10-18

This migration creates:
- Sites: tracked_sites, crawl_activity
- Catalog: catalog_entries, compound_words, compound_candidates
- History: snapshots, price_records, equipment_changes
- Signals: client_products, sales_signal_rules, sales_signals
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # =========================================================================
    # Sites
    # =========================================================================

    op.create_table(
        "tracked_sites",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("website", sa.String(500), nullable=False, unique=True),
        sa.Column("source", sa.String(50), default="manual"),
        sa.Column("profile_grade", sa.String(20), nullable=True),
        sa.Column("tier", sa.String(10), default="tier3"),
        sa.Column("last_crawled_at", sa.DateTime(), nullable=True),
        sa.Column("last_visual_at", sa.DateTime(), nullable=True),
        sa.Column("active", sa.Boolean(), default=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_tracked_sites_name", "tracked_sites", ["name"])
    op.create_index("ix_tracked_sites_source", "tracked_sites", ["source"])
    op.create_index("ix_tracked_sites_tier", "tracked_sites", ["tier"])

    # =========================================================================
    # Catalog
    # =========================================================================

    op.create_table(
        "catalog_entries",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("canonical_name", sa.String(255), nullable=False, unique=True),
        sa.Column("category", sa.String(50), nullable=False),
        sa.Column("keywords_json", sa.Text(), default="[]"),
        sa.Column("base_unit_type", sa.String(20), nullable=True),
    )
    op.create_index("ix_catalog_entries_category", "catalog_entries", ["category"])

    op.create_table(
        "compound_words",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("compound", sa.String(100), nullable=False, unique=True),
        sa.Column("components_json", sa.Text(), default="[]"),
        sa.Column("note", sa.Text(), default=""),
    )

    op.create_table(
        "compound_candidates",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("raw_text", sa.String(255), nullable=False, unique=True),
        sa.Column("matched_keywords_json", sa.Text(), default="[]"),
        sa.Column("components_json", sa.Text(), default="[]"),
        sa.Column("residual", sa.String(255), default=""),
        sa.Column("source", sa.String(20), default="keywords"),
        sa.Column("discovery_count", sa.Integer(), default=1),
        sa.Column("first_site_id", sa.String(36), sa.ForeignKey("tracked_sites.id"), nullable=True),
        sa.Column("status", sa.String(20), default="pending"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_compound_candidates_status", "compound_candidates", ["status"])

    # =========================================================================
    # Extraction History
    # =========================================================================

    op.create_table(
        "snapshots",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("site_id", sa.String(36), sa.ForeignKey("tracked_sites.id"), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("text_hash", sa.String(64), nullable=False),
        sa.Column("raw_text_hash", sa.String(64), default=""),
        sa.Column("ocr_hash", sa.String(64), nullable=True),
        sa.Column("equipment_json", sa.Text(), default="[]"),
        sa.Column("treatments_json", sa.Text(), default="[]"),
        sa.Column("pricing_json", sa.Text(), default="[]"),
        sa.Column("event_pricing_json", sa.Text(), default="[]"),
        sa.Column("new_compounds_json", sa.Text(), default="[]"),
        sa.Column("match_rate", sa.Float(), nullable=True),
        sa.Column("diff_summary", sa.Text(), default=""),
        sa.Column("tokens_used", sa.Integer(), default=0),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("site_id", "sequence", name="uq_snapshots_site_sequence"),
    )
    op.create_index("ix_snapshots_site_id", "snapshots", ["site_id"])
    op.create_index("ix_snapshots_created_at", "snapshots", ["created_at"])

    op.create_table(
        "price_records",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("site_id", sa.String(36), sa.ForeignKey("tracked_sites.id"), nullable=False),
        sa.Column("snapshot_id", sa.String(36), sa.ForeignKey("snapshots.id"), nullable=True),
        sa.Column("item_name", sa.String(255), nullable=False),
        sa.Column("canonical_name", sa.String(255), nullable=True),
        sa.Column("raw_text", sa.Text(), default=""),
        sa.Column("total_quantity", sa.Float(), nullable=True),
        sa.Column("unit_type", sa.String(20), nullable=True),
        sa.Column("total_price", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Float(), nullable=True),
        sa.Column("price_band", sa.String(10), default="Mass"),
        sa.Column("is_package", sa.Boolean(), default=False),
        sa.Column("is_event", sa.Boolean(), default=False),
        sa.Column("is_outlier", sa.Boolean(), default=False),
        sa.Column("confidence", sa.String(20), default="ESTIMATED"),
        sa.Column("event_context_json", sa.Text(), default="{}"),
        sa.Column("position", sa.Integer(), default=0),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_price_records_site_id", "price_records", ["site_id"])
    op.create_index("ix_price_records_snapshot_id", "price_records", ["snapshot_id"])
    op.create_index("ix_price_records_canonical_name", "price_records", ["canonical_name"])

    op.create_table(
        "equipment_changes",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("site_id", sa.String(36), sa.ForeignKey("tracked_sites.id"), nullable=False),
        sa.Column("snapshot_id", sa.String(36), sa.ForeignKey("snapshots.id"), nullable=True),
        sa.Column("change_type", sa.String(10), nullable=False),
        sa.Column("item_type", sa.String(20), default="equipment"),
        sa.Column("item_name", sa.String(255), nullable=False),
        sa.Column("detected_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_equipment_changes_site_id", "equipment_changes", ["site_id"])
    op.create_index("ix_equipment_changes_snapshot_id", "equipment_changes", ["snapshot_id"])
    op.create_index("ix_equipment_changes_detected_at", "equipment_changes", ["detected_at"])

    # =========================================================================
    # Sales Signals
    # =========================================================================

    op.create_table(
        "client_products",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False, unique=True),
        sa.Column("active", sa.Boolean(), default=True),
    )

    op.create_table(
        "sales_signal_rules",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("product_id", sa.String(36), sa.ForeignKey("client_products.id"), nullable=False),
        sa.Column("name", sa.String(255), default=""),
        sa.Column("priority", sa.String(10), default="MEDIUM"),
        sa.Column("condition_json", sa.Text(), nullable=False),
        sa.Column("title_template", sa.Text(), nullable=False),
        sa.Column("description_template", sa.Text(), default=""),
        sa.Column("related_angle", sa.String(100), nullable=True),
        sa.Column("active", sa.Boolean(), default=True),
    )
    op.create_index("ix_sales_signal_rules_product_id", "sales_signal_rules", ["product_id"])

    op.create_table(
        "sales_signals",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("site_id", sa.String(36), sa.ForeignKey("tracked_sites.id"), nullable=False),
        sa.Column("product_id", sa.String(36), sa.ForeignKey("client_products.id"), nullable=False),
        sa.Column("rule_id", sa.String(36), sa.ForeignKey("sales_signal_rules.id"), nullable=False),
        sa.Column("change_id", sa.String(36), sa.ForeignKey("equipment_changes.id"), nullable=True),
        sa.Column("signal_type", sa.String(50), nullable=False),
        sa.Column("priority", sa.String(10), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), default=""),
        sa.Column("related_angle", sa.String(100), nullable=True),
        sa.Column("status", sa.String(20), default="NEW"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_sales_signals_site_id", "sales_signals", ["site_id"])
    op.create_index("ix_sales_signals_product_id", "sales_signals", ["product_id"])
    op.create_index("ix_sales_signals_status", "sales_signals", ["status"])
    op.create_index("ix_sales_signals_created_at", "sales_signals", ["created_at"])

    op.create_table(
        "crawl_activity",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("site_id", sa.String(36), sa.ForeignKey("tracked_sites.id"), nullable=False),
        sa.Column("outcome", sa.String(20), nullable=False),
        sa.Column("stage", sa.String(20), nullable=True),
        sa.Column("message", sa.Text(), default=""),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_crawl_activity_site_id", "crawl_activity", ["site_id"])


def downgrade() -> None:
    op.drop_table("crawl_activity")
    op.drop_table("sales_signals")
    op.drop_table("sales_signal_rules")
    op.drop_table("client_products")
    op.drop_table("equipment_changes")
    op.drop_table("price_records")
    op.drop_table("snapshots")
    op.drop_table("compound_candidates")
    op.drop_table("compound_words")
    op.drop_table("catalog_entries")
    op.drop_table("tracked_sites")
