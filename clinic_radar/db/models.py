"""SQLAlchemy ORM models for Clinic Radar.

These models define the database tables for:
- TrackedSiteDB (monitored websites)
- CatalogEntryDB, CompoundWordDB, CompoundCandidateDB (catalog and curation)
- SnapshotDB, PriceRecordDB, EquipmentChangeDB (extraction history)
- ClientProductDB, SalesSignalRuleDB, SalesSignalDB (signal classification)
- CrawlActivityDB (audit log)
"""

from datetime import UTC, datetime
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


def _generate_uuid() -> str:
    """Generate a UUID string."""
    return str(uuid4())


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# ============================================================================
# Sites and Catalog
# ============================================================================


class TrackedSiteDB(Base):
    """Database model for tracked sites."""

    __tablename__ = "tracked_sites"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    website: Mapped[str] = mapped_column(String(500), nullable=False, unique=True)
    source: Mapped[str] = mapped_column(String(50), default="manual", index=True)
    profile_grade: Mapped[str | None] = mapped_column(String(20), nullable=True)
    tier: Mapped[str] = mapped_column(String(10), default="tier3", index=True)
    last_crawled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_visual_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)

    def __repr__(self) -> str:
        return f"<TrackedSiteDB(id={self.id}, website='{self.website}')>"


class CatalogEntryDB(Base):
    """Database model for canonical catalog entries."""

    __tablename__ = "catalog_entries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    canonical_name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    category: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    keywords_json: Mapped[str] = mapped_column(Text, default="[]")  # JSON array
    base_unit_type: Mapped[str | None] = mapped_column(String(20), nullable=True)

    def __repr__(self) -> str:
        return f"<CatalogEntryDB(id={self.id}, name='{self.canonical_name}')>"


class CompoundWordDB(Base):
    """Database model for curated compound abbreviations."""

    __tablename__ = "compound_words"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    compound: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    components_json: Mapped[str] = mapped_column(Text, default="[]")  # JSON array
    note: Mapped[str] = mapped_column(Text, default="")


class CompoundCandidateDB(Base):
    """Database model for compound candidates awaiting curation."""

    __tablename__ = "compound_candidates"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    raw_text: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    matched_keywords_json: Mapped[str] = mapped_column(Text, default="[]")  # JSON array
    components_json: Mapped[str] = mapped_column(Text, default="[]")  # JSON array
    residual: Mapped[str] = mapped_column(String(255), default="")
    source: Mapped[str] = mapped_column(String(20), default="keywords")
    discovery_count: Mapped[int] = mapped_column(Integer, default=1)
    first_site_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("tracked_sites.id"), nullable=True
    )
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, onupdate=_utc_now)


# ============================================================================
# Extraction History
# ============================================================================


class SnapshotDB(Base):
    """
    Database model for per-run site snapshots.

    Rows are append-only; (site_id, sequence) is unique.
    """

    __tablename__ = "snapshots"
    __table_args__ = (UniqueConstraint("site_id", "sequence", name="uq_snapshots_site_sequence"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    site_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tracked_sites.id"), nullable=False, index=True
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    text_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    raw_text_hash: Mapped[str] = mapped_column(String(64), default="")
    ocr_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    equipment_json: Mapped[str] = mapped_column(Text, default="[]")  # JSON array
    treatments_json: Mapped[str] = mapped_column(Text, default="[]")  # JSON array
    pricing_json: Mapped[str] = mapped_column(Text, default="[]")  # JSON array of PriceRecord
    event_pricing_json: Mapped[str] = mapped_column(Text, default="[]")  # JSON array of PriceRecord
    new_compounds_json: Mapped[str] = mapped_column(Text, default="[]")  # JSON array
    match_rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    diff_summary: Mapped[str] = mapped_column(Text, default="")
    tokens_used: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, index=True)


class PriceRecordDB(Base):
    """Database model for extracted prices."""

    __tablename__ = "price_records"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    site_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tracked_sites.id"), nullable=False, index=True
    )
    snapshot_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("snapshots.id"), nullable=True, index=True
    )
    item_name: Mapped[str] = mapped_column(String(255), nullable=False)
    canonical_name: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    raw_text: Mapped[str] = mapped_column(Text, default="")
    total_quantity: Mapped[float | None] = mapped_column(Float, nullable=True)
    unit_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    total_price: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    price_band: Mapped[str] = mapped_column(String(10), default="Mass")
    is_package: Mapped[bool] = mapped_column(Boolean, default=False)
    is_event: Mapped[bool] = mapped_column(Boolean, default=False)
    is_outlier: Mapped[bool] = mapped_column(Boolean, default=False)
    confidence: Mapped[str] = mapped_column(String(20), default="ESTIMATED")
    event_context_json: Mapped[str] = mapped_column(Text, default="{}")  # JSON object
    position: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)


class EquipmentChangeDB(Base):
    """Database model for equipment/treatment changes between snapshots."""

    __tablename__ = "equipment_changes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    site_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tracked_sites.id"), nullable=False, index=True
    )
    snapshot_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("snapshots.id"), nullable=True, index=True
    )
    change_type: Mapped[str] = mapped_column(String(10), nullable=False)
    item_type: Mapped[str] = mapped_column(String(20), default="equipment")
    item_name: Mapped[str] = mapped_column(String(255), nullable=False)
    detected_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, index=True)


# ============================================================================
# Sales Signals
# ============================================================================


class ClientProductDB(Base):
    """Database model for client products."""

    __tablename__ = "client_products"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True)


class SalesSignalRuleDB(Base):
    """Database model for per-product signal rules."""

    __tablename__ = "sales_signal_rules"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    product_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("client_products.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), default="")
    priority: Mapped[str] = mapped_column(String(10), default="MEDIUM")
    condition_json: Mapped[str] = mapped_column(Text, nullable=False)  # JSON object
    title_template: Mapped[str] = mapped_column(Text, nullable=False)
    description_template: Mapped[str] = mapped_column(Text, default="")
    related_angle: Mapped[str | None] = mapped_column(String(100), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True)


class SalesSignalDB(Base):
    """Database model for emitted sales signals."""

    __tablename__ = "sales_signals"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    site_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tracked_sites.id"), nullable=False, index=True
    )
    product_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("client_products.id"), nullable=False, index=True
    )
    rule_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("sales_signal_rules.id"), nullable=False
    )
    change_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("equipment_changes.id"), nullable=True
    )
    signal_type: Mapped[str] = mapped_column(String(50), nullable=False)
    priority: Mapped[str] = mapped_column(String(10), nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    related_angle: Mapped[str | None] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="NEW", index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, index=True)


class CrawlActivityDB(Base):
    """Database model for the crawl audit log."""

    __tablename__ = "crawl_activity"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    site_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tracked_sites.id"), nullable=False, index=True
    )
    outcome: Mapped[str] = mapped_column(String(20), nullable=False)
    stage: Mapped[str | None] = mapped_column(String(20), nullable=True)
    message: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
