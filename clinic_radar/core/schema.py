"""Pydantic v2 domain models for Clinic Radar.

These models define the entities that flow through the pipeline:
- TrackedSite (a monitored website)
- CatalogEntry, CompoundWord, CompoundCandidate (catalog and curation)
- Snapshot, PriceRecord, EquipmentChange (extraction history)
- ClientProduct, SalesSignalRule, SalesSignal (signal classification)
- CrawlActivity (audit log of failed runs)
"""

from datetime import UTC, date, datetime
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from clinic_radar.core.conditions import RuleCondition, parse_condition
from clinic_radar.core.enums import (
    CandidateStatus,
    ChangeType,
    ConfidenceLevel,
    DecompositionSource,
    ItemType,
    PriceBand,
    ProfileGrade,
    RunOutcome,
    SignalPriority,
    SignalStatus,
    Tier,
    UnitType,
)


def _utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


# ============================================================================
# Sites and Catalog
# ============================================================================


class TrackedSite(BaseModel):
    """
    A monitored organization identified by its public website.

    Tier and crawl timestamps are updated after every run attempt.
    """

    id: UUID = Field(default_factory=uuid4)
    name: str
    website: str
    source: str = "manual"
    profile_grade: ProfileGrade | None = None
    tier: Tier = Tier.TIER3
    last_crawled_at: datetime | None = None
    last_visual_at: datetime | None = None
    active: bool = True
    created_at: datetime = Field(default_factory=_utc_now)

    @field_validator("website")
    @classmethod
    def website_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("website cannot be empty")
        return v.strip()


class CatalogEntry(BaseModel):
    """A canonical equipment or treatment name with its recognition keywords."""

    id: UUID = Field(default_factory=uuid4)
    canonical_name: str
    category: str
    keywords: list[str] = Field(default_factory=list)
    base_unit_type: UnitType | None = None

    @field_validator("canonical_name")
    @classmethod
    def name_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("canonical_name cannot be empty")
        return v.strip()

    @property
    def all_keywords(self) -> list[str]:
        """The canonical name followed by its keywords, without duplicates."""
        seen: list[str] = []
        for keyword in [self.canonical_name, *self.keywords]:
            if keyword and keyword not in seen:
                seen.append(keyword)
        return seen


class CompoundWord(BaseModel):
    """A curated abbreviation that stands for several catalog entries."""

    id: UUID = Field(default_factory=uuid4)
    compound: str
    components: list[str]
    note: str = ""


class CompoundCandidate(BaseModel):
    """
    An unresolved raw name queued for curation.

    matched_keywords only ever holds keywords that occur in raw_text.
    """

    id: UUID = Field(default_factory=uuid4)
    raw_text: str
    matched_keywords: list[str] = Field(default_factory=list)
    components: list[str] = Field(default_factory=list)
    residual: str = ""
    source: DecompositionSource = DecompositionSource.KEYWORDS
    discovery_count: int = 1
    first_site_id: UUID | None = None
    status: CandidateStatus = CandidateStatus.PENDING
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


# ============================================================================
# Extraction History
# ============================================================================


class EventConditions(BaseModel):
    """Structured conditions attached to a promotional price."""

    limit: str | None = None
    duration: str | None = None
    urgency: str | None = None
    occasion: str | None = None
    discount: str | None = None

    def is_empty(self) -> bool:
        return not any([self.limit, self.duration, self.urgency, self.occasion, self.discount])


class EventContext(BaseModel):
    """Promotional context found around a price."""

    label: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    conditions: EventConditions = Field(default_factory=EventConditions)


class PriceRecord(BaseModel):
    """
    A structured price extracted from free text.

    Outlier records are kept for audit but excluded from signals.
    """

    id: UUID = Field(default_factory=uuid4)
    site_id: UUID | None = None
    snapshot_id: UUID | None = None
    item_name: str
    canonical_name: str | None = None
    raw_text: str = ""
    total_quantity: float | None = None
    unit_type: UnitType | None = None
    total_price: int
    unit_price: float | None = None
    price_band: PriceBand = PriceBand.MASS
    is_package: bool = False
    is_event: bool = False
    is_outlier: bool = False
    confidence: ConfidenceLevel = ConfidenceLevel.ESTIMATED
    event_context: EventContext = Field(default_factory=EventContext)
    position: int = 0
    created_at: datetime = Field(default_factory=_utc_now)


class Snapshot(BaseModel):
    """
    One immutable record of a site's extracted state.

    Snapshots for a site are ordered by sequence; corrections require
    a new snapshot.
    """

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    site_id: UUID
    sequence: int = 1
    text_hash: str
    raw_text_hash: str = ""
    ocr_hash: str | None = None
    equipment: list[str] = Field(default_factory=list)
    treatments: list[str] = Field(default_factory=list)
    pricing: list[PriceRecord] = Field(default_factory=list)
    event_pricing: list[PriceRecord] = Field(default_factory=list)
    new_compounds: list[str] = Field(default_factory=list)
    match_rate: float | None = None
    diff_summary: str = ""
    tokens_used: int = 0
    created_at: datetime = Field(default_factory=_utc_now)


class EquipmentChange(BaseModel):
    """An item added to or removed from a site between consecutive snapshots."""

    id: UUID = Field(default_factory=uuid4)
    site_id: UUID
    snapshot_id: UUID | None = None
    change_type: ChangeType
    item_type: ItemType = ItemType.EQUIPMENT
    item_name: str
    detected_at: datetime = Field(default_factory=_utc_now)


# ============================================================================
# Sales Signals
# ============================================================================


class ClientProduct(BaseModel):
    """A client product that owns a set of signal rules."""

    id: UUID = Field(default_factory=uuid4)
    name: str
    active: bool = True


class SalesSignalRule(BaseModel):
    """A per-product rule turning matching changes into sales signals."""

    id: UUID = Field(default_factory=uuid4)
    product_id: UUID
    name: str = ""
    priority: SignalPriority = SignalPriority.MEDIUM
    condition: RuleCondition
    title_template: str
    description_template: str = ""
    related_angle: str | None = None
    active: bool = True

    @field_validator("condition", mode="before")
    @classmethod
    def validate_condition(cls, v: Any) -> Any:
        return parse_condition(v)


class SalesSignal(BaseModel):
    """An emitted instance of a rule firing against a specific change."""

    id: UUID = Field(default_factory=uuid4)
    site_id: UUID
    product_id: UUID
    rule_id: UUID
    change_id: UUID | None = None
    signal_type: str
    priority: SignalPriority
    title: str
    description: str = ""
    related_angle: str | None = None
    status: SignalStatus = SignalStatus.NEW
    created_at: datetime = Field(default_factory=_utc_now)


class CrawlActivity(BaseModel):
    """Audit entry for a site run that ended in a fatal error."""

    id: UUID = Field(default_factory=uuid4)
    site_id: UUID
    outcome: RunOutcome
    stage: str | None = None
    message: str = ""
    created_at: datetime = Field(default_factory=_utc_now)
