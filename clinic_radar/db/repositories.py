"""Repository classes for Clinic Radar database operations."""

import json
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from clinic_radar.core.conditions import condition_to_dict
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
from clinic_radar.core.schema import (
    CatalogEntry,
    ClientProduct,
    CompoundCandidate,
    CompoundWord,
    CrawlActivity,
    EquipmentChange,
    EventContext,
    PriceRecord,
    SalesSignal,
    SalesSignalRule,
    Snapshot,
    TrackedSite,
)
from clinic_radar.db.models import (
    CatalogEntryDB,
    ClientProductDB,
    CompoundCandidateDB,
    CompoundWordDB,
    CrawlActivityDB,
    EquipmentChangeDB,
    PriceRecordDB,
    SalesSignalDB,
    SalesSignalRuleDB,
    SnapshotDB,
    TrackedSiteDB,
)


def _utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


def _as_utc(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo; stored values are always UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def _dump_list(items: list) -> str:
    return json.dumps(items, ensure_ascii=False)


# ============================================================================
# Sites and Catalog
# ============================================================================


class TrackedSiteRepository:
    """Repository for TrackedSite CRUD operations."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, site: TrackedSite) -> TrackedSite:
        """Create a new tracked site."""
        db_item = TrackedSiteDB(
            id=str(site.id),
            name=site.name,
            website=site.website,
            source=site.source,
            profile_grade=site.profile_grade.value if site.profile_grade else None,
            tier=site.tier.value,
            last_crawled_at=site.last_crawled_at,
            last_visual_at=site.last_visual_at,
            active=site.active,
            created_at=site.created_at,
        )
        self.session.add(db_item)
        self.session.flush()
        return self._to_domain(db_item)

    def get_by_id(self, site_id: UUID | str) -> TrackedSite | None:
        """Get a site by ID."""
        db_item = self.session.get(TrackedSiteDB, str(site_id))
        return self._to_domain(db_item) if db_item else None

    def get_by_website(self, website: str) -> TrackedSite | None:
        """Get a site by its website address."""
        stmt = select(TrackedSiteDB).where(TrackedSiteDB.website == website.strip())
        db_item = self.session.execute(stmt).scalar_one_or_none()
        return self._to_domain(db_item) if db_item else None

    def list_all(self, active_only: bool = True, source: str | None = None) -> list[TrackedSite]:
        """List sites ordered by creation time."""
        stmt = select(TrackedSiteDB)
        if active_only:
            stmt = stmt.where(TrackedSiteDB.active.is_(True))
        if source:
            stmt = stmt.where(TrackedSiteDB.source == source)
        stmt = stmt.order_by(TrackedSiteDB.created_at, TrackedSiteDB.id)
        result = self.session.execute(stmt).scalars().all()
        return [self._to_domain(s) for s in result]

    def count(self) -> int:
        """Get total count of sites."""
        stmt = select(func.count()).select_from(TrackedSiteDB)
        return self.session.execute(stmt).scalar() or 0

    def record_attempt(
        self,
        site_id: UUID | str,
        tier: Tier,
        crawled_at: datetime,
        visual_at: datetime | None = None,
    ) -> TrackedSite:
        """Persist the tier and timestamps after a run attempt."""
        db_item = self.session.get(TrackedSiteDB, str(site_id))
        if db_item is None:
            raise ValueError(f"TrackedSite with id {site_id} not found")

        db_item.tier = tier.value
        db_item.last_crawled_at = crawled_at
        if visual_at is not None:
            db_item.last_visual_at = visual_at

        self.session.flush()
        return self._to_domain(db_item)

    def _to_domain(self, db_item: TrackedSiteDB) -> TrackedSite:
        return TrackedSite(
            id=UUID(db_item.id),
            name=db_item.name,
            website=db_item.website,
            source=db_item.source,
            profile_grade=ProfileGrade(db_item.profile_grade) if db_item.profile_grade else None,
            tier=Tier(db_item.tier),
            last_crawled_at=_as_utc(db_item.last_crawled_at),
            last_visual_at=_as_utc(db_item.last_visual_at),
            active=db_item.active,
            created_at=_as_utc(db_item.created_at),
        )


class CatalogRepository:
    """Repository for catalog entries and curated compound words."""

    def __init__(self, session: Session):
        self.session = session

    def upsert_entry(self, entry: CatalogEntry) -> CatalogEntry:
        """Create a catalog entry, or replace the keywords of an existing one."""
        stmt = select(CatalogEntryDB).where(CatalogEntryDB.canonical_name == entry.canonical_name)
        db_item = self.session.execute(stmt).scalar_one_or_none()
        if db_item is None:
            db_item = CatalogEntryDB(id=str(entry.id), canonical_name=entry.canonical_name)
            self.session.add(db_item)

        db_item.category = entry.category
        db_item.keywords_json = _dump_list(entry.keywords)
        db_item.base_unit_type = entry.base_unit_type.value if entry.base_unit_type else None

        self.session.flush()
        return self._entry_to_domain(db_item)

    def get_entry(self, canonical_name: str) -> CatalogEntry | None:
        """Get a catalog entry by canonical name."""
        stmt = select(CatalogEntryDB).where(CatalogEntryDB.canonical_name == canonical_name)
        db_item = self.session.execute(stmt).scalar_one_or_none()
        return self._entry_to_domain(db_item) if db_item else None

    def list_entries(self) -> list[CatalogEntry]:
        """List all catalog entries ordered by canonical name."""
        stmt = select(CatalogEntryDB).order_by(CatalogEntryDB.canonical_name)
        result = self.session.execute(stmt).scalars().all()
        return [self._entry_to_domain(e) for e in result]

    def count_entries(self) -> int:
        stmt = select(func.count()).select_from(CatalogEntryDB)
        return self.session.execute(stmt).scalar() or 0

    def upsert_compound(self, word: CompoundWord) -> CompoundWord:
        """Create or replace a curated compound word."""
        stmt = select(CompoundWordDB).where(CompoundWordDB.compound == word.compound)
        db_item = self.session.execute(stmt).scalar_one_or_none()
        if db_item is None:
            db_item = CompoundWordDB(id=str(word.id), compound=word.compound)
            self.session.add(db_item)

        db_item.components_json = _dump_list(word.components)
        db_item.note = word.note

        self.session.flush()
        return self._compound_to_domain(db_item)

    def list_compounds(self) -> list[CompoundWord]:
        """List curated compound words."""
        stmt = select(CompoundWordDB).order_by(CompoundWordDB.compound)
        result = self.session.execute(stmt).scalars().all()
        return [self._compound_to_domain(c) for c in result]

    def _entry_to_domain(self, db_item: CatalogEntryDB) -> CatalogEntry:
        return CatalogEntry(
            id=UUID(db_item.id),
            canonical_name=db_item.canonical_name,
            category=db_item.category,
            keywords=json.loads(db_item.keywords_json or "[]"),
            base_unit_type=UnitType(db_item.base_unit_type) if db_item.base_unit_type else None,
        )

    def _compound_to_domain(self, db_item: CompoundWordDB) -> CompoundWord:
        return CompoundWord(
            id=UUID(db_item.id),
            compound=db_item.compound,
            components=json.loads(db_item.components_json or "[]"),
            note=db_item.note or "",
        )


class CompoundCandidateRepository:
    """Repository for compound candidates awaiting curation."""

    def __init__(self, session: Session):
        self.session = session

    def upsert(self, candidate: CompoundCandidate) -> CompoundCandidate:
        """
        Record a discovery.

        A candidate seen before keeps its first site and curation status;
        only its discovery count grows.
        """
        stmt = select(CompoundCandidateDB).where(
            CompoundCandidateDB.raw_text == candidate.raw_text
        )
        db_item = self.session.execute(stmt).scalar_one_or_none()
        if db_item is None:
            db_item = CompoundCandidateDB(
                id=str(candidate.id),
                raw_text=candidate.raw_text,
                matched_keywords_json=_dump_list(candidate.matched_keywords),
                components_json=_dump_list(candidate.components),
                residual=candidate.residual,
                source=candidate.source.value,
                discovery_count=candidate.discovery_count,
                first_site_id=str(candidate.first_site_id) if candidate.first_site_id else None,
                status=candidate.status.value,
                created_at=candidate.created_at,
                updated_at=candidate.updated_at,
            )
            self.session.add(db_item)
        else:
            db_item.discovery_count = (db_item.discovery_count or 0) + 1
            db_item.updated_at = _utc_now()

        self.session.flush()
        return self._to_domain(db_item)

    def get_by_raw_text(self, raw_text: str) -> CompoundCandidate | None:
        stmt = select(CompoundCandidateDB).where(CompoundCandidateDB.raw_text == raw_text)
        db_item = self.session.execute(stmt).scalar_one_or_none()
        return self._to_domain(db_item) if db_item else None

    def list_all(
        self, status: CandidateStatus | None = None, limit: int = 100
    ) -> list[CompoundCandidate]:
        """List candidates, most frequently discovered first."""
        stmt = select(CompoundCandidateDB)
        if status is not None:
            stmt = stmt.where(CompoundCandidateDB.status == status.value)
        stmt = stmt.order_by(
            CompoundCandidateDB.discovery_count.desc(), CompoundCandidateDB.raw_text
        ).limit(limit)
        result = self.session.execute(stmt).scalars().all()
        return [self._to_domain(c) for c in result]

    def count(self) -> int:
        stmt = select(func.count()).select_from(CompoundCandidateDB)
        return self.session.execute(stmt).scalar() or 0

    def _to_domain(self, db_item: CompoundCandidateDB) -> CompoundCandidate:
        return CompoundCandidate(
            id=UUID(db_item.id),
            raw_text=db_item.raw_text,
            matched_keywords=json.loads(db_item.matched_keywords_json or "[]"),
            components=json.loads(db_item.components_json or "[]"),
            residual=db_item.residual or "",
            source=DecompositionSource(db_item.source),
            discovery_count=db_item.discovery_count,
            first_site_id=UUID(db_item.first_site_id) if db_item.first_site_id else None,
            status=CandidateStatus(db_item.status),
            created_at=_as_utc(db_item.created_at),
            updated_at=_as_utc(db_item.updated_at),
        )


# ============================================================================
# Extraction History
# ============================================================================


def _price_to_db(record: PriceRecord, site_id: UUID, snapshot_id: UUID | None) -> PriceRecordDB:
    return PriceRecordDB(
        id=str(record.id),
        site_id=str(site_id),
        snapshot_id=str(snapshot_id) if snapshot_id else None,
        item_name=record.item_name,
        canonical_name=record.canonical_name,
        raw_text=record.raw_text,
        total_quantity=record.total_quantity,
        unit_type=record.unit_type.value if record.unit_type else None,
        total_price=record.total_price,
        unit_price=record.unit_price,
        price_band=record.price_band.value,
        is_package=record.is_package,
        is_event=record.is_event,
        is_outlier=record.is_outlier,
        confidence=record.confidence.value,
        event_context_json=record.event_context.model_dump_json(),
        position=record.position,
        created_at=record.created_at,
    )


class SnapshotRepository:
    """
    Repository for site snapshots.

    Snapshots are append-only: there is no update or delete.
    """

    def __init__(self, session: Session):
        self.session = session

    def create(self, snapshot: Snapshot) -> Snapshot:
        """Append a snapshot."""
        db_item = SnapshotDB(
            id=str(snapshot.id),
            site_id=str(snapshot.site_id),
            sequence=snapshot.sequence,
            text_hash=snapshot.text_hash,
            raw_text_hash=snapshot.raw_text_hash,
            ocr_hash=snapshot.ocr_hash,
            equipment_json=_dump_list(snapshot.equipment),
            treatments_json=_dump_list(snapshot.treatments),
            pricing_json=_dump_list([p.model_dump(mode="json") for p in snapshot.pricing]),
            event_pricing_json=_dump_list(
                [p.model_dump(mode="json") for p in snapshot.event_pricing]
            ),
            new_compounds_json=_dump_list(snapshot.new_compounds),
            match_rate=snapshot.match_rate,
            diff_summary=snapshot.diff_summary,
            tokens_used=snapshot.tokens_used,
            created_at=snapshot.created_at,
        )
        self.session.add(db_item)
        self.session.flush()
        return self._to_domain(db_item)

    def get_latest(self, site_id: UUID | str) -> Snapshot | None:
        """Get the most recent snapshot for a site."""
        stmt = (
            select(SnapshotDB)
            .where(SnapshotDB.site_id == str(site_id))
            .order_by(SnapshotDB.sequence.desc())
            .limit(1)
        )
        db_item = self.session.execute(stmt).scalar_one_or_none()
        return self._to_domain(db_item) if db_item else None

    def list_for_site(self, site_id: UUID | str) -> list[Snapshot]:
        """List a site's snapshots in sequence order."""
        stmt = (
            select(SnapshotDB)
            .where(SnapshotDB.site_id == str(site_id))
            .order_by(SnapshotDB.sequence)
        )
        result = self.session.execute(stmt).scalars().all()
        return [self._to_domain(s) for s in result]

    def count(self, site_id: UUID | str | None = None) -> int:
        stmt = select(func.count()).select_from(SnapshotDB)
        if site_id is not None:
            stmt = stmt.where(SnapshotDB.site_id == str(site_id))
        return self.session.execute(stmt).scalar() or 0

    def _to_domain(self, db_item: SnapshotDB) -> Snapshot:
        return Snapshot(
            id=UUID(db_item.id),
            site_id=UUID(db_item.site_id),
            sequence=db_item.sequence,
            text_hash=db_item.text_hash,
            raw_text_hash=db_item.raw_text_hash or "",
            ocr_hash=db_item.ocr_hash,
            equipment=json.loads(db_item.equipment_json or "[]"),
            treatments=json.loads(db_item.treatments_json or "[]"),
            pricing=[PriceRecord.model_validate(p) for p in json.loads(db_item.pricing_json or "[]")],
            event_pricing=[
                PriceRecord.model_validate(p)
                for p in json.loads(db_item.event_pricing_json or "[]")
            ],
            new_compounds=json.loads(db_item.new_compounds_json or "[]"),
            match_rate=db_item.match_rate,
            diff_summary=db_item.diff_summary or "",
            tokens_used=db_item.tokens_used or 0,
            created_at=_as_utc(db_item.created_at),
        )


class PriceRecordRepository:
    """Repository for extracted price records."""

    def __init__(self, session: Session):
        self.session = session

    def create_many(
        self, records: list[PriceRecord], site_id: UUID, snapshot_id: UUID | None = None
    ) -> int:
        """Insert price records for a site run."""
        for record in records:
            self.session.add(_price_to_db(record, site_id, snapshot_id))
        self.session.flush()
        return len(records)

    def list_for_site(self, site_id: UUID | str, include_outliers: bool = False) -> list[PriceRecord]:
        """List a site's price records; outliers are excluded unless requested."""
        stmt = select(PriceRecordDB).where(PriceRecordDB.site_id == str(site_id))
        if not include_outliers:
            stmt = stmt.where(PriceRecordDB.is_outlier.is_(False))
        stmt = stmt.order_by(PriceRecordDB.created_at, PriceRecordDB.position)
        result = self.session.execute(stmt).scalars().all()
        return [self._to_domain(p) for p in result]

    def _to_domain(self, db_item: PriceRecordDB) -> PriceRecord:
        return PriceRecord(
            id=UUID(db_item.id),
            site_id=UUID(db_item.site_id),
            snapshot_id=UUID(db_item.snapshot_id) if db_item.snapshot_id else None,
            item_name=db_item.item_name,
            canonical_name=db_item.canonical_name,
            raw_text=db_item.raw_text or "",
            total_quantity=db_item.total_quantity,
            unit_type=UnitType(db_item.unit_type) if db_item.unit_type else None,
            total_price=db_item.total_price,
            unit_price=db_item.unit_price,
            price_band=PriceBand(db_item.price_band),
            is_package=db_item.is_package,
            is_event=db_item.is_event,
            is_outlier=db_item.is_outlier,
            confidence=ConfidenceLevel(db_item.confidence),
            event_context=EventContext.model_validate_json(db_item.event_context_json or "{}"),
            position=db_item.position,
            created_at=_as_utc(db_item.created_at),
        )


class EquipmentChangeRepository:
    """Repository for equipment/treatment changes."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, change: EquipmentChange) -> EquipmentChange:
        db_item = EquipmentChangeDB(
            id=str(change.id),
            site_id=str(change.site_id),
            snapshot_id=str(change.snapshot_id) if change.snapshot_id else None,
            change_type=change.change_type.value,
            item_type=change.item_type.value,
            item_name=change.item_name,
            detected_at=change.detected_at,
        )
        self.session.add(db_item)
        self.session.flush()
        return self._to_domain(db_item)

    def list_for_site(self, site_id: UUID | str) -> list[EquipmentChange]:
        stmt = (
            select(EquipmentChangeDB)
            .where(EquipmentChangeDB.site_id == str(site_id))
            .order_by(EquipmentChangeDB.detected_at, EquipmentChangeDB.item_name)
        )
        result = self.session.execute(stmt).scalars().all()
        return [self._to_domain(c) for c in result]

    def _to_domain(self, db_item: EquipmentChangeDB) -> EquipmentChange:
        return EquipmentChange(
            id=UUID(db_item.id),
            site_id=UUID(db_item.site_id),
            snapshot_id=UUID(db_item.snapshot_id) if db_item.snapshot_id else None,
            change_type=ChangeType(db_item.change_type),
            item_type=ItemType(db_item.item_type),
            item_name=db_item.item_name,
            detected_at=_as_utc(db_item.detected_at),
        )


# ============================================================================
# Sales Signals
# ============================================================================


class ClientProductRepository:
    """Repository for client products."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, product: ClientProduct) -> ClientProduct:
        db_item = ClientProductDB(id=str(product.id), name=product.name, active=product.active)
        self.session.add(db_item)
        self.session.flush()
        return self._to_domain(db_item)

    def get_by_name(self, name: str) -> ClientProduct | None:
        stmt = select(ClientProductDB).where(ClientProductDB.name == name)
        db_item = self.session.execute(stmt).scalar_one_or_none()
        return self._to_domain(db_item) if db_item else None

    def list_all(self, active_only: bool = True) -> list[ClientProduct]:
        stmt = select(ClientProductDB)
        if active_only:
            stmt = stmt.where(ClientProductDB.active.is_(True))
        stmt = stmt.order_by(ClientProductDB.name)
        result = self.session.execute(stmt).scalars().all()
        return [self._to_domain(p) for p in result]

    def _to_domain(self, db_item: ClientProductDB) -> ClientProduct:
        return ClientProduct(id=UUID(db_item.id), name=db_item.name, active=db_item.active)


class SalesSignalRuleRepository:
    """Repository for sales signal rules."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, rule: SalesSignalRule) -> SalesSignalRule:
        db_item = SalesSignalRuleDB(
            id=str(rule.id),
            product_id=str(rule.product_id),
            name=rule.name,
            priority=rule.priority.value,
            condition_json=json.dumps(condition_to_dict(rule.condition), ensure_ascii=False),
            title_template=rule.title_template,
            description_template=rule.description_template,
            related_angle=rule.related_angle,
            active=rule.active,
        )
        self.session.add(db_item)
        self.session.flush()
        return self._to_domain(db_item)

    def list_for_product(self, product_id: UUID | str, active_only: bool = True) -> list[SalesSignalRule]:
        """List a product's rules; conditions are validated on load."""
        stmt = select(SalesSignalRuleDB).where(SalesSignalRuleDB.product_id == str(product_id))
        if active_only:
            stmt = stmt.where(SalesSignalRuleDB.active.is_(True))
        stmt = stmt.order_by(SalesSignalRuleDB.name, SalesSignalRuleDB.id)
        result = self.session.execute(stmt).scalars().all()
        return [self._to_domain(r) for r in result]

    def _to_domain(self, db_item: SalesSignalRuleDB) -> SalesSignalRule:
        return SalesSignalRule(
            id=UUID(db_item.id),
            product_id=UUID(db_item.product_id),
            name=db_item.name or "",
            priority=SignalPriority(db_item.priority),
            condition=json.loads(db_item.condition_json),
            title_template=db_item.title_template,
            description_template=db_item.description_template or "",
            related_angle=db_item.related_angle,
            active=db_item.active,
        )


class SalesSignalRepository:
    """Repository for emitted sales signals."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, signal: SalesSignal) -> SalesSignal:
        db_item = SalesSignalDB(
            id=str(signal.id),
            site_id=str(signal.site_id),
            product_id=str(signal.product_id),
            rule_id=str(signal.rule_id),
            change_id=str(signal.change_id) if signal.change_id else None,
            signal_type=signal.signal_type,
            priority=signal.priority.value,
            title=signal.title,
            description=signal.description,
            related_angle=signal.related_angle,
            status=signal.status.value,
            created_at=signal.created_at,
        )
        self.session.add(db_item)
        self.session.flush()
        return self._to_domain(db_item)

    def list_all(self, status: SignalStatus | None = None, limit: int = 100) -> list[SalesSignal]:
        """List signals, newest first."""
        stmt = select(SalesSignalDB)
        if status is not None:
            stmt = stmt.where(SalesSignalDB.status == status.value)
        stmt = stmt.order_by(SalesSignalDB.created_at.desc()).limit(limit)
        result = self.session.execute(stmt).scalars().all()
        return [self._to_domain(s) for s in result]

    def count(self) -> int:
        stmt = select(func.count()).select_from(SalesSignalDB)
        return self.session.execute(stmt).scalar() or 0

    def _to_domain(self, db_item: SalesSignalDB) -> SalesSignal:
        return SalesSignal(
            id=UUID(db_item.id),
            site_id=UUID(db_item.site_id),
            product_id=UUID(db_item.product_id),
            rule_id=UUID(db_item.rule_id),
            change_id=UUID(db_item.change_id) if db_item.change_id else None,
            signal_type=db_item.signal_type,
            priority=SignalPriority(db_item.priority),
            title=db_item.title,
            description=db_item.description or "",
            related_angle=db_item.related_angle,
            status=SignalStatus(db_item.status),
            created_at=_as_utc(db_item.created_at),
        )


class CrawlActivityRepository:
    """Repository for the crawl audit log."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, activity: CrawlActivity) -> CrawlActivity:
        db_item = CrawlActivityDB(
            id=str(activity.id),
            site_id=str(activity.site_id),
            outcome=activity.outcome.value,
            stage=activity.stage,
            message=activity.message,
            created_at=activity.created_at,
        )
        self.session.add(db_item)
        self.session.flush()
        return self._to_domain(db_item)

    def list_for_site(self, site_id: UUID | str) -> list[CrawlActivity]:
        stmt = (
            select(CrawlActivityDB)
            .where(CrawlActivityDB.site_id == str(site_id))
            .order_by(CrawlActivityDB.created_at)
        )
        result = self.session.execute(stmt).scalars().all()
        return [self._to_domain(a) for a in result]

    def _to_domain(self, db_item: CrawlActivityDB) -> CrawlActivity:
        return CrawlActivity(
            id=UUID(db_item.id),
            site_id=UUID(db_item.site_id),
            outcome=RunOutcome(db_item.outcome),
            stage=db_item.stage,
            message=db_item.message or "",
            created_at=_as_utc(db_item.created_at),
        )
