"""
Snapshot Store Module
=====================

Appends one immutable snapshot per successful site run and derives the
equipment/treatment delta against the immediately preceding snapshot.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from uuid import UUID, uuid4

from clinic_radar.core.enums import ChangeType, ItemType
from clinic_radar.core.errors import PersistenceError
from clinic_radar.core.schema import EquipmentChange, PriceRecord, Snapshot
from clinic_radar.db.store import PipelineStore

logger = logging.getLogger(__name__)

INITIAL_CRAWL_SUMMARY = "initial crawl"
NO_CHANGE_SUMMARY = "no changes"


def diff_items(previous: list[str], current: list[str]) -> tuple[list[str], list[str]]:
    """
    Case-insensitive set difference that keeps input order.

    Returns:
        (added, removed): present now but not before, and the reverse
    """
    prev_keys = {p.strip().lower() for p in previous}
    curr_keys = {c.strip().lower() for c in current}

    added: list[str] = []
    for item in current:
        key = item.strip().lower()
        if key not in prev_keys and key not in {a.lower() for a in added}:
            added.append(item.strip())

    removed: list[str] = []
    for item in previous:
        key = item.strip().lower()
        if key not in curr_keys and key not in {r.lower() for r in removed}:
            removed.append(item.strip())

    return added, removed


@dataclass
class SnapshotDiff:
    """Delta between a snapshot and its predecessor."""

    is_first_crawl: bool = False
    equipment_added: list[str] = field(default_factory=list)
    equipment_removed: list[str] = field(default_factory=list)
    treatments_added: list[str] = field(default_factory=list)
    treatments_removed: list[str] = field(default_factory=list)

    @classmethod
    def between(
        cls, previous: Snapshot | None, equipment: list[str], treatments: list[str]
    ) -> SnapshotDiff:
        """Diff current lists against a previous snapshot (None = baseline)."""
        if previous is None:
            return cls(is_first_crawl=True)
        eq_added, eq_removed = diff_items(previous.equipment, equipment)
        tr_added, tr_removed = diff_items(previous.treatments, treatments)
        return cls(
            equipment_added=eq_added,
            equipment_removed=eq_removed,
            treatments_added=tr_added,
            treatments_removed=tr_removed,
        )

    @property
    def has_changes(self) -> bool:
        return bool(
            self.equipment_added
            or self.equipment_removed
            or self.treatments_added
            or self.treatments_removed
        )

    def summary(self) -> str:
        """Concise human-readable description of the delta."""
        if self.is_first_crawl:
            return INITIAL_CRAWL_SUMMARY
        parts = []
        if self.equipment_added:
            parts.append(f"equipment added: {', '.join(self.equipment_added)}")
        if self.equipment_removed:
            parts.append(f"equipment removed: {', '.join(self.equipment_removed)}")
        if self.treatments_added:
            parts.append(f"treatments added: {', '.join(self.treatments_added)}")
        if self.treatments_removed:
            parts.append(f"treatments removed: {', '.join(self.treatments_removed)}")
        return " | ".join(parts) if parts else NO_CHANGE_SUMMARY

    def to_changes(
        self, site_id: UUID, snapshot_id: UUID | None, detected_at: datetime
    ) -> list[EquipmentChange]:
        """Expand the delta into EquipmentChange records."""
        groups = [
            (ItemType.EQUIPMENT, ChangeType.ADDED, self.equipment_added),
            (ItemType.EQUIPMENT, ChangeType.REMOVED, self.equipment_removed),
            (ItemType.TREATMENT, ChangeType.ADDED, self.treatments_added),
            (ItemType.TREATMENT, ChangeType.REMOVED, self.treatments_removed),
        ]
        return [
            EquipmentChange(
                site_id=site_id,
                snapshot_id=snapshot_id,
                change_type=change_type,
                item_type=item_type,
                item_name=name,
                detected_at=detected_at,
            )
            for item_type, change_type, names in groups
            for name in names
        ]


@dataclass
class SnapshotDraft:
    """Everything extracted for a run, before it is persisted."""

    site_id: UUID
    text_hash: str
    raw_text_hash: str = ""
    ocr_hash: str | None = None
    equipment: list[str] = field(default_factory=list)
    treatments: list[str] = field(default_factory=list)
    pricing: list[PriceRecord] = field(default_factory=list)
    event_pricing: list[PriceRecord] = field(default_factory=list)
    new_compounds: list[str] = field(default_factory=list)
    match_rate: float | None = None
    tokens_used: int = 0


@dataclass
class AppendResult:
    """A persisted snapshot with the delta computed against its predecessor."""

    snapshot: Snapshot
    diff: SnapshotDiff
    changes: list[EquipmentChange]


class SnapshotStore:
    """
    Append-only snapshot history backed by a PipelineStore.

    Writes go through the caller's session; the caller owns the
    transaction so a failed run leaves nothing behind.
    """

    def __init__(self, store: PipelineStore) -> None:
        self.store = store

    def latest(self, site_id: UUID) -> Snapshot | None:
        return self.store.snapshots.get_latest(site_id)

    def append(
        self,
        draft: SnapshotDraft,
        previous: Snapshot | None = None,
        now: datetime | None = None,
    ) -> AppendResult:
        """
        Persist a new snapshot, its price records and its changes.

        Args:
            draft: Extracted state for the run
            previous: The snapshot this run was compared against; must be
                the site's latest
            now: Creation timestamp

        Returns:
            AppendResult
        """
        now = now or datetime.now(UTC)
        latest = self.latest(draft.site_id)
        if (latest is None) != (previous is None) or (
            latest is not None and previous is not None and latest.id != previous.id
        ):
            raise PersistenceError(
                f"Snapshot lineage for site {draft.site_id} moved during the run",
                site_id=str(draft.site_id),
                stage="storing",
            )

        diff = SnapshotDiff.between(previous, draft.equipment, draft.treatments)
        snapshot_id = uuid4()
        snapshot = Snapshot(
            id=snapshot_id,
            site_id=draft.site_id,
            sequence=(previous.sequence + 1) if previous else 1,
            text_hash=draft.text_hash,
            raw_text_hash=draft.raw_text_hash,
            ocr_hash=draft.ocr_hash,
            equipment=draft.equipment,
            treatments=draft.treatments,
            pricing=draft.pricing,
            event_pricing=draft.event_pricing,
            new_compounds=draft.new_compounds,
            match_rate=draft.match_rate,
            diff_summary=diff.summary(),
            tokens_used=draft.tokens_used,
            created_at=now,
        )

        saved = self.store.snapshots.create(snapshot)
        self.store.prices.create_many(draft.pricing, draft.site_id, snapshot_id)
        changes = [
            self.store.changes.create(change)
            for change in diff.to_changes(draft.site_id, snapshot_id, now)
        ]

        logger.info(f"Snapshot #{saved.sequence} for site {draft.site_id}: {saved.diff_summary}")
        return AppendResult(snapshot=saved, diff=diff, changes=changes)
