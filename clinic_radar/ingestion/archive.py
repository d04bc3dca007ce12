"""
Raw Archive Module
==================

Keeps the raw collected text of every persisted run so extractions can be
re-run and audited later.
"""

from __future__ import annotations

import gzip
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any
from uuid import UUID

logger = logging.getLogger(__name__)


@dataclass
class ArchivedPage:
    """One collected page."""

    url: str
    text: str
    page_type: str = "main"


@dataclass
class ArchiveRecord:
    """Metadata about an archived run."""

    snapshot_id: UUID
    site_id: UUID
    text_hash: str
    page_count: int
    size_bytes: int
    compressed_size_bytes: int
    created_at: datetime
    file_path: str


class RawArchive(ABC):
    """
    Abstract base class for raw content archives.

    Implementations store the pages collected for one snapshot and
    return them by snapshot ID.
    """

    @abstractmethod
    def save(
        self,
        snapshot_id: UUID,
        site_id: UUID,
        text_hash: str,
        pages: list[ArchivedPage],
        created_at: datetime | None = None,
    ) -> ArchiveRecord:
        """
        Archive the pages of a run.

        Args:
            snapshot_id: Snapshot the pages belong to
            site_id: Site the pages were collected from
            text_hash: Stripped-text hash of the run
            pages: Collected pages
            created_at: Timestamp used for the directory layout

        Returns:
            ArchiveRecord with storage details
        """

    @abstractmethod
    def load(self, snapshot_id: UUID) -> list[ArchivedPage] | None:
        """Return the archived pages for a snapshot, or None if not found."""


class LocalFileArchive(RawArchive):
    """
    Local filesystem archive.

    Directory structure:
        {base_path}/YYYY/MM/DD/{hash[:2]}/{snapshot_id}.json.gz

    Directories are created on the first save.
    """

    def __init__(self, base_path: str | Path) -> None:
        self.base_path = Path(base_path).expanduser().resolve()
        self._paths: dict[UUID, Path] = {}

    def _get_path(self, snapshot_id: UUID, text_hash: str, created_at: datetime) -> Path:
        """
        Generate the storage path for an archive file.

        Structure: {base}/YYYY/MM/DD/{hash[:2]}/{snapshot_id}.json.gz
        """
        date_path = created_at.strftime("%Y/%m/%d")
        return self.base_path / date_path / text_hash[:2] / f"{snapshot_id}.json.gz"

    def save(
        self,
        snapshot_id: UUID,
        site_id: UUID,
        text_hash: str,
        pages: list[ArchivedPage],
        created_at: datetime | None = None,
    ) -> ArchiveRecord:
        """Write the pages as gzip-compressed JSON."""
        created_at = created_at or datetime.now(UTC)
        payload: dict[str, Any] = {
            "snapshot_id": str(snapshot_id),
            "site_id": str(site_id),
            "text_hash": text_hash,
            "created_at": created_at.isoformat(),
            "pages": [
                {"url": p.url, "page_type": p.page_type, "text": p.text} for p in pages
            ],
        }
        raw = json.dumps(payload, ensure_ascii=False).encode("utf-8")
        compressed = gzip.compress(raw)

        path = self._get_path(snapshot_id, text_hash, created_at)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(compressed)
        self._paths[snapshot_id] = path

        logger.debug(f"Archived {len(pages)} pages for snapshot {snapshot_id} at {path}")
        return ArchiveRecord(
            snapshot_id=snapshot_id,
            site_id=site_id,
            text_hash=text_hash,
            page_count=len(pages),
            size_bytes=len(raw),
            compressed_size_bytes=len(compressed),
            created_at=created_at,
            file_path=str(path),
        )

    def load(self, snapshot_id: UUID) -> list[ArchivedPage] | None:
        """Read archived pages, searching the tree if the path is not cached."""
        path = self._paths.get(snapshot_id)
        if path is None:
            matches = list(self.base_path.glob(f"*/*/*/*/{snapshot_id}.json.gz"))
            if not matches:
                return None
            path = matches[0]

        with gzip.open(path, "rb") as f:
            payload = json.loads(f.read().decode("utf-8"))

        return [
            ArchivedPage(url=p["url"], text=p["text"], page_type=p.get("page_type", "main"))
            for p in payload.get("pages", [])
        ]
