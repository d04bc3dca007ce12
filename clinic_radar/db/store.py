"""Explicit store handle for the pipeline.

A PipelineStore bundles the repositories over a single session. It is
created per run (or per test) and passed to every stage that touches the
database; nothing in the pipeline reaches for a global session.
"""

from __future__ import annotations

import logging
from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_radar.core.errors import PersistenceError
from clinic_radar.db.repositories import (
    CatalogRepository,
    ClientProductRepository,
    CompoundCandidateRepository,
    CrawlActivityRepository,
    EquipmentChangeRepository,
    PriceRecordRepository,
    SalesSignalRepository,
    SalesSignalRuleRepository,
    SnapshotRepository,
    TrackedSiteRepository,
)

logger = logging.getLogger(__name__)


class PipelineStore:
    """Repositories sharing one session, plus transaction control."""

    def __init__(self, session: Session) -> None:
        self.session = session
        self.sites = TrackedSiteRepository(session)
        self.catalog = CatalogRepository(session)
        self.candidates = CompoundCandidateRepository(session)
        self.snapshots = SnapshotRepository(session)
        self.prices = PriceRecordRepository(session)
        self.changes = EquipmentChangeRepository(session)
        self.products = ClientProductRepository(session)
        self.rules = SalesSignalRuleRepository(session)
        self.signals = SalesSignalRepository(session)
        self.activity = CrawlActivityRepository(session)

    @contextmanager
    def transaction(self, site_id: str | None = None) -> Generator[PipelineStore, None, None]:
        """
        Commit everything written inside the block, or nothing.

        Raises:
            PersistenceError: If any database error occurs; the session is
                rolled back first.
        """
        try:
            yield self
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Rolled back transaction for site {site_id}: {e}")
            raise PersistenceError(str(e), site_id=site_id, stage="storing") from e
        except Exception:
            self.session.rollback()
            raise

    def commit(self) -> None:
        """Commit outside of a transaction block."""
        try:
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise PersistenceError(str(e)) from e
