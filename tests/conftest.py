"""Shared fixtures for Clinic Radar tests."""

import tempfile
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from clinic_radar.db.models import Base
from clinic_radar.db.store import PipelineStore
from clinic_radar.ingestion.config import DEFAULT_CATALOG_PATH, CatalogSeed
from clinic_radar.ingestion.matcher import CatalogMatcher


class ManualClock:
    """Clock whose time only moves when told to (or when slept on)."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def temp_db_path():
    """Create a temporary database file."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir) / "test.db"


@pytest.fixture
def engine(temp_db_path):
    """Create a test database engine."""
    engine = create_engine(f"sqlite:///{temp_db_path}", echo=False)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    """Create a database session for testing."""
    SessionLocal = sessionmaker(bind=engine)
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def store(session: Session) -> PipelineStore:
    """PipelineStore over the test session."""
    return PipelineStore(session)


@pytest.fixture(scope="session")
def catalog_seed() -> CatalogSeed:
    """The bundled catalog seed."""
    return CatalogSeed.load(DEFAULT_CATALOG_PATH)


@pytest.fixture
def matcher(catalog_seed: CatalogSeed) -> CatalogMatcher:
    """Matcher over the bundled catalog."""
    return CatalogMatcher(catalog_seed.entries, catalog_seed.compounds)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()
