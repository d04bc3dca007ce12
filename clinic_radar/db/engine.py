"""SQLite database engine and session management.

There is no module-level engine: callers create one, build a session
factory from it and pass sessions (or a PipelineStore) down explicitly.
"""

import os
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

# Default database path (can be overridden via environment variable)
DEFAULT_DB_PATH = Path.home() / ".clinic_radar" / "clinic_radar.db"


def get_database_url(db_path: Path | str | None = None) -> str:
    """
    Get the SQLite database URL.

    Args:
        db_path: Optional path to the database file. If None, uses
                 DATABASE_URL env var or default path.

    Returns:
        SQLite connection URL.
    """
    if db_path is not None:
        path = Path(db_path)
    elif os.environ.get("DATABASE_URL"):
        # Support full URL or just path
        url = os.environ["DATABASE_URL"]
        if url.startswith("sqlite"):
            return url
        path = Path(url)
    else:
        path = DEFAULT_DB_PATH

    # Ensure parent directory exists
    path.parent.mkdir(parents=True, exist_ok=True)

    return f"sqlite:///{path}"


def create_db_engine(db_path: Path | str | None = None, echo: bool = False) -> Engine:
    """
    Create a SQLAlchemy engine for SQLite.

    Args:
        db_path: Optional path to the database file.
        echo: If True, log all SQL statements.

    Returns:
        SQLAlchemy Engine instance.
    """
    url = get_database_url(db_path)
    return create_engine(url, echo=echo)


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Build a session factory bound to an engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def session_scope(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """
    Context manager for database sessions.

    Usage:
        with session_scope(factory) as session:
            store = PipelineStore(session)

    The session is closed on exit; committing is the caller's job.
    """
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


def init_db(engine: Engine) -> None:
    """
    Initialize the database by creating all tables.

    Note: In production, use Alembic migrations instead.
    """
    from clinic_radar.db.models import Base

    Base.metadata.create_all(bind=engine)


def run_migrations(db_path: Path | str | None = None) -> None:
    """
    Run Alembic migrations to the latest revision.

    Args:
        db_path: Optional path to the database file.
    """
    project_root = Path(__file__).resolve().parents[2]
    alembic_ini = project_root / "alembic.ini"

    if not alembic_ini.exists():
        raise FileNotFoundError(f"Alembic config not found: {alembic_ini}")

    config = Config(str(alembic_ini))
    config.set_main_option("sqlalchemy.url", get_database_url(db_path))
    command.upgrade(config, "head")
