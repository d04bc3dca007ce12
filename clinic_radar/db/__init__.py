"""Database initialization and persistence layer."""

from clinic_radar.db.engine import (
    create_db_engine,
    create_session_factory,
    get_database_url,
    init_db,
    run_migrations,
    session_scope,
)
from clinic_radar.db.models import Base
from clinic_radar.db.store import PipelineStore

__all__ = [
    # Engine
    "create_db_engine",
    "create_session_factory",
    "get_database_url",
    "init_db",
    "run_migrations",
    "session_scope",
    # Models
    "Base",
    # Store
    "PipelineStore",
]
