"""Database engine, session management, and migrations."""

import logging
from pathlib import Path

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from alembic import command
from alembic.config import Config

from config import settings

logger = logging.getLogger(__name__)

_DEFAULT_DATABASE_URL = "sqlite:///./caseload.db"

_engine: Engine | None = None
_session_factory: sessionmaker | None = None


def get_database_url() -> str:
    """Return the configured synchronous database URL."""
    url = settings.database.url or _DEFAULT_DATABASE_URL
    if url.startswith("postgresql+asyncpg://"):
        return url.replace("postgresql+asyncpg://", "postgresql://", 1)
    return url


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        _engine = create_engine(get_database_url(), pool_pre_ping=True)
    return _engine


def get_session_factory() -> sessionmaker:
    """Return the shared session factory bound to the configured engine."""
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(bind=get_engine(), expire_on_commit=False)
    return _session_factory


def get_sync_session() -> Session:
    return get_session_factory()()


def _run_migrations() -> None:
    alembic_ini = Path(__file__).resolve().parents[2] / "alembic.ini"
    alembic_cfg = Config(str(alembic_ini))
    alembic_cfg.set_main_option("sqlalchemy.url", get_database_url())
    command.upgrade(alembic_cfg, "head")


def run_migrations_sync() -> None:
    """Run database migrations synchronously."""
    _run_migrations()
    logger.info("Database migrations applied")


def check_connection() -> bool:
    """Check if database connection is working."""
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection check failed: {e}")
        return False
