"""Services module for the caseload engine."""

from services.database import get_session_factory, get_sync_session, run_migrations_sync
from services.http_client import HttpClient

__all__ = [
    "get_session_factory",
    "get_sync_session",
    "run_migrations_sync",
    "HttpClient",
]
