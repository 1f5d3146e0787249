"""Durable document storage."""

from .database import Base, create_db_engine, create_session_factory, init_db
from .repository import DocumentStore, SqlDocumentStore, derived_id, make_id
from .tables import utcnow


def open_store(database_url: str, clock=utcnow) -> SqlDocumentStore:
    """Create tables if needed and return a store bound to ``database_url``."""
    engine = create_db_engine(database_url)
    init_db(engine)
    return SqlDocumentStore(create_session_factory(engine), clock=clock)


__all__ = [
    "Base",
    "DocumentStore",
    "SqlDocumentStore",
    "create_db_engine",
    "create_session_factory",
    "derived_id",
    "init_db",
    "make_id",
    "open_store",
    "utcnow",
]
