"""
Database connection via SQLAlchemy.

SQLite by default; any SQLAlchemy URL works. The SQLite file and its
directory are created automatically.
"""

from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()


def create_db_engine(database_url: str) -> Engine:
    """Create an engine, preparing SQLite files for use from worker threads."""
    url = make_url(database_url)
    connect_args = {}
    if url.get_backend_name() == "sqlite":
        # Sessions run on asyncio.to_thread workers
        connect_args = {"check_same_thread": False, "timeout": 30}
        if url.database and url.database != ":memory:":
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
    return create_engine(database_url, connect_args=connect_args)


def create_session_factory(engine: Engine) -> sessionmaker:
    # Records are converted to pydantic after commit, so keep attributes loaded
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Create all tables if they don't exist."""
    from scenegen.store import tables  # noqa: F401 (registers models with Base)

    Base.metadata.create_all(bind=engine)
