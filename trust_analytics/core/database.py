# DB connections

from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool
from trust_analytics.core.config import settings
import duckdb


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """Create a SQLAlchemy engine for the event store.

    SQLite is the default single-writer embedded store. In-memory databases
    share one connection so every session sees the same tables.
    """
    url = make_url(database_url)

    if url.get_backend_name() != "sqlite":
        return create_engine(database_url, echo=echo)

    if url.database in (None, "", ":memory:"):
        return create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool
        )

    Path(url.database).parent.mkdir(parents=True, exist_ok=True)
    return create_engine(
        database_url,
        echo=echo,
        connect_args={"check_same_thread": False}
    )


engine = build_engine(settings.database_url, echo=settings.debug)

SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)


def init_db(bind: Engine = engine) -> None:
    """Create the events table and its indexes if they do not exist"""
    from trust_analytics.models.event import Base

    Base.metadata.create_all(bind=bind)


def get_db():
    """Dependency for getting a database session"""
    session: Session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def get_duckdb_connection():
    """Get a DuckDB connection for analytical rollups"""
    return duckdb.connect(settings.duckdb_path)
