"""Process-wide SQLAlchemy engine and session factory."""

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from config import Config

_engine: Engine | None = None
_SessionLocal: sessionmaker[Session] | None = None


def _build_engine(db_url: str) -> Engine:
    if db_url.startswith("sqlite"):
        # One shared connection, otherwise every session sees a fresh in-memory database
        return create_engine(db_url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    return create_engine(db_url, pool_size=10, max_overflow=20, pool_pre_ping=True)


def init_db(config: Config) -> None:
    """Create the engine for ``config.db_url`` once per process; later calls are no-ops."""
    global _engine, _SessionLocal

    if _engine is not None:
        return

    _engine = _build_engine(config.db_url)
    _SessionLocal = sessionmaker(bind=_engine, autoflush=False, expire_on_commit=False)


def reset_db() -> None:
    """Dispose the engine so the next init_db starts fresh."""
    global _engine, _SessionLocal

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _engine


def create_schema() -> None:
    """Create missing tables (existing tables are left untouched)."""
    from db.models import Base

    Base.metadata.create_all(get_engine())


@contextmanager
def get_session() -> Iterator[Session]:
    """Unit of work: commit when the block exits cleanly, roll back on any error.

    Usage::

        with get_session() as session:
            session.add(row)
    """
    if _SessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")

    session = _SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
