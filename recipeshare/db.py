"""Engine and session management for the RecipeShare API."""

from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase, Session

from .settings import settings


class Base(DeclarativeBase):
    pass


_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # FastAPI runs sync endpoints in a threadpool
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


def init_engine(database_url: str | None = None) -> Engine:
    global _engine, _session_factory
    url = database_url or settings.database_url
    _engine = create_engine(url, **_engine_options(url))
    _session_factory = sessionmaker(autocommit=False, autoflush=False, bind=_engine)
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        init_engine()
    return _engine


def session_factory() -> sessionmaker[Session]:
    if _session_factory is None:
        init_engine()
    return _session_factory


def get_db():
    """Yield a session per request; always closed on the way out."""
    db = session_factory()()
    try:
        yield db
    finally:
        db.close()
