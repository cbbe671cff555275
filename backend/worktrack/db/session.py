"""Engine and request-scoped sessions.

Services flush; the router that owns the request commits. ``get_db``
rolls back whatever a failed request left pending.
"""

from __future__ import annotations

from typing import Any, Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from worktrack.core.settings import settings


def engine_options(url: str) -> dict[str, Any]:
    if url.startswith("sqlite"):
        # Sync handlers run on FastAPI's threadpool.
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_pre_ping": True,
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
        "pool_timeout": settings.db_pool_timeout,
        "pool_recycle": settings.db_pool_recycle,
    }


engine = create_engine(settings.database_url, **engine_options(settings.database_url))

SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
