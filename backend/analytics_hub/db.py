# backend/analytics_hub/db.py

from __future__ import annotations

from sqlmodel import SQLModel, Session, create_engine
from sqlalchemy.pool import StaticPool

from .config import settings
from .utils.logger import get_logger, mask_dsn

logger = get_logger(__name__)


def _make_engine(url: str):
    if url.startswith("sqlite"):
        # in-memory sqlite must share one connection across threads
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url.rstrip("/") == "sqlite:":
            kwargs["poolclass"] = StaticPool
        return create_engine(url, echo=False, **kwargs)
    return create_engine(
        url,
        pool_pre_ping=True,
        connect_args={"connect_timeout": 5},
        echo=False,
    )


logger.info("Connecting to: %s", mask_dsn(settings.DATABASE_URL))
_engine = _make_engine(settings.DATABASE_URL)


def get_engine():
    return _engine


def get_session():
    with Session(_engine) as s:
        yield s


def create_db_and_tables() -> None:
    from . import models  # noqa: F401  ensure models are imported
    SQLModel.metadata.create_all(_engine)
