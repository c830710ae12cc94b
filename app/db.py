from __future__ import annotations

import logging

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from app.config import Settings
from app.models import Base

logger = logging.getLogger(__name__)

# Session.info key holding the commit guard of a bounded unit of work
COMMIT_GUARD = "commit_guard"


class GuardedSession(Session):
    """Session whose commits go through the guard set by ``BalanceStore``."""

    def commit(self) -> None:
        guard = self.info.get(COMMIT_GUARD)
        if guard is None:
            super().commit()
            return
        with guard.committing():
            super().commit()


def create_db_engine(cfg: Settings) -> Engine:
    """Build the engine with bounded connection and lock waits."""
    if cfg.database_url.startswith("sqlite"):
        # busy timeout doubles as the per-statement lock wait on SQLite
        return create_engine(
            cfg.database_url,
            future=True,
            connect_args={"timeout": cfg.store_timeout_s, "check_same_thread": False},
            pool_size=50,
            max_overflow=0,
            pool_timeout=cfg.store_timeout_s,
        )
    statement_timeout_ms = int(cfg.store_timeout_s * 1000)
    return create_engine(
        cfg.database_url,
        future=True,
        pool_size=50,
        max_overflow=0,
        pool_recycle=30,
        pool_pre_ping=True,
        pool_timeout=cfg.store_timeout_s,
        connect_args={"options": f"-c statement_timeout={statement_timeout_ms}"},
    )


def init_db(cfg: Settings) -> sessionmaker:
    """Create engine and return a session factory bound to it."""
    engine = create_db_engine(cfg)
    session_factory = sessionmaker(
        bind=engine,
        class_=GuardedSession,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )

    if cfg.db_create_all:
        Base.metadata.create_all(engine)
        logger.info("Database schema created from metadata")

    return session_factory
