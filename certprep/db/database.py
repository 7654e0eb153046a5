from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from loguru import logger
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.pool import StaticPool

from certprep.config import Settings
from certprep.core.exceptions import VersionConflict
from certprep.db.models.base import Base


def _engine_kwargs(url: str, echo: bool) -> dict[str, Any]:
    """Engine options per backend (in-memory SQLite must share one connection)."""
    kwargs: dict[str, Any] = {"echo": echo}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_pre_ping"] = True
    return kwargs


class Database:
    """
    Engine and session factory for one database.

    Built once at process start by ``build_services`` and passed to every
    repository-backed service.
    """

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        self.engine: Engine = create_engine(url, **_engine_kwargs(url, echo))
        self._session_factory = sessionmaker(
            bind=self.engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> Database:
        return cls(settings.database_url, echo=settings.db_echo)

    def init_db(self) -> None:
        """Initialize database tables."""
        # Import models so every table is registered on the metadata
        import certprep.db.models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)
        logger.info("Database tables initialized")

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Provide a transactional scope around a series of operations.

        A stale versioned row on flush/commit surfaces as ``VersionConflict``
        so callers can retry with ``retry_with_backoff``.
        """
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except StaleDataError as exc:
            session.rollback()
            raise VersionConflict("row", str(exc)) from exc
        except Exception:  # Intentionally broad - rollback on any error before re-raising
            session.rollback()
            raise
        finally:
            session.close()

    def check_connection(self) -> bool:
        """Return True when a trivial query succeeds."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except Exception as exc:
            logger.error("Database connection check failed: {}", exc)
            return False

    def dispose(self) -> None:
        self.engine.dispose()
