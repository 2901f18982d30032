from __future__ import annotations

from collections.abc import Callable, Generator
from contextlib import AbstractContextManager, contextmanager

from loguru import logger
from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from config import get_settings
from src.db.models.base import Base

SessionScope = Callable[[], AbstractContextManager[Session]]


def _build_engine(url: str, echo: bool = False) -> Engine:
    """Create an engine; SQLite gets thread-sharing and FK enforcement."""
    kwargs: dict = {"echo": echo, "pool_pre_ping": True}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection so every session sees the same in-memory DB
            kwargs["poolclass"] = StaticPool
    eng = create_engine(url, **kwargs)

    if url.startswith("sqlite"):
        @event.listens_for(eng, "connect")
        def _enable_foreign_keys(dbapi_connection, _record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return eng


settings = get_settings()

engine = _build_engine(settings.database_url, echo=settings.log_level == "DEBUG")


def init_db(bind: Engine | None = None) -> None:
    """Initialize database tables."""
    Base.metadata.create_all(bind=bind or engine)
    logger.info("Database tables initialized")


def make_scope(factory: sessionmaker) -> SessionScope:
    """Wrap a sessionmaker into a transactional scope factory."""

    @contextmanager
    def scope() -> Generator[Session, None, None]:
        session = factory()
        try:
            yield session
            session.commit()
        except Exception:  # Intentionally broad - rollback on any error before re-raising
            session.rollback()
            raise
        finally:
            session.close()

    return scope


def make_session_factory(url: str, create_tables: bool = True) -> tuple[Engine, SessionScope]:
    """
    Build an isolated engine and transactional scope for tools and tests.

    Args:
        url: SQLAlchemy URL (``sqlite://`` gives a private in-memory database)
        create_tables: Create all tables immediately

    Returns:
        (engine, scope) where ``scope()`` is a transactional context manager
    """
    eng = _build_engine(url)
    if create_tables:
        init_db(eng)
    factory = sessionmaker(bind=eng, autocommit=False, autoflush=False, expire_on_commit=False)
    return eng, make_scope(factory)


session_scope = make_scope(sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False))
session_scope.__doc__ = "Provide a transactional scope around a series of operations."

