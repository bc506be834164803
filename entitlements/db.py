"""Database connection and session utilities."""

from __future__ import annotations

import os
from collections.abc import Generator, Iterator
from contextlib import contextmanager

import structlog
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .errors import ConflictError, PersistenceError

logger = structlog.get_logger(__name__)


def _build_connect_args(database_url: str) -> dict[str, bool]:
    if database_url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _build_engine(database_url: str) -> Engine:
    built = create_engine(
        database_url,
        future=True,
        connect_args=_build_connect_args(database_url),
    )
    if database_url.startswith("sqlite"):
        event.listen(built, "connect", _enable_sqlite_foreign_keys)
    return built


def _build_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=bind,
        class_=Session,
    )


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./data/entitlements.db")

engine = _build_engine(DATABASE_URL)
SessionLocal = _build_session_factory(engine)
Base = declarative_base()


def reset_engine(database_url: str) -> None:
    """Swap the active engine/session factory (used by tests)."""
    global engine, SessionLocal
    engine.dispose()
    engine = _build_engine(database_url)
    SessionLocal = _build_session_factory(engine)


def init_db() -> None:
    """Create schema if it does not exist."""
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def storage_errors(db: Session) -> Iterator[None]:
    """Roll back and translate SQLAlchemy failures into core errors."""
    try:
        yield
    except IntegrityError as exc:
        db.rollback()
        logger.warning("write_conflict", error=str(exc.orig))
        raise ConflictError("Write conflicts with existing data.") from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("write_failed", error=str(exc))
        raise PersistenceError("Storage layer rejected the write.") from exc


def commit(db: Session) -> None:
    with storage_errors(db):
        db.commit()


def flush(db: Session) -> None:
    with storage_errors(db):
        db.flush()
