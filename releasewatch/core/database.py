"""Database engine, ORM models, and session management."""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
    create_engine,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    Session,
    mapped_column,
    sessionmaker,
)

from releasewatch.core.config import PROJECT_ROOT, get_config
from releasewatch.core.exceptions import (
    ConstraintViolationError,
    DatabaseError,
    ReleaseWatchError,
    StoreUnavailable,
)
from releasewatch.core.logger import get_logger

logger = get_logger(__name__)

SessionFactory = sessionmaker[Session]

_LIVE_ROWS = text("merged_into_id IS NULL")


def _utcnow() -> datetime:
    """Return current UTC time with timezone info."""
    return datetime.now(timezone.utc)


# ============================================================
# Declarative Base
# ============================================================


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all ORM models."""


# ============================================================
# ORM Models
# ============================================================


class ReleaseDB(Base):
    """ORM model for merchandise releases."""

    __tablename__ = "new_releases"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    title: Mapped[str] = mapped_column(String(500))
    title_normalized: Mapped[str] = mapped_column(String(500), default="")
    source_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    image_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    source_product_hash: Mapped[str] = mapped_column(String(64), default="")
    merged_into_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("new_releases.id"), nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow,
    )

    __table_args__ = (
        # The one hard uniqueness guarantee: a fingerprint is unique among live rows.
        Index(
            "ux_release_source_product_hash",
            "source_product_hash",
            unique=True,
            sqlite_where=_LIVE_ROWS,
            postgresql_where=_LIVE_ROWS,
        ),
        Index("ix_release_title_normalized", "title_normalized"),
        Index("ix_release_source_url", "source_url"),
        Index("ix_release_image_url", "image_url"),
        Index("ix_release_merged_into", "merged_into_id"),
        Index("ix_release_created_at", "created_at"),
        CheckConstraint(
            "merged_into_id IS NULL OR merged_into_id != id",
            name="ck_release_no_self_merge",
        ),
    )


class ReleaseSourceDB(Base):
    """ORM model for article sources attached to a release."""

    __tablename__ = "release_article_sources"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    release_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("new_releases.id"),
    )
    source_url: Mapped[str] = mapped_column(String(1000))
    source_name: Mapped[str] = mapped_column(String(200), default="")
    article_title: Mapped[str] = mapped_column(String(500), default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow,
    )

    __table_args__ = (
        UniqueConstraint("release_id", "source_url", name="uq_release_source_url"),
        Index("ix_release_source_release", "release_id"),
    )


class IngestionLockDB(Base):
    """ORM model for feed-processing locks."""

    __tablename__ = "feed_processing_locks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    lock_name: Mapped[str] = mapped_column(String(200), unique=True)
    locked_by: Mapped[str] = mapped_column(String(200), default="")
    locked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow,
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_lock_expires_at", "expires_at"),
    )


# ============================================================
# Engine & Session Management
# ============================================================


def _resolve_db_url(url: str) -> str:
    """Resolve relative SQLite paths to absolute paths from project root.

    Args:
        url: Database URL string.

    Returns:
        Resolved URL with absolute path for SQLite.
    """
    if url.startswith("sqlite:///") and not url.startswith("sqlite:////"):
        relative_path = url.replace("sqlite:///", "")
        if relative_path and relative_path != ":memory:":
            absolute_path = PROJECT_ROOT / relative_path
            absolute_path.parent.mkdir(parents=True, exist_ok=True)
            return f"sqlite:///{absolute_path}"
    return url


def build_engine(url: str, echo: bool = False) -> Engine:
    """Create an engine for ``url`` with SQLite-friendly defaults.

    Args:
        url: Database URL.
        echo: Log emitted SQL.

    Returns:
        SQLAlchemy Engine instance.
    """
    db_url = _resolve_db_url(url)
    kwargs: dict[str, Any] = {"echo": echo}
    if db_url.startswith("sqlite"):
        # Writers wait on the file lock instead of failing immediately.
        kwargs["connect_args"] = {"timeout": 30, "check_same_thread": False}
    engine = create_engine(db_url, **kwargs)
    logger.info("database_engine_created", url=db_url)
    return engine


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    """Get the singleton SQLAlchemy engine.

    Returns:
        SQLAlchemy Engine instance.
    """
    config = get_config()
    return build_engine(
        config.database_url or config.database.url,
        echo=config.database.echo,
    )


@lru_cache(maxsize=1)
def get_session_factory() -> SessionFactory:
    """Get the singleton session factory.

    Returns:
        SQLAlchemy sessionmaker instance.
    """
    return sessionmaker(bind=get_engine(), expire_on_commit=False)


def init_db(engine: Engine | None = None) -> None:
    """Create all database tables.

    Args:
        engine: Engine to initialize; defaults to the configured one.

    Raises:
        DatabaseError: If table creation fails.
    """
    try:
        Base.metadata.create_all(engine or get_engine())
        logger.info("database_initialized")
    except Exception as e:
        raise DatabaseError(
            "Failed to initialize database",
            {"error": str(e)},
        ) from e


@contextmanager
def get_session(
    session_factory: SessionFactory | None = None,
) -> Generator[Session, None, None]:
    """Provide a transactional database session.

    Automatically commits on success, rolls back on error. Domain errors
    raised inside the block pass through unchanged; SQLAlchemy failures
    are translated into the project hierarchy.

    Args:
        session_factory: Factory to draw the session from; defaults to
            the configured singleton.

    Yields:
        SQLAlchemy Session instance.

    Raises:
        ConstraintViolationError: If a write violates a constraint.
        StoreUnavailable: If the database cannot be reached or queried.
        DatabaseError: For any other failure inside the session.
    """
    factory = session_factory or get_session_factory()
    session = factory()
    try:
        yield session
        session.commit()
    except ReleaseWatchError:
        session.rollback()
        raise
    except IntegrityError as e:
        session.rollback()
        raise ConstraintViolationError(
            "Integrity constraint violated",
            {"error": str(e.orig)},
        ) from e
    except SQLAlchemyError as e:
        _safe_rollback(session)
        raise StoreUnavailable(
            "Record store unavailable",
            {"error": str(e)},
        ) from e
    except Exception as e:
        _safe_rollback(session)
        raise DatabaseError(
            "Session error",
            {"error": str(e)},
        ) from e
    finally:
        session.close()


def _safe_rollback(session: Session) -> None:
    """Roll back, tolerating a connection that is already gone."""
    try:
        session.rollback()
    except SQLAlchemyError as e:
        logger.warning("session_rollback_failed", error=str(e))


# ============================================================
# Conversion Helpers
# ============================================================

# Lazy-initialized Pydantic -> ORM type mapping
_ORM_MAP: dict[type, type[Base]] = {}


def _get_orm_map() -> dict[type, type[Base]]:
    """Lazy-initialize the Pydantic-to-ORM type mapping."""
    if not _ORM_MAP:
        from releasewatch.core.models import IngestionLock, ReleaseRecord, ReleaseSource

        _ORM_MAP.update({
            ReleaseRecord: ReleaseDB,
            ReleaseSource: ReleaseSourceDB,
            IngestionLock: IngestionLockDB,
        })
    return _ORM_MAP


def pydantic_to_orm(model: Any) -> Base:
    """Convert a Pydantic domain model to its corresponding ORM model.

    Args:
        model: A Pydantic BaseEntity instance.

    Returns:
        The corresponding SQLAlchemy ORM instance.

    Raises:
        DatabaseError: If the model type has no ORM mapping.
    """
    orm_class = _get_orm_map().get(type(model))
    if orm_class is None:
        raise DatabaseError(
            f"No ORM mapping for {type(model).__name__}",
            {"model_type": type(model).__name__},
        )
    columns = {column.name for column in orm_class.__table__.columns}
    data = {k: v for k, v in model.model_dump().items() if k in columns}
    return orm_class(**data)
