"""Generic base repository with CRUD operations."""

from __future__ import annotations

from typing import Any, Generic, TypeVar, get_args, get_origin

from sqlalchemy import select
from sqlalchemy.orm import Session

from releasewatch.core.database import (
    Base,
    SessionFactory,
    _get_orm_map,
    get_session,
    pydantic_to_orm,
)
from releasewatch.core.exceptions import DatabaseError
from releasewatch.core.logger import get_logger
from releasewatch.core.models import BaseEntity

logger = get_logger(__name__)

T = TypeVar("T", bound=BaseEntity)


class BaseRepository(Generic[T]):
    """Generic CRUD repository for Pydantic domain models.

    Handles ORM conversion internally so callers only work with
    Pydantic models. Every method opens its own transaction.

    Args:
        session_factory: Optional sessionmaker; defaults to the configured
            application database.

    Example::

        repo = ReleaseRepository()
        record = repo.get_by_id(release_id)
        live = repo.get_many(filters={"merged_into_id": None}, limit=10)
    """

    def __init__(self, session_factory: SessionFactory | None = None) -> None:
        self._session_factory = session_factory
        self._pydantic_type = self._resolve_pydantic_type()
        self._orm_class = _get_orm_map().get(self._pydantic_type)
        if self._orm_class is None:
            raise DatabaseError(
                f"No ORM mapping for {self._pydantic_type.__name__}",
                {"model_type": self._pydantic_type.__name__},
            )
        logger.debug(
            "repository_initialized",
            model=self._pydantic_type.__name__,
            orm=self._orm_class.__name__,
        )

    def _resolve_pydantic_type(self) -> type[T]:
        """Resolve the concrete Pydantic type from Generic[T]."""
        for base in type(self).__orig_bases__:  # type: ignore[attr-defined]
            origin = get_origin(base)
            if origin is BaseRepository or origin is type(self).__bases__[0]:
                args = get_args(base)
                if args:
                    return args[0]
        raise DatabaseError(
            "Cannot resolve generic type parameter T",
            {"class": type(self).__name__},
        )

    def _session(self):
        """Open a transactional session on this repository's factory."""
        return get_session(self._session_factory)

    def _orm_to_pydantic(self, orm_obj: Base) -> T:
        """Convert an ORM instance back to a Pydantic model.

        Args:
            orm_obj: SQLAlchemy ORM instance.

        Returns:
            Pydantic model instance.
        """
        data: dict[str, Any] = {
            column.name: getattr(orm_obj, column.name)
            for column in orm_obj.__table__.columns
        }
        return self._pydantic_type.model_validate(data)

    def create(self, model: T) -> T:
        """Insert a single entity.

        Args:
            model: Pydantic model to insert.

        Returns:
            The inserted model with any DB-generated defaults.
        """
        with self._session() as session:
            orm_obj = pydantic_to_orm(model)
            session.add(orm_obj)
            session.flush()
            result = self._orm_to_pydantic(orm_obj)
        logger.debug("entity_created", model=self._pydantic_type.__name__, id=model.id)
        return result

    def get_by_id(self, entity_id: str) -> T | None:
        """Retrieve an entity by its UUID.

        Args:
            entity_id: UUID string.

        Returns:
            The matching model or None.
        """
        with self._session() as session:
            orm_obj = session.get(self._orm_class, entity_id)
            if orm_obj is None:
                return None
            return self._orm_to_pydantic(orm_obj)

    def get_many(
        self,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = True,
        limit: int = 100,
        offset: int = 0,
    ) -> list[T]:
        """Query entities with optional filters, ordering, and pagination.

        Args:
            filters: Column-value pairs for WHERE clauses; ``None`` values
                become ``IS NULL``.
            order_by: Column name to order by.
            descending: Sort direction (default: descending).
            limit: Maximum number of results.
            offset: Number of results to skip.

        Returns:
            List of matching models.
        """
        with self._session() as session:
            return self._query_with_session(
                session,
                filters=filters,
                order_by=order_by,
                descending=descending,
                limit=limit,
                offset=offset,
            )

    def _apply_filters(self, stmt: Any, filters: dict[str, Any] | None) -> Any:
        """Apply column=value filters to a SELECT statement."""
        if not filters:
            return stmt
        for key, value in filters.items():
            if hasattr(self._orm_class, key):
                col = getattr(self._orm_class, key)
                stmt = stmt.where(col.is_(None) if value is None else col == value)
        return stmt

    def _query_with_session(
        self,
        session: Session,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = True,
        limit: int = 100,
        offset: int = 0,
    ) -> list[T]:
        """Run a filtered query within an existing session (for subclass use)."""
        stmt = select(self._orm_class)
        stmt = self._apply_filters(stmt, filters)
        if order_by and hasattr(self._orm_class, order_by):
            col = getattr(self._orm_class, order_by)
            stmt = stmt.order_by(col.desc() if descending else col.asc())
        stmt = stmt.limit(limit).offset(offset)
        results = session.execute(stmt).scalars().all()
        return [self._orm_to_pydantic(obj) for obj in results]
