"""
Base Repository Pattern for the practice billing backend.

Provides the foundation for all repository classes with:
- Lookup by id and by exact-match criteria
- Create and partial update helpers that flush but never commit
- Query helpers that translate SQLAlchemy errors

Services own the transaction; see BaseService.transaction().
"""

from abc import ABC, abstractmethod
import logging
from typing import Any, Generic, List, Optional, Type, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Query, Session

from ..core.exceptions import RepositoryException

T = TypeVar("T")

logger = logging.getLogger(__name__)


class IRepository(ABC, Generic[T]):
    """Abstract repository interface."""

    @abstractmethod
    def get_by_id(self, id: str, load_relationships: bool = True) -> Optional[T]:
        """Retrieve an entity by its primary key, or None."""

    @abstractmethod
    def create(self, **kwargs: Any) -> T:
        """
        Create a new entity.

        Raises:
            RepositoryException: If creation fails
        """

    @abstractmethod
    def count(self, **kwargs: Any) -> int:
        """Count entities matching given criteria."""


class BaseRepository(IRepository[T]):
    """
    Concrete base repository with the data access patterns every table needs.

    Attributes:
        db: SQLAlchemy session
        model: SQLAlchemy model class
    """

    def __init__(self, db: Session, model: Type[T]):
        self.db = db
        self.model = model
        self.logger = logging.getLogger(f"{__name__}.{model.__name__}")

    def get_by_id(self, id: str, load_relationships: bool = True) -> Optional[T]:
        try:
            query = self.db.query(self.model).filter(self.model.id == id)
            if load_relationships:
                query = self._apply_eager_loading(query)
            return query.first()
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting {self.model.__name__} by id {id}: {str(e)}")
            raise RepositoryException(f"Failed to retrieve {self.model.__name__}: {str(e)}")

    def create(self, **kwargs: Any) -> T:
        """Add and flush so the ULID and defaults are populated. Does not commit."""
        try:
            entity = self.model(**kwargs)
            self.db.add(entity)
            self.db.flush()
            return entity
        except IntegrityError as exc:
            self.logger.error("Integrity error creating %s: %s", self.model.__name__, exc, exc_info=True)
            self.db.rollback()
            raise RepositoryException(f"Integrity constraint violated: {exc}") from exc
        except SQLAlchemyError as e:
            self.logger.error(f"Error creating {self.model.__name__}: {str(e)}")
            self.db.rollback()
            raise RepositoryException(f"Failed to create {self.model.__name__}: {str(e)}")

    def flush(self) -> None:
        self.db.flush()

    def apply_updates(self, entity: T, **kwargs: Any) -> T:
        """Set attributes on an already loaded entity and flush."""
        for key, value in kwargs.items():
            if hasattr(entity, key):
                setattr(entity, key, value)
        self.db.flush()
        return entity

    def count(self, **kwargs: Any) -> int:
        try:
            return self.db.query(self.model).filter_by(**kwargs).count()
        except SQLAlchemyError as e:
            self.logger.error(f"Error counting {self.model.__name__}: {str(e)}")
            raise RepositoryException(f"Failed to count records: {str(e)}")

    def find_by(self, **kwargs: Any) -> List[T]:
        """Find entities by exact-match criteria."""
        return self._execute_query(self.db.query(self.model).filter_by(**kwargs))

    def find_one_by(self, **kwargs: Any) -> Optional[T]:
        return self._execute_first(self.db.query(self.model).filter_by(**kwargs))

    # Protected helpers for subclasses

    def _apply_eager_loading(self, query: Query) -> Query:
        """Override in subclasses to add joinedload/selectinload."""
        return query

    def _build_query(self) -> Query:
        return self.db.query(self.model)

    def _execute_query(self, query: Query) -> List[T]:
        try:
            return query.all()
        except SQLAlchemyError as e:
            self.logger.error(f"{self.model.__name__} query error: {str(e)}")
            raise RepositoryException(f"Query failed: {str(e)}")

    def _execute_first(self, query: Query) -> Optional[T]:
        try:
            return query.first()
        except SQLAlchemyError as e:
            self.logger.error(f"{self.model.__name__} query error: {str(e)}")
            raise RepositoryException(f"Query failed: {str(e)}")
