"""
Base repository with generic CRUD operations.
"""

from typing import Any, Generic, Optional, Type, TypeVar

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from chatuniverse.models.db import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """Generic repository providing CRUD operations for a model."""

    def __init__(self, model: Type[ModelType], session: Session):
        self.model = model
        self.session = session

    def create(self, **kwargs) -> ModelType:
        """
        Create a new record.

        Args:
            **kwargs: Model field values

        Returns:
            Created model instance
        """
        instance = self.model(**kwargs)
        self.session.add(instance)
        self.session.flush()
        self.session.refresh(instance)
        return instance

    def get(self, id: Any) -> Optional[ModelType]:
        """
        Get a record by primary key.

        Args:
            id: Primary key value

        Returns:
            Model instance or None
        """
        return self.session.get(self.model, id)

    def count(self) -> int:
        """Count all records of this model."""
        return self.session.execute(
            select(func.count()).select_from(self.model)
        ).scalar_one()

    def update(self, id: Any, **kwargs) -> Optional[ModelType]:
        """
        Update a record by primary key.

        Args:
            id: Primary key value
            **kwargs: Fields to update

        Returns:
            Updated model instance or None if not found
        """
        instance = self.get(id)
        if instance is None:
            return None
        for key, value in kwargs.items():
            setattr(instance, key, value)
        self.session.flush()
        return instance

    def _insert(self):
        """
        Dialect-specific INSERT against this model's table.

        Values are keyed by column name (``metadata``, not ``extra_data``).

        Both the PostgreSQL and SQLite constructs support
        ``on_conflict_do_nothing`` / ``on_conflict_do_update``.
        """
        if self.session.get_bind().dialect.name == "postgresql":
            return pg_insert(self.model.__table__)
        return sqlite_insert(self.model.__table__)
