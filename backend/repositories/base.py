"""
Base repository class providing common database operations.

Repositories never commit on their own except through ``create``/``save``;
services decide where a transaction ends.
"""

from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from repositories.database import Base

T = TypeVar("T", bound=Base)  # type: ignore[type-arg]


class BaseRepository(Generic[T]):
    """
    Base repository providing common CRUD operations.

    Type parameter T should be a SQLAlchemy model class.
    """

    def __init__(self, model: type[T], db: Session):
        self.model = model
        self.db = db

    def get_by_id(self, id: str) -> T | None:
        """Get entity by primary key, or None."""
        return self.db.get(self.model, id)

    def add(self, entity: T) -> None:
        """Stage entity in the current transaction without committing."""
        self.db.add(entity)

    def create(self, entity: T) -> T:
        """Insert entity and commit."""
        self.db.add(entity)
        self.db.commit()
        self.db.refresh(entity)
        return entity

    def save(self, entity: T) -> T:
        """Commit pending changes to an already-tracked entity."""
        self.db.commit()
        self.db.refresh(entity)
        return entity

    def remove(self, entity: T) -> None:
        """Stage a delete without committing."""
        self.db.delete(entity)

    def count(self) -> int:
        return self.db.query(self.model).count()

    def commit(self) -> None:
        self.db.commit()

    def flush(self) -> None:
        self.db.flush()

    def rollback(self) -> None:
        self.db.rollback()
