"""Base repository class with common write handling."""

from typing import Generic, Type, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from zfs_replicator.database.base import BaseModel
from zfs_replicator.logging_config import get_logger

logger = get_logger(__name__)

ModelType = TypeVar("ModelType", bound=BaseModel)


class BaseRepository(Generic[ModelType]):
    """Base repository binding a model to a session."""

    def __init__(self, model: Type[ModelType], db: Session):
        """Initialize repository with model and database session."""
        self.model = model
        self.db = db

    def create(self, **kwargs) -> ModelType:
        """
        Create a new record.

        Raises:
            ValueError: If a constraint is violated
            SQLAlchemyError: For other database errors
        """
        try:
            db_obj = self.model(**kwargs)
            self.db.add(db_obj)
            self.db.commit()
            self.db.refresh(db_obj)
            return db_obj
        except IntegrityError as e:
            self.db.rollback()
            error_msg = str(e.orig) if hasattr(e, "orig") else str(e)
            logger.error(f"Database integrity error creating {self.model.__name__}: {error_msg}")
            raise ValueError(
                f"Failed to create {self.model.__name__}: constraint violation. "
                f"Details: {error_msg}"
            ) from e
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Database error creating {self.model.__name__}: {e}")
            raise
