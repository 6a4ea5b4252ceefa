"""Base database models and session management."""

import uuid

from sqlalchemy import Column, DateTime, Uuid
from sqlalchemy.orm import Session, declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


class BaseModel(Base):
    """Base model with common fields."""

    __abstract__ = True

    id = Column(Uuid(), primary_key=True, default=uuid.uuid4)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


def get_session() -> Session:
    """Get a database session."""
    from zfs_replicator.database import engine

    if engine.SessionLocal is None:
        engine.create_engine()

    return engine.SessionLocal()


def get_db():
    """Dependency for FastAPI to get database session."""
    db = get_session()
    try:
        yield db
    finally:
        db.close()
