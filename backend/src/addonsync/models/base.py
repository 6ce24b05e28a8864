"""
Base model class for the AddonSync backend.

Provides the common id/timestamp columns for all database models.
"""

import uuid
from datetime import UTC, datetime

from sqlalchemy import Column, String
from sqlalchemy.dialects.postgresql import TIMESTAMP
from sqlalchemy.exc import MissingGreenlet
from sqlalchemy.orm import declarative_mixin

# Import Base from the database module to avoid duplicate declarations
from ..core.database import Base


def utcnow() -> datetime:
    return datetime.now(UTC)


@declarative_mixin
class TimestampMixin:
    """Mixin for adding timestamp columns to models."""

    created_at = Column(TIMESTAMP(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(TIMESTAMP(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


@declarative_mixin
class UUIDMixin:
    """Mixin for adding UUID primary key to models."""

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))


class BaseModel(Base, TimestampMixin, UUIDMixin):
    """Base model class with common functionality."""

    __abstract__ = True

    def to_dict(self) -> dict:
        """Convert model to dictionary."""
        result = {}
        for attr in self.__mapper__.column_attrs:
            try:
                result[attr.key] = getattr(self, attr.key)
            except MissingGreenlet:
                result[attr.key] = None
        return result

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(id={self.id})>"
