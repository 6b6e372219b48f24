"""Base model with common fields for all entities."""
import enum
from datetime import datetime
from typing import Type
from uuid import uuid4

from sqlalchemy import Column, DateTime, Enum as SQLEnum, Uuid

from entitlements.database import Base as DeclarativeBase


class Base(DeclarativeBase):
    """Base model class with common fields."""

    __abstract__ = True

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


def value_enum(enum_class: Type[enum.Enum]) -> SQLEnum:
    """Enum column type persisted by member value ("active") rather than name ("ACTIVE")."""
    return SQLEnum(enum_class, values_callable=lambda members: [member.value for member in members])
