"""
Declarative base and shared column helpers.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Type

from sqlalchemy import DateTime, Enum as SQLEnum, Numeric
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from orrbit.utils.billing_calendar import utcnow


# Native asset amounts: 7 decimal places
MONEY = Numeric(20, 7)


class Base(DeclarativeBase):
    """Metadata root for every table."""


class BaseModel(Base):
    """Abstract model with common helpers."""

    __abstract__ = True

    def to_dict(self) -> Dict[str, Any]:
        """Column values keyed by attribute name."""
        return {
            column.key: getattr(self, column.key)
            for column in self.__mapper__.column_attrs
        }


class TimestampMixin:
    """Adds created/updated timestamps."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utcnow,
        comment="Row creation time (UTC)"
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utcnow,
        onupdate=utcnow,
        comment="Last modification time (UTC)"
    )


def enum_column(enum_cls: Type[Enum], name: str) -> SQLEnum:
    """Store an enum by value as VARCHAR so partial indexes can match it."""
    return SQLEnum(
        enum_cls,
        name=name,
        native_enum=False,
        length=20,
        values_callable=lambda members: [member.value for member in members],
    )
