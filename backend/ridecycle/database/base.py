"""
SQLAlchemy declarative base and common model mixins.

All timestamps are stored as naive UTC. Defaults are computed in Python
(with a matching server default for raw inserts) so values are available
on the instance right after flush without an extra round trip, which the
async session cannot lazy-load.
"""

import enum
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional, Type

from sqlalchemy import DateTime, Enum as SQLEnum, Uuid, func
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def enum_column(enum_cls: Type[enum.Enum], name: str) -> SQLEnum:
    """
    Build a portable enum column type that stores the member values.

    Args:
        enum_cls: Python enum backing the column
        name: Constraint / type name

    Example:
        status: Mapped[OrderStatus] = mapped_column(
            enum_column(OrderStatus, "order_status"),
        )
    """
    return SQLEnum(
        enum_cls,
        name=name,
        native_enum=False,
        create_constraint=True,
        length=32,
        validate_strings=True,
        values_callable=lambda members: [member.value for member in members],
    )


class Base(AsyncAttrs, DeclarativeBase):
    """
    Base class for all SQLAlchemy models with async support.

    Provides serialization helpers and a primary-key based repr.
    """

    def to_dict(self, exclude: Optional[set[str]] = None) -> Dict[str, Any]:
        """
        Convert column values to a JSON-friendly dictionary.

        Args:
            exclude: Set of attribute names to exclude from output

        Example:
            order.to_dict(exclude={"payment_instructions"})
        """
        exclude = exclude or set()
        result: Dict[str, Any] = {}

        for column in self.__table__.columns:
            if column.key in exclude:
                continue
            value = getattr(self, column.key)
            if isinstance(value, datetime):
                result[column.key] = value.isoformat()
            elif isinstance(value, uuid.UUID):
                result[column.key] = str(value)
            elif isinstance(value, Decimal):
                result[column.key] = str(value)
            elif isinstance(value, enum.Enum):
                result[column.key] = value.value
            else:
                result[column.key] = value

        return result

    def __repr__(self) -> str:
        pk_values = []
        for column in self.__table__.primary_key.columns:
            value = getattr(self, column.key, None)
            if value is not None:
                pk_values.append(f"{column.key}={value!r}")

        pk_str = ", ".join(pk_values) if pk_values else "no primary key"
        return f"<{self.__class__.__name__}({pk_str})>"


class TimestampMixin:
    """Adds created_at / updated_at columns."""

    @declared_attr
    def created_at(cls) -> Mapped[datetime]:
        return mapped_column(
            DateTime(),
            nullable=False,
            default=utcnow,
            server_default=func.now(),
            comment="Timestamp when record was created",
        )

    @declared_attr
    def updated_at(cls) -> Mapped[datetime]:
        return mapped_column(
            DateTime(),
            nullable=False,
            default=utcnow,
            server_default=func.now(),
            onupdate=utcnow,
            comment="Timestamp when record was last updated",
        )


class UUIDMixin:
    """UUID primary key generated client-side."""

    @declared_attr
    def id(cls) -> Mapped[uuid.UUID]:
        return mapped_column(
            Uuid(),
            primary_key=True,
            default=uuid.uuid4,
            nullable=False,
            comment="Unique identifier for the record",
        )


class BaseModel(Base, UUIDMixin, TimestampMixin):
    """
    Base model with UUID primary key and timestamps.

    Example:
        class Bicycle(BaseModel):
            __tablename__ = "bicycles"

            title: Mapped[str] = mapped_column(String(255))
    """

    __abstract__ = True
