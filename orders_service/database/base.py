"""
SQLAlchemy declarative base and common model mixins.

This module provides the SQLAlchemy DeclarativeBase shared by every order
table and the timestamp mixin. Column types are kept dialect neutral so the
same models run on PostgreSQL in production and SQLite in tests.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, String, func
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column


def generate_id() -> str:
    """Generate an opaque string identifier."""
    return str(uuid.uuid4())


class Base(AsyncAttrs, DeclarativeBase):
    """Declarative base for the order tables."""

    __abstract__ = True

    def __repr__(self) -> str:
        pk_values = []
        for column in self.__table__.primary_key.columns:
            value = getattr(self, column.name, None)
            if value is not None:
                pk_values.append(f"{column.name}={value!r}")

        pk_str = ", ".join(pk_values) if pk_values else "no primary key"
        return f"<{self.__class__.__name__}({pk_str})>"


class TimestampMixin:
    """created_at and updated_at columns maintained by the database."""

    @declared_attr
    def created_at(cls) -> Mapped[datetime]:
        return mapped_column(
            DateTime(timezone=True),
            nullable=False,
            server_default=func.now(),
            comment="Timestamp when record was created",
        )

    @declared_attr
    def updated_at(cls) -> Mapped[datetime]:
        return mapped_column(
            DateTime(timezone=True),
            nullable=False,
            server_default=func.now(),
            onupdate=func.now(),
            comment="Timestamp when record was last updated",
        )


class StringIDMixin:
    """
    Mixin for an opaque string primary key.

    Identifiers are generated as UUID4 text on the application side and are
    never interpreted; ordering is by created_at only.
    """

    @declared_attr
    def id(cls) -> Mapped[str]:
        return mapped_column(
            String(36),
            primary_key=True,
            default=generate_id,
            nullable=False,
            comment="Unique identifier for the record",
        )
