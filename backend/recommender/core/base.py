"""SQLAlchemy declarative base and shared mixins."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class UpdatedAtMixin:
    """Updated-at timestamp mixin (UTC).

    Set on insert as well as update: checkpoint rows are overwritten in place.
    """

    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        server_default=func.now(),
        onupdate=func.now(),
    )
