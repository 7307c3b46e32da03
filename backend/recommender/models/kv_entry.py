from __future__ import annotations

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from recommender.core.base import Base, UpdatedAtMixin


class KeyValueEntry(Base, UpdatedAtMixin):
    """One namespaced key of the persistent key-value store.

    Checkpoint envelopes, their metadata index and stored recommendations are
    all serialised JSON documents living in this table.
    """
    __tablename__ = "kv_entries"

    key: Mapped[str] = mapped_column(String(512), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
