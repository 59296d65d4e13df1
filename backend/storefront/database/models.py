"""
Table backing the PostgreSQL key-value store.
"""

from typing import Any

from sqlalchemy import Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from storefront.database.base import Base, TimestampMixin


class KeyValueEntry(Base, TimestampMixin):
    """One JSON document addressed by its key."""

    __tablename__ = "kv_store"

    key: Mapped[str] = mapped_column(Text, primary_key=True)
    value: Mapped[Any] = mapped_column(JSONB, nullable=False)
