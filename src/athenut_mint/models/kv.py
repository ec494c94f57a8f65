"""Namespaced key-value table.

Every durable record the bridge keeps (quote cost records, the wallet's mint
quotes) is one row here, keyed by two namespaces and a key.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, LargeBinary, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Declarative base for the key-value store."""


class KVEntry(Base):
    """One value under (primary_namespace, secondary_namespace, key)."""

    __tablename__ = "kv_store"

    primary_namespace: Mapped[str] = mapped_column(String(64), primary_key=True)
    secondary_namespace: Mapped[str] = mapped_column(String(64), primary_key=True)
    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    # bumped by the upsert on every overwrite
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
