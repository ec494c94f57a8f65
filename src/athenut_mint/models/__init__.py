"""ORM models."""

from athenut_mint.models.kv import Base, KVEntry

__all__ = ["Base", "KVEntry"]
