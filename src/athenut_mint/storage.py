"""Namespaced key-value persistence.

Values are opaque bytes addressed by (primary_namespace, secondary_namespace, key).
Reads and writes are atomic per key; there are no cross-key transactions.
"""

from __future__ import annotations

from typing import Protocol

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker


class KVStore(Protocol):
    """Protocol for the key-value persistence surface."""

    async def kv_write(self, primary: str, secondary: str, key: str, value: bytes) -> None:
        """Insert or replace a value."""
        ...

    async def kv_read(self, primary: str, secondary: str, key: str) -> bytes | None:
        """Return the stored value, or None."""
        ...

    async def kv_list(self, primary: str, secondary: str) -> list[str]:
        """Return all keys in a namespace, sorted."""
        ...

    async def kv_remove(self, primary: str, secondary: str, key: str) -> None:
        """Delete a value if present."""
        ...


class SqlKVStore:
    """KVStore backed by the kv_store table.

    Usage:
        _, factory = init_db()
        store = SqlKVStore(factory)
        await store.kv_write("athenut", "incoming_payment", quote_id, payload)
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def kv_write(self, primary: str, secondary: str, key: str, value: bytes) -> None:
        _validate_key(primary, secondary, key)
        async with self._session_factory() as session:
            await session.execute(
                text("""
                    INSERT INTO kv_store (primary_namespace, secondary_namespace, key, value)
                    VALUES (:primary, :secondary, :key, :value)
                    ON CONFLICT (primary_namespace, secondary_namespace, key)
                    DO UPDATE SET value = excluded.value, updated_at = CURRENT_TIMESTAMP
                """),
                {"primary": primary, "secondary": secondary, "key": key, "value": value},
            )
            await session.commit()

    async def kv_read(self, primary: str, secondary: str, key: str) -> bytes | None:
        async with self._session_factory() as session:
            result = await session.execute(
                text("""
                    SELECT value FROM kv_store
                    WHERE primary_namespace = :primary
                      AND secondary_namespace = :secondary
                      AND key = :key
                """),
                {"primary": primary, "secondary": secondary, "key": key},
            )
            row = result.fetchone()
        if row is None:
            return None
        return bytes(row[0])

    async def kv_list(self, primary: str, secondary: str) -> list[str]:
        async with self._session_factory() as session:
            result = await session.execute(
                text("""
                    SELECT key FROM kv_store
                    WHERE primary_namespace = :primary
                      AND secondary_namespace = :secondary
                    ORDER BY key
                """),
                {"primary": primary, "secondary": secondary},
            )
            return [row[0] for row in result.fetchall()]

    async def kv_remove(self, primary: str, secondary: str, key: str) -> None:
        async with self._session_factory() as session:
            await session.execute(
                text("""
                    DELETE FROM kv_store
                    WHERE primary_namespace = :primary
                      AND secondary_namespace = :secondary
                      AND key = :key
                """),
                {"primary": primary, "secondary": secondary, "key": key},
            )
            await session.commit()


def _validate_key(primary: str, secondary: str, key: str) -> None:
    if not primary or not key:
        raise ValueError("primary namespace and key are required")
    if len(primary) > 64 or len(secondary) > 64:
        raise ValueError("namespace names are limited to 64 characters")
    if len(key) > 255:
        raise ValueError("keys are limited to 255 characters")
