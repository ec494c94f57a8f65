"""Tests for the global engine and session factory."""

import pytest
from sqlalchemy import select

from athenut_mint.database import create_tables, dispose_db, init_db
from athenut_mint.models import KVEntry

pytestmark = pytest.mark.asyncio


class TestInitDb:
    """init_db / dispose_db."""

    async def test_same_pair_until_disposed(self, tmp_path):
        url = f"sqlite+aiosqlite:///{tmp_path / 'data' / 'bridge.sqlite'}"
        engine, factory = init_db(url)
        try:
            assert init_db(url) == (engine, factory)
            assert (tmp_path / "data").is_dir()

            await create_tables(engine)
            async with factory() as session:
                assert (await session.execute(select(KVEntry))).scalars().all() == []
        finally:
            await dispose_db()

        fresh_engine, fresh_factory = init_db(url)
        try:
            assert fresh_engine is not engine
            assert fresh_factory is not factory
        finally:
            await dispose_db()
