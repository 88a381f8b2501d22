import pytest

from app.db.schema_check import ensure_tables


@pytest.mark.asyncio
async def test_ensure_tables_is_idempotent(db_engine) -> None:
    assert await ensure_tables(db_engine) == []
