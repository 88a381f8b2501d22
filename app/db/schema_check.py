"""
Create the core / auth / school schemas and any missing lifecycle tables. Idempotent.

Run once per environment:
  python -m app.db.schema_check
"""
import asyncio
import logging
from typing import List

from sqlalchemy import inspect, text
from sqlalchemy.ext.asyncio import AsyncEngine

from app.core import models  # noqa: F401  registers every table on Base.metadata
from app.core.config import settings
from app.core.logging import setup_logging
from app.db.session import SCHEMAS, Base, engine

logger = logging.getLogger(__name__)


def _missing_tables(sync_conn) -> List[str]:
    inspector = inspect(sync_conn)
    translate = sync_conn.get_execution_options().get("schema_translate_map") or {}
    missing = []
    for table in Base.metadata.sorted_tables:
        schema = translate.get(table.schema, table.schema)
        if not inspector.has_table(table.name, schema=schema):
            missing.append(table.fullname)
    return missing


async def ensure_tables(db_engine: AsyncEngine) -> List[str]:
    """Returns the tables that had to be created."""
    async with db_engine.begin() as conn:
        if conn.dialect.name == "postgresql":
            for schema in SCHEMAS:
                await conn.execute(text(f"CREATE SCHEMA IF NOT EXISTS {schema}"))
        missing = await conn.run_sync(_missing_tables)
        await conn.run_sync(Base.metadata.create_all)

    if missing:
        logger.info("Created missing tables: %s", ", ".join(missing))
    else:
        logger.info("All lifecycle tables already exist in the database.")
    return missing


async def main() -> None:
    setup_logging(environment=settings.environment)
    await ensure_tables(engine)


if __name__ == "__main__":
    asyncio.run(main())
