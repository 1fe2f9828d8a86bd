"""
Create any missing exeat tables (and their indexes) in the connected database.

Usage: python -m app.db.schema_check
"""

import asyncio
from typing import List

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncEngine

# Register every model on Base.metadata
import app.auth.models  # noqa: F401
import app.core.models  # noqa: F401
from app.db.session import Base, engine


async def ensure_tables(db_engine: AsyncEngine) -> List[str]:
    """Create missing tables in dependency order. Existing tables are left untouched."""
    async with db_engine.begin() as conn:
        existing = set(await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names()))
        missing = [t.name for t in Base.metadata.sorted_tables if t.name not in existing]
        await conn.run_sync(Base.metadata.create_all)

    if missing:
        print("Created missing tables: " + ", ".join(missing))
    else:
        print("All exeat tables already exist in the database.")
    return missing


async def main() -> None:
    await ensure_tables(engine)


if __name__ == "__main__":
    asyncio.run(main())
