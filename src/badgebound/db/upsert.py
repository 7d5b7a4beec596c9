"""INSERT ... ON CONFLICT DO NOTHING for the dialects we run on."""

from __future__ import annotations

from typing import Any

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession


async def insert_ignore(
    db: AsyncSession,
    model: type,
    values: dict[str, Any],
    index_elements: list[str],
) -> bool:
    """Insert a row unless the unique key already exists. Returns True if inserted."""
    dialect = db.get_bind().dialect.name
    insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
    stmt = insert(model).values(**values).on_conflict_do_nothing(index_elements=index_elements)
    result = await db.execute(stmt)
    return bool(result.rowcount)
