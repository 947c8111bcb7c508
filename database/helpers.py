"""
Database helper functions shared by the stores.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Sequence

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession


def upsert(
    session: AsyncSession,
    model: Any,
    values: Dict[str, Any],
    *,
    index_elements: Sequence[str],
    update_fields: Iterable[str],
):
    """
    Build an atomic ``INSERT .. ON CONFLICT DO UPDATE`` for the session's dialect.

    Last write wins on conflict; no read-modify-write round trip.
    """
    dialect = session.bind.dialect.name
    if dialect == "postgresql":
        insert = pg_insert
    elif dialect == "sqlite":
        insert = sqlite_insert
    else:
        raise NotImplementedError(f"upsert not supported for dialect {dialect!r}")

    stmt = insert(model).values(**values)
    return stmt.on_conflict_do_update(
        index_elements=list(index_elements),
        set_={field: stmt.excluded[field] for field in update_fields},
    )
