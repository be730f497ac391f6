"""Dialect-aware INSERT ... ON CONFLICT helpers."""

from __future__ import annotations

from typing import Iterable

from sqlalchemy import Table
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Connection
from sqlalchemy.sql import Insert


def upsert_statement(
    conn: Connection,
    table: Table,
    key: str,
    *,
    update_columns: Iterable[str] | None = None,
) -> Insert:
    """Build an upsert keyed on ``key``.

    By default every non-key column is overwritten from the incoming row;
    ``update_columns`` narrows that to the named columns.
    """
    dialect = conn.dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(table)
    elif dialect == "sqlite":
        stmt = sqlite.insert(table)
    else:  # pragma: no cover - only the two dialects are deployed
        raise NotImplementedError(f"Upsert not supported on {dialect}")
    if update_columns is None:
        names = [column.name for column in table.columns if column.name != key and not column.primary_key]
    else:
        names = list(update_columns)
    return stmt.on_conflict_do_update(index_elements=[key], set_={name: stmt.excluded[name] for name in names})
