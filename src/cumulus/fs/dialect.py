"""Dialect-aware SQL helpers — dialect detection and insert-if-absent."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import text
from sqlalchemy.dialects import postgresql, sqlite

if TYPE_CHECKING:
    from sqlalchemy import Engine
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

_DIALECT_ALIASES = {
    "postgres": "postgresql",
    "pyodbc": "mssql",
}

_ON_CONFLICT_INSERTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


def get_dialect(engine: Engine | AsyncEngine) -> str:
    """Normalized dialect name of *engine*: 'sqlite', 'postgresql', 'mssql', or the raw name."""
    bound = getattr(engine, "sync_engine", engine)
    name = bound.dialect.name
    return _DIALECT_ALIASES.get(name, name)


async def insert_if_absent(
    session: AsyncSession,
    dialect: str,
    model: type,
    values: dict[str, Any],
    conflict_keys: list[str],
    schema: str | None = None,
) -> int:
    """Insert one row unless a row with the same *conflict_keys* exists.

    Returns the rowcount: 1 when this call inserted, 0 when the row was
    already there.  *conflict_keys* must be covered by a unique constraint
    on *model*'s table, so concurrent callers are arbitrated by the
    database.

    - SQLite / PostgreSQL: ``INSERT ... ON CONFLICT DO NOTHING``
    - MSSQL: ``MERGE ... WITH (HOLDLOCK) WHEN NOT MATCHED THEN INSERT``
    """
    if dialect == "mssql":
        result = await session.execute(text(_merge_sql(model, values, conflict_keys, schema)), values)
        return result.rowcount  # type: ignore[return-value]

    insert = _ON_CONFLICT_INSERTS.get(dialect)
    if insert is None:
        raise ValueError(f"Unsupported database dialect: {dialect}")

    stmt = insert(model).values(**values).on_conflict_do_nothing(index_elements=conflict_keys)
    if schema:
        stmt = stmt.execution_options(schema_translate_map={None: schema})
    result = await session.execute(stmt)
    return result.rowcount  # type: ignore[return-value]


def _merge_sql(
    model: type,
    values: dict[str, Any],
    conflict_keys: list[str],
    schema: str | None,
) -> str:
    table = model.__tablename__  # type: ignore[attr-defined]
    if schema:
        table = f"[{schema}].[{table}]"
    source = ", ".join(f":{k} AS {k}" for k in conflict_keys)
    matched = " AND ".join(f"target.{k} = source.{k}" for k in conflict_keys)
    columns = ", ".join(values)
    params = ", ".join(f":{k}" for k in values)
    return (
        f"MERGE INTO {table} WITH (HOLDLOCK) AS target "
        f"USING (SELECT {source}) AS source ON {matched} "
        f"WHEN NOT MATCHED THEN INSERT ({columns}) VALUES ({params});"
    )
