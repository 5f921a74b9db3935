from __future__ import annotations

from dataclasses import dataclass, field
import logging
from pathlib import Path

import asyncpg  # type: ignore[import-untyped]

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"
INITIAL_MIGRATION = MIGRATIONS_DIR / "001_initial_schema.sql"


class SchemaValidationError(Exception):
    """Raised when the live schema does not match the expected shape."""


class SchemaMissingError(SchemaValidationError):
    """Raised when an expected table does not exist."""


@dataclass(frozen=True, slots=True)
class ColumnSpec:
    name: str
    data_type: str
    is_nullable: str
    default: str | None = None
    is_serial: bool = False


@dataclass(frozen=True, slots=True)
class TableSpec:
    name: str
    columns: tuple[ColumnSpec, ...]
    indexes: tuple[str, ...] = field(default_factory=tuple)


EXPECTED_TABLES: tuple[TableSpec, ...] = (
    TableSpec(
        name="ads",
        columns=(
            ColumnSpec("id", "integer", "NO", is_serial=True),
            ColumnSpec("title", "jsonb", "NO"),
            ColumnSpec("description", "jsonb", "YES"),
            ColumnSpec("attributes", "jsonb", "YES"),
            ColumnSpec("category_ids", "ARRAY", "YES"),
            ColumnSpec("status", "integer", "NO", default="0"),
            ColumnSpec("price", "jsonb", "YES"),
            ColumnSpec("search_vector", "tsvector", "YES"),
            ColumnSpec("created_at", "timestamp with time zone", "YES", default="CURRENT_TIMESTAMP"),
            ColumnSpec("updated_at", "timestamp with time zone", "YES", default="CURRENT_TIMESTAMP"),
        ),
        indexes=(
            "ads_pkey",
            "idx_ads_status",
            "idx_ads_category_ids",
            "idx_ads_search_vector",
            "idx_ads_title",
            "idx_ads_attributes",
            "idx_ads_price",
            "idx_ads_created_at",
        ),
    ),
    TableSpec(
        name="category_closure",
        columns=(
            ColumnSpec("ancestor_id", "integer", "NO"),
            ColumnSpec("descendant_id", "integer", "NO"),
            ColumnSpec("depth", "integer", "NO"),
        ),
        indexes=(
            "category_closure_pkey",
            "idx_category_closure_ancestor",
            "idx_category_closure_descendant",
        ),
    ),
)

_TYPE_ALIASES = {
    "JSON": "JSONB",
    "VARCHAR": "CHARACTER VARYING",
    "INT": "INTEGER",
    "INT4": "INTEGER",
    "DECIMAL": "NUMERIC",
    "TIMESTAMPTZ": "TIMESTAMP WITH TIME ZONE",
}


def normalize_data_type(data_type: str) -> str:
    normalized = data_type.strip().upper()
    if normalized.startswith("_") or normalized.endswith("[]") or normalized == "ARRAY":
        return "ARRAY"
    return _TYPE_ALIASES.get(normalized, normalized)


def compare_column(expected: ColumnSpec, actual: ColumnSpec) -> None:
    expected_type = normalize_data_type(expected.data_type)
    actual_type = normalize_data_type(actual.data_type)
    if expected_type != actual_type:
        raise SchemaValidationError(f"column {expected.name}: expected type {expected_type}, got {actual_type}")
    if expected.is_nullable != actual.is_nullable:
        raise SchemaValidationError(
            f"column {expected.name}: expected nullable {expected.is_nullable}, got {actual.is_nullable}"
        )
    if expected.is_serial:
        if not actual.is_serial:
            raise SchemaValidationError(f"column {expected.name}: expected serial/identity column")
        return
    if expected.default is None and actual.default is None:
        return
    if expected.default is None or actual.default is None:
        raise SchemaValidationError(f"column {expected.name}: default value mismatch")
    if expected.default.lower() not in actual.default.lower():
        raise SchemaValidationError(f"column {expected.name}: default value mismatch")


def compare_table(expected: TableSpec, actual_columns: list[ColumnSpec], actual_indexes: list[str]) -> None:
    actual_by_name = {column.name: column for column in actual_columns}
    for column in expected.columns:
        actual = actual_by_name.get(column.name)
        if actual is None:
            raise SchemaValidationError(f"missing column {column.name} in table {expected.name}")
        try:
            compare_column(column, actual)
        except SchemaValidationError as exc:
            raise SchemaValidationError(f"column mismatch in table {expected.name}: {exc}") from exc

    expected_names = {column.name for column in expected.columns}
    for column in actual_columns:
        if column.name not in expected_names:
            raise SchemaValidationError(f"extra column {column.name} found in table {expected.name}")

    present = {index.lower() for index in actual_indexes}
    for index in expected.indexes:
        if index.lower() not in present:
            raise SchemaValidationError(f"missing index {index} in table {expected.name}")


async def validate_schema(conn: asyncpg.Connection, tables: tuple[TableSpec, ...] = EXPECTED_TABLES) -> None:
    for table in tables:
        exists = await conn.fetchval(
            """
            select exists (
              select from pg_tables
              where schemaname = 'public'
                and tablename = $1
            )
            """,
            table.name,
        )
        if not exists:
            raise SchemaMissingError(f"table {table.name} does not exist")

        columns = await _fetch_columns(conn, table.name)
        indexes = await conn.fetch(
            """
            select indexname
            from pg_indexes
            where schemaname = 'public'
              and tablename = $1
            """,
            table.name,
        )
        compare_table(table, columns, [row["indexname"] for row in indexes])


async def ensure_schema(database_url: str) -> None:
    """Validate the live schema, applying the bundled initial migration when tables are missing."""
    conn = await asyncpg.connect(dsn=database_url)
    try:
        try:
            await validate_schema(conn)
        except SchemaMissingError as exc:
            logger.info("database schema not found (%s); applying %s", exc, INITIAL_MIGRATION.name)
            await conn.execute(INITIAL_MIGRATION.read_text(encoding="utf-8"))
            await validate_schema(conn)
        logger.info("database schema validated")
    finally:
        await conn.close()


async def _fetch_columns(conn: asyncpg.Connection, table_name: str) -> list[ColumnSpec]:
    rows = await conn.fetch(
        """
        select
          c.column_name,
          case
            when c.data_type = 'ARRAY' then 'ARRAY'
            when c.data_type = 'USER-DEFINED' then c.udt_name
            else c.data_type
          end as data_type,
          c.is_nullable,
          c.column_default,
          coalesce(
            exists (
              select 1
              from pg_attribute a
              join pg_class t on a.attrelid = t.oid
              join pg_namespace n on t.relnamespace = n.oid
              where n.nspname = 'public'
                and t.relname = $1
                and a.attname = c.column_name
                and a.attidentity = 'a'
            ) or c.column_default like 'nextval%',
            false
          ) as is_serial
        from information_schema.columns c
        where c.table_schema = 'public'
          and c.table_name = $1
        order by c.ordinal_position
        """,
        table_name,
    )
    return [
        ColumnSpec(
            name=row["column_name"],
            data_type=row["data_type"],
            is_nullable=row["is_nullable"],
            default=row["column_default"],
            is_serial=bool(row["is_serial"]),
        )
        for row in rows
    ]
