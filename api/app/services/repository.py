from __future__ import annotations

import json
from decimal import Decimal
from functools import lru_cache
from typing import Any, Callable

import asyncpg  # type: ignore[import-untyped]

from app.core.config import get_settings
from app.core.languages import Language, text_for_language
from app.services.filters import FilterRequest


class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


class RepositoryNotFoundError(RepositoryError):
    """Raised when the requested entity does not exist."""


class RepositoryValidationError(RepositoryError):
    """Raised when payload validation fails before persistence."""


PRICE_VALUE_SQL = "(a.price ->> 'value')::numeric"
AD_COLUMNS_SQL = """
              a.id,
              a.title,
              a.description,
              a.attributes,
              a.category_ids,
              a.status,
              a.price,
              a.created_at,
              a.updated_at
"""
SORT_ORDER_SQL = {
    "price_asc": f"{PRICE_VALUE_SQL} asc nulls last, a.id asc",
    "price_desc": f"{PRICE_VALUE_SQL} desc nulls last, a.id asc",
    "date_desc": "a.created_at desc, a.id desc",
}
# Text search configurations per language; "simple" indexes every entry unstemmed.
SEARCH_CONFIGS: tuple[tuple[str, Language | None], ...] = (
    ("russian", Language.RU),
    ("english", Language.EN),
    ("turkish", Language.TR),
    ("simple", None),
)
SEARCH_WEIGHTS = ("A", "B")

Binder = Callable[[Any], str]


def _search_vector_sql(first_param: int) -> str:
    parts: list[str] = []
    position = first_param
    for weight in SEARCH_WEIGHTS:
        for config, _ in SEARCH_CONFIGS:
            parts.append(f"setweight(to_tsvector('{config}', ${position}), '{weight}')")
            position += 1
    return " || ".join(parts)


def _search_query_sql(token: str) -> str:
    queries = " || ".join(f"plainto_tsquery('{config}', {token})" for config, _ in SEARCH_CONFIGS)
    return f"a.search_vector @@ ({queries})"


SEARCH_VECTOR_WRITE_SQL = _search_vector_sql(7)


class PostgresAdRepository:
    def __init__(
        self,
        database_url: str | None,
        min_pool_size: int,
        max_pool_size: int,
        command_timeout_seconds: float = 15.0,
    ) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.command_timeout_seconds = command_timeout_seconds
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def list_ads(self, ad_filter: FilterRequest) -> dict[str, Any]:
        """Return one page of ads matching `ad_filter` plus the total match count.

        The page token is the id of the last ad of the previous page. It is
        resolved to that ad's sort key so the next page continues strictly after
        it in the active order.
        """
        pool = await self._get_pool()
        conditions, params = self._build_filter_where(ad_filter)
        where_sql = " and ".join(conditions) if conditions else "true"

        total_count = await pool.fetchval(f"select count(*) from ads a where {where_sql}", *params)

        page_conditions = list(conditions)
        page_params = list(params)

        def bind(value: Any) -> str:
            page_params.append(value)
            return f"${len(page_params)}"

        if ad_filter.page_token is not None:
            cursor_row = await pool.fetchrow(
                f"""
                select a.id, a.created_at, {PRICE_VALUE_SQL} as price_value
                from ads a
                where a.id = $1
                """,
                ad_filter.page_token,
            )
            if not cursor_row:
                raise RepositoryNotFoundError("page token does not reference an existing ad")
            page_conditions.append(self._build_cursor_predicate(ad_filter.sort, cursor_row, bind))

        page_where_sql = " and ".join(page_conditions) if page_conditions else "true"
        order_by_sql = self._resolve_order_by(ad_filter.sort)
        limit_token = bind(ad_filter.page_size + 1)

        rows = await pool.fetch(
            f"""
            select
{AD_COLUMNS_SQL}
            from ads a
            where {page_where_sql}
            order by {order_by_sql}
            limit {limit_token}
            """,
            *page_params,
        )

        next_page: str | None = None
        if len(rows) > ad_filter.page_size:
            rows = rows[: ad_filter.page_size]
            next_page = str(rows[-1]["id"])

        return {
            "items": [self._ad_row_to_dict(row, language=ad_filter.language) for row in rows],
            "next_page": next_page,
            "total_count": int(total_count or 0),
        }

    async def get_ad(self, ad_id: int) -> dict[str, Any]:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            f"""
            select
{AD_COLUMNS_SQL}
            from ads a
            where a.id = $1
            """,
            ad_id,
        )
        if not row:
            raise RepositoryNotFoundError("ad not found")
        return self._ad_row_to_dict(row)

    async def create_ad(self, payload: dict[str, Any]) -> dict[str, Any]:
        pool = await self._get_pool()
        values = self._ad_write_values(payload)
        row = await pool.fetchrow(
            f"""
            with inserted as (
              insert into ads (title, description, attributes, category_ids, status, price, search_vector)
              values ($1::jsonb, $2::jsonb, $3::jsonb, $4::int[], $5, $6::jsonb, {SEARCH_VECTOR_WRITE_SQL})
              returning *
            )
            select
{AD_COLUMNS_SQL}
            from inserted a
            """,
            *values,
        )
        return self._ad_row_to_dict(row)

    async def update_ad(self, ad_id: int, payload: dict[str, Any]) -> dict[str, Any]:
        pool = await self._get_pool()
        values = self._ad_write_values(payload)
        row = await pool.fetchrow(
            f"""
            with updated as (
              update ads
              set
                title = $1::jsonb,
                description = $2::jsonb,
                attributes = $3::jsonb,
                category_ids = $4::int[],
                status = $5,
                price = $6::jsonb,
                search_vector = {SEARCH_VECTOR_WRITE_SQL},
                updated_at = now()
              where id = $15
              returning *
            )
            select
{AD_COLUMNS_SQL}
            from updated a
            """,
            *values,
            ad_id,
        )
        if not row:
            raise RepositoryNotFoundError("ad not found")
        return self._ad_row_to_dict(row)

    async def delete_ad(self, ad_id: int) -> None:
        pool = await self._get_pool()
        deleted_id = await pool.fetchval("delete from ads where id = $1 returning id", ad_id)
        if deleted_id is None:
            raise RepositoryNotFoundError("ad not found")

    def _build_filter_where(self, ad_filter: FilterRequest) -> tuple[list[str], list[Any]]:
        conditions: list[str] = []
        params: list[Any] = []

        def bind(value: Any) -> str:
            params.append(value)
            return f"${len(params)}"

        if ad_filter.category_ids:
            conditions.append(f"a.category_ids && {bind(list(ad_filter.category_ids))}::int[]")

        text_search = self._coerce_text(ad_filter.text_search)
        if text_search:
            conditions.append(_search_query_sql(bind(text_search)))

        if ad_filter.status is not None:
            conditions.append(f"a.status = {bind(int(ad_filter.status))}")

        for predicate in ad_filter.attributes:
            if predicate.operator != "in":
                raise RepositoryValidationError(f"unsupported attribute operator: {predicate.operator}")
            if not predicate.values:
                continue
            name_token = bind(predicate.name)
            values_token = bind(list(predicate.values))
            conditions.append(f"a.attributes ->> {name_token}::text = any({values_token}::text[])")

        if ad_filter.currency:
            conditions.append(f"a.price ->> 'currency' = {bind(ad_filter.currency)}")
        if ad_filter.has_price_bounds:
            if ad_filter.min_price is not None:
                conditions.append(f"{PRICE_VALUE_SQL} >= {bind(self._to_decimal(ad_filter.min_price))}")
            if ad_filter.max_price is not None:
                conditions.append(f"{PRICE_VALUE_SQL} <= {bind(self._to_decimal(ad_filter.max_price))}")

        return conditions, params

    @staticmethod
    def _build_cursor_predicate(sort: str, cursor_row: Any, bind: Binder) -> str:
        cursor_id = f"{bind(int(cursor_row['id']))}::int"
        if sort in {"price_asc", "price_desc"}:
            cursor_price = cursor_row["price_value"]
            if cursor_price is None:
                return f"({PRICE_VALUE_SQL} is null and a.id > {cursor_id})"
            price_token = f"{bind(cursor_price)}::numeric"
            comparator = ">" if sort == "price_asc" else "<"
            return (
                f"({PRICE_VALUE_SQL} {comparator} {price_token}"
                f" or ({PRICE_VALUE_SQL} = {price_token} and a.id > {cursor_id})"
                f" or {PRICE_VALUE_SQL} is null)"
            )
        return f"(a.created_at, a.id) < ({bind(cursor_row['created_at'])}::timestamptz, {cursor_id})"

    @staticmethod
    def _resolve_order_by(sort: str) -> str:
        return SORT_ORDER_SQL.get(sort, SORT_ORDER_SQL["date_desc"])

    def _ad_write_values(self, payload: dict[str, Any]) -> list[Any]:
        title = payload.get("title_multi") or []
        if not title:
            raise RepositoryValidationError("title_multi requires at least one language entry")
        description = payload.get("body_multi")
        price = payload.get("price")
        return [
            json.dumps(title),
            json.dumps(description) if description is not None else None,
            json.dumps(payload.get("attributes") or {}),
            sorted({int(category_id) for category_id in payload.get("category_ids") or []}),
            int(payload.get("status") or 0),
            json.dumps(price) if price is not None else None,
            *self._build_search_documents(title, description),
        ]

    @classmethod
    def _build_search_documents(
        cls, title: list[dict[str, Any]], description: list[dict[str, Any]] | None
    ) -> list[str]:
        """One document per (weight, config) pair, titles first, matching SEARCH_VECTOR_WRITE_SQL."""
        documents: list[str] = []
        for entries in (title, description or []):
            for _, language in SEARCH_CONFIGS:
                documents.append(cls._join_texts(entries, language))
        return documents

    @staticmethod
    def _join_texts(entries: list[dict[str, Any]], language: Language | None) -> str:
        texts = [
            str(entry.get("text") or "")
            for entry in entries
            if language is None or int(entry.get("lang") or 0) == int(language)
        ]
        return " ".join(text for text in texts if text)

    def _ad_row_to_dict(self, row: asyncpg.Record, *, language: Language | None = None) -> dict[str, Any]:
        title = self._coerce_json_list(row["title"])
        description = self._coerce_json_list(row["description"]) if row["description"] is not None else None
        price = self._coerce_json_dict(row["price"]) or None
        item: dict[str, Any] = {
            "id": int(row["id"]),
            "title_multi": title,
            "body_multi": description,
            "attributes": self._coerce_json_dict(row["attributes"]),
            "category_ids": list(row["category_ids"] or []),
            "status": int(row["status"]),
            "price": price,
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
        }
        if language is not None:
            item["title"] = text_for_language(title, language)
            item["description"] = text_for_language(description, language) if description else None
        return item

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("MARKET_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=self.command_timeout_seconds,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc

    @staticmethod
    def _to_decimal(value: float | int | Decimal) -> Decimal:
        if isinstance(value, Decimal):
            return value
        return Decimal(str(value))

    @staticmethod
    def _coerce_text(value: Any) -> str | None:
        if value is None:
            return None
        if isinstance(value, str):
            stripped = value.strip()
            return stripped or None
        return str(value)

    @staticmethod
    def _coerce_json_list(value: Any) -> list[dict[str, Any]]:
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError:
                return []
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, dict)]

    @staticmethod
    def _coerce_json_dict(value: Any) -> dict[str, Any]:
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError:
                return {}
        if isinstance(value, dict):
            return value
        return {}


@lru_cache
def get_repository() -> PostgresAdRepository:
    settings = get_settings()
    return PostgresAdRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
        command_timeout_seconds=settings.database_command_timeout_seconds,
    )
