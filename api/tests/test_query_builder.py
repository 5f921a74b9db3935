from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from decimal import Decimal
import json
from typing import Any

import pytest

from app.core.languages import Language
from app.schemas.ads import AdStatus
from app.services.filters import AttributePredicate, FilterRequest
from app.services.repository import (
    PostgresAdRepository,
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    RepositoryValidationError,
)

NOW = datetime(2026, 3, 1, tzinfo=timezone.utc)


def _repository() -> PostgresAdRepository:
    return PostgresAdRepository(database_url=None, min_pool_size=1, max_pool_size=1)


def _row(ad_id: int, *, price: float | None = None) -> dict[str, Any]:
    return {
        "id": ad_id,
        "title": json.dumps([{"lang": 2, "text": f"Ad {ad_id}"}, {"lang": 1, "text": f"Объявление {ad_id}"}]),
        "description": None,
        "attributes": json.dumps({"color": "red"}),
        "category_ids": [5],
        "status": 3,
        "price": json.dumps({"value": price, "currency": "840"}) if price is not None else None,
        "created_at": NOW,
        "updated_at": NOW,
    }


class FakePool:
    def __init__(self, rows: list[dict[str, Any]], *, total: int, cursor: dict[str, Any] | None = None) -> None:
        self.rows = rows
        self.total = total
        self.cursor = cursor
        self.calls: list[tuple[str, str, tuple[Any, ...]]] = []

    async def fetchval(self, sql: str, *args: Any) -> Any:
        self.calls.append(("fetchval", sql, args))
        return self.total

    async def fetchrow(self, sql: str, *args: Any) -> Any:
        self.calls.append(("fetchrow", sql, args))
        return self.cursor

    async def fetch(self, sql: str, *args: Any) -> list[dict[str, Any]]:
        self.calls.append(("fetch", sql, args))
        return self.rows


def _install_pool(monkeypatch: pytest.MonkeyPatch, repository: PostgresAdRepository, pool: FakePool) -> None:
    async def fake_get_pool() -> FakePool:
        return pool

    monkeypatch.setattr(repository, "_get_pool", fake_get_pool)


def test_filter_where_binds_every_value() -> None:
    repository = _repository()
    ad_filter = FilterRequest(
        language=Language.EN,
        category_ids=(5, 9),
        text_search="  mountain bike ",
        status=AdStatus.ACTIVE,
        attributes=(AttributePredicate("color'; drop table ads; --", ("red", "blue")),),
        min_price=10,
        max_price=250.5,
        currency="840",
    )

    conditions, params = repository._build_filter_where(ad_filter)

    assert conditions == [
        "a.category_ids && $1::int[]",
        (
            "a.search_vector @@ (plainto_tsquery('russian', $2) || plainto_tsquery('english', $2)"
            " || plainto_tsquery('turkish', $2) || plainto_tsquery('simple', $2))"
        ),
        "a.status = $3",
        "a.attributes ->> $4::text = any($5::text[])",
        "a.price ->> 'currency' = $6",
        "(a.price ->> 'value')::numeric >= $7",
        "(a.price ->> 'value')::numeric <= $8",
    ]
    assert params == [
        [5, 9],
        "mountain bike",
        3,
        "color'; drop table ads; --",
        ["red", "blue"],
        "840",
        Decimal("10"),
        Decimal("250.5"),
    ]


def test_filter_where_is_empty_without_constraints() -> None:
    conditions, params = _repository()._build_filter_where(FilterRequest(language=Language.EN))

    assert conditions == []
    assert params == []


def test_filter_where_rejects_unknown_attribute_operator() -> None:
    ad_filter = FilterRequest(language=Language.EN, attributes=(AttributePredicate("color", ("red",), "like"),))

    with pytest.raises(RepositoryValidationError, match="unsupported attribute operator"):
        _repository()._build_filter_where(ad_filter)


def test_order_by_pushes_null_prices_last() -> None:
    repository = _repository()

    assert repository._resolve_order_by("price_asc") == "(a.price ->> 'value')::numeric asc nulls last, a.id asc"
    assert repository._resolve_order_by("price_desc") == "(a.price ->> 'value')::numeric desc nulls last, a.id asc"
    assert repository._resolve_order_by("date_desc") == "a.created_at desc, a.id desc"
    assert repository._resolve_order_by("anything") == "a.created_at desc, a.id desc"


def test_cursor_predicate_seeks_past_sort_key() -> None:
    params: list[Any] = []

    def bind(value: Any) -> str:
        params.append(value)
        return f"${len(params)}"

    date_predicate = PostgresAdRepository._build_cursor_predicate(
        "date_desc", {"id": 7, "created_at": NOW, "price_value": None}, bind
    )
    price_predicate = PostgresAdRepository._build_cursor_predicate(
        "price_asc", {"id": 8, "created_at": NOW, "price_value": Decimal("50")}, bind
    )
    null_price_predicate = PostgresAdRepository._build_cursor_predicate(
        "price_desc", {"id": 9, "created_at": NOW, "price_value": None}, bind
    )

    assert date_predicate == "(a.created_at, a.id) < ($2::timestamptz, $1::int)"
    assert price_predicate == (
        "((a.price ->> 'value')::numeric > $4::numeric"
        " or ((a.price ->> 'value')::numeric = $4::numeric and a.id > $3::int)"
        " or (a.price ->> 'value')::numeric is null)"
    )
    assert null_price_predicate == "((a.price ->> 'value')::numeric is null and a.id > $5::int)"
    assert params == [7, NOW, 8, Decimal("50"), 9]


def test_list_ads_fetches_one_extra_row_and_trims_it(monkeypatch: pytest.MonkeyPatch) -> None:
    repository = _repository()
    pool = FakePool([_row(3, price=10), _row(2), _row(1)], total=7)
    _install_pool(monkeypatch, repository, pool)

    result = asyncio.run(repository.list_ads(FilterRequest(language=Language.RU, page_size=2)))

    assert [item["id"] for item in result["items"]] == [3, 2]
    assert result["next_page"] == "2"
    assert result["total_count"] == 7
    assert result["items"][0]["title"] == "Объявление 3"
    assert result["items"][0]["price"] == {"value": 10, "currency": "840"}
    assert result["items"][1]["price"] is None
    kind, sql, args = pool.calls[-1]
    assert kind == "fetch"
    assert "limit $1" in sql
    assert args == (3,)


def test_list_ads_last_page_has_no_token(monkeypatch: pytest.MonkeyPatch) -> None:
    repository = _repository()
    pool = FakePool([_row(1)], total=1)
    _install_pool(monkeypatch, repository, pool)

    result = asyncio.run(repository.list_ads(FilterRequest(language=Language.EN, page_size=2)))

    assert result["next_page"] is None
    assert [item["title"] for item in result["items"]] == ["Ad 1"]


def test_list_ads_count_excludes_pagination(monkeypatch: pytest.MonkeyPatch) -> None:
    repository = _repository()
    pool = FakePool([], total=4, cursor={"id": 9, "created_at": NOW, "price_value": None})
    _install_pool(monkeypatch, repository, pool)

    asyncio.run(repository.list_ads(FilterRequest(language=Language.EN, status=AdStatus.ACTIVE, page_token=9)))

    count_call = next(call for call in pool.calls if call[0] == "fetchval")
    page_call = next(call for call in pool.calls if call[0] == "fetch")
    assert count_call[1] == "select count(*) from ads a where a.status = $1"
    assert count_call[2] == (3,)
    assert "(a.created_at, a.id) < ($3::timestamptz, $2::int)" in page_call[1]
    assert page_call[2] == (3, 9, NOW, 21)


def test_list_ads_unknown_page_token_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    repository = _repository()
    _install_pool(monkeypatch, repository, FakePool([], total=0, cursor=None))

    with pytest.raises(RepositoryNotFoundError):
        asyncio.run(repository.list_ads(FilterRequest(language=Language.EN, page_token=404)))


def test_write_values_split_search_documents_by_language() -> None:
    values = _repository()._ad_write_values(
        {
            "title_multi": [{"lang": 2, "text": "Bike"}, {"lang": 1, "text": "Велосипед"}],
            "body_multi": [{"lang": 2, "text": "Red city bike"}],
            "attributes": {"color": "red"},
            "category_ids": [5, 2, 5],
            "status": 3,
            "price": None,
        }
    )

    assert values[3] == [2, 5]
    assert values[4] == 3
    assert values[5] is None
    assert values[6:] == [
        "Велосипед",
        "Bike",
        "",
        "Bike Велосипед",
        "",
        "Red city bike",
        "",
        "Red city bike",
    ]


def test_write_values_require_title() -> None:
    with pytest.raises(RepositoryValidationError):
        _repository()._ad_write_values({"title_multi": []})


def test_unconfigured_repository_is_unavailable() -> None:
    with pytest.raises(RepositoryUnavailableError, match="MARKET_DATABASE_URL"):
        asyncio.run(_repository().get_ad(1))


def test_filter_where_binds_single_price_bound() -> None:
    conditions, params = _repository()._build_filter_where(FilterRequest(language=Language.EN, max_price=99))

    assert conditions == ["(a.price ->> 'value')::numeric <= $1"]
    assert params == [Decimal("99")]
