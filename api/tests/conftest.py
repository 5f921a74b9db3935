from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from typing import Any

os.environ.setdefault("MARKET_OTEL_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError

from app.core.languages import text_for_language
from app.main import app
from app.services.cache import AdCache, get_cache
from app.services.filters import FilterRequest
from app.services.repository import RepositoryNotFoundError, get_repository

BASE_CREATED_AT = datetime(2026, 1, 1, tzinfo=timezone.utc)


class FakeRedis:
    def __init__(self) -> None:
        self.store: dict[str, str] = {}
        self.expiry: dict[str, int | None] = {}
        self.fail = False

    async def get(self, key: str) -> str | None:
        self._check()
        return self.store.get(key)

    async def set(self, key: str, value: str, ex: int | None = None) -> None:
        self._check()
        self.store[key] = value
        self.expiry[key] = ex

    async def incr(self, key: str) -> int:
        self._check()
        value = int(self.store.get(key, 0)) + 1
        self.store[key] = str(value)
        return value

    async def aclose(self) -> None:
        return None

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("redis unavailable")


class FakeAdRepository:
    """In-memory stand-in mirroring the repository's filter, sort and cursor contract."""

    def __init__(self) -> None:
        self.ads: dict[int, dict[str, Any]] = {}
        self.list_calls = 0
        self.next_id = 1

    async def list_ads(self, ad_filter: FilterRequest) -> dict[str, Any]:
        self.list_calls += 1
        matching = [ad for ad in self._sorted(ad_filter.sort) if self._matches(ad, ad_filter)]
        total_count = len(matching)

        if ad_filter.page_token is not None:
            if ad_filter.page_token not in self.ads:
                raise RepositoryNotFoundError("page token does not reference an existing ad")
            ordered_ids = [ad["id"] for ad in self._sorted(ad_filter.sort)]
            position = ordered_ids.index(ad_filter.page_token)
            matching = [ad for ad in matching if ordered_ids.index(ad["id"]) > position]

        page = matching[: ad_filter.page_size + 1]
        next_page = None
        if len(page) > ad_filter.page_size:
            page = page[: ad_filter.page_size]
            next_page = str(page[-1]["id"])

        items = []
        for ad in page:
            item = dict(ad)
            item["title"] = text_for_language(ad["title_multi"], ad_filter.language)
            item["description"] = (
                text_for_language(ad["body_multi"], ad_filter.language) if ad["body_multi"] else None
            )
            items.append(item)
        return {"items": items, "next_page": next_page, "total_count": total_count}

    async def get_ad(self, ad_id: int) -> dict[str, Any]:
        if ad_id not in self.ads:
            raise RepositoryNotFoundError("ad not found")
        return dict(self.ads[ad_id])

    async def create_ad(self, payload: dict[str, Any]) -> dict[str, Any]:
        ad_id = self.next_id
        self.next_id += 1
        created_at = BASE_CREATED_AT + timedelta(minutes=ad_id)
        self.ads[ad_id] = {**payload, "id": ad_id, "created_at": created_at, "updated_at": created_at}
        return dict(self.ads[ad_id])

    async def update_ad(self, ad_id: int, payload: dict[str, Any]) -> dict[str, Any]:
        if ad_id not in self.ads:
            raise RepositoryNotFoundError("ad not found")
        current = self.ads[ad_id]
        self.ads[ad_id] = {
            **payload,
            "id": ad_id,
            "created_at": current["created_at"],
            "updated_at": current["updated_at"] + timedelta(seconds=1),
        }
        return dict(self.ads[ad_id])

    async def delete_ad(self, ad_id: int) -> None:
        if self.ads.pop(ad_id, None) is None:
            raise RepositoryNotFoundError("ad not found")

    def _sorted(self, sort: str) -> list[dict[str, Any]]:
        ads = list(self.ads.values())
        if sort in {"price_asc", "price_desc"}:
            priced = [ad for ad in ads if ad.get("price")]
            unpriced = sorted((ad for ad in ads if not ad.get("price")), key=lambda ad: ad["id"])
            priced.sort(key=lambda ad: ad["id"])
            priced.sort(key=lambda ad: ad["price"]["value"], reverse=sort == "price_desc")
            return priced + unpriced
        return sorted(ads, key=lambda ad: (ad["created_at"], ad["id"]), reverse=True)

    @staticmethod
    def _matches(ad: dict[str, Any], ad_filter: FilterRequest) -> bool:
        if ad_filter.category_ids and not set(ad_filter.category_ids) & set(ad.get("category_ids") or []):
            return False
        if ad_filter.status is not None and ad.get("status") != int(ad_filter.status):
            return False
        if ad_filter.text_search:
            texts = " ".join(entry["text"] for entry in ad["title_multi"] + (ad.get("body_multi") or []))
            if ad_filter.text_search.lower() not in texts.lower():
                return False
        for predicate in ad_filter.attributes:
            value = (ad.get("attributes") or {}).get(predicate.name)
            if value is None or str(value) not in predicate.values:
                return False
        price = ad.get("price")
        if ad_filter.currency and (not price or price["currency"] != ad_filter.currency):
            return False
        if ad_filter.has_price_bounds and not price:
            return False
        if ad_filter.min_price is not None and price["value"] < ad_filter.min_price:
            return False
        if ad_filter.max_price is not None and price["value"] > ad_filter.max_price:
            return False
        return True


def ad_payload(
    title: str,
    *,
    price: float | None = None,
    currency: str = "840",
    category_ids: list[int] | None = None,
    status: int = 3,
    attributes: dict[str, Any] | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "title_multi": [{"lang": 2, "text": title}],
        "attributes": attributes or {},
        "category_ids": category_ids or [],
        "status": status,
    }
    if price is not None:
        payload["price"] = {"value": price, "currency": currency}
    return payload


@pytest.fixture
def fake_repository() -> FakeAdRepository:
    return FakeAdRepository()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def api_client(fake_repository: FakeAdRepository, fake_redis: FakeRedis) -> TestClient:
    cache = AdCache(fake_redis, namespace="ads", ttl_seconds=300)
    app.dependency_overrides[get_repository] = lambda: fake_repository
    app.dependency_overrides[get_cache] = lambda: cache

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()
