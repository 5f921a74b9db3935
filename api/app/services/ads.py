from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import Depends
from opentelemetry import trace
from pydantic import ValidationError

from app.schemas.ads import AdIn, AdOut, AdPage
from app.services.cache import AdCache, get_cache
from app.services.filters import FilterRequest
from app.services.repository import get_repository

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def build_cache_key(ad_filter: FilterRequest, *, namespace: str, generation: int) -> str:
    """Serialize filter fields in a fixed order as a JSON array.

    Attribute predicates keep the order they were supplied in, so equal filters
    written in a different order produce different keys.
    """
    fields = [
        list(ad_filter.category_ids),
        ad_filter.text_search,
        ad_filter.sort,
        ad_filter.page_token,
        ad_filter.page_size,
        None if ad_filter.status is None else int(ad_filter.status),
        ad_filter.min_price,
        ad_filter.max_price,
        ad_filter.currency,
        int(ad_filter.language),
        [[predicate.name, predicate.operator, list(predicate.values)] for predicate in ad_filter.attributes],
    ]
    return f"{namespace}:v{generation}:filter:" + json.dumps(fields, ensure_ascii=False, separators=(",", ":"))


class AdService:
    def __init__(self, repository: Any, cache: AdCache) -> None:
        self.repository = repository
        self.cache = cache

    async def get_ads(self, ad_filter: FilterRequest) -> AdPage:
        with tracer.start_as_current_span("ads.get_ads") as span:
            span.set_attribute("cache.enabled", self.cache.enabled)
            cache_key: str | None = None
            generation = await self.cache.get_generation()
            if generation is not None:
                cache_key = build_cache_key(ad_filter, namespace=self.cache.namespace, generation=generation)
                cached = await self.cache.get(cache_key)
                if cached is not None:
                    try:
                        page = AdPage.model_validate_json(cached)
                    except ValidationError as exc:
                        logger.warning("discarding undecodable cache entry key=%s error=%s", cache_key, exc)
                    else:
                        span.set_attribute("cache.hit", True)
                        logger.debug("cache hit key=%s", cache_key)
                        return page

            span.set_attribute("cache.hit", False)
            result = await self.repository.list_ads(ad_filter)
            page = AdPage(
                items=[AdOut(**row) for row in result["items"]],
                next_page=result.get("next_page"),
                total_count=result["total_count"],
            )
            if cache_key is not None:
                await self.cache.set(cache_key, page.model_dump_json())
            return page

    async def get_ad(self, ad_id: int) -> AdOut:
        row = await self.repository.get_ad(ad_id)
        return AdOut(**row)

    async def create_ad(self, payload: AdIn) -> AdOut:
        with tracer.start_as_current_span("ads.create"):
            row = await self.repository.create_ad(payload.model_dump(mode="json"))
            await self.cache.invalidate()
        logger.info("ad created id=%s", row["id"])
        return AdOut(**row)

    async def update_ad(self, ad_id: int, payload: AdIn) -> AdOut:
        with tracer.start_as_current_span("ads.update") as span:
            span.set_attribute("ad.id", ad_id)
            row = await self.repository.update_ad(ad_id, payload.model_dump(mode="json"))
            await self.cache.invalidate()
        logger.info("ad updated id=%s", ad_id)
        return AdOut(**row)

    async def delete_ad(self, ad_id: int) -> None:
        with tracer.start_as_current_span("ads.delete") as span:
            span.set_attribute("ad.id", ad_id)
            await self.repository.delete_ad(ad_id)
            await self.cache.invalidate()
        logger.info("ad deleted id=%s", ad_id)


def get_ad_service(
    repository=Depends(get_repository),
    cache: AdCache = Depends(get_cache),
) -> AdService:
    return AdService(repository=repository, cache=cache)
