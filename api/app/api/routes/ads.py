from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Request, Response, status as http_status

from app.core.config import Settings, get_settings
from app.core.languages import parse_language
from app.schemas.ads import MAX_INT4, AdIn, AdOut, AdPage, AdSortMode, AdStatus
from app.services.ads import AdService, get_ad_service
from app.services.filters import (
    FilterRequest,
    FilterValidationError,
    normalize_currency,
    parse_attribute_predicates,
    parse_category_ids,
    parse_page_token,
    resolve_page_size,
)
from app.services.repository import (
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    RepositoryValidationError,
)

router = APIRouter()

AdId = Annotated[int, Path(ge=1, le=MAX_INT4)]


@router.get("", response_model=AdPage, response_model_exclude_none=True)
async def list_ads(
    request: Request,
    lang: str = Query(min_length=1),
    categories: list[int] | None = Query(default=None),
    q: str | None = Query(default=None),
    sort: AdSortMode = Query(default="date_desc"),
    next_page: str | None = Query(default=None),
    page_size: int | None = Query(default=None, ge=0),
    min_price: float | None = Query(default=None, allow_inf_nan=False),
    max_price: float | None = Query(default=None, allow_inf_nan=False),
    currency: str | None = Query(default=None),
    ad_status: AdStatus | None = Query(default=None, alias="status"),
    settings: Settings = Depends(get_settings),
    service: AdService = Depends(get_ad_service),
) -> AdPage:
    try:
        language = parse_language(lang)
    except ValueError as exc:
        raise HTTPException(status_code=http_status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    try:
        if min_price is not None and max_price is not None and min_price > max_price:
            raise FilterValidationError("min_price must not exceed max_price")
        ad_filter = FilterRequest(
            language=language,
            category_ids=parse_category_ids(categories),
            text_search=q.strip() if q and q.strip() else None,
            status=ad_status,
            attributes=parse_attribute_predicates(request.query_params.multi_items()),
            min_price=min_price,
            max_price=max_price,
            currency=normalize_currency(currency),
            sort=sort,
            page_size=resolve_page_size(
                page_size,
                default=settings.default_page_size,
                maximum=settings.max_page_size,
            ),
            page_token=parse_page_token(next_page),
        )
    except FilterValidationError as exc:
        raise HTTPException(status_code=http_status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    try:
        return await service.get_ads(ad_filter)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=http_status.HTTP_400_BAD_REQUEST, detail="invalid page token") from exc
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=http_status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(exc)) from exc


@router.get("/{ad_id}", response_model=AdOut, response_model_exclude_none=True)
async def get_ad(ad_id: AdId, service: AdService = Depends(get_ad_service)) -> AdOut:
    try:
        return await service.get_ad(ad_id)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=http_status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


@router.post(
    "",
    response_model=AdOut,
    response_model_exclude_none=True,
    status_code=http_status.HTTP_201_CREATED,
)
async def create_ad(payload: AdIn, service: AdService = Depends(get_ad_service)) -> AdOut:
    try:
        return await service.create_ad(payload)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=http_status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(exc)) from exc


@router.put("/{ad_id}", response_model=AdOut, response_model_exclude_none=True)
async def update_ad(
    payload: AdIn,
    ad_id: AdId,
    service: AdService = Depends(get_ad_service),
) -> AdOut:
    try:
        return await service.update_ad(ad_id, payload)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=http_status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=http_status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(exc)) from exc


@router.delete("/{ad_id}", status_code=http_status.HTTP_204_NO_CONTENT)
async def delete_ad(ad_id: AdId, service: AdService = Depends(get_ad_service)) -> Response:
    try:
        await service.delete_ad(ad_id)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=http_status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return Response(status_code=http_status.HTTP_204_NO_CONTENT)
