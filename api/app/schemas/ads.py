from datetime import datetime
from enum import IntEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, field_validator

from app.core.languages import Language

AdSortMode = Literal["price_asc", "price_desc", "date_desc"]
# Upper bound of the integer id and category columns.
MAX_INT4 = 2_147_483_647
CategoryId = Annotated[int, Field(ge=1, le=MAX_INT4)]


class AdStatus(IntEnum):
    DRAFT = 0
    PENDING = 1
    FROM_PARSER = 2
    ACTIVE = 3
    COMPLETED = 4
    REJECTED = 5
    APPROVED = 6
    UNKNOWN = 7  # parser could not classify the ad
    DUPLICATE = 8


class MultiLangText(BaseModel):
    lang: Language
    text: str


class Price(BaseModel):
    value: float = Field(allow_inf_nan=False)
    currency: str

    @field_validator("currency", mode="before")
    @classmethod
    def _coerce_currency(cls, value: Any) -> str:
        if isinstance(value, bool):
            raise ValueError("invalid currency code")
        if isinstance(value, int):
            value = str(value)
        if not isinstance(value, str) or not value.strip().isdigit():
            raise ValueError(f"invalid currency code: {value!r}")
        return value.strip()


def _reject_duplicate_languages(entries: list[MultiLangText] | None) -> list[MultiLangText] | None:
    if entries is None:
        return None
    seen: set[int] = set()
    for entry in entries:
        if entry.lang in seen:
            raise ValueError(f"duplicate language entry: {entry.lang.name.lower()}")
        seen.add(entry.lang)
    return entries


class AdIn(BaseModel):
    title_multi: list[MultiLangText] = Field(min_length=1)
    body_multi: list[MultiLangText] | None = None
    attributes: dict[str, Any] = Field(default_factory=dict)
    category_ids: list[CategoryId] = Field(default_factory=list)
    status: AdStatus = AdStatus.DRAFT
    price: Price | None = None

    @field_validator("title_multi", "body_multi")
    @classmethod
    def _unique_languages(cls, value: list[MultiLangText] | None) -> list[MultiLangText] | None:
        return _reject_duplicate_languages(value)

    @field_validator("category_ids")
    @classmethod
    def _dedupe_categories(cls, value: list[int]) -> list[int]:
        return sorted(set(value))


class AdOut(BaseModel):
    id: int
    title_multi: list[MultiLangText]
    body_multi: list[MultiLangText] | None = None
    attributes: dict[str, Any] = Field(default_factory=dict)
    category_ids: list[int] = Field(default_factory=list)
    status: AdStatus = AdStatus.DRAFT
    price: Price | None = None
    title: str | None = None
    description: str | None = None
    created_at: datetime
    updated_at: datetime


class AdPage(BaseModel):
    items: list[AdOut] = Field(default_factory=list)
    next_page: str | None = None
    total_count: int = 0
