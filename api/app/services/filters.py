from __future__ import annotations

from dataclasses import dataclass, field
import re
from typing import Iterable

from app.core.languages import Language
from app.schemas.ads import MAX_INT4, AdSortMode, AdStatus

DEFAULT_PAGE_SIZE = 20
ATTRIBUTE_NAME_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.:-]{0,63}$")
PROPERTY_PARAM_RE = re.compile(r"^properties\[(?P<name>[^\[\]]+)\]$")


class FilterValidationError(ValueError):
    """Raised when filter parameters cannot be turned into a FilterRequest."""


@dataclass(frozen=True, slots=True)
class AttributePredicate:
    name: str
    values: tuple[str, ...]
    operator: str = "in"


@dataclass(frozen=True, slots=True)
class FilterRequest:
    language: Language
    category_ids: tuple[int, ...] = ()
    text_search: str | None = None
    status: AdStatus | None = None
    attributes: tuple[AttributePredicate, ...] = ()
    min_price: float | None = None
    max_price: float | None = None
    currency: str | None = None
    sort: AdSortMode = "date_desc"
    page_size: int = DEFAULT_PAGE_SIZE
    page_token: int | None = field(default=None)

    @property
    def has_price_bounds(self) -> bool:
        return self.min_price is not None or self.max_price is not None


def resolve_page_size(requested: int | None, *, default: int = DEFAULT_PAGE_SIZE, maximum: int | None = None) -> int:
    if not requested:
        return default
    if requested < 0:
        raise FilterValidationError("page_size must not be negative")
    if maximum is not None and requested > maximum:
        raise FilterValidationError(f"page_size must not exceed {maximum}")
    return requested


def parse_page_token(token: str | None) -> int | None:
    if token is None:
        return None
    stripped = token.strip()
    if not stripped:
        return None
    if not (stripped.isascii() and stripped.isdigit()) or not 0 < int(stripped) <= MAX_INT4:
        raise FilterValidationError("invalid page token")
    return int(stripped)


def parse_category_ids(categories: Iterable[int] | None) -> tuple[int, ...]:
    category_ids = tuple(categories or ())
    for category_id in category_ids:
        if not 0 < category_id <= MAX_INT4:
            raise FilterValidationError(f"invalid category id: {category_id}")
    return category_ids


def parse_attribute_predicates(query_items: Iterable[tuple[str, str]]) -> tuple[AttributePredicate, ...]:
    """Collect `properties[<name>]=<value>` pairs into predicates, keeping first-seen name order."""
    grouped: dict[str, list[str]] = {}
    for key, value in query_items:
        match = PROPERTY_PARAM_RE.match(key)
        if not match:
            continue
        name = match.group("name").strip()
        if not ATTRIBUTE_NAME_RE.match(name):
            raise FilterValidationError(f"invalid property name: {name!r}")
        values = grouped.setdefault(name, [])
        if value != "":
            values.append(value)
    return tuple(AttributePredicate(name=name, values=tuple(values)) for name, values in grouped.items() if values)


def normalize_currency(currency: str | None) -> str | None:
    if currency is None:
        return None
    stripped = currency.strip()
    if not stripped:
        return None
    if not stripped.isdigit():
        raise FilterValidationError(f"invalid currency code: {currency!r}")
    return stripped
