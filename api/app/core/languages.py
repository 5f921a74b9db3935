from __future__ import annotations

from enum import IntEnum
from typing import Any, Iterable, Mapping


class Language(IntEnum):
    RU = 1
    EN = 2
    TR = 3


FALLBACK_LANGUAGE = Language.EN
_LANGUAGE_BY_NAME = {language.name.lower(): language for language in Language}


def parse_language(value: str | int) -> Language:
    """Resolve a `lang` query value given either as a code name ("en") or a numeric code ("2")."""
    if isinstance(value, int):
        return Language(value)
    candidate = value.strip().lower()
    if candidate in _LANGUAGE_BY_NAME:
        return _LANGUAGE_BY_NAME[candidate]
    if candidate.isdigit():
        return Language(int(candidate))
    raise ValueError(f"unsupported language: {value!r}")


def text_for_language(entries: Iterable[Mapping[str, Any]] | None, language: Language) -> str:
    """Pick the entry for `language`, falling back to English, then to the first entry."""
    items = list(entries or [])
    for item in items:
        if item.get("lang") == language:
            return str(item.get("text", ""))
    for item in items:
        if item.get("lang") == FALLBACK_LANGUAGE:
            return str(item.get("text", ""))
    if items:
        return str(items[0].get("text", ""))
    return ""
