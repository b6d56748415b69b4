"""General-purpose helper utilities shared across the application."""

from __future__ import annotations

import numbers
import re
import unicodedata
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping
from urllib.parse import quote


__all__ = [
    "IMAGE_ENDPOINT",
    "_coerce_optional_int",
    "_dedupe_preserve_order",
    "_format_name_list",
    "_normalize_text",
    "_parse_iterable",
    "is_external_image",
    "now_utc_iso",
    "resolve_image_url",
    "sanitize_file_name",
]

IMAGE_ENDPOINT = "/api/images"

_UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9.-]")
_REPEATED_UNDERSCORES = re.compile(r"_{2,}")


def now_utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _normalize_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    return str(value).strip()


def _dedupe_preserve_order(values: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for value in values:
        text = str(value).strip()
        if not text:
            continue
        key = text.casefold()
        if key in seen:
            continue
        seen.add(key)
        result.append(text)
    return result


def _parse_iterable(value: Any, *, nested_key: str | None = None) -> list[str]:
    """Return display names from strings, scalars or lists of name mappings.

    ``nested_key`` unwraps catalog shapes such as ``{"platform": {"name": ...}}``.
    """

    if value is None:
        return []
    if isinstance(value, str):
        return [v.strip() for v in value.split(',') if v.strip()]
    if isinstance(value, numbers.Number):
        return [str(value)]
    try:
        iterator = iter(value)
    except TypeError:
        return [str(value)]
    items: list[str] = []
    for element in iterator:
        if isinstance(element, Mapping):
            if nested_key and isinstance(element.get(nested_key), Mapping):
                element = element[nested_key]
            name = element.get("name")
            if isinstance(name, str) and name.strip():
                items.append(name.strip())
        else:
            items.append(str(element).strip())
    return [item for item in items if item]


def _format_name_list(value: Any, *, nested_key: str | None = None) -> str:
    return ", ".join(_dedupe_preserve_order(_parse_iterable(value, nested_key=nested_key)))


def _coerce_optional_int(value: Any) -> int | None:
    """Return ``value`` as an ``int``; ``None`` and blanks map to ``None``.

    Raises ``ValueError`` for values that are present but not numeric.
    """

    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError("expected a number")
    if isinstance(value, numbers.Integral):
        return int(value)
    if isinstance(value, numbers.Real):
        if float(value).is_integer():
            return int(value)
        raise ValueError("expected a whole number")
    text = _normalize_text(value)
    if not text:
        return None
    try:
        return int(text)
    except ValueError:
        numeric = float(text)
        if not numeric.is_integer():
            raise ValueError("expected a whole number") from None
        return int(numeric)


def is_external_image(value: Any) -> bool:
    """Return ``True`` when ``value`` is an absolute http(s) URL."""

    if not isinstance(value, str):
        return False
    return value.startswith("http://") or value.startswith("https://")


def resolve_image_url(value: Any, *, endpoint: str = IMAGE_ENDPOINT) -> str | None:
    """Return a displayable URL for an image field.

    External URLs are returned verbatim; bare storage references are routed
    through the image retrieval endpoint.
    """

    text = _normalize_text(value)
    if not text:
        return None
    if is_external_image(text):
        return text
    return f"{endpoint}?file={quote(text, safe='')}"


def sanitize_file_name(name: str, *, default: str = "upload") -> str:
    """Strip accents and replace unsafe characters in an uploaded file name."""

    decomposed = unicodedata.normalize("NFD", name or "")
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    cleaned = _UNSAFE_NAME_CHARS.sub("_", stripped)
    cleaned = _REPEATED_UNDERSCORES.sub("_", cleaned).strip("._")
    return cleaned or default
