from __future__ import annotations

import re
import secrets
import unicodedata
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from functools import cmp_to_key
from typing import Any, TypeVar

T = TypeVar("T")

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_DIGIT_RUNS = re.compile(r"(\d+)")


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime(timezone=False) columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id(prefix: str) -> str:
    return f"{prefix}-{secrets.token_urlsafe(20)}"


def _fold(value: str) -> str:
    # Drop accents so "Zürich" and "Zurich" compare and slug the same.
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def slugify(text: str) -> str:
    """
    Build the base slug for a display name.

    - accents folded, lowercased
    - runs of anything but [a-z0-9] collapse to a single "-"
    - names without any usable character fall back to "unnamed"
    """
    slug = _NON_ALNUM.sub("-", _fold(text or "").lower()).strip("-")
    return slug or "unnamed"


def unique_slug(name: str, is_taken: Callable[[str], bool]) -> str:
    """
    First free slug in the sequence base, base-1, base-2, ...
    `is_taken` must ignore the row being renamed so an entity never collides with itself.
    """
    base = slugify(name)
    counter = 0
    while True:
        slug = base if counter == 0 else f"{base}-{counter}"
        if not is_taken(slug):
            return slug
        counter += 1


def collation_key(value: str) -> tuple:
    """
    Locale-ish comparison key: case and accent insensitive, digit runs compared numerically
    ("Initiative 2" < "Initiative 10").
    """
    parts = _DIGIT_RUNS.split(_fold(value).casefold())
    return tuple((0, int(p), "") if p.isdigit() else (1, 0, p) for p in parts if p)


def _compare_values(a: Any, b: Any) -> int:
    if isinstance(a, str) and isinstance(b, str):
        a, b = collation_key(a), collation_key(b)
    if a < b:
        return -1
    if a > b:
        return 1
    return 0


def make_sorter(keys: list[tuple[str, bool]]) -> Callable[[Iterable[T]], list[T]]:
    """
    Stable multi-key sorter over attributes. `keys` is a list of (attribute, reverse).
    Missing values (None) always sort last, regardless of direction.
    """

    def compare(a: Any, b: Any) -> int:
        for attr, reverse in keys:
            va = getattr(a, attr, None)
            vb = getattr(b, attr, None)
            if va is not None and vb is None:
                return -1
            if va is None and vb is not None:
                return 1
            if va is None and vb is None:
                continue
            result = _compare_values(va, vb)
            if result:
                return -result if reverse else result
        return 0

    def sort(items: Iterable[T]) -> list[T]:
        return sorted(items, key=cmp_to_key(compare))

    return sort


# Latest deadline first, then by name.
sort_initiatives = make_sorter([("deadline", True), ("short_name", False), ("id", False)])
sort_people = make_sorter([("name", False), ("id", False)])
sort_organisations = make_sorter([("name", False), ("id", False)])
