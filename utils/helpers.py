"""Utility helper functions."""

from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, List, Sequence, TypeVar, Union

T = TypeVar("T", int, float)

RowKey = Callable[[Dict[str, Any]], str]


def page_count(total: int, page_size: int) -> int:
    """Number of pages needed to show *total* rows, *page_size* at a time."""
    if page_size <= 0 or total <= 0:
        return 0
    return (total + page_size - 1) // page_size


def clamp(value: T, lower: T, upper: T) -> T:
    return max(lower, min(upper, value))


def row_key_factory(fields: Union[str, Sequence[str]], separator: str = ":") -> RowKey:
    """Build a key function for rows identified by one or more fields.

    ``row_key_factory(("provider", "product_id"))`` keys a row as
    ``"<provider>:<product_id>"``.
    """
    names = (fields,) if isinstance(fields, str) else tuple(fields)
    if not names:
        raise ValueError("At least one identifier field is required.")

    def _key(row: Dict[str, Any]) -> str:
        return separator.join(str(row[name]) for name in names)

    return _key


def unique(values: Iterable[str]) -> List[str]:
    """De-duplicate while keeping first-seen order."""
    seen = set()
    result: List[str] = []
    for value in values:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result
