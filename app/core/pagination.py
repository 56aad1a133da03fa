"""Pagination helpers."""

import math
from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class Page(BaseModel, Generic[T]):
    items: list[T]
    page: int
    limit: int
    total: int
    pages: int


def paginate(page: int, limit: int, max_limit: int = 200) -> tuple[int, int, int]:
    """Clamp page/limit; return (page, limit, skip)."""
    limit = max(1, min(limit, max_limit))
    page = max(1, page)
    return page, limit, (page - 1) * limit


def build_page(items: list[T], page: int, limit: int, total: int) -> Page[T]:
    return Page(items=items, page=page, limit=limit, total=total, pages=math.ceil(total / limit) if total else 0)
