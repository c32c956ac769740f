"""
Page request/response helpers shared by the listing queries.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Generic, List, TypeVar

from presence.modules.shared.exceptions import ValidationError

T = TypeVar("T")

DEFAULT_PAGE_SIZE = 20


@dataclass(frozen=True)
class Pageable:
    """Zero-based page number and page size. A size of 0 means the default."""

    page: int = 0
    size: int = 0

    def resolved_size(self, default: int = DEFAULT_PAGE_SIZE) -> int:
        return self.size if self.size > 0 else default

    def offset(self, default: int = DEFAULT_PAGE_SIZE) -> int:
        return self.page * self.resolved_size(default)

    def validate(self) -> "Pageable":
        if self.page < 0:
            raise ValidationError("page", "page must be >= 0")
        if self.size < 0:
            raise ValidationError("size", "size must be >= 0")
        return self


@dataclass(frozen=True)
class PageData:
    page: int
    size: int
    total_elements: int
    total_pages: int

    @classmethod
    def build(cls, page: int, returned: int, total_elements: int, page_size: int) -> "PageData":
        total_pages = math.ceil(total_elements / page_size) if page_size > 0 else 0
        return cls(page=page, size=returned, total_elements=total_elements, total_pages=total_pages)


@dataclass(frozen=True)
class Page(Generic[T]):
    items: List[T]
    page_data: PageData
