# Overview: Page/limit parsing and paginated query execution for list endpoints.

from __future__ import annotations

import math
from dataclasses import dataclass

from ..config import ShopSettings
from ..errors import ValidationError


@dataclass(frozen=True)
class Page:
    items: list
    page: int
    pages: int
    total: int

    def to_dict(self, key: str, serialize=lambda obj: obj.to_dict()) -> dict:
        return {
            key: [serialize(item) for item in self.items],
            "page": self.page,
            "pages": self.pages,
            "total": self.total,
        }


def parse_page_args(args, settings: ShopSettings) -> tuple[int, int]:
    """
    Read ?page=&limit= from a request args mapping.

    page is 1-based (anything below 1 becomes 1); limit falls back to the
    configured default and is clamped to the configured maximum.
    """
    try:
        page = int(args.get("page", 1))
        limit = int(args.get("limit", settings.pagination_default_limit))
    except (TypeError, ValueError):
        raise ValidationError("page and limit must be integers")
    page = max(page, 1)
    if limit < 1:
        limit = settings.pagination_default_limit
    return page, min(limit, settings.pagination_max_limit)


def paginate(query, *, page: int, limit: int) -> Page:
    total = query.order_by(None).count()
    items = query.offset((page - 1) * limit).limit(limit).all()
    pages = math.ceil(total / limit) if total else 0
    return Page(items=items, page=page, pages=pages, total=total)
