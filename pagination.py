from dataclasses import dataclass
from typing import Optional

from fastapi import Query

from errors import ValidationFailed
from settings import get_settings


@dataclass(frozen=True)
class PageParams:
    page: int
    limit: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


def page_params(
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
) -> PageParams:
    settings = get_settings()
    if limit is None:
        limit = settings.default_page_size
    if limit > settings.max_page_size:
        raise ValidationFailed(
            f"limit must be at most {settings.max_page_size}", field="limit"
        )
    return PageParams(page=page, limit=limit)


def paginate(query, params: PageParams, *order_by) -> dict:
    """Run ``query`` for one page and return the list envelope.

    Items are returned as ORM rows; callers convert them to response models.
    """
    total = query.order_by(None).count()
    items = query.order_by(*order_by).offset(params.offset).limit(params.limit).all()
    total_pages = (total + params.limit - 1) // params.limit
    return {
        "items": items,
        "page": params.page,
        "limit": params.limit,
        "totalPages": total_pages,
        "totalCount": total,
    }
