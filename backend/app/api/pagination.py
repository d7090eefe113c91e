from dataclasses import dataclass
import math

from fastapi import Query, Request

from app.dependencies import get_app_settings


@dataclass
class PageParams:
    page: int
    page_size: int

    def total_pages(self, total_count: int) -> int:
        return math.ceil(total_count / self.page_size) if total_count else 0


def page_params(
    request: Request,
    page: int = Query(default=1),
    page_size: int | None = Query(default=None, alias="pageSize"),
) -> PageParams:
    """Out-of-range values are clamped rather than rejected."""
    app_settings = get_app_settings(request)
    size = page_size if page_size is not None else app_settings.list_default_page_size
    size = min(max(size, 1), app_settings.list_max_page_size)
    return PageParams(page=max(page, 1), page_size=size)


def list_envelope(key: str, items: list[dict], total_count: int, params: PageParams) -> dict:
    if total_count == 0:
        return {key: [], "totalCount": 0, "page": 1, "pageSize": params.page_size, "totalPages": 0}
    return {
        key: items,
        "totalCount": total_count,
        "page": params.page,
        "pageSize": params.page_size,
        "totalPages": params.total_pages(total_count),
    }
