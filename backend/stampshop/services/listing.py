# Overview: Shared pagination envelope for list endpoints.

from __future__ import annotations

from ..validation import Page


def paginated(items: list[dict], total: int, page: Page) -> dict:
    total_pages = (total + page.limit - 1) // page.limit if total > 0 else 1
    return {
        "items": items,
        "count": len(items),
        "pagination": {
            "page": page.page,
            "limit": page.limit,
            "total": total,
            "total_pages": total_pages,
            "has_next": page.page < total_pages,
            "has_prev": page.page > 1,
        },
    }


def paginate_query(query, page: Page, serialize=lambda row: row.to_dict()) -> dict:
    total = query.count()
    rows = query.offset(page.offset).limit(page.limit).all()
    return paginated([serialize(r) for r in rows], total, page)
