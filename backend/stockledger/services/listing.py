from __future__ import annotations

from typing import Callable, Optional

from flask import current_app

from ..validation import page_args


def resolve_page_args(page=None, per_page=None) -> tuple[int, int]:
    """Clamp raw page/per_page to the configured default (20) and maximum."""
    return page_args(
        page,
        per_page,
        default_per_page=current_app.config["DEFAULT_PAGE_SIZE"],
        max_per_page=current_app.config["MAX_PAGE_SIZE"],
    )


def paginate_query(
    query,
    *,
    page: int | None = None,
    per_page: int | None = None,
    serialize: Optional[Callable[[list], list[dict]]] = None,
) -> dict:
    """
    Offset pagination with the metadata shape every listing shares.

    serialize receives the whole page of rows so callers can batch lookups
    (e.g. placement names) instead of resolving row by row.
    """
    page, per_page = resolve_page_args(page, per_page)

    total = query.order_by(None).count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1
    rows = query.offset((page - 1) * per_page).limit(per_page).all()

    items = serialize(rows) if serialize else [r.to_dict() for r in rows]
    return {
        "items": items,
        "count": len(items),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def contains_ci(column, term: str):
    """Case-insensitive substring match with LIKE wildcards in term escaped."""
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return column.ilike(f"%{escaped}%", escape="\\")
