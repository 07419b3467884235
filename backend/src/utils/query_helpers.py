"""
Query helper utilities shared by list endpoints.
"""

import math
from typing import Any, Dict, List, Tuple, TypeVar

from sqlalchemy.orm import Query

from core.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE

T = TypeVar('T')


def paginate(query: Query[T], page: int = 1, page_size: int = DEFAULT_PAGE_SIZE) -> Tuple[List[T], int]:
    """
    Apply offset/limit pagination to an already-ordered query.

    Args:
        query: Ordered SQLAlchemy query
        page: 1-indexed page number (values below 1 are treated as 1)
        page_size: Items per page, capped at MAX_PAGE_SIZE

    Returns:
        Tuple of (items on the page, total matching rows)
    """
    page = max(page, 1)
    page_size = min(max(page_size, 1), MAX_PAGE_SIZE)
    total = query.order_by(None).count()
    items = query.offset((page - 1) * page_size).limit(page_size).all()
    return items, total


def pagination_meta(page: int, page_size: int, total: int) -> Dict[str, Any]:
    """Pagination block returned alongside list results."""
    page = max(page, 1)
    page_size = min(max(page_size, 1), MAX_PAGE_SIZE)
    total_pages = math.ceil(total / page_size) if total else 0
    return {
        "current_page": page,
        "total_pages": total_pages,
        "total_records": total,
        "has_next": page < total_pages,
        "has_prev": page > 1,
    }
