"""
Helper functions for common infrastructure operations.

This module provides domain-agnostic utility functions for:
- Pagination metadata

Usage:
    from core.helpers import calculate_pagination

    pagination = calculate_pagination(total=100, page=3, per_page=20)
"""

from __future__ import annotations

import math


def calculate_pagination(total: int, page: int, per_page: int) -> dict:
    """
    Calculate pagination metadata.

    Args:
        total: Total number of items
        page: Current page number (1-indexed)
        per_page: Items per page

    Returns:
        Dict with pagination metadata

    Example:
        pagination = calculate_pagination(total=100, page=3, per_page=20)
        # {
        #     "total": 100,
        #     "page": 3,
        #     "per_page": 20,
        #     "total_pages": 5,
        #     "has_next": True,
        #     "has_previous": True,
        #     "next_page": 4,
        #     "previous_page": 2,
        #     "start_index": 41,
        #     "end_index": 60
        # }
    """
    total_pages = math.ceil(total / per_page) if per_page > 0 else 0
    page = max(1, min(page, total_pages or 1))

    has_next = page < total_pages
    has_previous = page > 1

    start_index = (page - 1) * per_page + 1 if total > 0 else 0
    end_index = min(page * per_page, total)

    return {
        "total": total,
        "page": page,
        "per_page": per_page,
        "total_pages": total_pages,
        "has_next": has_next,
        "has_previous": has_previous,
        "next_page": page + 1 if has_next else None,
        "previous_page": page - 1 if has_previous else None,
        "start_index": start_index,
        "end_index": end_index,
    }

