"""
Pagination utility for API endpoints
"""
from flask import request
from sqlalchemy.orm import Query


def paginate(query: Query, page: int = None, per_page: int = None, max_per_page: int = 100):
    """
    Paginate a SQLAlchemy query

    Args:
        query: SQLAlchemy query object
        page: Page number (1-indexed), defaults to request arg
        per_page: Items per page, defaults to request arg or 20
        max_per_page: Maximum items per page allowed (default: 100)

    Returns:
        Dict with paginated items and metadata
    """
    if page is None:
        page = request.args.get('page', 1, type=int)
    if per_page is None:
        per_page = request.args.get('per_page', 20, type=int)

    per_page = max(1, min(per_page, max_per_page))
    page = max(page, 1)

    total = query.order_by(None).count()
    items = query.limit(per_page).offset((page - 1) * per_page).all()

    total_pages = (total + per_page - 1) // per_page  # Ceiling division
    has_next = page < total_pages
    has_prev = page > 1

    return {
        'items': items,
        'pagination': {
            'page': page,
            'per_page': per_page,
            'total': total,
            'total_pages': total_pages,
            'has_next': has_next,
            'has_prev': has_prev,
            'next_page': page + 1 if has_next else None,
            'prev_page': page - 1 if has_prev else None
        }
    }


def paginate_response(result, serializer=None):
    """
    Convert a paginate() result to a JSON-ready dict

    Args:
        result: Output of paginate()
        serializer: Function to serialize each item (default: to_dict)
    """
    if serializer is None:
        serializer = lambda x: x.to_dict() if hasattr(x, 'to_dict') else x

    return {
        'data': [serializer(item) for item in result['items']],
        'pagination': result['pagination']
    }
