"""
Page/limit pagination shared by the list endpoints.
"""
import math
from typing import List, Tuple

from pydantic import BaseModel
from sqlalchemy.orm import Query


# PUBLIC_INTERFACE
class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total: int
    has_next_page: bool
    has_prev_page: bool


def paginate(query: Query, page: int, limit: int) -> Tuple[List, Pagination]:
    """Apply offset/limit to an ordered query and describe the page that came back."""
    total = query.order_by(None).count()
    skip = (page - 1) * limit
    items = query.offset(skip).limit(limit).all()
    return items, Pagination(
        current_page=page,
        total_pages=math.ceil(total / limit) if limit else 0,
        total=total,
        has_next_page=skip + limit < total,
        has_prev_page=page > 1,
    )
