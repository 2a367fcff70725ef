import math
from typing import List, Optional, Sequence, TypeVar

from ..config import DEFAULT_PAGE_LIMIT, MAX_PAGE_LIMIT
from ..models import Page

T = TypeVar("T")


def clamp_limit(limit: Optional[int]) -> int:
    if not limit or limit < 1:
        return DEFAULT_PAGE_LIMIT
    return min(limit, MAX_PAGE_LIMIT)


def build_page(results: List[T], total: int, page: int, limit: int) -> Page:
    return Page(
        results=results,
        total_results=total,
        page=page,
        limit=limit,
        total_pages=math.ceil(total / limit) if limit else 0,
    )


def slice_page(items: Sequence[T], page: int, limit: int) -> Page:
    """Paginate an already sorted in-memory sequence."""
    start = (page - 1) * limit
    return build_page(list(items[start:start + limit]), len(items), page, limit)


async def find_page(collection, query: dict, page: int, limit: int, sort: list, model) -> Page:
    """Run ``query`` against ``collection`` and wrap one page of ``model`` instances."""
    limit = clamp_limit(limit)
    page = max(page, 1)
    total = await collection.count_documents(query)
    cursor = collection.find(query, {"_id": 0}).sort(sort).skip((page - 1) * limit).limit(limit)
    docs = await cursor.to_list(limit)
    return build_page([model.model_validate(d) for d in docs], total, page, limit)
