"""
Listing helpers shared by the record services: sort, skip, limit and total.
"""

from typing import Any, Generic, Literal, TypeVar

from dateutil.parser import isoparse
from pydantic import BaseModel, Field

from health_fitness_ledger.utils.timezone_utils import ensure_utc

T = TypeVar("T")


class PageQuery(BaseModel):
    """Paging and ordering of a listing."""

    sort_by: str
    sort_order: Literal["asc", "desc"] = "desc"
    limit: int = Field(50, ge=1)
    skip: int = Field(0, ge=0)


class Page(BaseModel, Generic[T]):
    """One page of a listing plus the size of the full result."""

    items: list[T]
    total: int
    skip: int
    limit: int

    @property
    def returned(self) -> int:
        return len(self.items)


def _sort_value(value: Any) -> tuple[int, float, str]:
    # Numbers, then ISO dates, then other strings; each group in its natural order.
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return (0, float(value), "")
    if isinstance(value, str):
        try:
            return (1, ensure_utc(isoparse(value)).timestamp(), "")
        except ValueError:
            return (2, 0.0, value)
    return (3, 0.0, str(value))


def paginate(documents: list[dict[str, Any]], query: PageQuery) -> tuple[list[dict[str, Any]], int]:
    """
    Order stored documents by one field and cut out a page.

    Documents without the sort field go last in either direction.

    Args:
        documents: Documents already filtered.
        query: Ordering and paging.

    Returns:
        Tuple of (page of documents, total before paging).
    """
    present = [doc for doc in documents if doc.get(query.sort_by) is not None]
    absent = [doc for doc in documents if doc.get(query.sort_by) is None]

    present.sort(key=lambda doc: _sort_value(doc[query.sort_by]), reverse=query.sort_order == "desc")
    ordered = present + absent

    return ordered[query.skip : query.skip + query.limit], len(documents)
