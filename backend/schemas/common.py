"""Response envelope shared by the point-of-sale endpoints."""

from __future__ import annotations

from typing import Generic, TypeVar

from pydantic import BaseModel

DataT = TypeVar("DataT")


class Envelope(BaseModel, Generic[DataT]):
    """``{success, data?, message?}`` wrapper around every response."""

    success: bool = True
    data: DataT | None = None
    message: str | None = None


class Pagination(BaseModel):
    """Pagination metadata for paged listings."""

    current_page: int
    total_pages: int
    total_items: int
    items_per_page: int
    has_next: bool
    has_prev: bool
