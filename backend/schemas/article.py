"""Article search schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field

from backend.schemas.common import Pagination


class ArticleView(BaseModel):
    """One article with its current stock."""

    code: str
    libelle: str
    code_fam: str
    price_cents: int
    price: float
    stock: float | None = None
    stock_status: str | None = None


class ArticlePage(BaseModel):
    """A page of article search results."""

    articles: list[ArticleView] = Field(default_factory=list)
    pagination: Pagination


class ArticleSearchParams(BaseModel):
    """Validated search query parameters."""

    search: str | None = Field(default=None, max_length=100)
    family: str | None = Field(default=None, max_length=50)
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)
