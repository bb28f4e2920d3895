"""Article search over the legacy database or its local cache."""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING

from sqlalchemy import func, select

from backend.legacy.base import Contains, LegacyFileType
from backend.legacy.encoding import DEFAULT_CODE_PAGES, fix_encoding, to_minor_units
from backend.schemas.article import ArticlePage, ArticleView
from backend.schemas.common import Pagination
from backend.services.cache_service import cache_articles

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.sql.elements import ColumnElement

    from backend.legacy.base import Row
    from backend.services.cache_service import CacheHandle
    from backend.services.connection_pool import ConnectionPool
    from backend.services.folder_service import FolderSelection

logger = logging.getLogger(__name__)


def stock_status(stock: float) -> str:
    """Classify a stock level."""
    if stock <= 0:
        return "out"
    if stock <= 5:
        return "low"
    if stock <= 20:
        return "medium"
    return "good"


def paginate(page: int, page_size: int, total: int) -> Pagination:
    total_pages = max(1, math.ceil(total / page_size))
    return Pagination(
        current_page=page,
        total_pages=total_pages,
        total_items=total,
        items_per_page=page_size,
        has_next=page < total_pages,
        has_prev=page > 1,
    )


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


class ArticleQueryService:
    """Paginated, filtered article search with stock levels."""

    def __init__(
        self, pool: ConnectionPool, code_pages: Sequence[str] = DEFAULT_CODE_PAGES
    ) -> None:
        self.pool = pool
        self.code_pages = tuple(code_pages)

    def search(
        self,
        selection: FolderSelection,
        term: str | None = None,
        family: str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> ArticlePage:
        """Search the legacy article table, ordered by name.

        The legacy engine has no offset: page ``n`` fetches ``n * page_size``
        rows and keeps the last slice, so cost grows with the page number.
        Blocking.
        """
        _check_paging(page, page_size)
        filters: list[Contains] = []
        if (term := _clean(term)) is not None:
            filters.append(Contains("Libelle", term))
        if (family := _clean(family)) is not None:
            filters.append(Contains("CodeFam", family))

        with self.pool.connection(selection.access_file_path) as conn:
            total = conn.count("Article", where=filters)
            if page == 1:
                rows = conn.select("Article", where=filters, order_by="Libelle", top=page_size)
            else:
                rows = conn.select(
                    "Article", where=filters, order_by="Libelle", top=page * page_size
                )[(page - 1) * page_size :]

        codes = [row.get("Code", "") for row in rows]
        stock = self._stock_levels(selection, codes)
        articles = [self._to_view(row, stock.get(row.get("Code", ""), 0.0)) for row in rows]
        return ArticlePage(articles=articles, pagination=paginate(page, page_size, total))

    def families(self, selection: FolderSelection) -> list[str]:
        """Distinct non-empty family codes, sorted. Blocking."""
        with self.pool.connection(selection.access_file_path) as conn:
            rows = conn.select("Article")
        codes = {fix_encoding(row.get("CodeFam"), self.code_pages).strip() for row in rows}
        return sorted(code for code in codes if code)

    def search_cache(
        self,
        cache: CacheHandle,
        term: str | None = None,
        family: str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> ArticlePage:
        """Same search against the local cache, with real offsets and no stock. Blocking."""
        _check_paging(page, page_size)
        conditions: list[ColumnElement[bool]] = []
        if (term := _clean(term)) is not None:
            conditions.append(
                func.lower(cache_articles.c.libelle).contains(term.lower(), autoescape=True)
            )
        if (family := _clean(family)) is not None:
            conditions.append(
                func.lower(cache_articles.c.code_fam).contains(family.lower(), autoescape=True)
            )

        count_stmt = select(func.count()).select_from(cache_articles)
        page_stmt = select(cache_articles)
        if conditions:
            count_stmt = count_stmt.where(*conditions)
            page_stmt = page_stmt.where(*conditions)
        page_stmt = (
            page_stmt.order_by(cache_articles.c.libelle)
            .limit(page_size)
            .offset((page - 1) * page_size)
        )
        with cache.engine() as engine, engine.connect() as conn:
            total = int(conn.execute(count_stmt).scalar_one())
            rows = conn.execute(page_stmt).mappings().all()

        articles = [
            ArticleView(
                code=row["code"],
                libelle=row["libelle"],
                code_fam=row["code_fam"],
                price_cents=row["base_ttc"],
                price=row["base_ttc"] / 100,
            )
            for row in rows
        ]
        return ArticlePage(articles=articles, pagination=paginate(page, page_size, total))

    def cache_families(self, cache: CacheHandle) -> list[str]:
        stmt = (
            select(cache_articles.c.code_fam)
            .where(cache_articles.c.code_fam != "")
            .distinct()
            .order_by(cache_articles.c.code_fam)
        )
        with cache.engine() as engine, engine.connect() as conn:
            return list(conn.execute(stmt).scalars().all())

    def _stock_levels(self, selection: FolderSelection, codes: list[str]) -> dict[str, float]:
        """Summed movement quantities per article code; empty when unavailable."""
        if not codes:
            return {}
        path = selection.file_path(LegacyFileType.FACTURATION)
        if path is None or not path.is_file():
            logger.debug("No stock database for folder '%s'", selection.folder_name)
            return {}
        try:
            with self.pool.connection(path) as conn:
                return conn.sum_by("Mouvementstock", "Quantite", "CodeArticle", codes)
        except Exception as exc:
            logger.warning("Stock lookup failed for %s, using zero stock: %s", path, exc)
            return {}

    def _to_view(self, row: Row, stock: float) -> ArticleView:
        price_cents = to_minor_units(row.get("BaseTTC"))
        return ArticleView(
            code=fix_encoding(row.get("Code"), self.code_pages),
            libelle=fix_encoding(row.get("Libelle"), self.code_pages),
            code_fam=fix_encoding(row.get("CodeFam"), self.code_pages),
            price_cents=price_cents,
            price=price_cents / 100,
            stock=stock,
            stock_status=stock_status(stock),
        )


def _check_paging(page: int, page_size: int) -> None:
    if page < 1:
        raise ValueError("page must be at least 1")
    if page_size < 1:
        raise ValueError("page size must be at least 1")
