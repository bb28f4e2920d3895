"""Article search endpoints, live against the legacy file or from the local cache."""

from __future__ import annotations

import asyncio
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query

from backend.api.deps import get_article_service, get_cache_service, require_selection
from backend.schemas.article import ArticlePage, ArticleSearchParams
from backend.schemas.common import Envelope
from backend.services.article_service import ArticleQueryService
from backend.services.cache_service import CacheService
from backend.services.folder_service import FolderSelection

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/articles", tags=["articles"])


@router.get("/search", response_model=Envelope[ArticlePage])
async def search_articles(
    params: Annotated[ArticleSearchParams, Query()],
    selection: Annotated[FolderSelection, Depends(require_selection)],
    service: Annotated[ArticleQueryService, Depends(get_article_service)],
) -> Envelope[ArticlePage]:
    """Search articles by name and family, with stock levels."""
    result = await asyncio.to_thread(
        service.search, selection, params.search, params.family, params.page, params.limit
    )
    return Envelope(data=result)


@router.get("/families", response_model=Envelope[list[str]])
async def list_families(
    selection: Annotated[FolderSelection, Depends(require_selection)],
    service: Annotated[ArticleQueryService, Depends(get_article_service)],
) -> Envelope[list[str]]:
    families = await asyncio.to_thread(service.families, selection)
    return Envelope(data=families)


@router.get("/cache/search", response_model=Envelope[ArticlePage])
async def search_cached_articles(
    params: Annotated[ArticleSearchParams, Query()],
    selection: Annotated[FolderSelection, Depends(require_selection)],
    service: Annotated[ArticleQueryService, Depends(get_article_service)],
    cache_service: Annotated[CacheService, Depends(get_cache_service)],
) -> Envelope[ArticlePage]:
    """Search the cached copy of the article table, building it on first use."""
    cache = await asyncio.to_thread(cache_service.ensure_cache, selection)
    result = await asyncio.to_thread(
        service.search_cache, cache, params.search, params.family, params.page, params.limit
    )
    return Envelope(data=result)


@router.get("/cache/families", response_model=Envelope[list[str]])
async def list_cached_families(
    selection: Annotated[FolderSelection, Depends(require_selection)],
    service: Annotated[ArticleQueryService, Depends(get_article_service)],
    cache_service: Annotated[CacheService, Depends(get_cache_service)],
) -> Envelope[list[str]]:
    cache = await asyncio.to_thread(cache_service.ensure_cache, selection)
    families = await asyncio.to_thread(service.cache_families, cache)
    return Envelope(data=families)


@router.post("/cache/rebuild", response_model=Envelope[int])
async def rebuild_cache(
    selection: Annotated[FolderSelection, Depends(require_selection)],
    cache_service: Annotated[CacheService, Depends(get_cache_service)],
) -> Envelope[int]:
    """Rebuild the cache from the legacy file; ``data`` is the article count."""
    cache = await asyncio.to_thread(cache_service.rebuild, selection)
    logger.info("Cache rebuilt for '%s' (%d articles)", cache.folder_name, cache.article_count)
    return Envelope(
        data=cache.article_count,
        message=f"Cache rebuilt with {cache.article_count} articles",
    )
