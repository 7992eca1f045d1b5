from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from webagent.core.firecrawl import FirecrawlError
from webagent.core.retriever import Retriever
from webagent.dependencies import get_retriever, get_scrape_service
from webagent.ingestion.base import CrawlType, Job, MappedUrl, Page
from webagent.ingestion.scrape_jobs import ScrapeJobService, ScrapeNotFound, ScrapeStartError

router = APIRouter(prefix="/scrapes", tags=["scrapes"])


class ScrapeRequest(BaseModel):
    url: str
    crawl_type: CrawlType = CrawlType.SINGLE
    page_limit: int = Field(default=10, ge=1, le=100)
    user_id: Optional[str] = None


class RefreshRequest(BaseModel):
    page_ids: List[str]


class ScrapeSelectedRequest(BaseModel):
    urls: List[str]


class StartScrapeResponse(BaseModel):
    success: bool = True
    scrape_id: str
    existing: bool = False


class ScrapeWithPagesResponse(BaseModel):
    scrape: Job
    pages: List[Page]


class RefreshResponse(BaseModel):
    success: bool = True
    count: int


class SearchResponse(BaseModel):
    results: List[Dict[str, Any]]


class MappablePagesResponse(BaseModel):
    pages: List[MappedUrl]
    total: int
    has_more: bool


def normalize_url(raw: str) -> str:
    url = raw.strip()
    if not url.startswith(("http://", "https://")):
        url = "https://" + url
    if not urlparse(url).netloc:
        raise HTTPException(status_code=400, detail="Invalid URL: could not determine domain")
    return url


@router.post("", response_model=StartScrapeResponse)
async def start_scrape(
    request: ScrapeRequest,
    service: ScrapeJobService = Depends(get_scrape_service),
):
    """Create a scrape job (or return the existing one for this URL) and start crawling."""
    url = normalize_url(request.url)
    try:
        result = await service.start_scraping(url, request.crawl_type, request.page_limit, request.user_id)
    except ScrapeStartError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return StartScrapeResponse(scrape_id=result.scrape_id, existing=result.existing)


@router.get("/{scrape_id}", response_model=ScrapeWithPagesResponse)
async def get_scrape(scrape_id: str, service: ScrapeJobService = Depends(get_scrape_service)):
    try:
        data = await service.get_scrape_with_pages(scrape_id)
    except ScrapeNotFound:
        raise HTTPException(status_code=404, detail="Scrape not found")
    return ScrapeWithPagesResponse(**data)


@router.post("/{scrape_id}/rescrape", response_model=StartScrapeResponse)
async def rescrape(scrape_id: str, service: ScrapeJobService = Depends(get_scrape_service)):
    """Crawl the same site again as a new scrape."""
    try:
        result = await service.re_scrape(scrape_id)
    except ScrapeNotFound:
        raise HTTPException(status_code=404, detail="Scrape not found")
    except FirecrawlError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return StartScrapeResponse(scrape_id=result.scrape_id)


@router.post("/{scrape_id}/refresh", response_model=RefreshResponse)
async def refresh_pages(
    scrape_id: str,
    request: RefreshRequest,
    service: ScrapeJobService = Depends(get_scrape_service),
):
    """Re-scrape selected pages; results come back through the batch webhook."""
    try:
        count = await service.refresh_selected_pages(scrape_id, request.page_ids)
    except ScrapeNotFound:
        raise HTTPException(status_code=404, detail="Scrape not found")
    except FirecrawlError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return RefreshResponse(count=count)


@router.get("/{scrape_id}/search", response_model=SearchResponse)
async def search(
    scrape_id: str,
    q: str = Query(..., min_length=1),
    top_k: int = Query(10, ge=1, le=50),
    retriever: Retriever = Depends(get_retriever),
):
    results = await retriever.search_knowledge_base(q, scrape_id, top_k=top_k)
    return SearchResponse(results=results)


@router.get("/{scrape_id}/map", response_model=MappablePagesResponse)
async def mappable_pages(
    scrape_id: str,
    page: int = Query(1, ge=1),
    search: Optional[str] = Query(None),
    service: ScrapeJobService = Depends(get_scrape_service),
):
    """Unscraped URLs of the site, mapping it on first use."""
    try:
        result = await service.get_mappable_pages(scrape_id, page, search)
    except ScrapeNotFound:
        raise HTTPException(status_code=404, detail="Scrape not found")
    return MappablePagesResponse(pages=result.pages, total=result.total, has_more=result.has_more)


@router.post("/{scrape_id}/scrape-selected", response_model=RefreshResponse)
async def scrape_selected(
    scrape_id: str,
    request: ScrapeSelectedRequest,
    service: ScrapeJobService = Depends(get_scrape_service),
):
    """Add mapped pages to the scrape; results come back through the batch webhook."""
    try:
        count = await service.scrape_selected_pages(scrape_id, request.urls)
    except ScrapeNotFound:
        raise HTTPException(status_code=404, detail="Scrape not found")
    except FirecrawlError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return RefreshResponse(count=count)
