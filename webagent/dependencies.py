from fastapi import HTTPException, Request

from webagent.core.retriever import Retriever
from webagent.ingestion.scrape_jobs import ScrapeJobService
from webagent.ingestion.webhook import CrawlEventProcessor


def _from_state(request: Request, name: str):
    component = getattr(request.app.state, name, None)
    if component is None:
        raise HTTPException(status_code=503, detail=f"{name} is not configured")
    return component


def get_processor(request: Request) -> CrawlEventProcessor:
    return _from_state(request, "processor")


def get_scrape_service(request: Request) -> ScrapeJobService:
    return _from_state(request, "scrape_service")


def get_retriever(request: Request) -> Retriever:
    return _from_state(request, "retriever")
