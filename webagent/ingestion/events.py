"""
Webhook event normalization
===========================
Firecrawl reports crawl and batch-scrape progress under several naming
schemes ("crawl.page", "batch_scrape.page", "batch.scrape.page", ...).
Everything is mapped onto ``EventKind`` here, before any job logic runs.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict

from webagent.core.firecrawl import clean_firecrawl_promotion


class EventKind(str, Enum):
    STARTED = "started"
    PAGE = "page"
    COMPLETED = "completed"
    FAILED = "failed"
    UNKNOWN = "unknown"


EVENT_TYPES = {
    EventKind.STARTED: {"crawl.started", "batch_scrape.started", "batch.scrape.job.started"},
    EventKind.PAGE: {"crawl.page", "batch_scrape.page", "batch.scrape.page"},
    EventKind.COMPLETED: {"crawl.completed", "batch_scrape.completed", "batch.scrape.job.completed"},
    EventKind.FAILED: {"crawl.failed", "batch_scrape.failed", "batch.scrape.job.failed"},
}


class WebhookPayload(BaseModel):
    """Raw webhook body. Unknown keys are kept but ignored."""

    model_config = ConfigDict(extra="allow")

    type: Optional[str] = None
    data: Any = None
    error: Any = None
    success: Optional[bool] = None
    status: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


@dataclass
class PageDraft:
    """A normalized page payload, ready to insert into ``scraped_pages``."""

    url: str
    title: Optional[str] = None
    content: Optional[str] = None
    markdown: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    @classmethod
    def from_payload(cls, page: Mapping[str, Any]) -> "PageDraft":
        metadata = page.get("metadata") if isinstance(page.get("metadata"), dict) else None
        meta = metadata or {}
        markdown = clean_firecrawl_promotion(page.get("markdown")) or None
        return cls(
            url=meta.get("sourceURL") or page.get("url") or "unknown",
            title=meta.get("title") or page.get("title") or None,
            content=page.get("html") or page.get("content") or markdown or "",
            markdown=markdown,
            metadata=metadata,
        )

    def to_row(self, job_id: str) -> Dict[str, Any]:
        return {
            "scrape_id": job_id,
            "url": self.url,
            "title": self.title,
            "content": self.content,
            "markdown": self.markdown,
            "metadata": self.metadata,
        }


@dataclass
class CrawlEvent:
    kind: EventKind
    job_id: Optional[str]
    raw_type: str = "unknown"
    pages: List[PageDraft] = field(default_factory=list)
    error_message: Optional[str] = None
    is_batch: bool = False


def classify(payload: WebhookPayload) -> EventKind:
    """Failure wins over everything else; then the type tag; then ``status``."""
    event_type = payload.type or ""
    if payload.success is False or payload.error or event_type in EVENT_TYPES[EventKind.FAILED]:
        return EventKind.FAILED
    for kind in (EventKind.STARTED, EventKind.PAGE, EventKind.COMPLETED):
        if event_type in EVENT_TYPES[kind]:
            return kind
    if payload.status == "completed":
        return EventKind.COMPLETED
    return EventKind.UNKNOWN


def error_text(error: Any) -> str:
    if error is None:
        return "Unknown error"
    if isinstance(error, str):
        return error
    return json.dumps(error)


def extract_pages(data: Any) -> List[Dict[str, Any]]:
    """Page payloads out of ``data``: accepts a page, a list, or ``{"data": [...]}``."""
    if isinstance(data, dict) and data.get("data"):
        data = data["data"]
    if not isinstance(data, list):
        data = [data] if isinstance(data, dict) and data else []
    return [
        page for page in data
        if page and isinstance(page, dict)
        and (page.get("markdown") or page.get("html") or page.get("content"))
    ]


def parse_event(payload: WebhookPayload, query: Mapping[str, str]) -> CrawlEvent:
    """Build a ``CrawlEvent`` from the body and the webhook URL's query string."""
    job_id = query.get("scrapeId") or (payload.metadata or {}).get("scrapeId") or None
    kind = classify(payload)
    event = CrawlEvent(
        kind=kind,
        job_id=job_id,
        raw_type=payload.type or "unknown",
        is_batch=query.get("type") == "batch",
    )
    if kind is EventKind.FAILED:
        event.error_message = error_text(payload.error)
        return event

    event.pages = [PageDraft.from_payload(page) for page in extract_pages(payload.data)]
    return event
