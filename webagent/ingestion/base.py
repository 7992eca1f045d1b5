import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class CrawlType(str, Enum):
    SINGLE = "single"
    FULL = "full"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class JobStep(str, Enum):
    ANALYZING = "analyzing"
    CRAWLING = "crawling"
    PROCESSING_PAGES = "processing_pages"
    GENERATING_EMBEDDINGS = "generating_embeddings"
    COMPLETED = "completed"


# Metadata keys set while a refresh / selective scrape is in flight
REFRESH_METADATA_KEYS = (
    "is_refreshing",
    "refreshing_pages",
    "is_scraping_selected",
    "selected_pages_count",
)


class Job(BaseModel):
    """One crawl/scrape run, as stored in the ``scrapes`` table."""

    model_config = ConfigDict(extra="ignore", use_enum_values=False)

    id: str
    url: str
    crawl_type: CrawlType = CrawlType.SINGLE
    page_limit: Optional[int] = None
    pages_scraped: int = 0
    status: JobStatus = JobStatus.PENDING
    current_step: Optional[JobStep] = None
    error_message: Optional[str] = None
    user_id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    @property
    def short_id(self) -> str:
        return self.id[:8]


class Page(BaseModel):
    """One crawled document belonging to a Job."""

    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    scrape_id: str
    url: str
    title: Optional[str] = None
    content: Optional[str] = None
    markdown: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(default=None)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def best_text(self) -> Optional[str]:
        return self.markdown or self.content or None


class MappedUrl(BaseModel):
    """A URL found by mapping a job's site, offered for selective scraping."""

    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    scrape_id: str
    url: str
    is_scraped: bool = False
    created_at: Optional[str] = None


def estimate_tokens(text: str) -> int:
    """Rough token count, ~4 characters per token."""
    return math.ceil(len(text) / 4)


@dataclass
class Chunk:
    text: str
    page_id: Optional[str] = None   # None for pages not yet persisted

    @property
    def tokens(self) -> int:
        return estimate_tokens(self.text)
