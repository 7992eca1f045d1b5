"""Shared fakes for the store, embedder and crawler clients."""

import copy
import itertools
from typing import Any, Dict, List, Optional

import pytest

from webagent.core.embedder import EmbeddingError, EmbeddingResult
from webagent.core.firecrawl import FirecrawlError
from webagent.core.supabase_store import StoreError
from webagent.ingestion.processing import EmbeddingOrchestrator
from webagent.ingestion.webhook import CrawlEventProcessor


class FakeStore:
    """In-memory stand-in for SupabaseStore."""

    def __init__(self, name: str = "anon"):
        self.name = name
        self.jobs: Dict[str, Dict[str, Any]] = {}
        self.pages: List[Dict[str, Any]] = []
        self.embeddings: List[Dict[str, Any]] = []
        self.mapped_urls: List[Dict[str, Any]] = []
        self.job_updates: List[tuple] = []
        self.failing_embedding_inserts = 0
        self._ids = itertools.count(1)

    def add_job(self, job_id: str = "job-1234567890", **fields) -> Dict[str, Any]:
        row = {
            "id": job_id,
            "url": "https://example.com",
            "crawl_type": "single",
            "page_limit": None,
            "pages_scraped": 0,
            "status": "pending",
            "current_step": "crawling",
            "error_message": None,
            "metadata": None,
        }
        row.update(fields)
        self.jobs[job_id] = row
        return row

    async def get_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        row = self.jobs.get(job_id)
        return copy.deepcopy(row) if row else None

    async def get_job_by_url(self, url: str) -> Optional[Dict[str, Any]]:
        for row in reversed(list(self.jobs.values())):
            if row["url"] == url:
                return copy.deepcopy(row)
        return None

    async def insert_job(self, job: Dict[str, Any]) -> Dict[str, Any]:
        job_id = f"job-{next(self._ids):08d}"
        self.jobs[job_id] = {"id": job_id, "error_message": None, "metadata": None, **job}
        return copy.deepcopy(self.jobs[job_id])

    async def update_job(self, job_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        self.job_updates.append((self.name, job_id, copy.deepcopy(updates)))
        if job_id not in self.jobs:
            return None
        self.jobs[job_id].update(copy.deepcopy(updates))
        return copy.deepcopy(self.jobs[job_id])

    async def delete_job(self, job_id: str) -> None:
        self.jobs.pop(job_id, None)
        self.pages = [p for p in self.pages if p["scrape_id"] != job_id]
        self.embeddings = [e for e in self.embeddings if e["scrape_id"] != job_id]

    async def insert_pages(self, pages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        inserted = []
        for page in pages:
            row = {"id": f"page-{next(self._ids)}", **copy.deepcopy(page)}
            self.pages.append(row)
            inserted.append(copy.deepcopy(row))
        return inserted

    async def get_pages(self, job_id: str) -> List[Dict[str, Any]]:
        return [copy.deepcopy(p) for p in self.pages if p["scrape_id"] == job_id]

    async def delete_pages(self, page_ids: List[str]) -> None:
        self.pages = [p for p in self.pages if p["id"] not in page_ids]
        self.embeddings = [e for e in self.embeddings if e["page_id"] not in page_ids]

    async def count_pages(self, job_id: str) -> int:
        return sum(1 for p in self.pages if p["scrape_id"] == job_id)

    async def get_scraped_urls(self, job_id: str) -> List[str]:
        return [p["url"] for p in self.pages if p["scrape_id"] == job_id]

    async def get_mapped_urls(self, job_id, page=1, limit=100, search=None):
        rows = [m for m in self.mapped_urls
                if m["scrape_id"] == job_id and not m["is_scraped"]
                and (not search or search in m["url"])]
        start = (page - 1) * limit
        return copy.deepcopy(rows[start:start + limit]), len(rows)

    async def insert_mapped_urls(self, job_id: str, urls: List[str]) -> None:
        for url in urls:
            self.mapped_urls.append({"id": f"map-{next(self._ids)}", "scrape_id": job_id,
                                     "url": url, "is_scraped": False})

    async def mark_mapped_urls_scraped(self, job_id: str, urls: List[str]) -> None:
        for row in self.mapped_urls:
            if row["scrape_id"] == job_id and row["url"] in urls:
                row["is_scraped"] = True

    async def insert_embeddings(self, rows: List[Dict[str, Any]]) -> None:
        if self.failing_embedding_inserts:
            self.failing_embedding_inserts -= 1
            raise StoreError("insert failed", status_code=500)
        self.embeddings.extend(copy.deepcopy(rows))

    async def match_embeddings(self, job_id, query_embedding, match_count, match_threshold):
        rows = [e for e in self.embeddings if e["scrape_id"] == job_id]
        return [{"id": str(i), "content": e["content"], "similarity": 0.9}
                for i, e in enumerate(rows[:match_count])]


class FakeEmbedder:
    """Returns a one-element vector per text; can be told to fail."""

    max_retries = 3

    def __init__(self, fail_batches: bool = False, fail_texts=()):
        self.fail_batches = fail_batches
        self.fail_texts = set(fail_texts)
        self.calls: List[Any] = []

    async def generate_embeddings(self, texts):
        self.calls.append(texts)
        if isinstance(texts, str):
            if texts in self.fail_texts:
                raise EmbeddingError("item failed")
            return EmbeddingResult(data=[float(len(texts))], attempts=1)
        if self.fail_batches:
            raise EmbeddingError("batch failed")
        return EmbeddingResult(data=[[float(len(t))] for t in texts], attempts=1)

    async def embed_query(self, query: str):
        result = await self.generate_embeddings(query)
        return result.data


class FakeFirecrawl:
    def __init__(self, error: Optional[str] = None, links=(), map_error: Optional[str] = None):
        self.error = error
        self.links = list(links)
        self.map_error = map_error
        self.maps: List[str] = []
        self.crawls: List[tuple] = []
        self.batches: List[tuple] = []

    async def start_crawl(self, url: str, limit: int, webhook_url: str) -> str:
        if self.error:
            raise FirecrawlError(self.error)
        self.crawls.append((url, limit, webhook_url))
        return "crawl-1"

    async def batch_scrape(self, urls, webhook_url: str) -> str:
        if self.error:
            raise FirecrawlError(self.error)
        self.batches.append((list(urls), webhook_url))
        return "batch-1"

    async def map_website(self, url: str, limit: int = 2000) -> List[str]:
        self.maps.append(url)
        if self.map_error:
            raise FirecrawlError(self.map_error)
        return list(self.links)


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def admin_store() -> FakeStore:
    return FakeStore(name="admin")


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def orchestrator(embedder, store) -> EmbeddingOrchestrator:
    return EmbeddingOrchestrator(embedder, store)


@pytest.fixture
def processor(store, orchestrator) -> CrawlEventProcessor:
    return CrawlEventProcessor(store, orchestrator, debug=False)
