import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from webagent.config import CRAWL
from webagent.core.firecrawl import FirecrawlClient, FirecrawlError
from webagent.core.supabase_store import StoreError, SupabaseStore
from webagent.ingestion.base import CrawlType, Job, JobStatus, JobStep, MappedUrl, Page

CREDIT_ERROR_MESSAGE = "Something went wrong, please try again later or contact support"


class ScrapeNotFound(LookupError):
    pass


class ScrapeStartError(RuntimeError):
    pass


@dataclass
class StartScrapeResult:
    scrape_id: str
    existing: bool = False


@dataclass
class MappablePages:
    pages: List[MappedUrl]
    total: int
    has_more: bool


def is_credit_error(message: str) -> bool:
    lowered = message.lower()
    return any(word in lowered for word in CRAWL["credit_keywords"])


class ScrapeJobService:
    """Creates scrape jobs and hands them to Firecrawl; results arrive via webhook."""

    def __init__(
        self,
        store: SupabaseStore,
        firecrawl: FirecrawlClient,
        admin_store: Optional[SupabaseStore] = None,
        app_url: Optional[str] = None,
    ):
        self.store = store
        self.admin_store = admin_store or store
        self.firecrawl = firecrawl
        self.app_url = (app_url or os.getenv("APP_URL") or "http://localhost:8000").rstrip("/")

    def webhook_url(self, job_id: str, batch: bool = False) -> str:
        url = f"{self.app_url}{CRAWL['webhook_path']}?scrapeId={job_id}"
        return url + "&type=batch" if batch else url

    async def _insert_job(self, url: str, crawl_type: CrawlType, page_limit: Optional[int],
                          user_id: Optional[str]) -> Job:
        row = await self.store.insert_job({
            "url": url,
            "crawl_type": crawl_type.value,
            "page_limit": page_limit,
            "user_id": user_id,
            "status": JobStatus.PENDING.value,
            "current_step": JobStep.ANALYZING.value,
            "pages_scraped": 0,
        })
        return Job.model_validate(row)

    async def _get_job(self, job_id: str) -> Job:
        row = await self.store.get_job(job_id)
        if not row:
            raise ScrapeNotFound(job_id)
        return Job.model_validate(row)

    async def _start_crawl(self, job: Job, limit: int) -> None:
        await self.firecrawl.start_crawl(job.url, limit, self.webhook_url(job.id))
        await self.store.update_job(job.id, {
            "status": JobStatus.PENDING.value,
            "current_step": JobStep.CRAWLING.value,
        })

    async def start_scraping(
        self,
        url: str,
        crawl_type: CrawlType,
        page_limit: Optional[int] = None,
        user_id: Optional[str] = None,
    ) -> StartScrapeResult:
        """Create a job for ``url`` and start crawling it, or reuse an existing one."""
        existing = await self.store.get_job_by_url(url)
        if existing:
            print(f"[Scrape] Found existing agent: {existing['id'][:8]}", flush=True)
            return StartScrapeResult(scrape_id=existing["id"], existing=True)

        limit = 1 if crawl_type is CrawlType.SINGLE else (page_limit or CRAWL["default_page_limit"])
        job = await self._insert_job(
            url, crawl_type,
            page_limit if crawl_type is CrawlType.FULL else None,
            user_id,
        )
        print(f"[Scrape] Created agent {job.short_id} for {url} ({crawl_type.value}, {limit} pages)",
              flush=True)

        try:
            await self._start_crawl(job, limit)
        except Exception as e:
            message = str(e)
            if is_credit_error(message):
                print(f"[Scrape] Credit issue detected: {message}", flush=True)
                try:
                    await self.admin_store.delete_job(job.id)
                    print(f"[Scrape] Deleted scrape {job.short_id} due to credit issue", flush=True)
                except Exception as del_error:
                    print(f"[Scrape] Failed to delete scrape after credit error: {del_error}", flush=True)
                raise ScrapeStartError(CREDIT_ERROR_MESSAGE) from e

            print(f"[Scrape] Crawl failed: {message}", flush=True)
            await self.store.update_job(job.id, {
                "status": JobStatus.FAILED.value,
                "error_message": message,
            })
            raise ScrapeStartError(message) from e

        print("[Scrape] Crawl started, waiting for webhooks", flush=True)
        return StartScrapeResult(scrape_id=job.id)

    async def re_scrape(self, job_id: str, user_id: Optional[str] = None) -> StartScrapeResult:
        """Crawl the same URL again under a fresh job."""
        old = await self._get_job(job_id)
        job = await self._insert_job(old.url, old.crawl_type, old.page_limit, user_id)
        await self._start_crawl(job, old.page_limit or CRAWL["default_page_limit"])
        return StartScrapeResult(scrape_id=job.id)

    async def get_scrape_with_pages(self, job_id: str) -> Dict[str, Any]:
        job = await self._get_job(job_id)
        pages = [Page.model_validate(row) for row in await self.store.get_pages(job_id)]
        return {"scrape": job, "pages": pages}

    async def refresh_selected_pages(self, job_id: str, page_ids: List[str]) -> int:
        """Re-scrape some pages of a finished job. Returns how many URLs were sent."""
        job = await self._get_job(job_id)
        pages = [Page.model_validate(row) for row in await self.store.get_pages(job_id)]
        wanted = set(page_ids)
        selected = [p for p in pages if p.id in wanted]
        if not selected:
            return 0
        print(f"[Scrape] Refreshing {len(selected)} pages for scrape {job.short_id}", flush=True)

        try:
            await self.store.update_job(job_id, {
                "status": JobStatus.PROCESSING.value,
                "metadata": {
                    **(job.metadata or {}),
                    "is_refreshing": True,
                    "refreshing_pages": [
                        {"id": p.id, "title": p.title, "url": p.url} for p in selected
                    ],
                },
            })

            # Embeddings of the deleted pages go with them (ON DELETE CASCADE)
            try:
                await self.admin_store.delete_pages([p.id for p in selected])
            except Exception as e:
                print(f"[Scrape] Error deleting old pages: {e}", flush=True)

            urls = [p.url for p in selected if p.url]
            if urls:
                await self.firecrawl.batch_scrape(urls, self.webhook_url(job_id, batch=True))
            return len(urls)
        except Exception:
            await self.store.update_job(job_id, {"status": JobStatus.COMPLETED.value})
            raise

    async def get_mappable_pages(self, job_id: str, page: int = 1, search: Optional[str] = None) -> MappablePages:
        """Site-map URLs of a job that have not been scraped yet, one page at a time.

        The first unfiltered request on an empty list maps the site through
        Firecrawl and stores the URLs not already scraped. A failed map call
        is logged and an empty page is returned.
        """
        job = await self._get_job(job_id)
        page_size = CRAWL["map_page_size"]
        rows, total = await self.store.get_mapped_urls(job_id, page, page_size, search)

        if page == 1 and not rows and not search:
            print(f"[Scrape] Mapping website for scrape {job.short_id}: {job.url}", flush=True)
            try:
                links = await self.firecrawl.map_website(job.url)
                scraped = set(await self.store.get_scraped_urls(job_id))
                new_links = [url for url in dict.fromkeys(links) if url not in scraped]
                if new_links:
                    await self.store.insert_mapped_urls(job_id, new_links)
                    rows, total = await self.store.get_mapped_urls(job_id, 1, page_size, search)
            except (FirecrawlError, StoreError) as e:
                print(f"[Scrape] Error mapping website: {e}", flush=True)

        return MappablePages(
            pages=[MappedUrl.model_validate(row) for row in rows],
            total=total,
            has_more=page * page_size < total,
        )

    async def scrape_selected_pages(self, job_id: str, urls: List[str]) -> int:
        """Batch-scrape mapped URLs into an existing job. Returns how many were sent."""
        job = await self._get_job(job_id)
        if not urls:
            return 0
        print(f"[Scrape] Scraping {len(urls)} selected pages for {job.short_id}", flush=True)

        try:
            await self.store.update_job(job_id, {
                "status": JobStatus.PROCESSING.value,
                "metadata": {
                    **(job.metadata or {}),
                    "is_scraping_selected": True,
                    "selected_pages_count": len(urls),
                },
            })
            await self.firecrawl.batch_scrape(urls, self.webhook_url(job_id, batch=True))
            await self.store.mark_mapped_urls_scraped(job_id, urls)
            return len(urls)
        except Exception:
            await self.store.update_job(job_id, {"status": JobStatus.COMPLETED.value})
            raise
