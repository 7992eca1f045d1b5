import os
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from pydantic import ValidationError

from webagent.core.supabase_store import SupabaseStore
from webagent.ingestion.base import REFRESH_METADATA_KEYS, Job, JobStatus, JobStep
from webagent.ingestion.events import CrawlEvent, WebhookPayload, parse_event
from webagent.ingestion.processing import EmbeddingOrchestrator
from webagent.ingestion.state_machine import (
    EmbedStoredPages,
    FinalizeJob,
    MarkCrawling,
    MarkFailed,
    MarkProcessingPages,
    Outcome,
    StorePages,
    SyncPageCount,
    advance,
    needs_job,
    phase_of,
)


def _display_url(url: str, debug: bool) -> str:
    if debug or len(url) <= 60:
        return url
    return url[:57] + "..."


@dataclass
class WebhookResult:
    status_code: int
    body: Dict[str, Any]


@dataclass
class _EventContext:
    event: CrawlEvent
    job: Optional[Job]
    started_at: float
    stored_pages: List[Dict[str, Any]] = field(default_factory=list)


class CrawlEventProcessor:
    """Applies Firecrawl webhook events to a job.

    ``store`` is used for normal reads/writes; ``admin_store`` (service role,
    bypasses row-level security) is used for the final "completed" write and
    falls back to ``store`` when not configured.
    """

    def __init__(
        self,
        store: SupabaseStore,
        orchestrator: EmbeddingOrchestrator,
        admin_store: Optional[SupabaseStore] = None,
        debug: Optional[bool] = None,
    ):
        self.store = store
        self.admin_store = admin_store or store
        self.orchestrator = orchestrator
        self.debug = os.getenv("DEBUG_WEBHOOKS") == "true" if debug is None else debug

    async def handle(self, body: Any, query: Mapping[str, str]) -> WebhookResult:
        """Process one webhook delivery. Never raises."""
        try:
            payload = WebhookPayload.model_validate(body)
        except ValidationError as e:
            print(f"[Webhook] Malformed event body: {e.errors()[:1]}", flush=True)
            return WebhookResult(400, {"error": "Malformed webhook body"})

        try:
            return await self._handle_event(parse_event(payload, query))
        except Exception as e:
            print(f"[Webhook] Error: {e}", flush=True)
            return WebhookResult(500, {"error": str(e) or "Unknown error"})

    async def _handle_event(self, event: CrawlEvent) -> WebhookResult:
        sid = event.job_id[:8] if event.job_id else "unknown"
        job: Optional[Job] = None
        if needs_job(event):
            row = await self.store.get_job(event.job_id)
            job = Job.model_validate(row) if row else None

        transition = advance(phase_of(job) if job else None, event)

        if transition.outcome is Outcome.MISSING_JOB_ID:
            print("[Webhook] [unknown] No scrapeId provided", flush=True)
            return WebhookResult(400, {"error": "No scrapeId provided"})
        if transition.outcome is Outcome.JOB_NOT_FOUND:
            print(f"[Webhook] [{sid}] Scrape not found", flush=True)
            return WebhookResult(404, {"error": "Scrape not found"})

        print(f"[Webhook] [{sid}] Event: {event.raw_type}", flush=True)
        if transition.outcome is Outcome.SKIPPED:
            if self.debug:
                print(f"[Webhook] [{sid}] Already {transition.phase.value}, skipping {event.raw_type}", flush=True)
            return WebhookResult(200, {"success": True, "skipped": True})

        ctx = _EventContext(event=event, job=job, started_at=time.monotonic())
        for effect in transition.effects:
            await self._apply(effect, ctx)

        return WebhookResult(200, {"success": True})

    async def _update_job(self, ctx: _EventContext, updates: Dict[str, Any]) -> None:
        """Write ``updates`` and keep ``ctx.job`` in step with the stored row."""
        row = await self.store.update_job(ctx.event.job_id, updates)
        if row:
            ctx.job = Job.model_validate(row)

    async def _apply(self, effect, ctx: _EventContext) -> None:
        event = ctx.event
        job_id = event.job_id
        sid = job_id[:8]
        quiet = not self.debug

        if isinstance(effect, MarkFailed):
            print(f"[Webhook] [{sid}] Scrape/Crawl failed: {effect.message}", flush=True)
            updated = await self.store.update_job(job_id, {
                "status": JobStatus.FAILED.value,
                "error_message": effect.message,
            })
            if updated is None:
                print(f"[Webhook] [{sid}] Failure reported for unknown scrape", flush=True)

        elif isinstance(effect, MarkCrawling):
            print(f"[Webhook] [{sid}] Job started", flush=True)
            await self.store.update_job(job_id, {
                "status": JobStatus.PROCESSING.value,
                "current_step": JobStep.CRAWLING.value,
            })

        elif isinstance(effect, MarkProcessingPages):
            metadata = dict(ctx.job.metadata or {})
            metadata["current_processing_url"] = effect.current_url
            await self._update_job(ctx, {
                "status": JobStatus.PROCESSING.value,
                "current_step": JobStep.PROCESSING_PAGES.value,
                "metadata": metadata,
            })

        elif isinstance(effect, StorePages):
            rows = [page.to_row(job_id) for page in effect.pages]
            if not quiet:
                print(f"[DB] Inserting {len(rows)} scraped pages", flush=True)
            ctx.stored_pages = await self.store.insert_pages(rows) or rows

        elif isinstance(effect, SyncPageCount):
            updates: Dict[str, Any] = {"pages_scraped": await self.store.count_pages(job_id)}
            if effect.advance_step:
                updates["current_step"] = JobStep.GENERATING_EMBEDDINGS.value
            await self._update_job(ctx, updates)

        elif isinstance(effect, EmbedStoredPages):
            stats = await self.orchestrator.process_embeddings(job_id, ctx.stored_pages, quiet=quiet)
            first_url = event.pages[0].url if event.pages else "unknown"
            print(f"[Webhook] [{sid}] +{len(event.pages)} page: {_display_url(first_url, self.debug)} "
                  f"({stats.chunks_processed} vectors)", flush=True)
            if self.debug:
                print(f"   Title: {event.pages[0].title or 'N/A'}", flush=True)
                print(f"   Chunks: {stats.total_chunks}, Stored: {stats.chunks_processed}", flush=True)

        elif isinstance(effect, FinalizeJob):
            total_pages = await self.store.count_pages(job_id)
            metadata = {k: v for k, v in (ctx.job.metadata or {}).items()
                        if k not in REFRESH_METADATA_KEYS}
            await self.admin_store.update_job(job_id, {
                "status": JobStatus.COMPLETED.value,
                "current_step": JobStep.COMPLETED.value,
                "pages_scraped": total_pages,
                "metadata": metadata,
            })
            duration = time.monotonic() - ctx.started_at
            print(f"[Webhook] [{sid}] Complete! {total_pages} pages ({duration:.1f}s)", flush=True)
            if self.debug:
                print(f"   Original URL: {ctx.job.url}", flush=True)

        else:
            raise TypeError(f"Unhandled effect: {effect!r}")
