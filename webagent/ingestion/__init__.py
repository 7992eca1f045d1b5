from webagent.ingestion.base import Chunk, CrawlType, Job, JobStatus, JobStep, MappedUrl, Page
from webagent.ingestion.chunking import chunk_markdown, safe_split
from webagent.ingestion.batching import plan_batches
from webagent.ingestion.processing import EmbeddingOrchestrator, EmbeddingStats
from webagent.ingestion.webhook import CrawlEventProcessor, WebhookResult
from webagent.ingestion.scrape_jobs import ScrapeJobService

__all__ = [
    "Chunk",
    "CrawlType",
    "Job",
    "JobStatus",
    "JobStep",
    "MappedUrl",
    "Page",
    "chunk_markdown",
    "safe_split",
    "plan_batches",
    "EmbeddingOrchestrator",
    "EmbeddingStats",
    "CrawlEventProcessor",
    "WebhookResult",
    "ScrapeJobService",
]
