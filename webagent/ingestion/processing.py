"""
Embedding orchestration
=======================
Turns scraped pages into rows in ``scrape_embeddings``.

1. Chunk every page (markdown, else raw content); hard-split huge chunks.
2. Plan batches under the item / token ceilings.
3. Run batches in groups of ``concurrency``; each group finishes before the
   next starts.
4. A batch whose embedding call fails is retried one chunk at a time.

Partial failures only show up in the returned counts; nothing here raises
for a single bad batch, chunk or insert.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from webagent.config import BATCHING, CHUNKING
from webagent.core.embedder import Embedder
from webagent.core.supabase_store import SupabaseStore
from webagent.ingestion.base import Chunk
from webagent.ingestion.batching import batch_tokens, plan_batches
from webagent.ingestion.chunking import chunk_markdown, safe_split


@dataclass
class EmbeddingStats:
    chunks_processed: int = 0
    total_chunks: int = 0
    api_requests: int = 0
    batch_successes: int = 0
    fallback_items: int = 0
    failed_items: int = 0


def collect_chunks(pages: Iterable[Dict[str, Any]], max_chunk_chars: int = CHUNKING["max_chunk_chars"]) -> List[Chunk]:
    """Chunk every page, keeping a reference to its page id (None if unsaved)."""
    all_chunks: List[Chunk] = []
    for page in pages:
        content = page.get("markdown") or page.get("content")
        if not content:
            continue
        page_id = page.get("id") or None

        for text in chunk_markdown(content):
            if not text.strip():
                continue
            if len(text) > max_chunk_chars:
                all_chunks.extend(Chunk(text=piece, page_id=page_id)
                                  for piece in safe_split(text, max_chunk_chars))
            else:
                all_chunks.append(Chunk(text=text, page_id=page_id))
    return all_chunks


class EmbeddingOrchestrator:
    def __init__(
        self,
        embedder: Optional[Embedder],
        store: Optional[SupabaseStore],
        max_items: int = BATCHING["max_items"],
        max_tokens: int = BATCHING["max_tokens"],
        concurrency: int = BATCHING["concurrency"],
    ):
        self.embedder = embedder
        self.store = store
        self.max_items = max_items
        self.max_tokens = max_tokens
        self.concurrency = max(1, concurrency)

    async def process_embeddings(
        self,
        job_id: str,
        pages: List[Dict[str, Any]],
        quiet: bool = False,
    ) -> EmbeddingStats:
        """Embed and store every chunk of ``pages`` for job ``job_id``."""
        if self.embedder is None or self.store is None:
            raise RuntimeError("EmbeddingOrchestrator needs an embedder and a store")

        sid = job_id[:8]
        stats = EmbeddingStats()

        chunks = collect_chunks(pages)
        stats.total_chunks = len(chunks)
        if not chunks:
            return stats

        batches = plan_batches(chunks, max_items=self.max_items, max_tokens=self.max_tokens)
        if not quiet:
            print(f"[{sid}] Embedding {len(chunks)} chunks in {len(batches)} batches", flush=True)

        for group_start in range(0, len(batches), self.concurrency):
            group = batches[group_start:group_start + self.concurrency]
            await asyncio.gather(*[
                self._process_batch(job_id, batch, group_start + offset, stats, quiet)
                for offset, batch in enumerate(group)
            ])

        if not quiet:
            print(f"[{sid}] Embeddings: {stats.chunks_processed}/{stats.total_chunks} vectors "
                  f"({stats.api_requests} API requests, {stats.fallback_items} via fallback)",
                  flush=True)
        return stats

    @staticmethod
    def _row(job_id: str, chunk: Chunk, vector: List[float]) -> Dict[str, Any]:
        return {
            "scrape_id": job_id,
            "content": chunk.text,
            "embedding": vector,
            "page_id": chunk.page_id,
        }

    async def _process_batch(
        self,
        job_id: str,
        batch: List[Chunk],
        batch_index: int,
        stats: EmbeddingStats,
        quiet: bool,
    ) -> None:
        sid = job_id[:8]
        try:
            result = await self.embedder.generate_embeddings([c.text for c in batch])
        except Exception as e:
            stats.api_requests += self.embedder.max_retries
            if not quiet:
                print(f"[{sid}] Embed batch {batch_index + 1} failed "
                      f"({len(batch)} chunks, ~{batch_tokens(batch)} tokens): {e}. Using fallback",
                      flush=True)
            await self._process_one_by_one(job_id, batch, stats)
            return

        stats.api_requests += result.attempts
        stats.batch_successes += 1

        rows = [self._row(job_id, chunk, vector)
                for chunk, vector in zip(batch, result.data) if vector]
        if len(rows) < len(batch):
            print(f"[WARN] [{sid}] Batch {batch_index + 1}: skipped {len(batch) - len(rows)} "
                  f"chunks without a vector", flush=True)
        try:
            await self.store.insert_embeddings(rows)
        except Exception as e:
            print(f"[{sid}] Embed batch {batch_index + 1} save failed: {e}", flush=True)
            return
        stats.chunks_processed += len(rows)

    async def _process_one_by_one(self, job_id: str, batch: List[Chunk], stats: EmbeddingStats) -> None:
        for chunk in batch:
            try:
                result = await self.embedder.generate_embeddings(chunk.text)
            except Exception:
                stats.api_requests += self.embedder.max_retries
                stats.failed_items += 1
                continue

            stats.api_requests += result.attempts
            stats.fallback_items += 1
            try:
                await self.store.insert_embeddings([self._row(job_id, chunk, result.data)])
            except Exception:
                stats.failed_items += 1
                continue
            stats.chunks_processed += 1
