from typing import Any, Dict, List, Optional

from webagent.config import RETRIEVAL
from webagent.core.embedder import Embedder
from webagent.core.supabase_store import SupabaseStore


class Retriever:
    """Vector search over one scrape's embeddings."""

    def __init__(self, embedder: Embedder, store: SupabaseStore):
        self.embedder = embedder
        self.store = store
        self.top_k = RETRIEVAL["top_k"]
        self.match_threshold = RETRIEVAL["match_threshold"]

    async def search_knowledge_base(
        self,
        query: str,
        scrape_id: Optional[str],
        top_k: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Closest chunks to ``query``; empty on any failure."""
        if not scrape_id:
            print("[RAG] Error: scrapeId is missing", flush=True)
            return []
        if not query or not query.strip():
            return []

        print(f"[RAG] Searching for: {query!r} in scrapeId: {scrape_id[:8]}", flush=True)
        try:
            query_embedding = await self.embedder.embed_query(query)
            results = await self.store.match_embeddings(
                scrape_id,
                query_embedding,
                match_count=top_k or self.top_k,
                match_threshold=self.match_threshold,
            )
        except Exception as e:
            print(f"[RAG] Search failed: {e}", flush=True)
            return []

        print(f"[RAG] Found {len(results)} matches", flush=True)
        return results
