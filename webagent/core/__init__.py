from webagent.core.embedder import Embedder, EmbeddingError, EmbeddingResult
from webagent.core.supabase_store import StoreError, SupabaseStore
from webagent.core.firecrawl import FirecrawlClient, FirecrawlError
from webagent.core.retriever import Retriever

__all__ = [
    "Embedder",
    "EmbeddingError",
    "EmbeddingResult",
    "StoreError",
    "SupabaseStore",
    "FirecrawlClient",
    "FirecrawlError",
    "Retriever",
]
