from contextlib import asynccontextmanager

import os
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

from webagent.core.embedder import Embedder
from webagent.core.firecrawl import FirecrawlClient
from webagent.core.retriever import Retriever
from webagent.core.supabase_store import SupabaseStore
from webagent.ingestion.processing import EmbeddingOrchestrator
from webagent.ingestion.scrape_jobs import ScrapeJobService
from webagent.ingestion.webhook import CrawlEventProcessor
from webagent.routers import scrapes_router, webhooks_router

# Load environment variables
load_dotenv()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the service graph on startup and close HTTP clients on shutdown."""
    print("[DEBUG] Starting up WebAgent API...", flush=True)
    store = SupabaseStore()
    admin_store = SupabaseStore.admin()
    if admin_store is None:
        print("[WARN] SUPABASE_SERVICE_ROLE_KEY not set; final writes use the anon key", flush=True)
    embedder = Embedder()
    firecrawl = FirecrawlClient()

    orchestrator = EmbeddingOrchestrator(embedder, admin_store or store)
    app.state.processor = CrawlEventProcessor(store, orchestrator, admin_store=admin_store)
    app.state.scrape_service = ScrapeJobService(store, firecrawl, admin_store=admin_store)
    app.state.retriever = Retriever(embedder, store)
    print("[DEBUG] Services initialized", flush=True)

    yield

    for client in (embedder, firecrawl, store, admin_store):
        if client is not None:
            await client.close()


app = FastAPI(
    title="WebAgent API",
    description="Website crawling, embedding and retrieval backend",
    version="1.0.0",
    lifespan=lifespan,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    print(f"[MIDDLEWARE] Incoming request: {request.method} {request.url.path}", flush=True)
    response = await call_next(request)
    print(f"[MIDDLEWARE] Response status: {response.status_code}", flush=True)
    return response

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,  # must be False when allow_origins=["*"]
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(webhooks_router, prefix="/api")
app.include_router(scrapes_router, prefix="/api")


@app.get("/api/health")
async def health():
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
