EMBEDDING = {
    "model": "openai/text-embedding-3-small",
    "endpoint": "https://openrouter.ai/api/v1/embeddings",
    "dimensions": 1536,
    "max_retries": 3,
    "initial_delay_s": 1.0,   # 1s, 2s, 4s
}

CHUNKING = {
    "website": {"size": 1000},
    # Anything longer is hard-split before embedding
    "max_chunk_chars": 12000,
}

BATCHING = {
    "max_items": 100,
    "max_tokens": 200000,
    "concurrency": 5,
}

RETRIEVAL = {
    "top_k": 10,
    "match_threshold": 0.3,
}

CRAWL = {
    "default_page_limit": 10,
    "formats": ["markdown", "html"],
    "webhook_path": "/api/webhooks/firecrawl",
    "webhook_events": ["started", "page", "completed", "failed"],
    "map_limit": 2000,
    "map_page_size": 100,
    "promotion_text": (
        "Introducing Firecrawl v2.5 - The world's best web data API. "
        "[Read the blog.](https://www.firecrawl.dev/blog/the-worlds-best-web-data-api-v25)"
    ),
    # Crawl-start errors containing these words mean the account is out of credits
    "credit_keywords": ["credits", "plan", "payment", "subscription"],
}

SUPABASE = {
    "table_jobs": "scrapes",
    "table_pages": "scraped_pages",
    "table_embeddings": "scrape_embeddings",
    "table_mapped": "mapped_urls",
    "match_rpc": "match_scrape_embeddings",
}
