import os
import re
from typing import Any, Dict, List, Optional

import httpx

from webagent.config import CRAWL

_PROMOTION = re.compile(re.escape(CRAWL["promotion_text"]))


class FirecrawlError(RuntimeError):
    pass


def clean_firecrawl_promotion(content: Optional[str]) -> Optional[str]:
    """Strip the banner Firecrawl injects into scraped markdown."""
    if not content:
        return content
    return _PROMOTION.sub("", content).strip()


class FirecrawlClient:
    """Firecrawl v2 REST client. Results are delivered to our webhook."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        http: Optional[httpx.AsyncClient] = None,
    ):
        self._api_key = api_key or os.getenv("FIRECRAWL_API_KEY")
        if not self._api_key:
            raise RuntimeError("Missing FIRECRAWL_API_KEY environment variable")
        self.base_url = (base_url or os.getenv("FIRECRAWL_API_URL", "https://api.firecrawl.dev")).rstrip("/")
        self.formats = CRAWL["formats"]
        self.webhook_events = CRAWL["webhook_events"]
        self._http = http

    def _get_client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=httpx.Timeout(60.0, connect=20.0))
        return self._http

    async def close(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        resp = await self._get_client().post(
            f"{self.base_url}{path}",
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
            },
            json=payload,
        )
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {"data": body}

        if resp.status_code >= 400 or body.get("success") is False:
            error = body.get("error") or resp.text or f"HTTP {resp.status_code}"
            raise FirecrawlError(f"Firecrawl {path} failed ({resp.status_code}): {error}")
        return body

    def _webhook(self, webhook_url: str) -> Dict[str, Any]:
        return {"url": webhook_url, "events": list(self.webhook_events)}

    async def start_crawl(self, url: str, limit: int, webhook_url: str) -> str:
        """Start an async crawl; returns the crawl id."""
        print(f"[Firecrawl] Starting crawl job for: {url} limit: {limit}", flush=True)
        body = await self._post("/v2/crawl", {
            "url": url,
            "limit": limit,
            "scrapeOptions": {"formats": self.formats},
            "webhook": self._webhook(webhook_url),
        })
        crawl_id = body.get("id")
        if not crawl_id:
            raise FirecrawlError(f"Failed to start crawl: {body.get('error') or 'No ID returned'}")
        print(f"[Firecrawl] Crawl job started: {crawl_id}", flush=True)
        return crawl_id

    async def batch_scrape(self, urls: List[str], webhook_url: str) -> str:
        """Start an async batch scrape of ``urls``; returns the job id."""
        print(f"[Firecrawl] Starting batch scrape of {len(urls)} URLs", flush=True)
        body = await self._post("/v2/batch/scrape", {
            "urls": urls,
            "formats": self.formats,
            "webhook": self._webhook(webhook_url),
        })
        job_id = body.get("id")
        if not job_id:
            raise FirecrawlError(f"Failed to start batch scrape: {body.get('error') or 'No ID returned'}")
        return job_id

    async def map_website(self, url: str, limit: int = CRAWL["map_limit"]) -> List[str]:
        """List the URLs Firecrawl can discover for a site."""
        body = await self._post("/v2/map", {"url": url, "limit": limit})
        links = body.get("links") or []
        # v2 returns link objects, v1 returned bare strings
        return [link["url"] if isinstance(link, dict) else link
                for link in links
                if (link.get("url") if isinstance(link, dict) else link)]
