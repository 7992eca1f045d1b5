import os
from typing import Any, Dict, List, Optional, Tuple

import httpx

from webagent.config import SUPABASE


class StoreError(RuntimeError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SupabaseStore:
    """Thin PostgREST client for the scrapes / scraped_pages / scrape_embeddings /
    mapped_urls tables.

    Build one with the anon key for normal access and a second one with the
    service-role key (``SupabaseStore.admin()``) for writes that must bypass
    row-level security.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        key: Optional[str] = None,
        http: Optional[httpx.AsyncClient] = None,
    ):
        self.url = (url or os.getenv("SUPABASE_URL") or "").rstrip("/")
        self.key = key or os.getenv("SUPABASE_ANON_KEY")
        if not self.url or not self.key:
            raise RuntimeError("Missing SUPABASE_URL / SUPABASE_ANON_KEY environment variables")

        self.table_jobs = SUPABASE["table_jobs"]
        self.table_pages = SUPABASE["table_pages"]
        self.table_embeddings = SUPABASE["table_embeddings"]
        self.table_mapped = SUPABASE["table_mapped"]
        self.match_rpc = SUPABASE["match_rpc"]
        self._client = http

    @classmethod
    def admin(cls, url: Optional[str] = None, http: Optional[httpx.AsyncClient] = None) -> Optional["SupabaseStore"]:
        """Service-role store, or None when no service key is configured."""
        key = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
        if not key:
            return None
        return cls(url=url, key=key, http=http)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(30.0, connect=10.0))
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _headers(self, prefer: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "apikey": self.key,
            "Authorization": f"Bearer {self.key}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _send(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        prefer: Optional[str] = None,
    ) -> httpx.Response:
        try:
            resp = await self._get_client().request(
                method,
                f"{self.url}/rest/v1/{path}",
                params=params,
                json=json,
                headers=self._headers(prefer),
            )
        except httpx.HTTPError as e:
            raise StoreError(f"{method} {path} failed: {e}") from e
        if resp.status_code >= 400:
            try:
                payload = resp.json()
            except ValueError:
                payload = None
            detail = (payload.get("message") if isinstance(payload, dict) else None) or resp.text
            raise StoreError(f"{method} {path} failed ({resp.status_code}): {detail}",
                             status_code=resp.status_code)
        return resp

    @staticmethod
    def _rows(resp: httpx.Response) -> List[Dict[str, Any]]:
        if not resp.content:
            return []
        payload = resp.json()
        if isinstance(payload, list):
            return payload
        return [payload] if payload else []

    @staticmethod
    def _total(resp: httpx.Response) -> int:
        """Exact row count from a ``Prefer: count=exact`` response."""
        content_range = resp.headers.get("content-range", "")
        total = content_range.rsplit("/", 1)[-1]
        if not total.isdigit():
            raise StoreError(f"Unexpected Content-Range header: {content_range!r}")
        return int(total)

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    async def get_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        resp = await self._send("GET", self.table_jobs,
                                params={"id": f"eq.{job_id}", "select": "*"})
        rows = self._rows(resp)
        return rows[0] if rows else None

    async def get_job_by_url(self, url: str) -> Optional[Dict[str, Any]]:
        """Most recent job for ``url``."""
        resp = await self._send("GET", self.table_jobs, params={
            "url": f"eq.{url}",
            "select": "*",
            "order": "created_at.desc",
            "limit": 1,
        })
        rows = self._rows(resp)
        return rows[0] if rows else None

    async def insert_job(self, job: Dict[str, Any]) -> Dict[str, Any]:
        print(f"[DB] Inserting scrape: {job.get('url')}", flush=True)
        resp = await self._send("POST", self.table_jobs, json=job,
                                prefer="return=representation")
        rows = self._rows(resp)
        if not rows:
            raise StoreError("Insert scrape returned no row")
        return rows[0]

    async def update_job(self, job_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Patch a job. Returns the updated row, or None if no row matched."""
        resp = await self._send("PATCH", self.table_jobs,
                                params={"id": f"eq.{job_id}"},
                                json=updates,
                                prefer="return=representation")
        rows = self._rows(resp)
        return rows[0] if rows else None

    async def delete_job(self, job_id: str) -> None:
        """Delete a job; pages and embeddings go with it (ON DELETE CASCADE)."""
        await self._send("DELETE", self.table_jobs, params={"id": f"eq.{job_id}"})

    # ------------------------------------------------------------------
    # Pages
    # ------------------------------------------------------------------

    async def insert_pages(self, pages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if not pages:
            return []
        resp = await self._send("POST", self.table_pages, json=pages,
                                prefer="return=representation")
        return self._rows(resp)

    async def get_pages(self, job_id: str) -> List[Dict[str, Any]]:
        resp = await self._send("GET", self.table_pages, params={
            "scrape_id": f"eq.{job_id}",
            "select": "*",
            "order": "created_at.asc",
        })
        return self._rows(resp)

    async def delete_pages(self, page_ids: List[str]) -> None:
        if not page_ids:
            return
        await self._send("DELETE", self.table_pages,
                         params={"id": f"in.({','.join(page_ids)})"})

    async def count_pages(self, job_id: str) -> int:
        """Exact number of stored pages for a job, read from Content-Range."""
        resp = await self._send("HEAD", self.table_pages,
                                params={"scrape_id": f"eq.{job_id}", "select": "id"},
                                prefer="count=exact")
        return self._total(resp)

    async def get_scraped_urls(self, job_id: str) -> List[str]:
        resp = await self._send("GET", self.table_pages,
                                params={"scrape_id": f"eq.{job_id}", "select": "url"})
        return [row["url"] for row in self._rows(resp) if row.get("url")]

    # ------------------------------------------------------------------
    # Mapped URLs (site map entries not scraped yet)
    # ------------------------------------------------------------------

    async def get_mapped_urls(
        self,
        job_id: str,
        page: int = 1,
        limit: int = 100,
        search: Optional[str] = None,
    ) -> Tuple[List[Dict[str, Any]], int]:
        """One page of unscraped mapped URLs plus the total matching count."""
        params: Dict[str, Any] = {
            "scrape_id": f"eq.{job_id}",
            "is_scraped": "eq.false",
            "select": "*",
            "order": "url.asc",
            "offset": (max(page, 1) - 1) * limit,
            "limit": limit,
        }
        if search:
            params["url"] = f"ilike.*{search}*"
        resp = await self._send("GET", self.table_mapped, params=params, prefer="count=exact")
        return self._rows(resp), self._total(resp)

    async def insert_mapped_urls(self, job_id: str, urls: List[str]) -> None:
        if not urls:
            return
        rows = [{"scrape_id": job_id, "url": url, "is_scraped": False} for url in urls]
        await self._send("POST", self.table_mapped, json=rows,
                         prefer="return=minimal,resolution=ignore-duplicates")

    async def mark_mapped_urls_scraped(self, job_id: str, urls: List[str]) -> None:
        if not urls:
            return
        quoted = ",".join(f'"{url}"' for url in urls)
        await self._send("PATCH", self.table_mapped,
                         params={"scrape_id": f"eq.{job_id}", "url": f"in.({quoted})"},
                         json={"is_scraped": True},
                         prefer="return=minimal")

    # ------------------------------------------------------------------
    # Embeddings
    # ------------------------------------------------------------------

    async def insert_embeddings(self, rows: List[Dict[str, Any]]) -> None:
        if not rows:
            return
        await self._send("POST", self.table_embeddings, json=rows, prefer="return=minimal")

    async def match_embeddings(
        self,
        job_id: str,
        query_embedding: List[float],
        match_count: int,
        match_threshold: float,
    ) -> List[Dict[str, Any]]:
        resp = await self._send("POST", f"rpc/{self.match_rpc}", json={
            "filter_scrape_id": job_id,
            "match_count": match_count,
            "match_threshold": match_threshold,
            "query_embedding": query_embedding,
        })
        return self._rows(resp)
