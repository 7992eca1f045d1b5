"""Tests for the PostgREST store client, against httpx.MockTransport."""

import json

import httpx
import pytest

from webagent.core.supabase_store import StoreError, SupabaseStore


class PostgREST:
    """Records requests and replies with canned responses."""

    def __init__(self, *responses):
        self.requests = []
        self.responses = list(responses)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responses.pop(0) if self.responses else httpx.Response(200, json=[])


def _store(server, key="anon-key"):
    http = httpx.AsyncClient(transport=httpx.MockTransport(server))
    return SupabaseStore(url="https://db.example.supabase.co/", key=key, http=http)


def test_requires_credentials(monkeypatch):
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    monkeypatch.delenv("SUPABASE_ANON_KEY", raising=False)
    with pytest.raises(RuntimeError):
        SupabaseStore()


def test_admin_store_needs_service_key(monkeypatch):
    monkeypatch.delenv("SUPABASE_SERVICE_ROLE_KEY", raising=False)
    assert SupabaseStore.admin(url="https://db.example.supabase.co") is None

    monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "service-key")
    admin = SupabaseStore.admin(url="https://db.example.supabase.co")
    assert admin.key == "service-key"


@pytest.mark.asyncio
class TestJobs:
    async def test_get_job_sends_auth_and_filter(self):
        server = PostgREST(httpx.Response(200, json=[{"id": "abc", "url": "https://x"}]))
        store = _store(server)

        row = await store.get_job("abc")

        assert row == {"id": "abc", "url": "https://x"}
        request = server.requests[0]
        assert request.method == "GET"
        assert request.url.path == "/rest/v1/scrapes"
        assert request.url.params["id"] == "eq.abc"
        assert request.headers["apikey"] == "anon-key"
        assert request.headers["authorization"] == "Bearer anon-key"

    async def test_get_job_missing(self):
        store = _store(PostgREST(httpx.Response(200, json=[])))
        assert await store.get_job("nope") is None

    async def test_get_job_by_url_takes_latest(self):
        server = PostgREST(httpx.Response(200, json=[{"id": "new"}]))
        store = _store(server)
        assert (await store.get_job_by_url("https://x"))["id"] == "new"
        params = server.requests[0].url.params
        assert params["order"] == "created_at.desc"
        assert params["limit"] == "1"

    async def test_update_job_patches_and_returns_row(self):
        server = PostgREST(httpx.Response(200, json=[{"id": "abc", "status": "failed"}]))
        store = _store(server)

        row = await store.update_job("abc", {"status": "failed"})

        request = server.requests[0]
        assert request.method == "PATCH"
        assert json.loads(request.content) == {"status": "failed"}
        assert request.headers["prefer"] == "return=representation"
        assert row["status"] == "failed"

    async def test_update_unknown_job_returns_none(self):
        store = _store(PostgREST(httpx.Response(200, json=[])))
        assert await store.update_job("nope", {"status": "failed"}) is None

    async def test_error_status_raises(self):
        store = _store(PostgREST(httpx.Response(401, json={"message": "JWT expired"})))
        with pytest.raises(StoreError) as exc_info:
            await store.get_job("abc")
        assert exc_info.value.status_code == 401
        assert "JWT expired" in str(exc_info.value)


@pytest.mark.asyncio
class TestPages:
    async def test_count_pages_reads_content_range(self):
        server = PostgREST(httpx.Response(200, headers={"content-range": "0-2/3"}))
        store = _store(server)

        assert await store.count_pages("abc") == 3
        request = server.requests[0]
        assert request.method == "HEAD"
        assert request.headers["prefer"] == "count=exact"

    async def test_count_pages_empty_table(self):
        store = _store(PostgREST(httpx.Response(200, headers={"content-range": "*/0"})))
        assert await store.count_pages("abc") == 0

    async def test_count_pages_without_header(self):
        store = _store(PostgREST(httpx.Response(200)))
        with pytest.raises(StoreError):
            await store.count_pages("abc")

    async def test_delete_pages_uses_in_filter(self):
        server = PostgREST(httpx.Response(204))
        store = _store(server)
        await store.delete_pages(["p1", "p2"])
        assert server.requests[0].url.params["id"] == "in.(p1,p2)"

    async def test_empty_inserts_send_nothing(self):
        server = PostgREST()
        store = _store(server)
        assert await store.insert_pages([]) == []
        await store.insert_embeddings([])
        await store.delete_pages([])
        assert server.requests == []


@pytest.mark.asyncio
async def test_match_embeddings_calls_rpc():
    server = PostgREST(httpx.Response(200, json=[{"id": "1", "content": "c", "similarity": 0.8}]))
    store = _store(server)

    rows = await store.match_embeddings("abc", [0.1, 0.2], match_count=5, match_threshold=0.3)

    request = server.requests[0]
    assert request.url.path == "/rest/v1/rpc/match_scrape_embeddings"
    assert json.loads(request.content) == {
        "filter_scrape_id": "abc",
        "match_count": 5,
        "match_threshold": 0.3,
        "query_embedding": [0.1, 0.2],
    }
    assert rows[0]["similarity"] == 0.8


@pytest.mark.asyncio
async def test_transport_error_becomes_store_error():
    def refuse(request):
        raise httpx.ConnectError("connection reset", request=request)

    store = _store(refuse)
    with pytest.raises(StoreError) as exc_info:
        await store.insert_embeddings([{"scrape_id": "abc", "content": "c", "embedding": [1.0]}])
    assert isinstance(exc_info.value.__cause__, httpx.ConnectError)
    assert exc_info.value.status_code is None


@pytest.mark.asyncio
class TestMappedUrls:
    async def test_get_mapped_urls_pages_and_counts(self):
        server = PostgREST(httpx.Response(200, json=[{"id": "m1", "url": "https://x/a"}],
                                          headers={"content-range": "100-100/101"}))
        store = _store(server)

        rows, total = await store.get_mapped_urls("abc", page=2, limit=100, search="blog")

        assert rows == [{"id": "m1", "url": "https://x/a"}]
        assert total == 101
        params = server.requests[0].url.params
        assert server.requests[0].url.path == "/rest/v1/mapped_urls"
        assert params["is_scraped"] == "eq.false"
        assert params["offset"] == "100"
        assert params["limit"] == "100"
        assert params["url"] == "ilike.*blog*"
        assert server.requests[0].headers["prefer"] == "count=exact"

    async def test_insert_mapped_urls(self):
        server = PostgREST(httpx.Response(201))
        store = _store(server)
        await store.insert_mapped_urls("abc", ["https://x/a", "https://x/b"])
        assert json.loads(server.requests[0].content) == [
            {"scrape_id": "abc", "url": "https://x/a", "is_scraped": False},
            {"scrape_id": "abc", "url": "https://x/b", "is_scraped": False},
        ]

    async def test_mark_mapped_urls_scraped(self):
        server = PostgREST(httpx.Response(204))
        store = _store(server)
        await store.mark_mapped_urls_scraped("abc", ["https://x/a"])
        request = server.requests[0]
        assert request.method == "PATCH"
        assert request.url.params["url"] == 'in.("https://x/a")'
        assert json.loads(request.content) == {"is_scraped": True}

    async def test_get_scraped_urls(self):
        server = PostgREST(httpx.Response(200, json=[{"url": "https://x/a"}, {"url": None}]))
        store = _store(server)
        assert await store.get_scraped_urls("abc") == ["https://x/a"]
        assert server.requests[0].url.params["select"] == "url"
