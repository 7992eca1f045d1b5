import asyncio
import os
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Union

import httpx

from webagent.config import EMBEDDING


class EmbeddingError(RuntimeError):
    def __init__(self, message: str, last_error: Optional[BaseException] = None):
        super().__init__(message)
        self.last_error = last_error


@dataclass
class EmbeddingResult:
    data: Any            # List[float] for a single text, List[List[float]] for a list
    attempts: int


class Embedder:
    """OpenRouter (OpenAI-compatible) embeddings client with retry/backoff."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        endpoint: Optional[str] = None,
        model: Optional[str] = None,
        max_retries: int = EMBEDDING["max_retries"],
        initial_delay_s: float = EMBEDDING["initial_delay_s"],
        http: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._api_key = api_key or os.getenv("OPENROUTER_API_KEY")
        if not self._api_key:
            raise RuntimeError("Missing OPENROUTER_API_KEY environment variable")
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")

        self._endpoint = endpoint or os.getenv("OPENROUTER_EMBEDDINGS_URL", EMBEDDING["endpoint"])
        self.model = model or EMBEDDING["model"]
        self.max_retries = max_retries
        self.initial_delay_s = initial_delay_s
        self._http = http
        self._sleep = sleep

    def _get_client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=httpx.Timeout(60.0, connect=20.0))
        return self._http

    async def close(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def _request(self, inputs: List[str]) -> List[List[float]]:
        """One embeddings call. Vectors come back ordered like ``inputs``."""
        resp = await self._get_client().post(
            self._endpoint,
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
                "X-Title": "WebAgent",
            },
            json={"model": self.model, "input": inputs},
        )
        resp.raise_for_status()

        body = resp.json()
        data = body.get("data") if isinstance(body, dict) else None
        if not data:
            raise RuntimeError("Invalid response from embeddings API: no data returned")

        vectors: List[Optional[List[float]]] = [None] * len(inputs)
        if not isinstance(data, list):
            raise RuntimeError("Unexpected embeddings response format")
        for position, item in enumerate(data):
            if not isinstance(item, dict):
                raise RuntimeError("Unexpected embeddings response format")
            index = item.get("index", position)
            vec = item.get("embedding")
            if (not isinstance(index, int) or isinstance(index, bool)
                    or not isinstance(vec, list) or not 0 <= index < len(inputs)):
                raise RuntimeError("Unexpected embeddings response format")
            vectors[index] = vec
        if any(v is None for v in vectors):
            raise RuntimeError(
                f"Embeddings API returned {len(data)} vectors for {len(inputs)} inputs"
            )
        return vectors

    async def _request_with_retry(self, inputs: List[str]):
        last_error: Optional[BaseException] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                return await self._request(inputs), attempt
            except (httpx.HTTPError, RuntimeError, ValueError) as e:
                last_error = e
                delay = self.initial_delay_s * (2 ** (attempt - 1))
                if attempt < self.max_retries:
                    print(f"[Embeddings] Attempt {attempt}/{self.max_retries} failed: {e}. "
                          f"Retrying in {delay:.1f}s...", flush=True)
                    await self._sleep(delay)
                else:
                    print(f"[Embeddings] Attempt {attempt}/{self.max_retries} failed: {e}. "
                          f"No more retries.", flush=True)

        raise EmbeddingError(
            f"All {self.max_retries} embedding attempts failed: {last_error}",
            last_error=last_error,
        )

    async def generate_embeddings(self, texts: Union[str, List[str]]) -> EmbeddingResult:
        """Embed one text or a list of texts.

        For a list, empty/whitespace entries are not sent; their slots come back
        as ``[]`` so the output always lines up with the input.
        """
        if isinstance(texts, str):
            if not texts.strip():
                raise EmbeddingError("Input string is empty or whitespace only")
            vectors, attempts = await self._request_with_retry([texts])
            return EmbeddingResult(data=vectors[0], attempts=attempts)

        valid = [(i, t) for i, t in enumerate(texts) if t and t.strip()]
        if not valid:
            raise EmbeddingError("All input strings are empty or whitespace only")
        if len(valid) < len(texts):
            print(f"[Embeddings] Filtered out {len(texts) - len(valid)} empty strings from batch",
                  flush=True)

        vectors, attempts = await self._request_with_retry([t for _, t in valid])

        data: List[List[float]] = [[] for _ in texts]
        for (original_index, _), vec in zip(valid, vectors):
            data[original_index] = vec
        return EmbeddingResult(data=data, attempts=attempts)

    async def embed_query(self, query: str) -> List[float]:
        """Embed a single search query."""
        result = await self.generate_embeddings(query)
        return result.data
