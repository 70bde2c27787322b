"""
HTTP clients for the external providers the pipeline leans on:

- Jina Reader      → render any URL as markdown
- Embeddings       → OpenAI-compatible /embeddings endpoint (OpenRouter by default)
- Exa              → web search for APIs missing from the store
- Firecrawl        → enumerate same-site links of a documentation host
- Algolia          → hosted text index over the catalog (listing search)
- plain fetch      → well-known manifests and sitemaps

All clients share one pooled httpx.AsyncClient and raise ProviderError
subclasses; callers decide whether that means "skip this tier".
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import quote

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from models import ApiRecord

logger = logging.getLogger("apiflora.providers")


# ── Exceptions ───────────────────────────────────────────────────────────────
class ProviderError(Exception):
    """Base error for all external provider failures."""


class ProviderNotConfigured(ProviderError):
    """Raised when a provider's key is missing."""


class ProviderTimeout(ProviderError):
    """Raised when a provider does not answer in time."""


class ProviderResponseError(ProviderError):
    """Raised on a non-2xx status or an unreadable payload."""


class ProviderUnreachable(ProviderError):
    """Raised when the connection itself fails."""


async def _request(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    provider: str,
    timeout: float,
    **kwargs: Any,
) -> httpx.Response:
    """Send a request, mapping transport failures onto ProviderError."""
    try:
        resp = await client.request(method, url, timeout=timeout, **kwargs)
        resp.raise_for_status()
        return resp
    except httpx.TimeoutException as exc:
        raise ProviderTimeout(f"{provider} timed out after {timeout}s") from exc
    except httpx.HTTPStatusError as exc:
        raise ProviderResponseError(f"{provider} returned {exc.response.status_code}") from exc
    except httpx.NetworkError as exc:
        raise ProviderUnreachable(f"{provider} unreachable: {type(exc).__name__}") from exc
    except httpx.RequestError as exc:
        raise ProviderError(f"{provider} request failed: {type(exc).__name__}") from exc
    except httpx.InvalidURL as exc:
        raise ProviderError(f"{provider} cannot request {url!r}: {exc}") from exc


async def fetch_text(client: httpx.AsyncClient, url: str, timeout: float) -> Optional[str]:
    """GET a URL and return its body, or None on any failure."""
    try:
        resp = await _request(client, "GET", url, "fetch", timeout, follow_redirects=True)
        return resp.text
    except ProviderError as exc:
        logger.debug("Fetch %s failed: %s", url, exc)
        return None


# ── Jina Reader ──────────────────────────────────────────────────────────────
class JinaReader:
    """
    Render a URL as markdown through the Jina Reader API.

    Timeouts and connection failures are retried, but `timeout` bounds the
    whole render, retries and backoff included.
    """

    def __init__(self, client: httpx.AsyncClient, prefix: str, api_key: Optional[str] = None):
        self._client = client
        self._prefix = prefix
        self._api_key = api_key

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        retry=retry_if_exception_type((ProviderTimeout, ProviderUnreachable)),
        reraise=True,
    )
    async def _fetch(self, target_url: str, timeout: float) -> str:
        headers = {"Accept": "text/markdown"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        resp = await _request(
            self._client, "GET", f"{self._prefix}{target_url}", "jina", timeout, headers=headers
        )
        return resp.text

    async def render(self, target_url: str, timeout: float, max_chars: int) -> Optional[str]:
        """Markdown for `target_url`, truncated to `max_chars`; None on failure."""
        logger.info("Rendering via Jina: %s", target_url)
        try:
            markdown = await asyncio.wait_for(self._fetch(target_url, timeout), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Jina render for %s exceeded %ss", target_url, timeout)
            return None
        except ProviderError as exc:
            logger.warning("Jina render failed for %s: %s", target_url, exc)
            return None
        if len(markdown) > max_chars:
            markdown = markdown[:max_chars]
        return markdown


# ── Embeddings ───────────────────────────────────────────────────────────────
class EmbeddingClient:
    """Query embeddings from an OpenAI-compatible endpoint."""

    def __init__(self, client: httpx.AsyncClient, base_url: str, model: str,
                 api_key: Optional[str], timeout: float):
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self.model = model
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    async def embed(self, text: str) -> list[float]:
        if not self._api_key:
            raise ProviderNotConfigured("embedding api key not set")
        resp = await _request(
            self._client, "POST", f"{self._base_url}/embeddings", "embeddings", self.timeout,
            headers={"Authorization": f"Bearer {self._api_key}"},
            json={"model": self.model, "input": text},
        )
        try:
            return resp.json()["data"][0]["embedding"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise ProviderResponseError("embeddings payload missing data[0].embedding") from exc


# ── Exa web search ───────────────────────────────────────────────────────────
@dataclass
class WebResult:
    """A single web search hit."""
    url: str
    title: Optional[str] = None
    summary: Optional[str] = None
    text: Optional[str] = None
    highlights: list[str] = field(default_factory=list)


class ExaSearchClient:
    """Web search through the Exa API."""

    _SEARCH_ENDPOINT = "/search"

    def __init__(self, client: httpx.AsyncClient, base_url: str, api_key: Optional[str], timeout: float):
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    async def search(self, query: str, num_results: int, highlight_query: Optional[str] = None) -> list[WebResult]:
        if not self._api_key:
            raise ProviderNotConfigured("exa api key not set")
        payload = {
            "query": query,
            "type": "auto",
            "numResults": num_results,
            "contents": {
                "text": {"maxCharacters": 500},
                "highlights": {"query": highlight_query or query, "maxCharacters": 300},
                "summary": {"query": "What does this API do? Is it free or paid? Key features."},
            },
        }
        resp = await _request(
            self._client, "POST", f"{self._base_url}{self._SEARCH_ENDPOINT}", "exa", self.timeout,
            headers={"x-api-key": self._api_key},
            json=payload,
        )
        try:
            raw_results = resp.json().get("results") or []
        except ValueError as exc:
            raise ProviderResponseError("exa returned non-JSON body") from exc

        return [
            WebResult(
                url=r["url"],
                title=r.get("title"),
                summary=r.get("summary"),
                text=r.get("text"),
                highlights=r.get("highlights") if isinstance(r.get("highlights"), list) else [],
            )
            for r in raw_results
            if isinstance(r, dict) and r.get("url")
        ]


# ── Firecrawl map ────────────────────────────────────────────────────────────
class FirecrawlMapper:
    """Enumerate links of a site through Firecrawl's /map endpoint."""

    def __init__(self, client: httpx.AsyncClient, base_url: str, api_key: Optional[str], timeout: float):
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    async def map_site(self, url: str, limit: int = 100) -> list[str]:
        if not self._api_key:
            raise ProviderNotConfigured("firecrawl api key not set")
        resp = await _request(
            self._client, "POST", f"{self._base_url}/map", "firecrawl", self.timeout,
            headers={"Authorization": f"Bearer {self._api_key}"},
            json={"url": url, "limit": limit},
        )
        try:
            links = resp.json().get("links") or []
        except ValueError as exc:
            raise ProviderResponseError("firecrawl returned non-JSON body") from exc
        # Newer API versions return objects instead of bare strings
        urls = [link if isinstance(link, str) else link.get("url") for link in links if link]
        return [u for u in urls if u]


# ── Algolia text index ───────────────────────────────────────────────────────
class AlgoliaSearchClient:
    """Full-text query against the Algolia index mirroring the `apis` table."""

    _ATTRIBUTES = ["objectID", "id", "title", "description", "tldr", "logo", "website", "doc_url"]

    def __init__(
        self,
        client: httpx.AsyncClient,
        app_id: Optional[str],
        api_key: Optional[str],
        index_name: Optional[str],
        timeout: float,
    ):
        self._client = client
        self._app_id = app_id
        self._api_key = api_key
        self._index_name = index_name
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self._app_id and self._api_key and self._index_name)

    @staticmethod
    def hits_per_page(limit: int) -> int:
        return min(max(limit * 4, 40), 200)

    async def search(self, query: str, limit: int) -> list[ApiRecord]:
        if not self.configured:
            raise ProviderNotConfigured("algolia app id, key or index not set")
        url = f"https://{self._app_id}-dsn.algolia.net/1/indexes/{quote(self._index_name, safe='')}/query"
        resp = await _request(
            self._client, "POST", url, "algolia", self.timeout,
            headers={"X-Algolia-API-Key": self._api_key, "X-Algolia-Application-Id": self._app_id},
            json={
                "query": query,
                "hitsPerPage": self.hits_per_page(limit),
                "attributesToRetrieve": self._ATTRIBUTES,
            },
        )
        try:
            hits = resp.json().get("hits")
        except ValueError as exc:
            raise ProviderResponseError("algolia returned non-JSON body") from exc
        if not isinstance(hits, list):
            return []

        records = []
        for hit in hits:
            if not isinstance(hit, dict):
                continue
            api_id = hit.get("id") or hit.get("objectID")
            if not api_id or not hit.get("title"):
                continue
            records.append(ApiRecord(
                id=api_id,
                title=hit["title"],
                description=hit.get("description"),
                tldr=hit.get("tldr"),
                logo=hit.get("logo"),
                website=hit.get("website"),
                doc_url=hit.get("doc_url"),
            ))
        return records
