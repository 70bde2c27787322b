"""
Hybrid search over the API catalog.

Order of resolution, stopping at the first tier that yields rows:

1. hybrid   - query embedding + server-side vector/lexical ranking
2. lexical  - OR of substring matches across title/description/tldr/id
3. discovered - web search for APIs the catalog does not know yet,
   optionally filtered and described by the LLM

Store tiers return ApiRecords that are grouped into Brands; the web tier
returns DiscoveredApi records keyed by hostname.

The web listing search (`listing_records`) puts the hosted text index in
front of the store tiers and never goes to the web.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar, Union
from urllib.parse import urlparse

from pydantic import ValidationError

from branding import group_by_brand
from cache import Cache, CacheKeys, best_effort, cached_get
from config import Settings
from fallback import first_available
from llm import Ok, StructuredLLM
from models import ApiRecord, Brand, DiscoveredApi
from providers import AlgoliaSearchClient, EmbeddingClient, ExaSearchClient, ProviderError, WebResult
from store import RecordStore, StoreError

logger = logging.getLogger("apiflora.search")

LEXICAL_FIELDS = ("title", "description", "tldr", "id")


@dataclass
class SearchResult:
    count: int
    apis: list[Union[Brand, DiscoveredApi]] = field(default_factory=list)
    source: Optional[str] = None

    def as_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"count": self.count, "apis": [a.model_dump() for a in self.apis]}
        if self.source:
            body["source"] = self.source
        return body


def hostname_of(url: str) -> str:
    return urlparse(url).hostname or url


def build_ranking_prompt(query: str, results: list[WebResult]) -> str:
    listing = []
    for i, r in enumerate(results, start=1):
        lines = [
            f"{i}. URL: {r.url}",
            f"   Title: {r.title or 'N/A'}",
            f"   Summary: {r.summary or 'N/A'}",
            f"   Content: {(r.text or '')[:300]}",
        ]
        highlights = " ".join(r.highlights)
        if highlights:
            lines.append(f"   Highlights: {highlights[:200]}")
        listing.append("\n".join(lines))

    return f"""An AI agent searched for: "{query}"

Your job is to analyze these search results and return the APIs that BEST match what the agent is looking for. Consider the FULL intent of the query:
- If the query says "free", exclude paid-only APIs
- If the query mentions a specific use case (e.g. "video detection", "flight booking"), only return APIs that support that exact use case
- If the query implies constraints (e.g. "real-time", "batch", "no auth"), respect those
- Prefer APIs with actual developer documentation over marketing pages, blog posts, or tutorials

SEARCH RESULTS:
{chr(10).join(listing)}

Return JSON: {{"apis": [{{"index": 1, "title": "Human-readable API name", "description": "One sentence about what this API does and key details (pricing model, supported features, etc.)", "relevance": "Brief reason why this matches the query"}}]}}

Rank by relevance to the query. Only include results that are genuine API/developer pages. If none match, return {{"apis": []}}."""


class HybridSearchEngine:
    def __init__(
        self,
        store: RecordStore,
        cache: Cache,
        settings: Settings,
        embeddings: Optional[EmbeddingClient] = None,
        llm: Optional[StructuredLLM] = None,
        web_search: Optional[ExaSearchClient] = None,
        text_index: Optional[AlgoliaSearchClient] = None,
    ):
        self.store = store
        self.cache = cache
        self.settings = settings
        self.embeddings = embeddings
        self.llm = llm
        self.web_search = web_search
        self.text_index = text_index

    # ── Store tiers ──────────────────────────────────────────────────────────
    async def _embed(self, query: str) -> Optional[list[float]]:
        if len(query) < 3 or self.embeddings is None or not self.embeddings.configured:
            return None
        try:
            return await asyncio.wait_for(self.embeddings.embed(query), timeout=self.embeddings.timeout)
        except (ProviderError, asyncio.TimeoutError) as exc:
            logger.warning("Query embedding unavailable: %s", exc)
            return None

    async def _hybrid(self, query: str) -> list[ApiRecord]:
        embedding = await self._embed(query)
        if embedding is None:
            return []
        try:
            rows = await self.store.hybrid_rank(query, embedding, self.settings.hybrid_match_count)
        except StoreError as exc:
            logger.warning("Hybrid ranking failed: %s", exc)
            return []
        threshold = self.settings.min_hybrid_score
        survivors = [r for r in rows if r.score is None or r.score >= threshold]
        if len(survivors) < len(rows):
            logger.info("Hybrid: dropped %d rows below score %.2f", len(rows) - len(survivors), threshold)
        return survivors

    async def _lexical(self, query: str) -> list[ApiRecord]:
        terms = query.split()
        return await self.store.filter_by_substring(LEXICAL_FIELDS, terms, self.settings.lexical_row_limit)

    async def search_records(self, query: str) -> tuple[Optional[str], list[ApiRecord]]:
        """Flat catalog matches (hybrid, then lexical) without web discovery."""
        q = query.strip()
        if not q:
            return "empty", []
        source, records = await first_available(
            [("hybrid", lambda: self._hybrid(q)), ("lexical", lambda: self._lexical(q))],
            label=f"search '{q}'",
        )
        return source, records or []

    # ── Listing search ───────────────────────────────────────────────────────
    async def _indexed(self, query: str, limit: int) -> list[ApiRecord]:
        if self.text_index is None or not self.text_index.configured:
            return []
        try:
            return await self.text_index.search(query, limit)
        except ProviderError as exc:
            logger.warning("Text index unavailable for '%s': %s", query, exc)
            return []

    async def listing_records(self, query: str, limit: int = 50) -> tuple[Optional[str], list[ApiRecord]]:
        """Web-listing matches: the text index first, then `search_records`."""
        q = query.strip()
        if not q:
            return "empty", []
        records = await self._indexed(q, min(limit, self.settings.max_search_results))
        if records:
            logger.info("Listing search '%s' served by the text index (%d rows)", q, len(records))
            return "algolia", records
        return await self.search_records(q)

    # ── Web tier ─────────────────────────────────────────────────────────────
    async def _rank_with_llm(self, query: str, results: list[WebResult], limit: int) -> list[DiscoveredApi]:
        outcome = await self.llm.complete_json(
            build_ranking_prompt(query, results),
            max_tokens=self.settings.discovery_rank_max_tokens,
            timeout=self.settings.discovery_rank_timeout,
        )
        if not isinstance(outcome, Ok) or not isinstance(outcome.data, dict):
            logger.warning("Discovery ranking produced no usable JSON for '%s'", query)
            return []

        picks = outcome.data.get("apis") or []
        discovered = []
        for pick in picks:
            if not isinstance(pick, dict):
                continue
            index = pick.get("index")
            if not isinstance(index, int) or not 1 <= index <= len(results):
                continue
            hit = results[index - 1]
            discovered.append(DiscoveredApi(
                id=hostname_of(hit.url),
                title=str(pick.get("title") or hit.title or hostname_of(hit.url)),
                description=str(pick.get("description") or ""),
                doc_url=hit.url,
            ))
            if len(discovered) >= limit:
                break
        return discovered

    async def discover_on_web(self, query: str, limit: int) -> list[DiscoveredApi]:
        if self.web_search is None or not self.web_search.configured:
            return []

        cache_key = CacheKeys.discovered_search(query)
        cached = await cached_get(self.cache, cache_key)
        if cached is not None:
            try:
                return [DiscoveredApi(**item) for item in json.loads(cached)]
            except (ValueError, TypeError, ValidationError):
                logger.warning("Ignoring malformed discovery cache entry for '%s'", query)

        try:
            results = await self.web_search.search(
                f"{query} API documentation developer reference",
                num_results=min(limit * 2, 15),
                highlight_query=f"{query} API pricing features",
            )
        except ProviderError as exc:
            logger.warning("Web discovery failed for '%s': %s", query, exc)
            results = []

        if not results:
            discovered = []
        elif self.llm is not None and self.llm.configured:
            discovered = await self._rank_with_llm(query, results, limit)
        else:
            discovered = [
                DiscoveredApi(
                    id=hostname_of(r.url),
                    title=r.title or hostname_of(r.url),
                    description=r.summary or r.text or "",
                    doc_url=r.url,
                )
                for r in results[:limit]
            ]

        ttl = self.settings.discovery_cache_ttl if discovered else self.settings.negative_discovery_ttl
        await best_effort(
            self.cache.set(cache_key, json.dumps([d.model_dump() for d in discovered]), ttl),
            f"write {cache_key}",
        )
        return discovered

    # ── Entry point ──────────────────────────────────────────────────────────
    async def search(self, query: str, limit: int = 20) -> SearchResult:
        q = query.strip()
        if not q:
            return SearchResult(count=0, apis=[], source="empty")

        max_results = min(limit, self.settings.max_search_results)

        source, records = await self.search_records(q)
        if records:
            brands = group_by_brand(records)[:max_results]
            return SearchResult(count=len(brands), apis=brands, source=source)

        discovered = await self.discover_on_web(q, max_results)
        if discovered:
            return SearchResult(count=len(discovered), apis=discovered, source="discovered")

        logger.info("No APIs found for '%s'", q)
        return SearchResult(count=0, apis=[])


# ── Debounced search (interactive search box) ────────────────────────────────
T = TypeVar("T")


class DebouncedSearch(Generic[T]):
    """
    Type-ahead search driver. Each `submit` supersedes the previous one:
    the pending debounce timer and any in-flight search are cancelled, and
    only the latest query's result is ever published.
    """

    def __init__(
        self,
        run: Callable[[str], Awaitable[T]],
        on_result: Callable[[str, T], None],
        on_blank: Optional[Callable[[], None]] = None,
        delay: float = 0.25,
    ):
        self._run = run
        self._on_result = on_result
        self._on_blank = on_blank
        self.delay = delay
        self._task: Optional[asyncio.Task] = None
        self._generation = 0

    def submit(self, query: str) -> None:
        self.cancel()
        self._generation += 1
        if not query.strip():
            if self._on_blank:
                self._on_blank()
            return
        self._task = asyncio.create_task(self._debounced(query, self._generation))

    async def _debounced(self, query: str, generation: int) -> None:
        await asyncio.sleep(self.delay)
        result = await self._run(query)
        if generation != self._generation:
            return
        self._on_result(query, result)

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def wait(self) -> None:
        """Wait for the latest submitted search to settle."""
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            pass
