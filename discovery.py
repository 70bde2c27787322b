"""
Doc discovery: find a usable documentation corpus for an API id.

Tiers, tried in order:

1. cached corpus (ignored when implausibly short)
2. llms.txt / llms-full.txt manifest on the domain or its docs host
3. sitemap.xml entries that look like API reference pages
4. Firecrawl map of the known doc URL, same filters
5. render the chosen candidate pages (LLM-picked when there are many)
6. render the known doc URL on its own

The joined corpus is cached for CACHE_TTL.
"""

import asyncio
import logging
import re
from typing import Optional

import httpx

from branding import brand_key_of
from cache import Cache, CacheKeys, best_effort, cached_get
from config import Settings
from fallback import first_available
from llm import Ok, StructuredLLM
from providers import FirecrawlMapper, JinaReader, ProviderError, fetch_text

logger = logging.getLogger("apiflora.discovery")

PAGE_SEPARATOR = "\n\n---\n\n"

API_DOC_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (r"/api/", r"/reference", r"/docs/api", r"/api-reference", r"/developer",
              r"/endpoints", r"/rest/", r"/graphql", r"/v[0-9]")
]
EXCLUDE_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (r"/blog/", r"/pricing", r"/changelog", r"/status", r"/careers", r"/about",
              r"/legal", r"/terms", r"/privacy", r"\.pdf$", r"\.png$", r"\.jpg$")
]
LOOSE_DOC_PATTERN = re.compile(r"doc|api|ref|dev", re.IGNORECASE)
LOC_PATTERN = re.compile(r"<loc>\s*(.*?)\s*</loc>", re.DOTALL)


def manifest_candidates(domain: str) -> list[str]:
    return [
        f"https://{domain}/llms-full.txt",
        f"https://{domain}/llms.txt",
        f"https://docs.{domain}/llms-full.txt",
        f"https://docs.{domain}/llms.txt",
    ]


def sitemap_candidates(domain: str) -> list[str]:
    return [
        f"https://{domain}/sitemap.xml",
        f"https://docs.{domain}/sitemap.xml",
        f"https://developer.{domain}/sitemap.xml",
    ]


def filter_api_doc_urls(urls: list[str]) -> list[str]:
    """Keep URLs that look like API reference pages."""
    return [
        url for url in urls
        if not any(p.search(url) for p in EXCLUDE_PATTERNS)
        and any(p.search(url) for p in API_DOC_PATTERNS)
    ]


def parse_sitemap(xml: str) -> list[str]:
    if "<urlset" not in xml and "<sitemapindex" not in xml:
        return []
    return [m.strip() for m in LOC_PATTERN.findall(xml) if m.strip()]


def looks_like_html(text: str) -> bool:
    head = text[:2000].lower()
    return "<!doctype" in head or "<html" in head


class DocDiscoveryEngine:
    def __init__(
        self,
        http: httpx.AsyncClient,
        cache: Cache,
        reader: JinaReader,
        settings: Settings,
        mapper: Optional[FirecrawlMapper] = None,
        llm: Optional[StructuredLLM] = None,
    ):
        self.http = http
        self.cache = cache
        self.reader = reader
        self.settings = settings
        self.mapper = mapper
        self.llm = llm

    # ── Tier 1: cache ────────────────────────────────────────────────────────
    async def _from_cache(self, api_id: str) -> Optional[str]:
        cached = await cached_get(self.cache, CacheKeys.discovered_docs(api_id))
        if cached and len(cached) > self.settings.min_cached_docs_chars:
            return cached
        if cached:
            logger.info("Discarding %d-char cached corpus for %s", len(cached), api_id)
        return None

    # ── Tier 2: llms.txt ─────────────────────────────────────────────────────
    async def fetch_manifest(self, domain: str) -> Optional[str]:
        for url in manifest_candidates(domain):
            text = await fetch_text(self.http, url, self.settings.manifest_timeout)
            if not text or looks_like_html(text):
                continue
            if len(text) > self.settings.min_manifest_chars:
                logger.info("Found doc manifest at %s (%d chars)", url, len(text))
                return text
        return None

    # ── Tier 3/4: candidate URLs ─────────────────────────────────────────────
    async def fetch_sitemap_urls(self, domain: str) -> list[str]:
        for url in sitemap_candidates(domain):
            xml = await fetch_text(self.http, url, self.settings.sitemap_timeout)
            if not xml:
                continue
            urls = parse_sitemap(xml)
            if urls:
                logger.info("Sitemap %s listed %d URLs", url, len(urls))
                return urls
        return []

    async def _sitemap_candidates(self, api_id: str) -> list[str]:
        return filter_api_doc_urls(await self.fetch_sitemap_urls(brand_key_of(api_id)))

    async def _mapped_candidates(self, doc_url: Optional[str]) -> list[str]:
        if not doc_url or self.mapper is None or not self.mapper.configured:
            return []
        try:
            links = await self.mapper.map_site(doc_url)
        except ProviderError as exc:
            logger.warning("Site map of %s failed: %s", doc_url, exc)
            return []
        candidates = filter_api_doc_urls(links)
        if not candidates:
            candidates = [u for u in links if LOOSE_DOC_PATTERN.search(u)][:15]
        return candidates

    # ── Tier 5: pick + fetch ─────────────────────────────────────────────────
    async def pick_pages(self, api_name: str, urls: list[str]) -> list[str]:
        """Narrow many candidates to the pages most likely to define endpoints."""
        limit = self.settings.max_doc_pages
        if len(urls) <= limit or self.llm is None or not self.llm.configured:
            return urls[:limit]

        listing = "\n".join(f"{i}. {u}" for i, u in enumerate(urls, start=1))
        prompt = (
            f'I need the API reference pages for "{api_name}". Pick the 5-8 URLs most likely to contain '
            "actual API endpoint definitions (REST routes, methods, request/response specs). "
            "Skip overviews, tutorials, changelogs.\n\n"
            f"{listing}\n\n"
            'Return JSON: {"indices": [1, 5, 8]}'
        )
        outcome = await self.llm.complete_json(
            prompt,
            max_tokens=self.settings.page_picker_max_tokens,
            timeout=self.settings.page_picker_timeout,
        )
        if not isinstance(outcome, Ok) or not isinstance(outcome.data, dict):
            return urls[:limit]

        indices = outcome.data.get("indices") or []
        picked = []
        for i in indices:
            if isinstance(i, int) and 1 <= i <= len(urls) and urls[i - 1] not in picked:
                picked.append(urls[i - 1])
        return picked[:limit] if picked else urls[:limit]

    async def fetch_pages(self, urls: list[str]) -> Optional[str]:
        pages = await asyncio.gather(*[
            self.reader.render(url, self.settings.page_render_timeout, self.settings.page_render_max_chars)
            for url in urls
        ])
        kept = [p for p in pages if p and len(p) > self.settings.min_page_chars]
        logger.info("Fetched %d/%d candidate pages", len(kept), len(urls))
        return PAGE_SEPARATOR.join(kept) if kept else None

    async def _render_single(self, doc_url: Optional[str]) -> Optional[str]:
        if not doc_url:
            return None
        return await self.reader.render(
            doc_url, self.settings.page_render_timeout, self.settings.page_render_max_chars
        )

    async def _from_candidates(self, api_id: str, doc_url: Optional[str], api_name: str) -> Optional[str]:
        _, candidates = await first_available(
            [
                ("sitemap", lambda: self._sitemap_candidates(api_id)),
                ("site-map", lambda: self._mapped_candidates(doc_url)),
            ],
            label=f"candidates {api_id}",
        )
        if not candidates:
            return None
        chosen = await self.pick_pages(api_name, candidates)
        return await self.fetch_pages(chosen)

    # ── Entry point ──────────────────────────────────────────────────────────
    async def discover(self, api_id: str, doc_url: Optional[str], api_name: str) -> Optional[str]:
        tier, markdown = await first_available(
            [
                ("cache", lambda: self._from_cache(api_id)),
                # Sub-APIs (`amazonaws.com:ec2`) share their brand's host
                ("manifest", lambda: self.fetch_manifest(brand_key_of(api_id))),
                ("pages", lambda: self._from_candidates(api_id, doc_url, api_name)),
                ("doc-url", lambda: self._render_single(doc_url)),
            ],
            label=f"discover {api_id}",
        )
        if markdown is None:
            logger.info("No documentation found for %s", api_id)
            return None

        if tier != "cache":
            await best_effort(
                self.cache.set(CacheKeys.discovered_docs(api_id), markdown, self.settings.cache_ttl),
                f"write discoveredDocs:{api_id}",
            )
        return markdown
