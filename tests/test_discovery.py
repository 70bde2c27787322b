"""
Unit tests for documentation discovery
"""

import os
import sys
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from cache import CacheKeys
from discovery import (
    PAGE_SEPARATOR,
    DocDiscoveryEngine,
    filter_api_doc_urls,
    looks_like_html,
    parse_sitemap,
)
from llm import Ok, ProviderFailure
from providers import ProviderError

MANIFEST = "# Stripe API\n\n" + "- [Create a charge](https://docs.stripe.com/api/charges/create)\n" * 20
PAGE = "## POST /v1/charges\n\nCreates a charge. " + "Parameter details. " * 20


def fake_fetch(responses):
    """An AsyncMock for fetch_text that answers by URL."""
    async def _fetch(client, url, timeout):
        return responses.get(url)
    return AsyncMock(side_effect=_fetch)


@pytest.fixture
def mapper():
    mock_mapper = MagicMock()
    mock_mapper.configured = True
    mock_mapper.map_site = AsyncMock(return_value=[])
    return mock_mapper


@pytest.fixture
def engine(cache, reader, settings, mapper):
    return DocDiscoveryEngine(MagicMock(), cache, reader, settings, mapper=mapper, llm=None)


# ── Pure helpers ─────────────────────────────────────────────────────────────
def test_filter_api_doc_urls():
    urls = [
        "https://stripe.com/docs/api/charges",
        "https://stripe.com/blog/api-launch",
        "https://stripe.com/pricing",
        "https://stripe.com/reference/payments",
        "https://stripe.com/about",
        "https://stripe.com/guides/getting-started",
        "https://stripe.com/v1/openapi.pdf",
    ]
    assert filter_api_doc_urls(urls) == [
        "https://stripe.com/docs/api/charges",
        "https://stripe.com/reference/payments",
    ]


def test_parse_sitemap():
    xml = """<?xml version="1.0"?>
    <urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
      <url><loc>https://x.com/api/users</loc></url>
      <url><loc>
        https://x.com/api/orders
      </loc></url>
    </urlset>"""
    assert parse_sitemap(xml) == ["https://x.com/api/users", "https://x.com/api/orders"]


def test_parse_sitemap_rejects_html():
    assert parse_sitemap("<html><body>Not found</body></html>") == []


def test_looks_like_html():
    assert looks_like_html("<!DOCTYPE html><html>...")
    assert not looks_like_html("# llms.txt\n\n- [Docs](https://x.com)")


# ── Cache tier ───────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_cached_corpus_is_returned(engine, cache, reader):
    corpus = "x" * 500
    await cache.set(CacheKeys.discovered_docs("stripe.com"), corpus, 60)

    with patch("discovery.fetch_text", fake_fetch({})) as mock_fetch:
        result = await engine.discover("stripe.com", "https://docs.stripe.com", "Stripe")

    assert result == corpus
    mock_fetch.assert_not_called()
    reader.render.assert_not_called()


@pytest.mark.asyncio
async def test_short_cached_corpus_is_treated_as_miss(engine, cache):
    await cache.set(CacheKeys.discovered_docs("stripe.com"), "y" * 50, 60)

    with patch("discovery.fetch_text", fake_fetch({"https://stripe.com/llms-full.txt": MANIFEST})) as mock_fetch:
        result = await engine.discover("stripe.com", "https://docs.stripe.com", "Stripe")

    assert result == MANIFEST
    assert mock_fetch.call_args_list[0].args[1] == "https://stripe.com/llms-full.txt"
    # The better corpus replaces the stub
    assert await cache.get(CacheKeys.discovered_docs("stripe.com")) == MANIFEST


# ── Manifest tier ────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_manifest_skips_html_and_short_bodies(engine):
    responses = {
        "https://stripe.com/llms-full.txt": "<!doctype html><html>" + "x" * 1000,
        "https://stripe.com/llms.txt": "too short",
        "https://docs.stripe.com/llms-full.txt": MANIFEST,
    }
    with patch("discovery.fetch_text", fake_fetch(responses)):
        assert await engine.fetch_manifest("stripe.com") == MANIFEST


# ── Candidate pages ──────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_sitemap_pages_are_rendered_and_joined(engine, reader):
    sitemap = (
        "<urlset>"
        "<url><loc>https://acme.io/api/users</loc></url>"
        "<url><loc>https://acme.io/blog/hello</loc></url>"
        "<url><loc>https://acme.io/api/orders</loc></url>"
        "</urlset>"
    )
    reader.render.side_effect = [PAGE, "tiny"]

    with patch("discovery.fetch_text", fake_fetch({"https://acme.io/sitemap.xml": sitemap})):
        result = await engine.discover("acme.io", None, "Acme")

    assert result == PAGE
    rendered = [c.args[0] for c in reader.render.call_args_list]
    assert rendered == ["https://acme.io/api/users", "https://acme.io/api/orders"]


@pytest.mark.asyncio
async def test_site_map_used_when_sitemap_missing(engine, reader, mapper):
    mapper.map_site.return_value = [
        "https://docs.acme.io/reference/users",
        "https://docs.acme.io/reference/orders",
        "https://docs.acme.io/careers",
    ]
    reader.render.return_value = PAGE

    with patch("discovery.fetch_text", fake_fetch({})):
        result = await engine.discover("acme.io", "https://docs.acme.io", "Acme")

    assert result == PAGE_SEPARATOR.join([PAGE, PAGE])
    mapper.map_site.assert_awaited_once_with("https://docs.acme.io")


@pytest.mark.asyncio
async def test_site_map_loose_fallback(engine, mapper):
    mapper.map_site.return_value = ["https://acme.io/devtools", "https://acme.io/shop"]
    assert await engine._mapped_candidates("https://acme.io") == ["https://acme.io/devtools"]


@pytest.mark.asyncio
async def test_site_map_failure_is_not_fatal(engine, mapper):
    mapper.map_site.side_effect = ProviderError("firecrawl down")
    assert await engine._mapped_candidates("https://acme.io") == []


@pytest.mark.asyncio
async def test_doc_url_rendered_as_last_resort(engine, reader, cache):
    reader.render.return_value = PAGE

    with patch("discovery.fetch_text", fake_fetch({})):
        result = await engine.discover("acme.io", "https://acme.io/docs", "Acme")

    assert result == PAGE
    reader.render.assert_awaited_once()
    assert await cache.get(CacheKeys.discovered_docs("acme.io")) == PAGE


@pytest.mark.asyncio
async def test_nothing_found(engine, cache):
    with patch("discovery.fetch_text", fake_fetch({})):
        assert await engine.discover("acme.io", None, "Acme") is None
    assert await cache.get(CacheKeys.discovered_docs("acme.io")) is None


# ── Page picker ──────────────────────────────────────────────────────────────
URLS = [f"https://acme.io/api/page{i}" for i in range(1, 13)]


@pytest.mark.asyncio
async def test_pick_pages_without_llm_takes_first_eight(engine):
    assert await engine.pick_pages("Acme", URLS) == URLS[:8]


@pytest.mark.asyncio
async def test_pick_pages_uses_llm_indices(cache, reader, settings, llm):
    llm.complete_json.return_value = Ok({"indices": [12, 3, 3, 40, "x"]})
    engine = DocDiscoveryEngine(MagicMock(), cache, reader, settings, llm=llm)

    assert await engine.pick_pages("Acme", URLS) == [URLS[11], URLS[2]]


@pytest.mark.asyncio
async def test_pick_pages_llm_failure_falls_back(cache, reader, settings, llm):
    llm.complete_json.return_value = ProviderFailure("timeout")
    engine = DocDiscoveryEngine(MagicMock(), cache, reader, settings, llm=llm)

    assert await engine.pick_pages("Acme", URLS) == URLS[:8]


@pytest.mark.asyncio
async def test_pick_pages_skips_llm_for_few_candidates(cache, reader, settings, llm):
    engine = DocDiscoveryEngine(MagicMock(), cache, reader, settings, llm=llm)

    assert await engine.pick_pages("Acme", URLS[:5]) == URLS[:5]
    llm.complete_json.assert_not_called()


# ── Sub-API ids ──────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_sub_api_probes_brand_host(cache, reader, settings, mapper):
    requested = []

    def handler(request):
        requested.append(str(request.url))
        if str(request.url) == "https://docs.amazonaws.com/llms.txt":
            return httpx.Response(200, text=MANIFEST)
        return httpx.Response(404)

    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    engine = DocDiscoveryEngine(http, cache, reader, settings, mapper=mapper)

    result = await engine.discover("amazonaws.com:ec2", None, "EC2")

    assert result == MANIFEST
    assert requested[0] == "https://amazonaws.com/llms-full.txt"
    assert all(":ec2" not in url for url in requested)
    # The corpus is still cached under the sub-API's own id
    assert await cache.get(CacheKeys.discovered_docs("amazonaws.com:ec2")) == MANIFEST


@pytest.mark.asyncio
async def test_sub_api_with_nothing_published(cache, reader, settings, mapper):
    http = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(404)))
    engine = DocDiscoveryEngine(http, cache, reader, settings, mapper=mapper)

    assert await engine.discover("amazonaws.com:ec2", None, "EC2") is None
