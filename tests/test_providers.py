"""
Unit tests for external provider clients
"""

import json
import os
import sys
import time
from unittest.mock import AsyncMock, patch

import httpx
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from providers import (
    AlgoliaSearchClient,
    EmbeddingClient,
    ExaSearchClient,
    FirecrawlMapper,
    JinaReader,
    ProviderNotConfigured,
    ProviderResponseError,
    fetch_text,
)


def client_for(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_jina_render_truncates_and_sends_key():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, text="# Docs\n" + "x" * 100)

    reader = JinaReader(client_for(handler), "https://r.jina.ai/", api_key="jina_key")
    markdown = await reader.render("https://docs.acme.io", timeout=5, max_chars=20)

    assert len(markdown) == 20
    assert seen["url"] == "https://r.jina.ai/https://docs.acme.io"
    assert seen["auth"] == "Bearer jina_key"


@pytest.mark.asyncio
async def test_jina_render_returns_none_on_error():
    reader = JinaReader(client_for(lambda request: httpx.Response(404)), "https://r.jina.ai/")
    assert await reader.render("https://docs.acme.io", timeout=5, max_chars=100) is None


@pytest.mark.asyncio
async def test_jina_retries_timeouts():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) < 2:
            raise httpx.ReadTimeout("slow", request=request)
        return httpx.Response(200, text="# ok")

    reader = JinaReader(client_for(handler), "https://r.jina.ai/")
    with patch("asyncio.sleep", new=AsyncMock()):
        assert await reader.render("https://docs.acme.io", timeout=1, max_chars=100) == "# ok"
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_fetch_text_swallows_failures():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    assert await fetch_text(client_for(handler), "https://acme.io/llms.txt", 5) is None


@pytest.mark.asyncio
async def test_embedding_client():
    def handler(request):
        assert request.url.path == "/api/v1/embeddings"
        return httpx.Response(200, json={"data": [{"embedding": [0.5, 0.25]}]})

    client = EmbeddingClient(client_for(handler), "https://openrouter.ai/api/v1", "m", "key", 5)
    assert await client.embed("payments") == [0.5, 0.25]


@pytest.mark.asyncio
async def test_embedding_client_bad_payload():
    client = EmbeddingClient(client_for(lambda r: httpx.Response(200, json={})), "https://x", "m", "key", 5)
    with pytest.raises(ProviderResponseError):
        await client.embed("payments")


@pytest.mark.asyncio
async def test_unconfigured_clients_refuse():
    http = client_for(lambda r: httpx.Response(200))
    with pytest.raises(ProviderNotConfigured):
        await EmbeddingClient(http, "https://x", "m", None, 5).embed("q")
    with pytest.raises(ProviderNotConfigured):
        await ExaSearchClient(http, "https://api.exa.ai", None, 5).search("q", 5)
    with pytest.raises(ProviderNotConfigured):
        await FirecrawlMapper(http, "https://api.firecrawl.dev/v1", None, 5).map_site("https://x")


@pytest.mark.asyncio
async def test_exa_search_maps_results():
    def handler(request):
        assert request.headers["x-api-key"] == "exa_key"
        return httpx.Response(200, json={"results": [
            {"url": "https://duffel.com/docs", "title": "Duffel", "highlights": ["flights"]},
            {"title": "no url"},
        ]})

    results = await ExaSearchClient(client_for(handler), "https://api.exa.ai", "exa_key", 5).search("flights", 4)

    assert len(results) == 1
    assert results[0].url == "https://duffel.com/docs"
    assert results[0].highlights == ["flights"]


@pytest.mark.asyncio
async def test_firecrawl_map_accepts_string_and_object_links():
    def handler(request):
        return httpx.Response(200, json={"links": ["https://a.io/api/x", {"url": "https://a.io/api/y"}, None]})

    links = await FirecrawlMapper(client_for(handler), "https://api.firecrawl.dev/v1", "fc", 5).map_site("https://a.io")

    assert links == ["https://a.io/api/x", "https://a.io/api/y"]


@pytest.mark.asyncio
async def test_fetch_text_rejects_unroutable_url():
    def handler(request):
        raise AssertionError("no request expected")

    assert await fetch_text(client_for(handler), "https://amazonaws.com:ec2/llms.txt", 1) is None


@pytest.mark.asyncio
async def test_jina_retries_stay_within_timeout():
    calls = []

    def handler(request):
        calls.append(request)
        raise httpx.ReadTimeout("slow", request=request)

    reader = JinaReader(client_for(handler), "https://r.jina.ai/")
    started = time.monotonic()
    assert await reader.render("https://docs.acme.io", timeout=0.2, max_chars=100) is None

    # The first backoff alone is a full second
    assert time.monotonic() - started < 1
    assert len(calls) == 1


# ── Algolia ──────────────────────────────────────────────────────────────────
def test_algolia_hits_per_page_bounds():
    assert AlgoliaSearchClient.hits_per_page(5) == 40
    assert AlgoliaSearchClient.hits_per_page(20) == 80
    assert AlgoliaSearchClient.hits_per_page(50) == 200


@pytest.mark.asyncio
async def test_algolia_unconfigured_refuses():
    http = client_for(lambda r: httpx.Response(200))
    client = AlgoliaSearchClient(http, "APP", None, "apis", 8)
    assert client.configured is False
    with pytest.raises(ProviderNotConfigured):
        await client.search("payments", 10)


@pytest.mark.asyncio
async def test_algolia_search_normalizes_hits():
    seen = {}

    def handler(request):
        seen["url"] = request.url
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"hits": [
            {"objectID": "stripe.com", "title": "Stripe", "tldr": "Payments"},
            {"id": "stripe.com:connect", "objectID": "x", "title": "Stripe Connect", "logo": "l.png"},
            {"objectID": "untitled.io"},
            "junk",
        ]})

    client = AlgoliaSearchClient(client_for(handler), "APP", "search_key", "apis", 8)
    records = await client.search("payments", 10)

    assert [r.id for r in records] == ["stripe.com", "stripe.com:connect"]
    assert records[0].tldr == "Payments"
    assert records[1].logo == "l.png"
    assert seen["url"].host == "app-dsn.algolia.net"
    assert seen["url"].path == "/1/indexes/apis/query"
    assert seen["headers"]["X-Algolia-API-Key"] == "search_key"
    assert seen["headers"]["X-Algolia-Application-Id"] == "APP"
    assert seen["body"]["query"] == "payments"
    assert seen["body"]["hitsPerPage"] == 40


@pytest.mark.asyncio
async def test_algolia_http_error_is_provider_error():
    client = AlgoliaSearchClient(client_for(lambda r: httpx.Response(403)), "APP", "k", "apis", 8)
    with pytest.raises(ProviderResponseError):
        await client.search("payments", 10)
