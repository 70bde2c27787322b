"""
Unit tests for endpoint extraction
"""

import json
import os
import sys
from unittest.mock import AsyncMock, MagicMock

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from cache import CacheKeys
from extraction import EndpointExtractor, coerce_endpoints, merge_endpoints
from llm import Ok, ParseFailure, ProviderFailure
from models import EndpointRecord

DOCS = "## Users\n\nGET /v1/users lists users.\n\nPOST /v1/users creates one."


@pytest.fixture
def discovery():
    mock_discovery = MagicMock()
    mock_discovery.discover = AsyncMock(return_value=DOCS)
    return mock_discovery


@pytest.fixture
def extractor(discovery, llm, cache, settings):
    return EndpointExtractor(discovery, llm, cache, settings)


# ── merge / coerce ───────────────────────────────────────────────────────────
def test_duplicates_merge_on_method_and_path():
    endpoints = coerce_endpoints({"endpoints": [
        {
            "method": "get", "path": "/v1/users", "summary": "List users",
            "parameters": [{"name": "limit", "type": "integer", "in": "query"}],
            "responses": {"200": {"description": "OK"}},
        },
        {"method": "POST", "path": "/v1/users", "summary": "Create user"},
        {
            "method": "GET", "path": "/v1/users", "summary": "Users (page 2)", "section": "Users",
            "parameters": [
                {"name": "limit", "type": "integer", "in": "query"},
                {"name": "cursor", "in": "query"},
            ],
            "responses": {"200": {"description": "dup"}, 401: "Unauthorized"},
        },
    ]})

    merged = merge_endpoints(endpoints)

    assert [ep.key for ep in merged] == [("GET", "/v1/users"), ("POST", "/v1/users")]
    users = merged[0]
    assert users.summary == "List users"
    assert users.section == "Users"
    assert [p.name for p in users.parameters] == ["limit", "cursor"]
    assert users.responses == {"200": {"description": "OK"}, "401": {"description": "Unauthorized"}}


def test_coerce_drops_incomplete_entries():
    endpoints = coerce_endpoints({"endpoints": [
        {"method": "GET"},
        {"path": "/orphan"},
        "GET /text",
        {"method": "DELETE", "path": "/v1/users/{id}", "parameters": [{"type": "string"}, {"name": "id", "in": "path", "required": "true"}]},
    ]})

    assert len(endpoints) == 1
    ep = endpoints[0]
    assert ep.method == "DELETE"
    assert [p.name for p in ep.parameters] == ["id"]
    assert ep.parameters[0].required is True
    assert ep.dump()["parameters"][0]["in"] == "path"


def test_coerce_accepts_unexpected_shapes():
    assert coerce_endpoints(None) == []
    assert coerce_endpoints({"endpoints": "none"}) == []
    assert len(coerce_endpoints([{"method": "GET", "path": "/a"}])) == 1


# ── EndpointExtractor ────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_extract_caches_non_empty_results(extractor, llm, cache):
    llm.complete_json.return_value = Ok({"endpoints": [
        {"method": "GET", "path": "/v1/users", "summary": "List users"},
    ]})

    outcome = await extractor.extract("acme.io", "https://acme.io/docs", "Acme")

    assert [ep.key for ep in outcome.endpoints] == [("GET", "/v1/users")]
    assert outcome.markdown == DOCS
    cached = json.loads(await cache.get(CacheKeys.extracted_endpoints("acme.io")))
    assert cached[0]["path"] == "/v1/users"


@pytest.mark.asyncio
async def test_cache_hit_returns_no_markdown(extractor, discovery, llm, cache):
    ep = EndpointRecord(method="GET", path="/v1/ping")
    await cache.set(CacheKeys.extracted_endpoints("acme.io"), json.dumps([ep.dump()]), 60)

    outcome = await extractor.extract("acme.io", "https://acme.io/docs", "Acme")

    assert outcome.endpoints[0].key == ("GET", "/v1/ping")
    assert outcome.markdown is None
    discovery.discover.assert_not_called()
    llm.complete_json.assert_not_called()


@pytest.mark.asyncio
async def test_empty_result_is_not_cached_and_retry_succeeds(extractor, llm, cache):
    llm.complete_json.return_value = Ok({"endpoints": []})

    first = await extractor.extract("acme.io", "https://acme.io/docs", "Acme")

    assert first.endpoints == []
    assert await cache.get(CacheKeys.extracted_endpoints("acme.io")) is None

    llm.complete_json.return_value = Ok({"endpoints": [{"method": "GET", "path": "/v1/users"}]})
    second = await extractor.extract("acme.io", "https://acme.io/docs", "Acme")

    assert len(second.endpoints) == 1
    assert llm.complete_json.await_count == 2


@pytest.mark.asyncio
async def test_parse_failure_yields_empty_list(extractor, llm, cache):
    llm.complete_json.return_value = ParseFailure("Sure! Here are the endpoints...")

    outcome = await extractor.extract("acme.io", "https://acme.io/docs", "Acme")

    assert outcome.endpoints == []
    assert outcome.markdown == DOCS
    assert await cache.get(CacheKeys.extracted_endpoints("acme.io")) is None


@pytest.mark.asyncio
async def test_no_docs_means_no_llm_call(extractor, discovery, llm):
    discovery.discover.return_value = None

    outcome = await extractor.extract("acme.io", None, "Acme")

    assert outcome.endpoints == []
    assert outcome.markdown is None
    llm.complete_json.assert_not_called()


@pytest.mark.asyncio
async def test_extract_from_markdown_truncates_input(extractor, llm, settings):
    llm.complete_json.return_value = Ok({"endpoints": []})

    await extractor.extract_from_markdown("z" * (settings.extraction_max_input_chars + 500), "Acme")

    prompt = llm.complete_json.call_args.args[0]
    assert prompt.count("z") == settings.extraction_max_input_chars
    assert llm.complete_json.call_args.kwargs["max_tokens"] == settings.extraction_max_tokens


@pytest.mark.asyncio
async def test_extract_from_markdown_without_llm(discovery, cache, settings):
    llm = MagicMock()
    llm.configured = False
    extractor = EndpointExtractor(discovery, llm, cache, settings)

    assert isinstance(await extractor.extract_from_markdown(DOCS, "Acme"), ProviderFailure)
