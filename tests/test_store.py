"""
Unit tests for the PostgREST record store client
"""

import json
import os
import sys

import httpx
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from store import StoreError, SupabaseRecordStore, id_or_prefix_filter, quote, substring_filter


def make_store(handler, url="https://proj.supabase.co", key="anon"):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SupabaseRecordStore(client, url, key)


def test_quote_escapes_reserved_characters():
    assert quote("stripe.com") == '"stripe.com"'
    assert quote('a"b') == '"a\\"b"'


def test_substring_filter_covers_every_field_and_term():
    f = substring_filter(["title", "id"], ["sms", "voice"])
    assert f == '(title.ilike."*sms*",id.ilike."*sms*",title.ilike."*voice*",id.ilike."*voice*")'


def test_id_or_prefix_filter():
    assert id_or_prefix_filter("amazonaws.com") == '(id.eq."amazonaws.com",id.like."amazonaws.com:*")'


@pytest.mark.asyncio
async def test_unconfigured_store_raises():
    store = make_store(lambda request: httpx.Response(200, json=[]), url=None, key=None)
    with pytest.raises(StoreError):
        await store.range_page(0, 10)


@pytest.mark.asyncio
async def test_range_page_parses_rows_and_skips_incomplete_ones():
    seen = {}

    def handler(request):
        seen["url"] = request.url
        seen["apikey"] = request.headers["apikey"]
        return httpx.Response(200, json=[
            {"id": "stripe.com", "title": "Stripe", "tldr": "Payments"},
            {"id": "untitled.io"},
        ])

    records = await make_store(handler).range_page(48, 24)

    assert [r.id for r in records] == ["stripe.com"]
    assert seen["url"].path == "/rest/v1/apis"
    assert seen["url"].params["offset"] == "48"
    assert seen["url"].params["order"] == "title.asc"
    assert seen["apikey"] == "anon"


@pytest.mark.asyncio
async def test_hybrid_rank_calls_procedure():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=[{"id": "twilio.com", "title": "Twilio", "score": 0.42}])

    records = await make_store(handler).hybrid_rank("sms", [0.1, 0.2], 120)

    assert seen["path"] == "/rest/v1/rpc/search_apis_hybrid"
    assert seen["body"] == {"query_text": "sms", "query_embedding": [0.1, 0.2], "match_count": 120}
    assert records[0].score == 0.42


@pytest.mark.asyncio
async def test_http_error_becomes_store_error():
    store = make_store(lambda request: httpx.Response(503, text="maintenance"))
    with pytest.raises(StoreError, match="503"):
        await store.find_by_id_or_prefix("stripe.com")


@pytest.mark.asyncio
async def test_endpoints_for_skips_request_without_ids():
    def handler(request):
        raise AssertionError("no request expected")

    assert await make_store(handler).endpoints_for([]) == []
