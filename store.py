"""
Record store client: the `apis` and `api_endpoints` tables behind
Supabase's PostgREST interface, plus the `search_apis_hybrid` ranking
procedure (vector + lexical, computed server-side).
"""

import logging
from typing import Any, Optional, Protocol, Sequence

import httpx

from models import ApiRecord

logger = logging.getLogger("apiflora.store")

API_COLUMNS = "id,title,description,tldr,website,doc_url,logo"


class StoreError(Exception):
    """The record store could not be queried."""


class RecordStore(Protocol):
    async def find_by_id_or_prefix(self, api_id: str) -> list[ApiRecord]: ...

    async def filter_by_substring(self, fields: Sequence[str], terms: Sequence[str], limit: int) -> list[ApiRecord]: ...

    async def range_page(self, offset: int, limit: int) -> list[ApiRecord]: ...

    async def hybrid_rank(self, query_text: str, query_embedding: list[float], match_count: int) -> list[ApiRecord]: ...

    async def endpoints_for(self, api_ids: Sequence[str]) -> list[dict[str, Any]]: ...


def quote(value: str) -> str:
    """Quote a value for a PostgREST filter (dots, colons and commas are reserved)."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def substring_filter(fields: Sequence[str], terms: Sequence[str]) -> str:
    """OR of `field ilike *term*` across every field/term pair."""
    conditions = [
        f"{field}.ilike.{quote(f'*{term}*')}"
        for term in terms
        for field in fields
    ]
    return f"({','.join(conditions)})"


def id_or_prefix_filter(api_id: str) -> str:
    return f"(id.eq.{quote(api_id)},id.like.{quote(api_id + ':*')})"


def _to_records(rows: Any) -> list[ApiRecord]:
    if not isinstance(rows, list):
        return []
    records = []
    for row in rows:
        if isinstance(row, dict) and row.get("id") and row.get("title"):
            records.append(ApiRecord(**{k: row.get(k) for k in ApiRecord.model_fields if k in row}))
    return records


class SupabaseRecordStore:
    """PostgREST client for the API catalog."""

    def __init__(self, client: httpx.AsyncClient, url: Optional[str], key: Optional[str], timeout: float = 10):
        self._client = client
        self._base = f"{url.rstrip('/')}/rest/v1" if url else None
        self._key = key
        self.timeout = timeout

    async def _call(self, method: str, path: str, **kwargs: Any) -> Any:
        if not self._base or not self._key:
            raise StoreError("SUPABASE_URL / SUPABASE_KEY not configured")
        headers = {"apikey": self._key, "Authorization": f"Bearer {self._key}"}
        try:
            resp = await self._client.request(
                method, f"{self._base}/{path}", headers=headers, timeout=self.timeout, **kwargs
            )
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as exc:
            raise StoreError(f"{path} returned {exc.response.status_code}: {exc.response.text[:200]}") from exc
        except httpx.RequestError as exc:
            raise StoreError(f"{path} request failed: {type(exc).__name__}") from exc
        except ValueError as exc:
            raise StoreError(f"{path} returned non-JSON body") from exc

    async def find_by_id_or_prefix(self, api_id: str) -> list[ApiRecord]:
        rows = await self._call("GET", "apis", params={"select": API_COLUMNS, "or": id_or_prefix_filter(api_id)})
        return _to_records(rows)

    async def filter_by_substring(self, fields: Sequence[str], terms: Sequence[str], limit: int) -> list[ApiRecord]:
        if not terms:
            return []
        rows = await self._call(
            "GET", "apis",
            params={"select": API_COLUMNS, "or": substring_filter(fields, terms), "limit": limit},
        )
        return _to_records(rows)

    async def range_page(self, offset: int, limit: int) -> list[ApiRecord]:
        rows = await self._call(
            "GET", "apis",
            params={"select": API_COLUMNS, "order": "title.asc", "offset": offset, "limit": limit},
        )
        return _to_records(rows)

    async def hybrid_rank(self, query_text: str, query_embedding: list[float], match_count: int) -> list[ApiRecord]:
        rows = await self._call(
            "POST", "rpc/search_apis_hybrid",
            json={"query_text": query_text, "query_embedding": query_embedding, "match_count": match_count},
        )
        return _to_records(rows)

    async def endpoints_for(self, api_ids: Sequence[str]) -> list[dict[str, Any]]:
        if not api_ids:
            return []
        rows = await self._call(
            "GET", "api_endpoints",
            params={
                "select": "api_id,method,path,summary,description,section,parameters,responses,doc_url",
                "api_id": f"in.({','.join(quote(i) for i in api_ids)})",
                "order": "section.asc,method.asc,path.asc",
            },
        )
        return rows if isinstance(rows, list) else []
