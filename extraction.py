"""
Endpoint extraction: discovered documentation markdown → EndpointRecords
via one structured LLM call. Non-empty results are cached; empty ones are
not, so a later call with better docs gets another try.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional, Union

from pydantic import ValidationError

from cache import Cache, CacheKeys, best_effort, cached_get
from config import Settings
from discovery import DocDiscoveryEngine
from llm import Ok, ParseFailure, ProviderFailure, StructuredLLM
from models import EndpointRecord

logger = logging.getLogger("apiflora.extraction")

ExtractionResult = Union[Ok, ParseFailure, ProviderFailure]

EXTRACTION_PROMPT = """Extract ALL API endpoints from this documentation. The documentation may come from multiple pages separated by "---". For each endpoint provide:
- method: HTTP method (GET, POST, PUT, DELETE, PATCH)
- path: the endpoint path (e.g. /v1/payments/{{id}})
- summary: short name/title (e.g. "Create Payment")
- description: one-sentence description
- section: the category/group this endpoint belongs to (e.g. "Payments", "Users", "Webhooks")
- parameters: array of {{name, type, required, description, in}} objects
- responses: object with status codes as keys and {{description}} as values

If the page has NO actual API endpoints listed, return {{"endpoints": []}}. Do not invent endpoints.
Deduplicate - if the same endpoint appears on multiple pages, include it only once.

Return ONLY valid JSON: {{"endpoints": [...]}}

API: {api_name}
Documentation:
{markdown}"""


@dataclass
class ExtractionOutcome:
    endpoints: list[EndpointRecord]
    # None when served from cache; callers needing the corpus re-run discovery
    markdown: Optional[str]


def merge_endpoints(endpoints: list[EndpointRecord]) -> list[EndpointRecord]:
    """
    Collapse entries sharing (method, path). The first occurrence keeps its
    scalar fields, gaps are filled from later duplicates, parameters are
    unioned by (in, name) and responses merged by status code.
    """
    merged: dict[tuple[str, str], EndpointRecord] = {}
    for ep in endpoints:
        existing = merged.get(ep.key)
        if existing is None:
            merged[ep.key] = ep.model_copy(deep=True)
            continue

        for attr in ("summary", "description", "section"):
            if not getattr(existing, attr) and getattr(ep, attr):
                setattr(existing, attr, getattr(ep, attr))

        seen = {(p.in_, p.name) for p in existing.parameters}
        for param in ep.parameters:
            if (param.in_, param.name) not in seen:
                existing.parameters.append(param)
                seen.add((param.in_, param.name))

        for status, body in ep.responses.items():
            existing.responses.setdefault(status, body)
    return list(merged.values())


def coerce_endpoints(payload: Any) -> list[EndpointRecord]:
    """Turn model output into EndpointRecords, dropping entries without method or path."""
    if isinstance(payload, dict):
        payload = payload.get("endpoints")
    if not isinstance(payload, list):
        return []

    endpoints = []
    for item in payload:
        if not isinstance(item, dict) or not item.get("method") or not item.get("path"):
            continue
        try:
            endpoints.append(EndpointRecord(
                method=item["method"],
                path=str(item["path"]),
                summary=item.get("summary"),
                description=item.get("description"),
                section=item.get("section"),
                parameters=item.get("parameters") or [],
                responses=item.get("responses") or {},
            ))
        except ValidationError as exc:
            logger.debug("Dropping malformed endpoint %s %s: %s", item.get("method"), item.get("path"), exc)
    return endpoints


class EndpointExtractor:
    def __init__(self, discovery: DocDiscoveryEngine, llm: StructuredLLM, cache: Cache, settings: Settings):
        self.discovery = discovery
        self.llm = llm
        self.cache = cache
        self.settings = settings

    async def _cached(self, api_id: str) -> list[EndpointRecord]:
        raw = await cached_get(self.cache, CacheKeys.extracted_endpoints(api_id))
        if not raw:
            return []
        try:
            return [EndpointRecord(**item) for item in json.loads(raw)]
        except (ValueError, TypeError, ValidationError):
            logger.warning("Ignoring malformed endpoint cache entry for %s", api_id)
            return []

    async def extract_from_markdown(self, markdown: str, api_name: str) -> ExtractionResult:
        if not self.llm.configured:
            return ProviderFailure("llm not configured")

        truncated = markdown[:self.settings.extraction_max_input_chars]
        outcome = await self.llm.complete_json(
            EXTRACTION_PROMPT.format(api_name=api_name, markdown=truncated),
            max_tokens=self.settings.extraction_max_tokens,
            timeout=self.settings.extraction_timeout,
        )
        if not isinstance(outcome, Ok):
            return outcome
        return Ok(merge_endpoints(coerce_endpoints(outcome.data)))

    async def extract(self, api_id: str, doc_url: Optional[str], api_name: str) -> ExtractionOutcome:
        cached = await self._cached(api_id)
        if cached:
            return ExtractionOutcome(endpoints=cached, markdown=None)

        markdown = await self.discovery.discover(api_id, doc_url, api_name)
        if not markdown:
            return ExtractionOutcome(endpoints=[], markdown=None)

        result = await self.extract_from_markdown(markdown, api_name)
        if isinstance(result, ParseFailure):
            logger.warning("Endpoint extraction for %s returned unparseable output", api_id)
            return ExtractionOutcome(endpoints=[], markdown=markdown)
        if isinstance(result, ProviderFailure):
            logger.warning("Endpoint extraction for %s failed: %s", api_id, result.reason)
            return ExtractionOutcome(endpoints=[], markdown=markdown)

        endpoints: list[EndpointRecord] = result.data
        logger.info("Extracted %d endpoints for %s", len(endpoints), api_id)
        if endpoints:
            await best_effort(
                self.cache.set(
                    CacheKeys.extracted_endpoints(api_id),
                    json.dumps([ep.dump() for ep in endpoints]),
                    self.settings.cache_ttl,
                ),
                f"write extractedEndpoints:{api_id}",
            )
        return ExtractionOutcome(endpoints=endpoints, markdown=markdown)
