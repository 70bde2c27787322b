"""
API evaluation: a compact integration guide (auth, pricing, limits, SDKs,
gotchas, alternatives) blended from the docs and the model's own
knowledge of the API. Cached independently of endpoint extraction.
"""

import json
import logging
from typing import Optional

from pydantic import ValidationError

from cache import Cache, CacheKeys, best_effort, cached_get
from config import Settings
from discovery import DocDiscoveryEngine
from llm import Ok, StructuredLLM
from models import ApiEvaluation

logger = logging.getLogger("apiflora.evaluation")

EVALUATION_PROMPT = """You are an API integration expert. Analyze this API documentation AND use your training knowledge about "{api_name}" ({api_id}) to produce a concise integration guide for a coding agent.

The documentation below may be incomplete. Supplement with what you know about this API from your training data - SDKs, pricing, common gotchas, rate limits, etc.

Return JSON:
{{
  "purpose": "One sentence: what this API does",
  "auth": {{ "method": "e.g. Bearer token, API key, OAuth2", "details": "How to authenticate, where to get keys" }},
  "pricing": {{ "model": "e.g. per-request, per-seat, freemium", "free_tier": true/false, "details": "Key pricing info for a developer deciding whether to use this" }},
  "rate_limits": {{ "description": "Specific limits if known, otherwise 'Unknown'", "recommendation": "Concrete advice: e.g. 'Add 100ms delay between requests' or 'Use exponential backoff'" }},
  "sdks": ["List official SDK languages/packages, e.g. '@duffel/api (Node.js)', 'duffel-api (Python)'"],
  "gotchas": ["Actionable warnings a developer MUST know before implementing. e.g. 'Offers expire after 30 minutes - cache and refresh', 'Sandbox and production use different API keys', 'Pagination is cursor-based, not offset-based'. Be specific and practical."],
  "best_for": "One sentence: ideal use case",
  "alternatives": ["2-4 competing APIs by domain, e.g. 'amadeus.com', 'kiwi.com'"]
}}

Be concise but specific. Every gotcha should be actionable. Every field should help a coding agent make better implementation decisions.

API: {api_name} ({api_id})
Documentation:
{markdown}"""


class ApiEvaluator:
    def __init__(self, discovery: DocDiscoveryEngine, llm: StructuredLLM, cache: Cache, settings: Settings):
        self.discovery = discovery
        self.llm = llm
        self.cache = cache
        self.settings = settings

    async def _cached(self, api_id: str) -> Optional[ApiEvaluation]:
        raw = await cached_get(self.cache, CacheKeys.evaluation(api_id))
        if not raw:
            return None
        try:
            return ApiEvaluation(**json.loads(raw))
        except (ValueError, TypeError, ValidationError):
            logger.warning("Ignoring malformed evaluation cache entry for %s", api_id)
            return None

    async def evaluate(
        self, api_id: str, api_name: str, markdown: Optional[str], doc_url: Optional[str]
    ) -> Optional[ApiEvaluation]:
        cached = await self._cached(api_id)
        if cached is not None:
            return cached

        if not self.llm.configured:
            return None

        md = markdown or await self.discovery.discover(api_id, doc_url, api_name)
        if not md:
            return None

        outcome = await self.llm.complete_json(
            EVALUATION_PROMPT.format(
                api_name=api_name,
                api_id=api_id,
                markdown=md[:self.settings.evaluation_max_input_chars],
            ),
            max_tokens=self.settings.evaluation_max_tokens,
            timeout=self.settings.evaluation_timeout,
        )
        if not isinstance(outcome, Ok) or not isinstance(outcome.data, dict):
            logger.warning("Evaluation of %s produced no usable JSON", api_id)
            return None

        try:
            evaluation = ApiEvaluation(**outcome.data)
        except ValidationError as exc:
            logger.warning("Evaluation of %s failed validation: %s", api_id, exc)
            return None

        await best_effort(
            self.cache.set(CacheKeys.evaluation(api_id), evaluation.model_dump_json(), self.settings.cache_ttl),
            f"write evaluation:{api_id}",
        )
        return evaluation
