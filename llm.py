"""
Single-purpose structured-output calls to Groq.

Each call is one fixed prompt in, one JSON document out. Results are
tagged so callers can tell a model that answered badly (ParseFailure)
from one that did not answer at all (ProviderFailure).
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional, Union

from groq import Groq

logger = logging.getLogger("apiflora.llm")


@dataclass
class Ok:
    data: Any


@dataclass
class ParseFailure:
    raw: str


@dataclass
class ProviderFailure:
    reason: str


LLMResult = Union[Ok, ParseFailure, ProviderFailure]


def parse_json_loosely(raw: str) -> Optional[Any]:
    """
    Parse model output as JSON. Strips markdown fences, then falls back to
    the outermost {...} or [...] span when the model wrapped the JSON in
    prose. Returns None when nothing parses.
    """
    text = raw.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[-1]
    if text.endswith("```"):
        text = text.rsplit("```", 1)[0]
    text = text.strip()

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    for opener, closer in (("{", "}"), ("[", "]")):
        start = text.find(opener)
        end = text.rfind(closer)
        if start != -1 and end > start:
            try:
                return json.loads(text[start:end + 1])
            except json.JSONDecodeError:
                continue
    return None


class StructuredLLM:
    """Groq chat completions constrained to JSON output."""

    def __init__(self, api_key: Optional[str], model: str):
        self.model = model
        self._client: Optional[Groq] = Groq(api_key=api_key) if api_key else None

    @property
    def configured(self) -> bool:
        return self._client is not None

    async def complete_json(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        max_tokens: int = 2000,
        temperature: float = 0.0,
        timeout: float = 30,
    ) -> LLMResult:
        if self._client is None:
            return ProviderFailure("GROQ_API_KEY not set")

        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        def _sync_call():
            return self._client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                response_format={"type": "json_object"},
                timeout=timeout,
            )

        try:
            chat = await asyncio.wait_for(asyncio.to_thread(_sync_call), timeout=timeout + 5)
        except asyncio.TimeoutError:
            logger.warning("Groq call timed out after %ss", timeout)
            return ProviderFailure("timeout")
        except Exception as exc:
            logger.error("Groq call failed: %s", exc)
            return ProviderFailure(str(exc))

        raw = chat.choices[0].message.content if chat.choices else None
        if not raw:
            return ProviderFailure("empty completion")

        parsed = parse_json_loosely(raw)
        if parsed is None:
            logger.warning("Groq output was not valid JSON (%d chars)", len(raw))
            return ParseFailure(raw)
        return Ok(parsed)
