"""
Data shapes shared by search, discovery, extraction and the tool façade.
"""

from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


# ── Records ──────────────────────────────────────────────────────────────────
class ApiRecord(BaseModel):
    """One documented API surface as stored in the `apis` table."""
    id: str
    title: str
    description: Optional[str] = None
    tldr: Optional[str] = None
    website: Optional[str] = None
    doc_url: Optional[str] = None
    logo: Optional[str] = None
    score: Optional[float] = None


class Brand(BaseModel):
    """Records sharing a brand key, aggregated for listings."""
    id: str
    title: str
    description: Optional[str] = None
    logo: Optional[str] = None
    website: Optional[str] = None
    doc_url: Optional[str] = None
    api_count: int


class DiscoveredApi(BaseModel):
    """An API found on the web but not in the store."""
    id: str
    title: str
    description: str = ""
    doc_url: str
    source: Literal["discovered"] = "discovered"


# ── Endpoints ────────────────────────────────────────────────────────────────
class EndpointParameter(BaseModel):
    name: str
    type: str = "string"
    required: bool = False
    description: Optional[str] = None
    # Free text from the model; usually query/path/header/body
    in_: str = Field(default="query", alias="in")

    model_config = {"populate_by_name": True}

    @field_validator("type", mode="before")
    @classmethod
    def _stringify_type(cls, v: Any) -> str:
        return "string" if v is None else str(v)

    @field_validator("in_", mode="before")
    @classmethod
    def _stringify_location(cls, v: Any) -> str:
        return "query" if v is None else str(v)

    @field_validator("required", mode="before")
    @classmethod
    def _coerce_required(cls, v: Any) -> bool:
        if isinstance(v, str):
            return v.strip().lower() in ("true", "yes", "required", "1")
        return bool(v)


class EndpointRecord(BaseModel):
    method: str
    path: str
    summary: Optional[str] = None
    description: Optional[str] = None
    section: Optional[str] = None
    parameters: list[EndpointParameter] = []
    responses: dict[str, dict[str, Any]] = {}

    @field_validator("method", mode="before")
    @classmethod
    def _upper_method(cls, v: Any) -> str:
        return str(v).strip().upper()

    @field_validator("parameters", mode="before")
    @classmethod
    def _drop_unnamed_parameters(cls, v: Any) -> list:
        if not isinstance(v, list):
            return []
        return [p for p in v if isinstance(p, EndpointParameter) or (isinstance(p, dict) and p.get("name"))]

    @field_validator("responses", mode="before")
    @classmethod
    def _normalize_responses(cls, v: Any) -> dict:
        if not isinstance(v, dict):
            return {}
        normalized = {}
        for status, body in v.items():
            if isinstance(body, dict):
                normalized[str(status)] = body
            else:
                normalized[str(status)] = {"description": None if body is None else str(body)}
        return normalized

    @property
    def key(self) -> tuple[str, str]:
        return (self.method, self.path)

    def dump(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)

    def index_entry(self) -> dict[str, Any]:
        return {"method": self.method, "path": self.path, "summary": self.summary}


# ── Evaluation ───────────────────────────────────────────────────────────────
class AuthInfo(BaseModel):
    method: str = "Unknown"
    details: str = ""


class PricingInfo(BaseModel):
    model: str = "Unknown"
    free_tier: bool = False
    details: str = ""


class RateLimitInfo(BaseModel):
    description: str = "Unknown"
    recommendation: str = ""


class ApiEvaluation(BaseModel):
    """Integration guide blended from docs and model background knowledge."""
    purpose: str = ""
    auth: AuthInfo = Field(default_factory=AuthInfo)
    pricing: PricingInfo = Field(default_factory=PricingInfo)
    rate_limits: RateLimitInfo = Field(default_factory=RateLimitInfo)
    sdks: list[str] = []
    gotchas: list[str] = []
    best_for: str = ""
    alternatives: list[str] = []

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        # Models answer "null" for unknown fields; fall back to defaults instead
        if not isinstance(data, dict):
            return data
        cleaned = {}
        for key, value in data.items():
            if value is None:
                continue
            if isinstance(value, dict):
                value = {k: v for k, v in value.items() if v is not None}
            cleaned[key] = value
        return cleaned
