"""
Runtime configuration for ApiFlora.

Every external provider is optional: a missing key means that tier of the
search or discovery chain is skipped, never an error.
"""

from typing import Optional

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()

DAY = 60 * 60 * 24


class Settings(BaseSettings):
    """Centralized configuration using Pydantic BaseSettings."""

    # Server
    port: int = 8000
    env: str = "development"
    public_url: str = "https://apiflora.com"

    # CORS - comma-separated list of allowed origins
    allowed_origins: str = "*"

    # Record store (Supabase / PostgREST)
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None

    # Cache - Redis when set, in-process otherwise
    redis_url: Optional[str] = None
    cache_max_entries: int = 2000

    # LLM (structured output)
    groq_api_key: Optional[str] = None
    groq_model: str = "llama-3.3-70b-versatile"

    # Embeddings (OpenAI-compatible endpoint)
    embedding_api_key: Optional[str] = None
    embedding_base_url: str = "https://openrouter.ai/api/v1"
    embedding_model: str = "openai/text-embedding-3-small"

    # Web search, page mapping, markdown rendering
    exa_api_key: Optional[str] = None
    exa_base_url: str = "https://api.exa.ai"
    firecrawl_api_key: Optional[str] = None
    firecrawl_base_url: str = "https://api.firecrawl.dev/v1"
    jina_api_key: Optional[str] = None
    jina_prefix: str = "https://r.jina.ai/"

    # Hosted text index (Algolia) - tried first by the listing search
    algolia_app_id: Optional[str] = None
    algolia_search_api_key: Optional[str] = None
    algolia_index_name: Optional[str] = None

    # Timeouts (seconds)
    store_timeout: int = 10
    text_index_timeout: int = 8
    embedding_timeout: int = 12
    web_search_timeout: int = 20
    discovery_rank_timeout: int = 30
    manifest_timeout: int = 5
    sitemap_timeout: int = 8
    page_map_timeout: int = 15
    page_picker_timeout: int = 15
    page_render_timeout: int = 20
    live_docs_timeout: int = 30
    extraction_timeout: int = 60
    evaluation_timeout: int = 30

    # Search
    min_hybrid_score: float = 0.04
    hybrid_match_count: int = 120
    lexical_row_limit: int = 200
    max_search_results: int = 50
    listing_page_size: int = 24

    # Doc discovery
    min_cached_docs_chars: int = 100
    min_manifest_chars: int = 500
    min_page_chars: int = 200
    max_doc_pages: int = 8
    page_render_max_chars: int = 30_000
    live_docs_max_chars: int = 25_000

    # LLM budgets
    extraction_max_input_chars: int = 80_000
    evaluation_max_input_chars: int = 40_000
    extraction_max_tokens: int = 8000
    evaluation_max_tokens: int = 2000
    discovery_rank_max_tokens: int = 1500
    page_picker_max_tokens: int = 500

    # Cache TTLs (seconds)
    cache_ttl: int = 14 * DAY
    discovery_cache_ttl: int = DAY
    negative_discovery_ttl: int = 600

    # Rate Limiting
    rate_limit_search: str = "60/minute"
    rate_limit_detail: str = "20/minute"

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    @property
    def is_development(self) -> bool:
        return self.env.lower() in ("development", "dev", "local")

    @property
    def cors_origins(self) -> list[str]:
        """Parse comma-separated origins."""
        if self.allowed_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.allowed_origins.split(",")]

    @property
    def llm_configured(self) -> bool:
        return bool(self.groq_api_key)

    @property
    def embeddings_configured(self) -> bool:
        return bool(self.embedding_api_key)

    @property
    def text_index_configured(self) -> bool:
        return bool(self.algolia_app_id and self.algolia_search_api_key and self.algolia_index_name)

    @property
    def store_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)
