"""
ApiFlora — API documentation search for humans and AI agents.
Stack: FastAPI + Supabase (catalog) + Jina Reader (scraping) + Groq (extraction).

Capabilities:
- /api/apis        → brand listing and catalog search for the web UI
- /api/brand/{id}  → stored detail for one brand
- /api/search      → hybrid search with web discovery fallback
- /api/mcp         → MCP tools: search_apis, get_api_detail, get_live_docs
- /llms.txt        → plain-text index for crawlers and agents
"""

import json
import logging
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from branding import brand_key_of, brand_page, group_by_brand
from cache import Cache, RedisCache, build_cache
from config import Settings
from discovery import DocDiscoveryEngine
from evaluation import ApiEvaluator
from extraction import EndpointExtractor
from llm import StructuredLLM
from providers import AlgoliaSearchClient, EmbeddingClient, ExaSearchClient, FirecrawlMapper, JinaReader
from search import HybridSearchEngine
from store import RecordStore, StoreError, SupabaseRecordStore
from tools import SERVER_NAME, SERVER_VERSION, TOOLS, ToolFacade, handle_request, rpc_error

# ── Bootstrap ────────────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s"
)
logger = logging.getLogger("apiflora")

settings = Settings()


# ── Services ─────────────────────────────────────────────────────────────────
@dataclass
class Services:
    """Collaborators for one running app, built in the lifespan."""
    settings: Settings
    store: RecordStore
    cache: Cache
    search: HybridSearchEngine
    tools: ToolFacade
    http: Optional[httpx.AsyncClient] = None

    async def aclose(self) -> None:
        if isinstance(self.cache, RedisCache):
            await self.cache.close()
        if self.http is not None:
            await self.http.aclose()


def build_services(cfg: Settings) -> Services:
    http = httpx.AsyncClient(
        timeout=httpx.Timeout(cfg.page_render_timeout),
        limits=httpx.Limits(max_keepalive_connections=10, max_connections=20),
        headers={"User-Agent": f"{SERVER_NAME}/{SERVER_VERSION}"},
    )
    cache = build_cache(cfg.redis_url, cfg.cache_ttl, cfg.cache_max_entries)
    store = SupabaseRecordStore(http, cfg.supabase_url, cfg.supabase_key, cfg.store_timeout)
    llm = StructuredLLM(cfg.groq_api_key, cfg.groq_model)
    reader = JinaReader(http, cfg.jina_prefix, cfg.jina_api_key)

    search_engine = HybridSearchEngine(
        store, cache, cfg,
        embeddings=EmbeddingClient(http, cfg.embedding_base_url, cfg.embedding_model,
                                   cfg.embedding_api_key, cfg.embedding_timeout),
        llm=llm,
        web_search=ExaSearchClient(http, cfg.exa_base_url, cfg.exa_api_key, cfg.web_search_timeout),
        text_index=AlgoliaSearchClient(http, cfg.algolia_app_id, cfg.algolia_search_api_key,
                                       cfg.algolia_index_name, cfg.text_index_timeout),
    )
    discovery = DocDiscoveryEngine(
        http, cache, reader, cfg,
        mapper=FirecrawlMapper(http, cfg.firecrawl_base_url, cfg.firecrawl_api_key, cfg.page_map_timeout),
        llm=llm,
    )
    tools = ToolFacade(
        store,
        search_engine,
        EndpointExtractor(discovery, llm, cache, cfg),
        ApiEvaluator(discovery, llm, cache, cfg),
        reader,
        cache,
        cfg,
    )
    return Services(settings=cfg, store=store, cache=cache, search=search_engine, tools=tools, http=http)


def get_services(request: Request) -> Services:
    return request.app.state.services


# ── Lifespan ─────────────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Startup and shutdown lifecycle."""
    logger.info("──────────────────────────────────────────")
    logger.info("  ApiFlora v%s starting up", SERVER_VERSION)
    logger.info("  Environment: %s", settings.env)
    logger.info("  CORS Origins: %s", settings.cors_origins)
    logger.info("  Store: %s", "✅ configured" if settings.store_configured else "❌ SUPABASE_URL/SUPABASE_KEY not set")
    logger.info("  Cache: %s", "redis" if settings.redis_url else "in-process")
    logger.info("  Text index: %s", "✅ algolia" if settings.text_index_configured else "❌ not set (listing uses the store)")
    logger.info("  GROQ_API_KEY: %s", "✅ configured" if settings.llm_configured else "❌ not set (extraction disabled)")
    logger.info("  Embeddings: %s", "✅ configured" if settings.embeddings_configured else "❌ not set (lexical search only)")
    logger.info("  EXA_API_KEY: %s", "✅ configured" if settings.exa_api_key else "❌ not set (web discovery disabled)")
    logger.info("  FIRECRAWL_API_KEY: %s", "✅ configured" if settings.firecrawl_api_key else "❌ not set (site mapping disabled)")
    logger.info("  Min hybrid score: %.2f", settings.min_hybrid_score)
    logger.info("──────────────────────────────────────────")

    application.state.services = build_services(settings)

    yield  # ← app is running

    await application.state.services.aclose()
    logger.info("HTTP client closed")


# ── FastAPI App Setup ────────────────────────────────────────────────────────
app = FastAPI(
    title="ApiFlora",
    version=SERVER_VERSION,
    description=(
        "API documentation search for humans and AI agents. "
        "Search the catalog, extract live endpoint references from any API's docs, "
        "and read documentation as markdown. Supports MCP discovery."
    ),
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    openapi_tags=[
        {"name": "catalog", "description": "Brand listing and catalog search"},
        {"name": "search", "description": "Hybrid search with web discovery"},
        {"name": "mcp", "description": "Model Context Protocol tools"},
        {"name": "discovery", "description": "Agent self-discovery endpoints"},
        {"name": "health", "description": "Service health monitoring"},
    ],
)

# Rate limiter
limiter = Limiter(key_func=get_remote_address)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)  # type: ignore

# Gzip compression for responses > 1KB
app.add_middleware(GZipMiddleware, minimum_size=1000)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_origins != ["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
)


# ── Exception Handlers ───────────────────────────────────────────────────────
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Standardized error response format."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": "request_failed",
            "detail": exc.detail,
            "code": f"ERR_{exc.status_code}"
        }
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    """Handle validation errors."""
    return JSONResponse(
        status_code=400,
        content={
            "error": "validation_error",
            "detail": str(exc),
            "code": "ERR_400"
        }
    )


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    """The catalog is unreachable; nothing downstream can compensate."""
    logger.error("Store unavailable: %s", exc)
    return JSONResponse(
        status_code=500,
        content={
            "error": "store_unavailable",
            "detail": "The API catalog is temporarily unavailable.",
            "code": "ERR_500"
        }
    )


# ── Request timing middleware ────────────────────────────────────────────────
@app.middleware("http")
async def add_timing_and_logging(request: Request, call_next):
    """Add response time tracking and a request ID."""
    start = time.time()

    request_id = request.headers.get("X-Request-ID", uuid.uuid4().hex[:12])
    request.state.request_id = request_id

    logger.info(
        "[%s] %s %s from %s",
        request_id,
        request.method,
        request.url.path,
        request.client.host if request.client else "unknown",
    )

    response = await call_next(request)

    elapsed = round(time.time() - start, 3)
    response.headers["X-Response-Time"] = f"{elapsed}s"
    response.headers["X-Request-ID"] = request_id

    logger.info(
        "[%s] %s %s → %s (%ss)",
        request_id,
        request.method,
        request.url.path,
        response.status_code,
        elapsed,
    )

    return response


# ── Routes ───────────────────────────────────────────────────────────────────
@app.get("/", include_in_schema=False)
async def root():
    return {"service": SERVER_NAME, "version": SERVER_VERSION, "docs": "/docs", "mcp": "/api/mcp"}


@app.get("/health", tags=["health"])
async def health(services: Services = Depends(get_services)):
    """Health check for uptime monitors."""
    cfg = services.settings
    return {
        "status": "healthy",
        "service": SERVER_NAME,
        "version": SERVER_VERSION,
        "environment": cfg.env,
        "providers": {
            "store": cfg.store_configured,
            "llm": cfg.llm_configured,
            "embeddings": cfg.embeddings_configured,
            "web_search": bool(cfg.exa_api_key),
            "site_map": bool(cfg.firecrawl_api_key),
            "text_index": cfg.text_index_configured,
        },
        "cache": services.cache.stats(),
    }


@app.get("/api/apis", tags=["catalog"])
@limiter.limit(settings.rate_limit_search)
async def list_apis(
    request: Request,
    q: str = "",
    page: int = 1,
    offset: Optional[int] = Query(None, ge=0),
    services: Services = Depends(get_services),
):
    """
    Brand listing for the web UI.

    With `q`: catalog search (text index, then hybrid, then lexical),
    grouped by brand.
    Without: one page of the unfiltered catalog, grouped by brand, with
    the row offset of the next page in `next_offset`.
    """
    query = q.strip()
    page_size = services.settings.listing_page_size

    if query:
        source, records = await services.search.listing_records(query, services.settings.max_search_results)
        brands = group_by_brand(records)[:services.settings.max_search_results]
        logger.info("Listing search '%s' → %d brands (%s)", query, len(brands), source)
        return {"brands": [b.model_dump() for b in brands], "count": len(brands), "source": source}

    # `offset` continues exactly where the previous page stopped; `page`
    # alone assumes one row per brand and may repeat a brand at a boundary
    start = offset if offset is not None else (max(1, page) - 1) * page_size
    window = page_size * 5
    records = await services.store.range_page(start, window)
    brands, used = brand_page(records, page_size)
    more = used < len(records) or len(records) == window
    return {
        "brands": [b.model_dump() for b in brands],
        "count": len(brands),
        "next_offset": start + used if more else None,
    }


@app.get("/api/brand/{brand_id}", tags=["catalog"])
async def brand_detail(brand_id: str, services: Services = Depends(get_services)):
    """Stored detail for one brand: its records and pre-extracted endpoints."""
    records = await services.store.find_by_id_or_prefix(brand_id)
    if not records:
        raise HTTPException(status_code=404, detail=f'API "{brand_id}" not found.')

    primary = next((r for r in records if r.id == brand_id), records[0])
    endpoints = await services.store.endpoints_for([r.id for r in records])

    sections: dict[str, list[dict]] = {}
    for ep in endpoints:
        sections.setdefault(ep.get("section") or "General", []).append({
            "method": ep.get("method"),
            "path": ep.get("path"),
            "summary": ep.get("summary"),
            "description": ep.get("description"),
            "parameters": ep.get("parameters"),
            "responses": ep.get("responses"),
            "doc_url": ep.get("doc_url"),
        })

    body = {
        "id": primary.id,
        "title": primary.title,
        "tldr": primary.tldr or primary.description,
        "website": primary.website,
        "doc_url": next((r.doc_url for r in records if r.doc_url), None) or primary.website,
        "logo": next((r.logo for r in records if r.logo), None),
        "endpoint_count": len(endpoints),
        "sections": sections,
    }
    return JSONResponse(body, headers={"Cache-Control": "public, max-age=300"})


@app.get("/api/search", tags=["search"])
@limiter.limit(settings.rate_limit_search)
async def search_apis(
    request: Request,
    q: str = "",
    limit: int = Query(20, ge=1),
    services: Services = Depends(get_services),
):
    """
    Hybrid search with web discovery fallback.

    **Agent usage:**
    ```
    GET /api/search?q=flight+booking&limit=10
    ```
    """
    result = await services.search.search(q, limit)
    return result.as_dict()


# ── MCP ──────────────────────────────────────────────────────────────────────
@app.post("/api/mcp", tags=["mcp"])
@limiter.limit(settings.rate_limit_detail)
async def mcp_endpoint(request: Request, services: Services = Depends(get_services)):
    """JSON-RPC 2.0 entry point for MCP clients."""
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return JSONResponse(rpc_error(None, -32700, "Parse error: invalid JSON"))

    if isinstance(body, list):
        if not body:
            return JSONResponse(rpc_error(None, -32600, "Invalid request: empty batch"))
        responses = [r for r in [await handle_request(services.tools, item) for item in body] if r]
        return JSONResponse(responses) if responses else Response(status_code=204)

    response = await handle_request(services.tools, body)
    if response is None:
        return Response(status_code=204)
    return JSONResponse(response)


@app.get("/api/mcp", tags=["mcp"])
async def mcp_info(request: Request):
    base = str(request.base_url).rstrip("/")
    return {
        "name": SERVER_NAME,
        "version": SERVER_VERSION,
        "description": (
            "MCP server for searching and querying API documentation. Find any API, "
            "get endpoint details, parameters, and documentation links."
        ),
        "tools": [t["name"] for t in TOOLS],
        "instructions": (
            'Add this MCP server to your agent config: '
            f'{{ "mcpServers": {{ "{SERVER_NAME}": {{ "url": "{base}/api/mcp" }} }} }}'
        ),
    }


@app.get("/.well-known/mcp.json", tags=["discovery"])
async def mcp_discovery(request: Request):
    """
    MCP (Model Context Protocol) server discovery.
    Allows Cursor, Claude Desktop, Windsurf, and MCP-compatible clients
    to discover and connect to this tool.
    """
    base = str(request.base_url).rstrip("/")
    return {
        "name": SERVER_NAME,
        "version": SERVER_VERSION,
        "description": "API documentation search for AI agents: find APIs, their endpoints and integration gotchas.",
        "transport": {
            "type": "http",
            "url": f"{base}/api/mcp",
        },
        "tools": TOOLS,
        "instructions": (
            "Use search_apis to find an API for a task. Use get_api_detail with the returned id "
            "for an overview and endpoint index, then again with method and path for one endpoint's "
            "parameters. Use get_live_docs to read the documentation page itself. "
            "Example: get_api_detail(api_id='stripe.com', method='POST', path='/v1/payment_intents')"
        ),
    }


@app.get("/llms.txt", response_class=PlainTextResponse, tags=["discovery"])
async def llms_txt(services: Services = Depends(get_services)):
    """Plain-text catalog index, one line per brand."""
    public_url = services.settings.public_url.rstrip("/")
    lines = [
        "# ApiFlora — API Search Engine for Agents",
        "",
        "> Find any API documentation, endpoints, and parameters in one place.",
        f"> MCP Server: {public_url}/api/mcp",
        "",
        "## How to use (for AI agents)",
        "",
        "Tools available:",
        "- search_apis(query) — Search for APIs by keyword",
        "- get_api_detail(api_id, method?, path?) — Overview and endpoints, or one endpoint in full",
        "- get_live_docs(api_id, url?) — Documentation page as markdown",
        "",
        "## API Index",
        "",
    ]

    seen: set[str] = set()
    offset = 0
    while True:
        batch = await services.store.range_page(offset, 1000)
        for record in batch:
            key = brand_key_of(record.id)
            if key in seen:
                continue
            seen.add(key)
            summary = record.tldr or record.description or ""
            url = record.doc_url or record.website or ""
            line = f"- [{record.title}]({public_url}/brand/{key})"
            if summary:
                line += f": {summary}"
            if url:
                line += f" ({url})"
            lines.append(line)
        if len(batch) < 1000:
            break
        offset += 1000

    return "\n".join(lines) + "\n"


# ── Entrypoint ───────────────────────────────────────────────────────────────
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=settings.is_development,
    )
