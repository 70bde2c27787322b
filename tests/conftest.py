"""
Shared fixtures for ApiFlora tests.
Run with: pytest tests/
"""

import os
import sys
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from cache import SmartCache
from config import Settings
from llm import Ok


@pytest.fixture
def settings():
    """Settings with every provider key blanked out."""
    return Settings(
        supabase_url=None,
        supabase_key=None,
        redis_url=None,
        groq_api_key=None,
        embedding_api_key=None,
        exa_api_key=None,
        firecrawl_api_key=None,
        jina_api_key=None,
        algolia_app_id=None,
        algolia_search_api_key=None,
        algolia_index_name=None,
    )


@pytest.fixture
def cache():
    return SmartCache(default_ttl=60, max_entries=100)


@pytest.fixture
def store():
    """A record store whose every query comes back empty."""
    mock_store = MagicMock()
    mock_store.find_by_id_or_prefix = AsyncMock(return_value=[])
    mock_store.filter_by_substring = AsyncMock(return_value=[])
    mock_store.range_page = AsyncMock(return_value=[])
    mock_store.hybrid_rank = AsyncMock(return_value=[])
    mock_store.endpoints_for = AsyncMock(return_value=[])
    return mock_store


@pytest.fixture
def embeddings():
    mock_embeddings = MagicMock()
    mock_embeddings.configured = True
    mock_embeddings.timeout = 5
    mock_embeddings.embed = AsyncMock(return_value=[0.1, 0.2, 0.3])
    return mock_embeddings


@pytest.fixture
def llm():
    """A configured LLM that answers with an empty JSON object unless told otherwise."""
    mock_llm = MagicMock()
    mock_llm.configured = True
    mock_llm.complete_json = AsyncMock(return_value=Ok({}))
    return mock_llm


@pytest.fixture
def reader():
    mock_reader = MagicMock()
    mock_reader.render = AsyncMock(return_value=None)
    return mock_reader
