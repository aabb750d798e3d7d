"""Pytest configuration and fixtures for Query Curator tests."""

import itertools

import pytest

from query_curator.backends import MemoryBackend
from query_curator.models import Category, QueryDraft, TokenUsage
from query_curator.providers import MockProvider
from query_curator.store import QueryStore

TIMESTAMP = "2025-01-15T09:00:00+00:00"


@pytest.fixture
def id_factory():
    """Deterministic ids: id-1, id-2, ..."""
    counter = itertools.count(1)
    return lambda: f"id-{next(counter)}"


@pytest.fixture
def backend():
    """Memory backend pre-populated with two categories."""
    backend = MemoryBackend()
    for cat_id, name in [("weather", "Weather"), ("traffic", "Traffic")]:
        backend.categories[cat_id] = Category(
            id=cat_id, name=name, description=f"{name} queries", icon="Cloud",
            created_at=TIMESTAMP, updated_at=TIMESTAMP
        )
    return backend


@pytest.fixture
def store(backend, id_factory):
    """Store over the pre-populated backend with a fixed clock."""
    return QueryStore(backend, id_factory=id_factory, clock=lambda: TIMESTAMP)


@pytest.fixture
def populated_store(store):
    """Store with a few queries in each category."""
    store.add_queries([
        QueryDraft(category_id="weather", text="Will it rain today?", tags=["rain", "forecast"]),
        QueryDraft(category_id="weather", text="Are the roads icy?", tags=["ice"]),
        QueryDraft(category_id="weather", text="Old fog question", status="archived"),
        QueryDraft(category_id="traffic", text="How is traffic on the ring road?", tags=["congestion"]),
    ])
    return store


@pytest.fixture
def query_response():
    """Model output for query generation, wrapped in prose and a code fence."""
    return """Sure! Here are the queries:
```json
[
  {"text": "Is it snowing on the highway?", "tags": ["snow", "highway"], "sourceUrl": "https://example.com/snow"},
  {"text": "What's the temperature outside?", "tags": ["temperature"], "sourceUrl": ""},
  {"text": "  is it snowing on the highway?  ", "tags": ["snow"]},
  {"text": "Will it rain today?", "tags": ["rain"]}
]
```
Hope this helps."""


@pytest.fixture
def mock_provider(query_response):
    """Mock provider answering query-generation and answer prompts."""
    responses = {
        "generate": query_response,
        "driver question": "Light rain expected after 3 PM. Drive carefully.",
    }
    return MockProvider(responses, usage=TokenUsage(prompt_tokens=40, completion_tokens=12, total_tokens=52))
