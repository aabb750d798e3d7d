"""
Data models for Query Curator.

These Pydantic models define categories, query items and the artifacts that
flow through import/export and generation. Python attributes are snake_case;
the wire format (JSON export, HTTP bodies) uses camelCase aliases.
"""

from __future__ import annotations
from datetime import datetime, timezone
from typing import List, Optional, Literal, Dict, Any
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


QuerySource = Literal["generated", "manual"]
QueryStatus = Literal["active", "archived"]

QUERY_SOURCES = ("generated", "manual")
QUERY_STATUSES = ("active", "archived")


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


class CamelModel(BaseModel):
    """Base model that reads and writes camelCase field names."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        """Dump using camelCase keys, dropping unset optionals."""
        return self.model_dump(by_alias=True, exclude_none=True)


# ==================== Domain Models ====================

class TokenUsage(CamelModel):
    """Token accounting reported by a provider."""
    prompt_tokens: Optional[int] = Field(None, description="Tokens in the prompt")
    completion_tokens: Optional[int] = Field(None, description="Tokens in the completion")
    total_tokens: Optional[int] = Field(None, description="Prompt plus completion tokens")


class CategoryDraft(CamelModel):
    """Category fields supplied by the user."""
    name: str = Field(..., description="Display name")
    description: str = Field("", description="What queries in this category are about")
    icon: str = Field("Folder", description="Icon tag used by the client")
    kind: Optional[str] = Field(None, description="Default-category template this category was seeded from")

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        if not v or not v.strip():
            raise ValueError("Category name must not be empty")
        return v.strip()


class Category(CategoryDraft):
    """Named grouping of query items."""
    id: str = Field(..., description="Opaque unique id")
    created_at: str = Field(..., description="ISO-8601 creation time")
    updated_at: str = Field(..., description="ISO-8601 last update time")


class QueryDraft(CamelModel):
    """Query fields supplied by the user, an import or a generator."""
    category_id: str = Field(..., description="Owning category id")
    text: str = Field(..., description="The test utterance")
    tags: List[str] = Field(default_factory=list, description="Ordered tags")
    source: QuerySource = Field("manual", description="How the query was created")
    status: QueryStatus = Field("active", description="Archived queries are hidden from listings")
    answer: Optional[str] = Field(None, description="Generated or curated answer")
    source_url: Optional[str] = Field(None, description="Where the query idea came from")
    ai_engine: Optional[str] = Field(None, description="Label of the engine that produced it")
    query_length: Optional[int] = Field(None, description="Characters in the query text")
    answer_length: Optional[int] = Field(None, description="Characters in the answer")
    query_tokens: Optional[TokenUsage] = None
    answer_tokens: Optional[TokenUsage] = None

    @field_validator('text')
    @classmethod
    def validate_text(cls, v):
        if not v or not v.strip():
            raise ValueError("Query text must not be empty")
        return v

    @field_validator('tags')
    @classmethod
    def validate_tags(cls, v):
        return [tag.strip() for tag in v if tag and tag.strip()]


class QueryItem(QueryDraft):
    """A single test-case utterance plus its metadata."""
    id: str = Field(..., description="Opaque unique id")
    created_at: str = Field(..., description="ISO-8601 creation time")
    updated_at: str = Field(..., description="ISO-8601 last update time")


# ==================== Generation Models ====================

class GeneratedQuery(CamelModel):
    """Query candidate returned by a model before dedup and persistence."""
    text: str = Field(..., description="Candidate query text")
    tags: List[str] = Field(default_factory=list)
    source_url: Optional[str] = None

    @field_validator('tags', mode='before')
    @classmethod
    def coerce_tags(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [t.strip() for t in v.split(',') if t.strip()]
        return [str(t) for t in v]

    @field_validator('source_url')
    @classmethod
    def blank_url_is_none(cls, v):
        if not v or not v.strip():
            return None
        return v.strip()


class GeneratedAnswer(CamelModel):
    """Answer produced for a single query."""
    answer: str
    engine: str = Field(..., description="Engine label, e.g. 'openai:gpt-4o-mini'")
    answer_length: int
    usage: Optional[TokenUsage] = None


# ==================== Import / Export ====================

class ImportResult(BaseModel):
    """Outcome of a CSV import. Partial success is allowed."""
    imported: List[QueryItem] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


class ExportFile(BaseModel):
    """Downloadable export payload."""
    filename: str
    content: str
    media_type: str


# ==================== Seed Data ====================

DEFAULT_CATEGORIES: List[Dict[str, str]] = [
    {"kind": "weather", "name": "Weather", "description": "Weather and road-condition queries", "icon": "Cloud"},
    {"kind": "traffic", "name": "Traffic", "description": "Live traffic and congestion queries", "icon": "Car"},
    {"kind": "poi_crowding", "name": "POI Crowding", "description": "How busy places and car parks are", "icon": "Users"},
    {"kind": "incident", "name": "Incidents", "description": "Accidents, road works and closures", "icon": "AlertTriangle"},
    {"kind": "hazard", "name": "Hazard Zones", "description": "Dangerous road sections and warnings", "icon": "ShieldAlert"},
    {"kind": "map", "name": "Map", "description": "Map display and location queries", "icon": "Map"},
    {"kind": "route", "name": "Routing", "description": "Route search and navigation", "icon": "Navigation"},
    {"kind": "complex", "name": "Complex", "description": "Queries that combine several data sources", "icon": "Layers"},
]
