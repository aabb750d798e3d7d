"""
Storage backends for the query store.

The store keeps an in-memory mirror of the user's categories and queries and
writes every mutation through to a backend. Backends are interchangeable:
in-process memory, a local JSON file, or the hosted relational database
reached over its REST interface.
"""

from __future__ import annotations
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Dict, Any, Optional, Protocol

import requests
from pydantic import ValidationError

from .models import Category, QueryItem, TokenUsage
from .exceptions import StorageError

logger = logging.getLogger(__name__)


class StorageBackend(Protocol):
    """Protocol for all storage backends."""

    def load_categories(self) -> List[Category]:
        """Return all categories, oldest first."""
        ...

    def load_queries(self) -> List[QueryItem]:
        """Return all queries."""
        ...

    def insert_category(self, category: Category) -> Category:
        ...

    def save_category(self, category: Category) -> None:
        ...

    def remove_category(self, category_id: str) -> None:
        ...

    def insert_queries(self, queries: List[QueryItem]) -> List[QueryItem]:
        ...

    def save_query(self, query: QueryItem) -> None:
        ...

    def remove_query(self, query_id: str) -> None:
        ...

    def remove_queries_for_category(self, category_id: str) -> None:
        ...


class MemoryBackend:
    """Keeps records in process. Nothing survives a restart."""

    def __init__(self):
        self.categories: Dict[str, Category] = {}
        self.queries: Dict[str, QueryItem] = {}

    def load_categories(self) -> List[Category]:
        return list(self.categories.values())

    def load_queries(self) -> List[QueryItem]:
        return list(self.queries.values())

    def insert_category(self, category: Category) -> Category:
        self.categories[category.id] = category
        self._changed()
        return category

    def save_category(self, category: Category) -> None:
        self.categories[category.id] = category
        self._changed()

    def remove_category(self, category_id: str) -> None:
        self.categories.pop(category_id, None)
        self._changed()

    def insert_queries(self, queries: List[QueryItem]) -> List[QueryItem]:
        for query in queries:
            self.queries[query.id] = query
        self._changed()
        return queries

    def save_query(self, query: QueryItem) -> None:
        self.queries[query.id] = query
        self._changed()

    def remove_query(self, query_id: str) -> None:
        self.queries.pop(query_id, None)
        self._changed()

    def remove_queries_for_category(self, category_id: str) -> None:
        self.queries = {k: q for k, q in self.queries.items() if q.category_id != category_id}
        self._changed()

    def _changed(self) -> None:
        pass


class JsonFileBackend(MemoryBackend):
    """Memory backend persisted to a JSON document after every write."""

    def __init__(self, path: Path):
        super().__init__()
        self.path = Path(path)
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            for raw in data.get("categories", []):
                category = Category.model_validate(raw)
                self.categories[category.id] = category
            for raw in data.get("queries", []):
                query = QueryItem.model_validate(raw)
                self.queries[query.id] = query
        except (json.JSONDecodeError, ValidationError, AttributeError) as e:
            raise StorageError(f"Could not read data file {self.path}: {e}")
        logger.debug(f"Loaded {len(self.categories)} categories and {len(self.queries)} queries from {self.path}")

    def _changed(self) -> None:
        document = {
            "categories": [c.to_wire() for c in self.categories.values()],
            "queries": [q.to_wire() for q in self.queries.values()],
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(document, ensure_ascii=False, indent=2), encoding="utf-8")


# ==================== Hosted Database ====================

@dataclass
class AuthSession:
    """Identity issued by the hosted auth provider. Only these two values are used."""
    user_id: str
    access_token: str


def row_to_category(row: Dict[str, Any]) -> Category:
    return Category(
        id=row["id"],
        name=row["name"],
        description=row.get("description") or "",
        icon=row.get("icon") or "Folder",
        kind=row.get("kind"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def row_to_query(row: Dict[str, Any]) -> QueryItem:
    query_tokens = row.get("query_tokens")
    answer_tokens = row.get("answer_tokens")
    return QueryItem(
        id=row["id"],
        category_id=row["category_id"],
        text=row["query"],
        tags=row.get("tags") or [],
        source=row.get("source") or "manual",
        status=row.get("status") or "active",
        answer=row.get("answer"),
        source_url=row.get("source_url"),
        ai_engine=row.get("engine") or row.get("answer_engine"),
        query_length=row.get("query_length"),
        answer_length=row.get("answer_length"),
        query_tokens=TokenUsage(total_tokens=query_tokens) if query_tokens else None,
        answer_tokens=TokenUsage(total_tokens=answer_tokens) if answer_tokens else None,
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def category_to_row(category: Category, user_id: str) -> Dict[str, Any]:
    return {
        "id": category.id,
        "user_id": user_id,
        "name": category.name,
        "description": category.description,
        "icon": category.icon,
        "kind": category.kind,
        "created_at": category.created_at,
        "updated_at": category.updated_at,
    }


def query_to_row(query: QueryItem, user_id: str) -> Dict[str, Any]:
    return {
        "id": query.id,
        "user_id": user_id,
        "category_id": query.category_id,
        "query": query.text,
        "tags": query.tags,
        "source": query.source,
        "status": query.status,
        "answer": query.answer,
        "source_url": query.source_url,
        "engine": query.ai_engine,
        "query_length": query.query_length,
        "answer_length": query.answer_length,
        "query_tokens": query.query_tokens.total_tokens if query.query_tokens else None,
        "answer_tokens": query.answer_tokens.total_tokens if query.answer_tokens else None,
        "created_at": query.created_at,
        "updated_at": query.updated_at,
    }


class RestBackend:
    """
    Backend for the hosted relational database's REST interface.

    Rows live in the `categories` and `queries` tables, scoped to the signed-in
    user by `user_id`. Requests are authenticated with the project key plus the
    user's access token.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        session: AuthSession,
        timeout: float = 30.0,
        http: Optional[requests.Session] = None
    ):
        self.base_url = base_url.rstrip("/") + "/rest/v1"
        self.session = session
        self.timeout = timeout
        self.http = http or requests.Session()
        self.headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {session.access_token}",
            "Content-Type": "application/json",
            "Prefer": "return=representation",
        }

    def _request(self, method: str, table: str, params: Optional[Dict[str, str]] = None, body: Any = None):
        url = f"{self.base_url}/{table}"
        try:
            response = self.http.request(
                method, url, params=params, json=body, headers=self.headers, timeout=self.timeout
            )
        except requests.RequestException as e:
            raise StorageError(f"{method} {table} failed: {e}")

        if response.status_code >= 400:
            logger.error(f"Storage request {method} {table} returned {response.status_code}")
            raise StorageError(f"{method} {table} returned HTTP {response.status_code}")

        if not response.content:
            return []
        return response.json()

    def load_categories(self) -> List[Category]:
        rows = self._request("GET", "categories", params={
            "select": "*",
            "user_id": f"eq.{self.session.user_id}",
            "order": "created_at.asc",
        })
        return [row_to_category(row) for row in rows]

    def load_queries(self) -> List[QueryItem]:
        rows = self._request("GET", "queries", params={
            "select": "*",
            "user_id": f"eq.{self.session.user_id}",
            "order": "created_at.desc",
        })
        queries = [row_to_query(row) for row in rows if row.get("category_id")]
        if len(queries) < len(rows):
            logger.warning(f"Skipped {len(rows) - len(queries)} queries without a category")
        return queries

    def insert_category(self, category: Category) -> Category:
        rows = self._request("POST", "categories", body=category_to_row(category, self.session.user_id))
        return row_to_category(rows[0]) if rows else category

    def save_category(self, category: Category) -> None:
        row = category_to_row(category, self.session.user_id)
        self._request("PATCH", "categories", params={"id": f"eq.{category.id}"}, body=row)

    def remove_category(self, category_id: str) -> None:
        self._request("DELETE", "categories", params={"id": f"eq.{category_id}"})

    def insert_queries(self, queries: List[QueryItem]) -> List[QueryItem]:
        if not queries:
            return []
        rows = self._request("POST", "queries", body=[query_to_row(q, self.session.user_id) for q in queries])
        return [row_to_query(row) for row in rows] if rows else queries

    def save_query(self, query: QueryItem) -> None:
        row = query_to_row(query, self.session.user_id)
        self._request("PATCH", "queries", params={"id": f"eq.{query.id}"}, body=row)

    def remove_query(self, query_id: str) -> None:
        self._request("DELETE", "queries", params={"id": f"eq.{query_id}"})

    def remove_queries_for_category(self, category_id: str) -> None:
        self._request("DELETE", "queries", params={
            "category_id": f"eq.{category_id}",
            "user_id": f"eq.{self.session.user_id}",
        })
