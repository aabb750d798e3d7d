"""
Query store: category and query CRUD, import and export.

The store is the single owner of a user's dataset during a session. It keeps
an ordered in-memory mirror and writes each mutation through to a storage
backend. Every query must reference an existing category; this is checked on
all mutation paths, not only on import.
"""

from __future__ import annotations
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Literal

from .backends import StorageBackend, MemoryBackend
from .csv_codec import ImportLimits, DEFAULT_LIMITS, encode_queries_csv, parse_import
from .models import (
    Category,
    CategoryDraft,
    QueryItem,
    QueryDraft,
    ImportResult,
    ExportFile,
    DEFAULT_CATEGORIES,
    utc_now_iso,
)
from .exceptions import (
    CategoryNotFoundError,
    QueryNotFoundError,
    CSVImportError,
    InputValidationError,
)

logger = logging.getLogger(__name__)

ExportFormat = Literal["json", "csv"]

IMMUTABLE_FIELDS = {"id", "created_at"}


def _new_id() -> str:
    return str(uuid.uuid4())


class QueryStore:
    """
    CRUD over categories and queries backed by a pluggable StorageBackend.

    Args:
        backend: Where records are persisted (in-memory if None)
        limits: Ceilings for CSV imports
        id_factory: Callable producing unique ids
        clock: Callable producing ISO-8601 timestamps
    """

    def __init__(
        self,
        backend: Optional[StorageBackend] = None,
        limits: ImportLimits = DEFAULT_LIMITS,
        id_factory: Callable[[], str] = _new_id,
        clock: Callable[[], str] = utc_now_iso
    ):
        self.backend = backend if backend is not None else MemoryBackend()
        self.limits = limits
        self._new_id = id_factory
        self._now = clock

        self._categories: Dict[str, Category] = {c.id: c for c in self.backend.load_categories()}
        self._queries: Dict[str, QueryItem] = {q.id: q for q in self.backend.load_queries()}
        logger.debug(f"Store loaded {len(self._categories)} categories, {len(self._queries)} queries")

    # ==================== Listing ====================

    @property
    def categories(self) -> List[Category]:
        return list(self._categories.values())

    @property
    def queries(self) -> List[QueryItem]:
        return list(self._queries.values())

    def get_category(self, category_id: str) -> Category:
        try:
            return self._categories[category_id]
        except KeyError:
            raise CategoryNotFoundError(category_id)

    def find_category(self, ref: str) -> Category:
        """Look a category up by id, or by the default-category kind it was seeded from."""
        if ref in self._categories:
            return self._categories[ref]
        for category in self._categories.values():
            if category.kind == ref:
                return category
        raise CategoryNotFoundError(ref)

    def get_query(self, query_id: str) -> QueryItem:
        try:
            return self._queries[query_id]
        except KeyError:
            raise QueryNotFoundError(query_id)

    def get_queries_by_category(self, category_id: str) -> List[QueryItem]:
        """Active queries of one category."""
        return [q for q in self._queries.values() if q.category_id == category_id and q.status == "active"]

    def search_queries(self, category_id: str, term: str) -> List[QueryItem]:
        """Active queries of a category whose text or tags contain the term, ignoring case."""
        results = self.get_queries_by_category(category_id)
        needle = term.strip().lower()
        if not needle:
            return results
        return [
            q for q in results
            if needle in q.text.lower() or any(needle in tag.lower() for tag in q.tags)
        ]

    def query_counts(self) -> Dict[str, int]:
        """Number of active queries per category."""
        counts = {category_id: 0 for category_id in self._categories}
        for query in self._queries.values():
            if query.status == "active" and query.category_id in counts:
                counts[query.category_id] += 1
        return counts

    # ==================== Categories ====================

    def seed_defaults(self) -> List[Category]:
        """Create the default categories when the store has none."""
        if self._categories:
            return []
        timestamp = self._now()
        seeded = []
        for data in DEFAULT_CATEGORIES:
            category = Category(**data, id=self._new_id(), created_at=timestamp, updated_at=timestamp)
            seeded.append(self._insert_category(category))
        logger.info(f"Seeded {len(seeded)} default categories")
        return seeded

    def add_category(self, draft: CategoryDraft) -> Category:
        timestamp = self._now()
        category = Category(
            **draft.model_dump(), id=self._new_id(), created_at=timestamp, updated_at=timestamp
        )
        return self._insert_category(category)

    def _insert_category(self, category: Category) -> Category:
        if category.id in self._categories:
            raise InputValidationError(f"Category id already exists: {category.id}")
        stored = self.backend.insert_category(category)
        self._categories[stored.id] = stored
        return stored

    def update_category(self, category_id: str, **updates) -> Category:
        current = self.get_category(category_id)
        updated = self._patch(current, updates, Category)
        self.backend.save_category(updated)
        self._categories[category_id] = updated
        return updated

    def delete_category(self, category_id: str) -> int:
        """
        Delete a category and every query that belongs to it.

        Returns:
            Number of queries removed
        """
        self.get_category(category_id)
        doomed = [qid for qid, q in self._queries.items() if q.category_id == category_id]

        self.backend.remove_queries_for_category(category_id)
        self.backend.remove_category(category_id)

        for qid in doomed:
            del self._queries[qid]
        del self._categories[category_id]

        logger.info(f"Deleted category {category_id} and {len(doomed)} queries")
        return len(doomed)

    # ==================== Queries ====================

    def add_query(self, draft: QueryDraft) -> QueryItem:
        return self.add_queries([draft])[0]

    def add_queries(self, drafts: List[QueryDraft]) -> List[QueryItem]:
        """
        Insert a batch of queries sharing one timestamp.

        The whole batch is rejected if any draft references an unknown category.
        """
        if not drafts:
            return []
        for draft in drafts:
            self.get_category(draft.category_id)

        timestamp = self._now()
        items = [
            QueryItem(**draft.model_dump(), id=self._new_id(), created_at=timestamp, updated_at=timestamp)
            for draft in drafts
        ]
        stored = self.backend.insert_queries(items)
        for item in stored:
            self._queries[item.id] = item
        return stored

    def update_query(self, query_id: str, **updates) -> QueryItem:
        current = self.get_query(query_id)
        if "category_id" in updates:
            self.get_category(updates["category_id"])
        updated = self._patch(current, updates, QueryItem)
        self.backend.save_query(updated)
        self._queries[query_id] = updated
        return updated

    def delete_query(self, query_id: str) -> None:
        self.get_query(query_id)
        self.backend.remove_query(query_id)
        del self._queries[query_id]

    def _patch(self, current, updates: Dict, model_class):
        bad = set(updates) & IMMUTABLE_FIELDS
        if bad:
            raise InputValidationError(f"Fields cannot be changed: {', '.join(sorted(bad))}")
        unknown = set(updates) - set(model_class.model_fields)
        if unknown:
            raise InputValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")

        data = current.model_dump()
        data.update(updates)
        data["updated_at"] = self._now()
        # Re-validate so patched values obey the same rules as new records
        return model_class.model_validate(data)

    # ==================== Import / Export ====================

    def export_queries(self, category_id: Optional[str] = None, fmt: ExportFormat = "json") -> ExportFile:
        """
        Export queries of one category, or all queries, as a downloadable file.

        The filename is queries_<categoryId|all>_<YYYY-MM-DD>.<ext>.
        """
        if category_id:
            selected = [q for q in self._queries.values() if q.category_id == category_id]
        else:
            selected = list(self._queries.values())

        date = datetime.now(timezone.utc).date().isoformat()
        stem = f"queries_{category_id or 'all'}_{date}"

        if fmt == "json":
            content = json.dumps([q.to_wire() for q in selected], ensure_ascii=False, indent=2)
            return ExportFile(filename=f"{stem}.json", content=content, media_type="application/json")
        if fmt == "csv":
            return ExportFile(filename=f"{stem}.csv", content=encode_queries_csv(selected), media_type="text/csv")
        raise InputValidationError(f"Unsupported export format: {fmt}")

    def import_queries_from_csv(self, content: str) -> ImportResult:
        """
        Import queries from CSV text.

        Valid rows are stored even when other rows fail; failures are reported
        as row-level messages. Oversized payloads import nothing.
        """
        try:
            drafts, errors = parse_import(content, set(self._categories), self.limits)
        except CSVImportError as e:
            logger.warning(f"CSV import rejected: {e}")
            return ImportResult(imported=[], errors=e.errors)

        imported = self.add_queries(drafts) if drafts else []
        logger.info(f"Imported {len(imported)} queries ({len(errors)} rows rejected)")
        return ImportResult(imported=imported, errors=errors)
