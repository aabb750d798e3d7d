"""
Query and answer generation workflows.

Query generation asks a provider for a JSON array of candidates, then drops
candidates that repeat an existing query of the category or each other.
Answer generation works one query at a time; bulk runs are a sequential fold
over the work list that yields a progress event after every item, so any
front end can render a progress counter.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Set, Any
import logging

from .providers import GenerationProvider
from .parsing import parse_generated_queries
from .prompts import (
    QUERY_SYSTEM_PROMPT,
    build_query_prompt,
    build_answer_prompts,
    category_topic,
    answer_source,
)
from .models import Category, QueryItem, QueryDraft, GeneratedQuery, GeneratedAnswer
from .exceptions import InputValidationError, ProviderError, QueryCuratorError

logger = logging.getLogger(__name__)

MIN_COUNT = 1
MAX_COUNT = 20
DEFAULT_COUNT = 5

MAX_QUERY_LENGTH = 1000

QUERY_TEMPERATURE = 0.8
QUERY_MAX_TOKENS = 2048
ANSWER_TEMPERATURE = 0.7
ANSWER_MAX_TOKENS = 1024

DUPLICATE_MARKER = " [DUPLICATE]"
NO_ANSWER = "Could not generate an answer."


def clamp_count(count: Any) -> int:
    """Clamp a requested count to [1, 20]; non-numeric input means the default."""
    try:
        value = int(count)
    except (TypeError, ValueError):
        value = DEFAULT_COUNT
    return min(max(value, MIN_COUNT), MAX_COUNT)


def normalize_text(text: str) -> str:
    return text.strip().lower()


def dedupe_candidates(candidates: Iterable[GeneratedQuery], existing_texts: Iterable[str]) -> List[GeneratedQuery]:
    """
    Drop candidates whose trimmed, case-insensitive text already exists.

    Comparison is against the existing texts and against earlier candidates
    of the same batch. Blank candidates are dropped too.
    """
    seen: Set[str] = {normalize_text(t) for t in existing_texts}
    unique = []
    for candidate in candidates:
        key = normalize_text(candidate.text)
        if not key or key in seen:
            continue
        seen.add(key)
        unique.append(candidate)
    return unique


class QueryGenerator:
    """Generates new query candidates for a category."""

    def __init__(self, provider: GenerationProvider):
        self.provider = provider

    def generate(self, category: Category, count: Any = DEFAULT_COUNT) -> List[GeneratedQuery]:
        """
        Ask the provider for query candidates.

        Args:
            category: Target category
            count: Desired number of candidates, clamped to [1, 20]

        Raises:
            ProviderError: On upstream failure or an unparseable response
        """
        count = clamp_count(count)
        prompt = build_query_prompt(category_topic(category), count)

        logger.info(f"Generating {count} queries for category {category.id} via {self.provider.engine}")
        completion = self.provider.complete(
            QUERY_SYSTEM_PROMPT, prompt, max_tokens=QUERY_MAX_TOKENS, temperature=QUERY_TEMPERATURE
        )
        candidates = parse_generated_queries(completion.text, self.provider.name)
        logger.info(f"Provider returned {len(candidates)} query candidates")
        return candidates

    def generate_into_store(self, store, category_id: str, count: Any = DEFAULT_COUNT) -> List[QueryItem]:
        """Generate, dedupe against the category's queries and persist as generated queries."""
        category = store.get_category(category_id)
        candidates = self.generate(category, count)

        existing = [q.text for q in store.queries if q.category_id == category_id]
        unique = dedupe_candidates(candidates, existing)
        if len(unique) < len(candidates):
            logger.info(f"Dropped {len(candidates) - len(unique)} duplicate candidates")

        drafts = [
            QueryDraft(
                category_id=category_id,
                text=c.text.strip(),
                tags=c.tags,
                source="generated",
                source_url=c.source_url,
                ai_engine=self.provider.engine,
                query_length=len(c.text.strip()),
            )
            for c in unique
        ]
        return store.add_queries(drafts)


# ==================== Answers ====================

@dataclass
class BatchProgress:
    """Emitted after each query of a bulk answer run."""
    completed: int
    total: int
    query_id: str
    answer: Optional[GeneratedAnswer] = None
    error: Optional[str] = None
    duplicate: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class BatchSummary:
    """Result of folding all progress events of a bulk answer run."""
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    duplicates: int = 0
    errors: List[str] = field(default_factory=list)


class AnswerGenerator:
    """Generates answers for single queries and for sequential batches."""

    def __init__(self, provider: GenerationProvider):
        self.provider = provider

    def generate(
        self,
        query_text: str,
        category_id: str,
        category_name: Optional[str] = None,
        kind: Optional[str] = None
    ) -> GeneratedAnswer:
        """
        Generate an answer for one query.

        Raises:
            InputValidationError: If the query text is empty or too long
            ProviderError: On upstream failure
        """
        if not query_text or not query_text.strip() or len(query_text) > MAX_QUERY_LENGTH:
            raise InputValidationError("Query text must be between 1 and 1000 characters")

        system_prompt, user_prompt = build_answer_prompts(query_text, answer_source(category_id, category_name, kind))
        completion = self.provider.complete(
            system_prompt, user_prompt, max_tokens=ANSWER_MAX_TOKENS, temperature=ANSWER_TEMPERATURE
        )
        answer = completion.text or NO_ANSWER
        return GeneratedAnswer(
            answer=answer,
            engine=self.provider.engine,
            answer_length=len(answer),
            usage=completion.usage,
        )

    def iter_batch(self, queries: List[QueryItem], categories: Dict[str, Category]) -> Iterator[BatchProgress]:
        """
        Answer queries one at a time, yielding progress after each.

        An answer that repeats an earlier answer of the batch (ignoring case
        and surrounding whitespace) gets DUPLICATE_MARKER appended. Failures
        are reported on the event and the batch moves on.
        """
        total = len(queries)
        seen: Set[str] = set()

        for index, query in enumerate(queries, 1):
            category = categories.get(query.category_id)
            try:
                result = self.generate(
                    query.text,
                    query.category_id,
                    category.name if category else None,
                    category.kind if category else None,
                )
            except (ProviderError, InputValidationError) as e:
                message = getattr(e, "user_message", str(e))
                logger.warning(f"Answer {index}/{total} for query {query.id} failed: {e}")
                yield BatchProgress(completed=index, total=total, query_id=query.id, error=message)
                continue

            key = normalize_text(result.answer)
            duplicate = key in seen
            seen.add(key)
            if duplicate:
                marked = result.answer + DUPLICATE_MARKER
                result = result.model_copy(update={"answer": marked, "answer_length": len(marked)})

            yield BatchProgress(completed=index, total=total, query_id=query.id, answer=result, duplicate=duplicate)

    def run_batch(
        self,
        queries: List[QueryItem],
        categories: Dict[str, Category],
        store=None,
        on_progress: Optional[Callable[[BatchProgress], None]] = None
    ) -> BatchSummary:
        """
        Run a bulk answer batch to completion.

        Args:
            queries: Queries to answer, in order
            categories: Category lookup for prompt context
            store: If given, answers are written back to it
            on_progress: Called with every progress event
        """
        summary = BatchSummary(total=len(queries))

        for event in self.iter_batch(queries, categories):
            if event.ok and store is not None:
                event = self._save(store, event)

            if event.ok:
                summary.succeeded += 1
                summary.duplicates += int(event.duplicate)
            else:
                summary.failed += 1
                summary.errors.append(f"{event.query_id}: {event.error}")

            if on_progress:
                on_progress(event)

        logger.info(
            f"Answer batch finished: {summary.succeeded}/{summary.total} succeeded, "
            f"{summary.failed} failed, {summary.duplicates} duplicates"
        )
        return summary

    @staticmethod
    def _save(store, event: BatchProgress) -> BatchProgress:
        """Write an answer back; a storage failure turns the event into a failed one."""
        try:
            store.update_query(
                event.query_id,
                answer=event.answer.answer,
                ai_engine=event.answer.engine,
                answer_length=event.answer.answer_length,
                answer_tokens=event.answer.usage,
            )
        except QueryCuratorError as e:
            logger.warning(f"Saving answer for query {event.query_id} failed: {e}")
            return BatchProgress(
                completed=event.completed,
                total=event.total,
                query_id=event.query_id,
                error="Could not save the answer",
            )
        return event
