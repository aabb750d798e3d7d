"""Per-engine usage statistics over a query dataset."""

from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import Dict, List, Iterable, Any

from .models import QueryItem


@dataclass
class EngineStats:
    engine: str
    query_count: int = 0
    answer_count: int = 0
    total_query_chars: int = 0
    total_answer_chars: int = 0
    total_query_tokens: int = 0
    total_answer_tokens: int = 0

    @property
    def total(self) -> int:
        return self.query_count + self.answer_count


def engine_stats(queries: Iterable[QueryItem]) -> List[EngineStats]:
    """
    Aggregate generated queries and answers by AI engine.

    Generated queries count toward their engine's query totals; any query
    with an answer counts toward the answer totals. Sorted busiest first.
    """
    by_engine: Dict[str, EngineStats] = {}

    for query in queries:
        if not query.ai_engine:
            continue
        stats = by_engine.setdefault(query.ai_engine, EngineStats(engine=query.ai_engine))

        if query.source == "generated":
            stats.query_count += 1
            stats.total_query_chars += query.query_length or len(query.text)
            if query.query_tokens:
                stats.total_query_tokens += query.query_tokens.completion_tokens or 0

        if query.answer:
            stats.answer_count += 1
            stats.total_answer_chars += query.answer_length or len(query.answer)
            if query.answer_tokens:
                stats.total_answer_tokens += query.answer_tokens.completion_tokens or 0

    return sorted(by_engine.values(), key=lambda s: s.total, reverse=True)


def stats_table(queries: Iterable[QueryItem]) -> List[Dict[str, Any]]:
    return [asdict(s) for s in engine_stats(queries)]
