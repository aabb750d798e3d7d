"""Test per-engine usage statistics."""

from query_curator.models import QueryItem, TokenUsage
from query_curator.stats import engine_stats, stats_table


def make_query(qid, **fields):
    data = dict(id=qid, category_id="weather", text="Is it windy?", created_at="t", updated_at="t")
    data.update(fields)
    return QueryItem(**data)


def test_engine_stats_aggregates_and_sorts():
    queries = [
        make_query("1", source="generated", ai_engine="gateway:flash", query_length=12),
        make_query("2", source="generated", ai_engine="gateway:flash", answer="Calm.", answer_length=5,
                   answer_tokens=TokenUsage(completion_tokens=3)),
        make_query("3", ai_engine="openai:gpt-4o-mini", answer="Strong gusts.",
                   answer_tokens=TokenUsage(completion_tokens=4)),
        make_query("4"),
    ]

    stats = engine_stats(queries)

    assert [s.engine for s in stats] == ["gateway:flash", "openai:gpt-4o-mini"]
    gateway = stats[0]
    assert gateway.query_count == 2
    assert gateway.answer_count == 1
    assert gateway.total_query_chars == 24
    assert gateway.total_answer_tokens == 3
    assert gateway.total == 3
    openai_stats = stats[1]
    assert openai_stats.query_count == 0
    assert openai_stats.total_answer_chars == len("Strong gusts.")


def test_stats_table_rows_are_dicts():
    rows = stats_table([make_query("1", source="generated", ai_engine="mock:m")])
    assert rows == [{
        "engine": "mock:m",
        "query_count": 1,
        "answer_count": 0,
        "total_query_chars": len("Is it windy?"),
        "total_answer_chars": 0,
        "total_query_tokens": 0,
        "total_answer_tokens": 0,
    }]
