"""Test query and answer generation workflows."""

import pytest

from query_curator.exceptions import InputValidationError, MalformedResponseError, RateLimitExceededError, StorageError
from query_curator.generation import (
    DUPLICATE_MARKER,
    NO_ANSWER,
    AnswerGenerator,
    QueryGenerator,
    clamp_count,
    dedupe_candidates,
)
from query_curator.models import GeneratedQuery, TokenUsage
from query_curator.providers import MockProvider


class TestClampCount:
    """Test count clamping."""

    @pytest.mark.parametrize("requested,expected", [
        (25, 20),
        (0, 1),
        (-3, 1),
        (7, 7),
        ("12", 12),
        ("lots", 5),
        (None, 5),
    ])
    def test_clamp(self, requested, expected):
        assert clamp_count(requested) == expected


class TestDedupe:
    """Test candidate deduplication."""

    def test_against_existing_and_within_batch(self):
        candidates = [
            GeneratedQuery(text="Is it foggy?"),
            GeneratedQuery(text="  IS IT FOGGY?  "),
            GeneratedQuery(text="Will it rain today?"),
            GeneratedQuery(text="Any black ice?"),
        ]
        unique = dedupe_candidates(candidates, ["will it rain today?"])
        assert [c.text for c in unique] == ["Is it foggy?", "Any black ice?"]

    def test_blank_dropped(self):
        assert dedupe_candidates([GeneratedQuery(text="   ")], []) == []


class TestQueryGenerator:
    """Test query generation against a mock provider."""

    def test_generate_sends_clamped_count(self, store, mock_provider):
        generator = QueryGenerator(mock_provider)
        candidates = generator.generate(store.get_category("weather"), count=25)

        assert len(candidates) == 4
        call = mock_provider.calls[0]
        assert "Generate 20 " in call["prompt"]
        assert call["temperature"] == 0.8
        assert call["max_tokens"] == 2048

    def test_generate_into_store_skips_duplicates(self, populated_store, mock_provider):
        generator = QueryGenerator(mock_provider)

        added = generator.generate_into_store(populated_store, "weather", 4)

        assert [q.text for q in added] == ["Is it snowing on the highway?", "What's the temperature outside?"]
        first = added[0]
        assert first.source == "generated"
        assert first.status == "active"
        assert first.ai_engine == "mock:mock-model"
        assert first.source_url == "https://example.com/snow"
        assert first.query_length == len("Is it snowing on the highway?")
        assert len(populated_store.get_queries_by_category("weather")) == 4

    def test_unparseable_response(self, store):
        provider = MockProvider({"generate": "Sorry, I can't do that."})
        with pytest.raises(MalformedResponseError):
            QueryGenerator(provider).generate(store.get_category("traffic"))


class TestAnswerGenerator:
    """Test single and batch answer generation."""

    def test_generate(self, mock_provider):
        answer = AnswerGenerator(mock_provider).generate("Will it rain today?", "weather", "Weather")

        assert answer.answer == "Light rain expected after 3 PM. Drive carefully."
        assert answer.engine == "mock:mock-model"
        assert answer.answer_length == len(answer.answer)
        assert answer.usage.total_tokens == 52
        call = mock_provider.calls[0]
        assert "weather data API" in call["system"]
        assert call["temperature"] == 0.7
        assert call["max_tokens"] == 1024

    @pytest.mark.parametrize("category_name,kind", [("Weather", None), ("Wetter", "weather")])
    def test_seeded_category_resolved_by_kind_or_name(self, mock_provider, category_name, kind):
        generator = AnswerGenerator(mock_provider)
        generator.generate("Will it rain today?", "9b1d2c4e-uuid", category_name, kind)
        assert "weather data API" in mock_provider.calls[0]["system"]

    def test_custom_category_uses_its_name(self, mock_provider):
        AnswerGenerator(mock_provider).generate("Will it rain today?", "9b1d2c4e-uuid", "Ski resorts")
        assert "Ski resorts" in mock_provider.calls[0]["system"]

    def test_empty_completion_gets_placeholder(self):
        answer = AnswerGenerator(MockProvider({})).generate("Anything?", "map")
        assert answer.answer == NO_ANSWER

    @pytest.mark.parametrize("text", ["", "   ", "x" * 1001])
    def test_query_length_validated(self, mock_provider, text):
        with pytest.raises(InputValidationError):
            AnswerGenerator(mock_provider).generate(text, "weather")
        assert mock_provider.calls == []

    def test_batch_marks_duplicate_answers(self, populated_store, mock_provider):
        generator = AnswerGenerator(mock_provider)
        queries = populated_store.get_queries_by_category("weather")
        categories = {c.id: c for c in populated_store.categories}

        events = list(generator.iter_batch(queries, categories))

        assert [(e.completed, e.total) for e in events] == [(1, 2), (2, 2)]
        assert not events[0].duplicate
        assert events[1].duplicate
        assert events[1].answer.answer.endswith(DUPLICATE_MARKER)
        assert events[1].answer.answer_length == len(events[1].answer.answer)

    def test_batch_continues_after_failure(self, populated_store):
        provider = MockProvider(
            {"driver question": "Roads are clear."},
            errors={"icy": RateLimitExceededError("mock")},
        )
        queries = populated_store.get_queries_by_category("weather")
        progress = []

        summary = AnswerGenerator(provider).run_batch(
            queries, {c.id: c for c in populated_store.categories}, on_progress=progress.append
        )

        assert summary.total == 2
        assert summary.succeeded == 1
        assert summary.failed == 1
        assert summary.errors == ["id-2: Request limit exceeded. Please try again later"]
        assert [e.ok for e in progress] == [True, False]

    def test_run_batch_writes_back(self, populated_store, mock_provider):
        queries = populated_store.get_queries_by_category("weather")

        summary = AnswerGenerator(mock_provider).run_batch(
            queries, {c.id: c for c in populated_store.categories}, store=populated_store
        )

        assert summary.succeeded == 2
        assert summary.duplicates == 1
        first = populated_store.get_query("id-1")
        assert first.answer == "Light rain expected after 3 PM. Drive carefully."
        assert first.ai_engine == "mock:mock-model"
        assert first.answer_tokens == TokenUsage(prompt_tokens=40, completion_tokens=12, total_tokens=52)
        assert populated_store.get_query("id-2").answer.endswith(DUPLICATE_MARKER)

    def test_failed_write_back_counts_as_failed_item(self, populated_store, mock_provider, monkeypatch):
        save_query = populated_store.backend.save_query

        def flaky_save(query):
            if query.id == "id-1":
                raise StorageError("PATCH queries returned HTTP 503")
            save_query(query)

        monkeypatch.setattr(populated_store.backend, "save_query", flaky_save)
        queries = populated_store.get_queries_by_category("weather")
        progress = []

        summary = AnswerGenerator(mock_provider).run_batch(
            queries, {c.id: c for c in populated_store.categories}, store=populated_store, on_progress=progress.append
        )

        assert summary.succeeded == 1
        assert summary.failed == 1
        assert summary.errors == ["id-1: Could not save the answer"]
        assert [e.ok for e in progress] == [False, True]
        assert populated_store.get_query("id-1").answer is None
        assert populated_store.get_query("id-2").answer
