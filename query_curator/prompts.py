"""
Prompt templates for query and answer generation.

The target agent is an in-car voice assistant: drivers speak short,
hands-free requests to the navigation system, and answers read as if they
were backed by live data sources for the category.
"""

from __future__ import annotations
from typing import Dict, Optional

from .models import Category, DEFAULT_CATEGORIES

QUERY_TOPICS: Dict[str, str] = {
    "weather": "weather, rain, temperature, icy roads, snow, fog",
    "traffic": "traffic conditions, congestion, jams, flow on specific roads",
    "poi_crowding": "how crowded places are, car park occupancy, crowds at attractions",
    "incident": "accidents, incidents, road works, closures, emergencies",
    "hazard": "dangerous road sections, safety warnings",
    "map": "map display, current location, route visualization",
    "route": "route search, fastest route, detours, navigation",
    "complex": "questions that combine several data sources (why the ETA changed, why a route was chosen)",
}

ANSWER_SOURCES: Dict[str, str] = {
    "weather": "the weather data API (forecast, temperature, precipitation, road icing, snow, fog)",
    "traffic": "the traffic data API (live traffic, congestion level, flow status)",
    "poi_crowding": "the POI crowding API (crowding per place, car park status, visitor counts)",
    "incident": "the incident data API (accidents, road works, closures, emergencies)",
    "hazard": "the hazard zone API (dangerous sections, sharp bends, steep grades)",
    "map": "the map API (map display, position, route drawing, markers)",
    "route": "the routing API (shortest, optimal and alternative routes)",
    "complex": "a combination of the above APIs (ETA change analysis, route recommendation reasons)",
}

QUERY_SYSTEM_PROMPT = """You write test-case utterances for an in-car navigation voice assistant.
Every utterance is something a real driver would say out loud, hands-free, while driving.

Rules:
1. Use natural, spoken phrasing ("Can I make a U-turn here?", "What's up ahead?")
2. Keep utterances short and clear enough for speech recognition (usually 2-15 words)
3. Mix question forms, commands ("Take me...", "Find...") and confirmations ("Is that right?")
4. Add 2-3 relevant tags to each utterance
5. Never repeat a situation or phrasing
6. When an utterance was inspired by a real page (navigation blogs, driver forums,
   traffic information sites) include its URL; otherwise leave sourceUrl empty

Examples:
- "Take me home" / "How do I get to the office?"
- "Where's the nearest gas station?" / "Find a rest stop with restrooms"
- "When do we arrive?" / "How much further?"
- "Why is it so slow here?" / "Take another road"
- "Any speed cameras ahead?" / "What's the speed limit here?\""""

ANSWER_SYSTEM_PROMPT = """You are the in-car AI assistant. You answer the driver using {source}.

Rules:
1. Answer as if you had just queried the data through the tool, with concrete, realistic details
2. Keep it short and clear; the user is driving
3. Mention times, numbers and conditions as if they came from live data
4. Add a recommendation or next step when useful"""


KIND_BY_NAME: Dict[str, str] = {c["name"].lower(): c["kind"] for c in DEFAULT_CATEGORIES}


def default_kind(key: Optional[str], name: Optional[str] = None) -> Optional[str]:
    """Default-category kind matching a kind key or, failing that, a default category name."""
    if key in QUERY_TOPICS:
        return key
    if name:
        return KIND_BY_NAME.get(name.strip().lower())
    return None


def category_topic(category: Category) -> str:
    kind = category.kind or default_kind(category.id, category.name)
    return QUERY_TOPICS.get(kind or "") or category.description or category.name


def answer_source(category_id: str, category_name: Optional[str] = None, kind: Optional[str] = None) -> str:
    kind = kind or default_kind(category_id, category_name)
    return ANSWER_SOURCES.get(kind or "") or category_name or category_id


def build_query_prompt(topic: str, count: int) -> str:
    """User prompt asking for a JSON array of query candidates."""
    return f"""Generate {count} in-car navigation voice queries for the category "{topic}".

Write them the way a driver actually talks to the navigation system.
Include a reference URL when you have a real one.

Respond with a JSON array only:
[
  {{"text": "query text", "tags": ["tag1", "tag2"], "sourceUrl": "reference URL or empty string"}},
  ...
]"""


def build_answer_prompts(query_text: str, source: str) -> tuple:
    """(system prompt, user prompt) for answering one query."""
    system_prompt = ANSWER_SYSTEM_PROMPT.format(source=source)
    user_prompt = f"""Driver question: "{query_text}"

Answer the question based on the results of querying {source}."""
    return system_prompt, user_prompt
