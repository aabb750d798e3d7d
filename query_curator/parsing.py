"""
Extraction of structured query candidates from free-text model output.

Models wrap their JSON in prose or markdown fences despite instructions. The
parser strips common wrapping, takes the first array-shaped span and
validates each element. A response without a parseable array is a hard
failure.
"""

from __future__ import annotations
import json
import re
import logging
from typing import List, Optional, Any

from pydantic import ValidationError

from .models import GeneratedQuery
from .exceptions import MalformedResponseError

logger = logging.getLogger(__name__)

_ARRAY_PATTERN = re.compile(r"\[[\s\S]*\]")


def clean_response(response: str) -> str:
    """Remove markdown code fences and surrounding whitespace."""
    response = re.sub(r'```(?:json)?\s*\n?', '', response)
    return response.strip()


def extract_json_array(response: str) -> Optional[List[Any]]:
    """
    Return the first JSON array found in the response, or None.

    The span runs from the first '[' to the last ']'. If that span is not
    valid JSON, progressively shorter spans ending at earlier ']' are tried
    so trailing bracketed prose does not break an otherwise good array.
    """
    cleaned = clean_response(response)
    match = _ARRAY_PATTERN.search(cleaned)
    if not match:
        return None

    candidate = match.group(0)
    while candidate:
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            end = candidate.rfind("]", 0, len(candidate) - 1)
            if end <= 0:
                return None
            candidate = candidate[:end + 1]
            continue
        return data if isinstance(data, list) else None
    return None


def parse_generated_queries(response: str, provider: str = "unknown") -> List[GeneratedQuery]:
    """
    Parse query candidates out of a model response.

    Args:
        response: Raw model text
        provider: Provider name, for error reporting

    Returns:
        Valid candidates in response order; invalid elements are skipped

    Raises:
        MalformedResponseError: If no JSON array can be parsed
    """
    items = extract_json_array(response)
    if items is None:
        logger.warning(f"No JSON array in {provider} response ({len(response)} chars)")
        raise MalformedResponseError(provider, "no JSON array in response")

    candidates = []
    for index, item in enumerate(items):
        if isinstance(item, str):
            item = {"text": item}
        try:
            candidate = GeneratedQuery.model_validate(item)
        except ValidationError as e:
            logger.debug(f"Skipping candidate {index}: {e.errors()[0]['msg']}")
            continue
        if candidate.text.strip():
            candidates.append(candidate)

    return candidates
