"""
CSV encoding and decoding for query datasets.

Export quotes every free-text field, doubles embedded quotes and writes
newlines as the two characters backslash-n so each record stays on one line.
Import is line oriented and header driven, and it sanitizes every row before
it becomes a query draft: size and row ceilings, category checks, length caps
and spreadsheet formula neutralization.
"""

from __future__ import annotations
import json
import logging
from dataclasses import dataclass
from typing import List, Dict, Optional, Iterable, Set, Tuple

from pydantic import ValidationError

from .models import QueryItem, QueryDraft, TokenUsage, QUERY_SOURCES, QUERY_STATUSES
from .exceptions import CSVImportError

logger = logging.getLogger(__name__)

EXPORT_HEADERS = [
    "id", "categoryId", "text", "tags", "source", "status", "answer", "sourceUrl",
    "aiEngine", "queryLength", "answerLength", "queryTokens", "answerTokens",
    "createdAt", "updatedAt",
]

TAG_SEPARATOR = ";"
ESCAPED_NEWLINE = "\\n"

# Leading characters that spreadsheets evaluate as formulas
FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")
FORMULA_GUARD = "'"


@dataclass
class ImportLimits:
    """Ceilings applied to CSV imports."""
    max_bytes: int = 1024 * 1024
    max_rows: int = 1000
    max_text_length: int = 1000
    max_answer_length: int = 10000
    max_tags: int = 20
    max_tag_length: int = 50


DEFAULT_LIMITS = ImportLimits()


# ==================== Encoding ====================

def _quote(value: Optional[str]) -> str:
    text = (value or "").replace('"', '""').replace("\r\n", "\n").replace("\n", ESCAPED_NEWLINE)
    return f'"{text}"'


def _usage_json(usage: Optional[TokenUsage]) -> str:
    if usage is None:
        return '""'
    return _quote(json.dumps(usage.to_wire(), separators=(",", ":")))


def encode_query_row(query: QueryItem) -> str:
    """Encode a single query as one CSV line in EXPORT_HEADERS order."""
    fields = [
        query.id,
        query.category_id,
        _quote(query.text),
        _quote(TAG_SEPARATOR.join(query.tags)),
        query.source,
        query.status,
        _quote(query.answer),
        _quote(query.source_url),
        _quote(query.ai_engine),
        str(query.query_length) if query.query_length is not None else "",
        str(query.answer_length) if query.answer_length is not None else "",
        _usage_json(query.query_tokens),
        _usage_json(query.answer_tokens),
        query.created_at,
        query.updated_at,
    ]
    return ",".join(fields)


def encode_queries_csv(queries: Iterable[QueryItem]) -> str:
    """Encode queries as CSV text with a header row."""
    lines = [",".join(EXPORT_HEADERS)]
    lines.extend(encode_query_row(q) for q in queries)
    return "\n".join(lines)


# ==================== Decoding ====================

def split_csv_line(line: str) -> List[str]:
    """
    Split one CSV line into trimmed fields.

    A quote toggles the inside-quotes state; commas inside quotes are kept.
    A doubled quote inside a quoted field yields a single quote character.
    """
    values: List[str] = []
    current: List[str] = []
    in_quotes = False
    i = 0

    while i < len(line):
        char = line[i]
        if char == '"':
            if in_quotes and i + 1 < len(line) and line[i + 1] == '"':
                current.append('"')
                i += 2
                continue
            in_quotes = not in_quotes
        elif char == "," and not in_quotes:
            values.append("".join(current).strip())
            current = []
        else:
            current.append(char)
        i += 1

    values.append("".join(current).strip())
    return values


def unescape_newlines(value: str) -> str:
    return value.replace(ESCAPED_NEWLINE, "\n")


def decode_csv_rows(content: str) -> List[Tuple[int, Dict[str, str]]]:
    """
    Decode CSV text into (line number, {column: value}) pairs.

    Column order comes from the header row by name. When the first line has
    neither a 'text' nor a 'categoryId' column it is treated as data and the
    export column order is used positionally. Blank lines are skipped.
    """
    lines = content.strip().split("\n")
    if not lines or not lines[0].strip():
        return []

    first = split_csv_line(lines[0].rstrip("\r"))
    if "text" in first or "categoryId" in first:
        headers = first
        start = 1
    else:
        headers = EXPORT_HEADERS
        start = 0

    rows = []
    for index in range(start, len(lines)):
        line = lines[index].rstrip("\r")
        if not line.strip():
            continue
        values = split_csv_line(line)
        row = {
            name: values[position] if position < len(values) else ""
            for position, name in enumerate(headers)
        }
        rows.append((index + 1, row))
    return rows


# ==================== Sanitization ====================

def neutralize_formula(value: str) -> str:
    """Prefix values that a spreadsheet would evaluate as a formula."""
    if value and value.startswith(FORMULA_PREFIXES):
        return FORMULA_GUARD + value
    return value


def sanitize_text(value: str, max_length: int) -> str:
    return neutralize_formula(value)[:max_length]


def sanitize_tags(raw: str, limits: ImportLimits) -> List[str]:
    tags = [t.strip() for t in raw.split(TAG_SEPARATOR) if t.strip()]
    return [sanitize_text(t, limits.max_tag_length) for t in tags[:limits.max_tags]]


def coerce_choice(value: str, allowed: Tuple[str, ...], default: str) -> str:
    value = (value or "").strip().lower()
    return value if value in allowed else default


def _optional_int(value: str) -> Optional[int]:
    try:
        return int(value) if value else None
    except ValueError:
        return None


def _optional_usage(value: str) -> Optional[TokenUsage]:
    if not value:
        return None
    try:
        return TokenUsage.model_validate(json.loads(value))
    except (json.JSONDecodeError, ValidationError, TypeError):
        return None


def row_to_draft(row: Dict[str, str], limits: ImportLimits = DEFAULT_LIMITS) -> QueryDraft:
    """Build a sanitized draft from a decoded row. Category checks are the caller's job."""
    text = sanitize_text(unescape_newlines(row.get("text", "")), limits.max_text_length)
    answer_raw = unescape_newlines(row.get("answer", ""))
    answer = sanitize_text(answer_raw, limits.max_answer_length) if answer_raw else None
    ai_engine = row.get("aiEngine", "")

    return QueryDraft(
        category_id=row.get("categoryId", "").strip(),
        text=text,
        tags=sanitize_tags(row.get("tags", ""), limits),
        source=coerce_choice(row.get("source", ""), QUERY_SOURCES, "manual"),
        status=coerce_choice(row.get("status", ""), QUERY_STATUSES, "active"),
        answer=answer,
        source_url=row.get("sourceUrl") or None,
        ai_engine=neutralize_formula(ai_engine) if ai_engine else None,
        query_length=_optional_int(row.get("queryLength", "")),
        answer_length=_optional_int(row.get("answerLength", "")),
        query_tokens=_optional_usage(row.get("queryTokens", "")),
        answer_tokens=_optional_usage(row.get("answerTokens", "")),
    )


def parse_import(
    content: str,
    category_ids: Set[str],
    limits: ImportLimits = DEFAULT_LIMITS
) -> Tuple[List[QueryDraft], List[str]]:
    """
    Parse and validate a CSV import.

    Args:
        content: Raw CSV text
        category_ids: Ids of categories that currently exist
        limits: Import ceilings

    Returns:
        (valid drafts, row-level error messages)

    Raises:
        CSVImportError: If the payload is rejected wholesale
    """
    size = len(content.encode("utf-8"))
    if size > limits.max_bytes:
        raise CSVImportError([
            f"File is too large ({size} bytes). The maximum is {limits.max_bytes // 1024} KB."
        ])

    rows = decode_csv_rows(content)
    if not rows:
        raise CSVImportError(["CSV file has no data rows."])
    if len(rows) > limits.max_rows:
        raise CSVImportError([
            f"Too many rows ({len(rows)}). The maximum is {limits.max_rows}."
        ])

    drafts: List[QueryDraft] = []
    errors: List[str] = []

    for line_no, row in rows:
        category_id = row.get("categoryId", "").strip()
        if not category_id or category_id not in category_ids:
            errors.append(f"Row {line_no}: invalid category id '{category_id}'.")
            continue
        if not row.get("text", "").strip():
            errors.append(f"Row {line_no}: query text is empty.")
            continue
        try:
            drafts.append(row_to_draft(row, limits))
        except ValidationError as e:
            errors.append(f"Row {line_no}: {e.errors()[0]['msg']}.")

    logger.info(f"Parsed CSV import: {len(drafts)} valid rows, {len(errors)} errors")
    return drafts, errors
