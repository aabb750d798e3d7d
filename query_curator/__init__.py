"""
Query Curator

Curates natural-language test queries for a conversational AI agent:
categories and queries with CSV/JSON import and export, plus query and answer
generation through pluggable LLM providers.
"""

__version__ = "0.1.0"
__all__ = [
    "QueryStore",
    "Category",
    "QueryItem",
    "QueryGenerator",
    "AnswerGenerator",
    "create_provider",
    "QueryCuratorError",
]

from .models import Category, QueryItem
from .store import QueryStore
from .generation import QueryGenerator, AnswerGenerator
from .providers import create_provider
from .exceptions import QueryCuratorError
