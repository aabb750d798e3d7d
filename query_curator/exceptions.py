"""Custom exceptions for Query Curator."""

from typing import List, Optional


class QueryCuratorError(Exception):
    """Base exception for Query Curator errors."""
    pass


class InputValidationError(QueryCuratorError):
    """Raised when user input has a bad shape or size, before any network call."""
    pass


class CategoryNotFoundError(QueryCuratorError):
    """Raised when a category id does not reference an existing category."""

    def __init__(self, category_id: str):
        self.category_id = category_id
        super().__init__(f"Unknown category: {category_id}")


class QueryNotFoundError(QueryCuratorError):
    """Raised when a query id does not reference an existing query."""

    def __init__(self, query_id: str):
        self.query_id = query_id
        super().__init__(f"Unknown query: {query_id}")


class CSVImportError(QueryCuratorError):
    """
    Raised when a CSV payload is rejected wholesale (size or row ceiling).

    Attributes:
        errors: Human-readable reasons, reported like row-level errors
    """

    def __init__(self, errors: List[str]):
        self.errors = errors
        super().__init__("; ".join(errors))


class StorageError(QueryCuratorError):
    """Raised when the storage backend fails."""
    pass


class ConfigurationError(QueryCuratorError):
    """Raised when configuration is invalid or missing."""
    pass


class AuthenticationError(QueryCuratorError):
    """Raised when a request carries no access token or an invalid one."""
    pass


class ProviderError(QueryCuratorError):
    """
    Base class for upstream generation provider failures.

    Attributes:
        provider: Provider name that failed
        status_code: HTTP status to surface to callers of the server functions
        user_message: Message safe to show to the end user
    """

    status_code = 502
    default_message = "The AI service returned an error"

    def __init__(self, provider: str, detail: Optional[str] = None, user_message: Optional[str] = None):
        self.provider = provider
        self.detail = detail
        self.user_message = user_message or self.default_message
        message = f"{provider}: {self.user_message}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class InvalidAPIKeyError(ProviderError):
    """The provider rejected the API key."""
    status_code = 401
    default_message = "The API key is invalid or missing"


class RateLimitExceededError(ProviderError):
    """The provider rate limit was hit."""
    status_code = 429
    default_message = "Request limit exceeded. Please try again later"


class QuotaExceededError(ProviderError):
    """The account ran out of credits or quota."""
    status_code = 402
    default_message = "Credits or quota exhausted. Please top up your account"


class MalformedResponseError(ProviderError):
    """The provider answered, but the response could not be parsed."""
    status_code = 502
    default_message = "Could not parse the AI response"


class UpstreamError(ProviderError):
    """Any other provider failure."""
    status_code = 502
    default_message = "The AI service returned an error"
