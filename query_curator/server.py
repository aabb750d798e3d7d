"""
HTTP server functions for query and answer generation.

Two POST endpoints with JSON bodies, CORS restricted to configured origins:

- /generate-queries: category in, list of query candidates out
- /generate-answer: one query in, answer out (requires a bearer token)

Bad input is rejected with 400 before any provider call. Provider failures map
to distinct statuses and messages. Anything unexpected is logged server side
by type only and reported as a generic 500.
"""

from __future__ import annotations
import logging
from typing import Any, Callable, Optional

import requests
from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import Field, ValidationError

from .config import AppConfig, load_config
from .generation import QueryGenerator, AnswerGenerator, DEFAULT_COUNT
from .models import CamelModel, Category, utc_now_iso
from .providers import GenerationProvider, ProviderSettings, create_provider
from .exceptions import (
    InputValidationError,
    ProviderError,
    ConfigurationError,
    AuthenticationError,
)

logger = logging.getLogger(__name__)

TokenVerifier = Callable[[str], Optional[str]]
ProviderFactory = Callable[[ProviderSettings], GenerationProvider]


# ==================== Request Models ====================

class ProviderFields(CamelModel):
    """Provider selection fields shared by both endpoints."""
    provider: str = "gateway"
    model: Optional[str] = None
    gemini_api_key: Optional[str] = Field(None, repr=False)
    gemini_model: Optional[str] = None
    openai_api_key: Optional[str] = Field(None, repr=False)
    openai_model: Optional[str] = None

    def provider_settings(self) -> ProviderSettings:
        try:
            settings = ProviderSettings(provider=self.provider)
        except ValidationError:
            raise InputValidationError("Invalid AI provider")

        if settings.provider == "openai":
            return ProviderSettings(provider="openai", model=self.openai_model, api_key=self.openai_api_key)
        if settings.provider == "gemini":
            return ProviderSettings(provider="gemini", model=self.gemini_model, api_key=self.gemini_api_key)
        return ProviderSettings(provider="gateway", model=self.model)


class GenerateQueriesRequest(ProviderFields):
    category_id: str = Field(..., min_length=1, max_length=100)
    category_name: Optional[str] = Field(None, max_length=200)
    count: Any = DEFAULT_COUNT


class GenerateAnswerRequest(ProviderFields):
    query: str = Field(..., min_length=1, max_length=1000)
    category_id: str = Field(..., min_length=1, max_length=100)
    category_name: Optional[str] = Field(None, max_length=200)


def _category(category_id: str, category_name: Optional[str]) -> Category:
    now = utc_now_iso()
    return Category(id=category_id, name=category_name or category_id, created_at=now, updated_at=now)


# ==================== Auth ====================

class RemoteTokenVerifier:
    """Checks access tokens against the hosted auth provider and returns the user id."""

    def __init__(self, base_url: str, api_key: str, timeout: float = 10.0):
        self.url = base_url.rstrip("/") + "/auth/v1/user"
        self.api_key = api_key
        self.timeout = timeout

    def __call__(self, token: str) -> Optional[str]:
        try:
            response = requests.get(
                self.url,
                headers={"apikey": self.api_key, "Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Token verification failed: {type(e).__name__}")
            return None
        if response.status_code != 200:
            return None
        return response.json().get("id")


def _reject_all(token: str) -> Optional[str]:
    return None


def _error(status: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status, content={"error": message})


# ==================== App ====================

def create_app(
    config: Optional[AppConfig] = None,
    provider_factory: Optional[ProviderFactory] = None,
    token_verifier: Optional[TokenVerifier] = None
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        config: Application config (loaded from files and environment if None)
        provider_factory: Builds a provider from validated settings
        token_verifier: Maps an access token to a user id, or None if invalid
    """
    config = config or load_config()

    if provider_factory is None:
        def provider_factory(settings: ProviderSettings) -> GenerationProvider:
            return create_provider(settings, config.gateway_api_key, config.gateway_url)

    if token_verifier is None:
        if config.database_url and config.database_key:
            token_verifier = RemoteTokenVerifier(config.database_url, config.database_key)
        else:
            logger.warning("No auth provider configured; /generate-answer will reject every request")
            token_verifier = _reject_all

    app = FastAPI(title="Query Curator", description="Query and answer generation functions", version="0.1.0")

    @app.middleware("http")
    async def catch_unexpected(request: Request, call_next):
        # registered before CORSMiddleware, which therefore wraps this response too
        try:
            return await call_next(request)
        except Exception as e:
            # Only the type is logged; details may contain user data or keys
            logger.error(f"{request.url.path}: request failed ({type(e).__name__})")
            return _error(500, "An unexpected error occurred")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.allowed_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
    )

    @app.exception_handler(RequestValidationError)
    async def on_request_validation(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        field = ".".join(str(p) for p in errors[0]["loc"][1:]) if errors else "body"
        return _error(400, f"Invalid request field: {field or 'body'}")

    @app.exception_handler(InputValidationError)
    async def on_input_error(request: Request, exc: InputValidationError):
        return _error(400, str(exc))

    @app.exception_handler(ProviderError)
    async def on_provider_error(request: Request, exc: ProviderError):
        logger.warning(f"{request.url.path}: {type(exc).__name__} from {exc.provider}")
        return _error(exc.status_code, exc.user_message)

    @app.exception_handler(AuthenticationError)
    async def on_authentication_error(request: Request, exc: AuthenticationError):
        return _error(401, str(exc))

    @app.exception_handler(ConfigurationError)
    async def on_configuration_error(request: Request, exc: ConfigurationError):
        logger.error(f"{request.url.path}: configuration error")
        return _error(500, "The AI service is not configured")

    def authenticated_user(authorization: Optional[str] = Header(None)) -> str:
        """Resolve the bearer token to a user id before the body is validated."""
        if not authorization or not authorization.startswith("Bearer "):
            raise AuthenticationError("Authentication required")
        user_id = token_verifier(authorization[len("Bearer "):])
        if not user_id:
            raise AuthenticationError("Invalid access token")
        return user_id

    @app.get("/health")
    def health_check():
        return {"status": "healthy"}

    @app.post("/generate-queries")
    def generate_queries(req: GenerateQueriesRequest):
        provider = provider_factory(req.provider_settings())
        candidates = QueryGenerator(provider).generate(_category(req.category_id, req.category_name), req.count)
        return {
            "success": True,
            "data": [c.to_wire() for c in candidates],
            "engine": provider.engine,
            "timestamp": utc_now_iso(),
        }

    @app.post("/generate-answer")
    def generate_answer(req: GenerateAnswerRequest, user_id: str = Depends(authenticated_user)):
        logger.info(f"generate-answer: authenticated user {user_id}")

        provider = provider_factory(req.provider_settings())
        result = AnswerGenerator(provider).generate(req.query, req.category_id, req.category_name)
        body = {
            "success": True,
            "answer": result.answer,
            "engine": result.engine,
            "answerLength": result.answer_length,
            "timestamp": utc_now_iso(),
        }
        if result.usage:
            body["usage"] = result.usage.to_wire()
        return body

    return app


def run(config: Optional[AppConfig] = None) -> None:
    """Serve the app with uvicorn."""
    import uvicorn

    config = config or load_config()
    uvicorn.run(create_app(config), host=config.host, port=config.port)
