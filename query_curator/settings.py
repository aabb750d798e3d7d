"""
User AI settings and the repositories that persist them.

Settings are loaded and saved through an injected SettingsRepository rather
than read from ambient state, so front ends and tests choose where they live.
"""

from __future__ import annotations
import json
import logging
from pathlib import Path
from typing import Optional, Protocol

from pydantic import Field, ValidationError, field_validator

from .models import CamelModel
from .providers import ProviderName, ProviderSettings, DEFAULT_MODELS
from .generation import clamp_count, DEFAULT_COUNT

logger = logging.getLogger(__name__)


class AISettings(CamelModel):
    """Provider choice, per-provider models and keys, and the default generate count."""
    provider: ProviderName = "gateway"
    gateway_model: str = DEFAULT_MODELS["gateway"]
    openai_model: str = DEFAULT_MODELS["openai"]
    gemini_model: str = DEFAULT_MODELS["gemini"]
    openai_api_key: Optional[str] = Field(None, repr=False)
    gemini_api_key: Optional[str] = Field(None, repr=False)
    generate_count: int = DEFAULT_COUNT

    @field_validator('provider', mode='before')
    @classmethod
    def accept_legacy_names(cls, v):
        aliases = {"lovable": "gateway", "chatgpt": "openai"}
        return aliases.get(v, v) if isinstance(v, str) else v

    @field_validator('generate_count', mode='before')
    @classmethod
    def clamp(cls, v):
        return clamp_count(v)

    def provider_settings(self) -> ProviderSettings:
        """Settings for the currently selected provider."""
        if self.provider == "openai":
            return ProviderSettings(provider="openai", model=self.openai_model, api_key=self.openai_api_key)
        if self.provider == "gemini":
            return ProviderSettings(provider="gemini", model=self.gemini_model, api_key=self.gemini_api_key)
        return ProviderSettings(provider="gateway", model=self.gateway_model)


class SettingsRepository(Protocol):
    """Load/save contract for AI settings."""

    def load(self) -> AISettings:
        ...

    def save(self, settings: AISettings) -> None:
        ...


class InMemorySettingsRepository:
    """Keeps settings for the lifetime of the process."""

    def __init__(self, settings: Optional[AISettings] = None):
        self._settings = settings or AISettings()

    def load(self) -> AISettings:
        return self._settings.model_copy()

    def save(self, settings: AISettings) -> None:
        self._settings = settings.model_copy()


class JsonFileSettingsRepository:
    """Stores settings as a JSON document. Missing or unreadable files yield defaults."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> AISettings:
        if not self.path.exists():
            return AISettings()
        try:
            return AISettings.model_validate(json.loads(self.path.read_text(encoding="utf-8")))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Ignoring unreadable settings file {self.path}: {type(e).__name__}")
            return AISettings()

    def save(self, settings: AISettings) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(settings.to_wire(), indent=2), encoding="utf-8")
        try:
            # the file holds API keys
            self.path.chmod(0o600)
        except OSError:
            logger.debug(f"Could not restrict permissions on {self.path}")
