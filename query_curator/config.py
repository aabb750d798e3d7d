from __future__ import annotations
import os
import sys
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Dict, List, Optional

# stdlib TOML in 3.11+
try:
    import tomllib  # type: ignore[attr-defined]
except Exception:  # pragma: no cover
    tomllib = None  # we'll just skip reading if unavailable

from .csv_codec import ImportLimits
from .providers import DEFAULT_GATEWAY_URL

USER_CFG = Path.home() / ".config" / "query-curator" / "config.toml"
PROJECT_CFG = Path.cwd() / "query-curator.toml"
ENV_PREFIX = "QUERY_CURATOR_"

DEFAULT_ORIGINS = ["http://localhost:5173", "http://localhost:8080"]


@dataclass
class AppConfig:
    gateway_url: str = DEFAULT_GATEWAY_URL
    gateway_api_key: Optional[str] = None
    allowed_origins: List[str] = field(default_factory=lambda: list(DEFAULT_ORIGINS))
    data_file: str = str(Path.home() / ".local" / "share" / "query-curator" / "data.json")
    settings_file: str = str(Path.home() / ".config" / "query-curator" / "ai-settings.json")
    database_url: Optional[str] = None
    database_key: Optional[str] = None
    host: str = "127.0.0.1"
    port: int = 8000
    max_csv_bytes: int = 1024 * 1024
    max_csv_rows: int = 1000
    max_text_length: int = 1000
    max_answer_length: int = 10000
    max_tags: int = 20
    max_tag_length: int = 50

    def import_limits(self) -> ImportLimits:
        return ImportLimits(
            max_bytes=self.max_csv_bytes,
            max_rows=self.max_csv_rows,
            max_text_length=self.max_text_length,
            max_answer_length=self.max_answer_length,
            max_tags=self.max_tags,
            max_tag_length=self.max_tag_length,
        )


INT_FIELDS = {"port", "max_csv_bytes", "max_csv_rows", "max_text_length", "max_answer_length", "max_tags", "max_tag_length"}


def _read_toml(path: Path) -> Dict:
    if not path.exists():
        return {}
    if tomllib is None:
        print(f"Warning: tomllib not available; ignoring {path}", file=sys.stderr)
        return {}
    with path.open("rb") as f:
        return tomllib.load(f)


def _coerce(name: str, v):
    if v is None:
        return None
    try:
        if name in INT_FIELDS:
            return int(v)
        if name == "allowed_origins":
            if isinstance(v, str):
                return [o.strip() for o in v.split(",") if o.strip()]
            return [str(o) for o in v]
    except (TypeError, ValueError):
        return None
    return v


def _env_overrides() -> Dict:
    env = {f.name: os.getenv(ENV_PREFIX + f.name.upper()) for f in fields(AppConfig)}
    # the gateway secret is also accepted under the hosting platform's name
    if env["gateway_api_key"] is None:
        env["gateway_api_key"] = os.getenv("LOVABLE_API_KEY")
    return env


def load_config(user_cfg: Path = USER_CFG, project_cfg: Path = PROJECT_CFG) -> AppConfig:
    # merge: defaults -> user -> project -> env
    settings = AppConfig()
    names = {f.name for f in fields(AppConfig)}

    def overlay(d: Dict):
        if not isinstance(d, dict): return
        for k, v in d.items():
            if k in names:
                value = _coerce(k, v)
                if value is not None:
                    setattr(settings, k, value)

    overlay(_read_toml(user_cfg))
    overlay(_read_toml(project_cfg))
    overlay(_env_overrides())
    return settings
