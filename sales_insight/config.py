"""
Explicit runtime configuration.

Rationale:
- The pipeline receives a Settings object at construction time instead of
  reading the environment inside the model client, so tests can build one
  directly and inject a fake client.
- Settings.from_env() is the only place that touches os.environ.
"""

import os
from typing import Optional

from pydantic import BaseModel, Field

DEFAULT_MODEL = "gemini-2.0-flash"
DEFAULT_LANGUAGE = "zh-Hant"

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in _TRUE_VALUES


def _env_number(name: str, cast, default):
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return cast(value.strip())


class Settings(BaseModel):
    api_key: Optional[str] = None
    model_name: str = DEFAULT_MODEL
    language: str = DEFAULT_LANGUAGE

    # Generation parameters: deterministic-leaning sampling
    temperature: float = 0.2
    top_p: float = 0.95
    top_k: int = 40
    max_output_tokens: int = 8192
    json_mode: bool = True
    request_timeout: Optional[float] = Field(default=None, gt=0)

    row_limit: Optional[int] = Field(default=None, gt=0)

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables (call after load_dotenv)."""
        return cls(
            api_key=os.getenv("GEMINI_API_KEY") or os.getenv("LLM_API_KEY"),
            model_name=os.getenv("GEMINI_MODEL") or DEFAULT_MODEL,
            language=os.getenv("PIPELINE_LANGUAGE") or DEFAULT_LANGUAGE,
            temperature=_env_number("GEMINI_TEMPERATURE", float, 0.2),
            max_output_tokens=_env_number("GEMINI_MAX_OUTPUT_TOKENS", int, 8192),
            json_mode=_env_bool("GEMINI_JSON_MODE", True),
            request_timeout=_env_number("GEMINI_TIMEOUT", float, None),
            row_limit=_env_number("ROW_LIMIT", int, None),
        )
