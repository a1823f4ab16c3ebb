# config.py
# Immutable run configuration.
#
# The environment is read exactly once, in load_config(). The resulting
# AgentConfig is frozen and passed down the whole call chain; nothing below
# this module touches os.environ.

import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError

from react_harness.errors import ConfigError
from react_harness.models import AgentVariant

DEFAULT_MODEL_ID = "gpt-4o-mini"
DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_TOOLS = ("search", "visit_website")

# Checked in order; the first non-empty value wins.
API_KEY_ENV_VARS = ("REACT_HARNESS_API_KEY", "OPENAI_API_KEY", "OPENROUTER_API_KEY")
BASE_URL_ENV_VAR = "REACT_HARNESS_BASE_URL"
MODEL_ENV_VAR = "REACT_HARNESS_MODEL"
SERPAPI_ENV_VAR = "SERPAPI_API_KEY"


class AgentConfig(BaseModel):
    """Everything a run needs, fixed before the first step."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    model_id: str = DEFAULT_MODEL_ID
    base_url: str = DEFAULT_BASE_URL
    api_key: SecretStr = Field(..., description="Provider credential.")
    tools: tuple[str, ...] = DEFAULT_TOOLS
    variant: AgentVariant = AgentVariant.TOOL_CALLING
    max_steps: int = Field(default=10, ge=1)
    stream: bool = False

    max_model_retries: int = Field(default=3, ge=0)
    max_parse_retries: int = Field(default=2, ge=0)
    retry_backoff_seconds: float = Field(default=1.0, ge=0)
    retry_backoff_max_seconds: float = Field(default=30.0, ge=0)

    temperature: float = 0.5
    max_tokens: int = Field(default=4500, ge=1)
    observation_char_limit: int = Field(default=30000, ge=1)
    final_answer_on_step_limit: bool = False
    serpapi_api_key: Optional[SecretStr] = Field(default=None, description="Key for google_search.")


def _env(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def resolve_api_key(cli_key: Optional[str] = None) -> str:
    """CLI-provided key first, then the named environment variables."""
    if cli_key:
        return cli_key
    for name in API_KEY_ENV_VARS:
        value = _env(name)
        if value:
            return value
    raise ConfigError(
        "No API key provided. Pass --api-key or set one of: " + ", ".join(API_KEY_ENV_VARS)
    )


def load_config(
    api_key: Optional[str] = None,
    model_id: Optional[str] = None,
    base_url: Optional[str] = None,
    **overrides,
) -> AgentConfig:
    """
    Build the AgentConfig for one process.

    Explicit arguments take precedence over environment variables, which
    take precedence over the defaults. Raises ConfigError on a missing
    credential or an invalid field.
    """
    load_dotenv()
    overrides.setdefault("serpapi_api_key", _env(SERPAPI_ENV_VAR))

    try:
        return AgentConfig(
            api_key=resolve_api_key(api_key),
            model_id=model_id or _env(MODEL_ENV_VAR) or DEFAULT_MODEL_ID,
            base_url=base_url or _env(BASE_URL_ENV_VAR) or DEFAULT_BASE_URL,
            **overrides,
        )
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc
