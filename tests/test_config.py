from unittest.mock import patch

import pytest
from pydantic import ValidationError

from react_harness.config import (
    API_KEY_ENV_VARS,
    DEFAULT_MODEL_ID,
    SERPAPI_ENV_VAR,
    AgentConfig,
    load_config,
    resolve_api_key,
)
from react_harness.errors import ConfigError
from react_harness.models import AgentVariant


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (*API_KEY_ENV_VARS, SERPAPI_ENV_VAR, "REACT_HARNESS_BASE_URL", "REACT_HARNESS_MODEL"):
        monkeypatch.delenv(name, raising=False)
    with patch("react_harness.config.load_dotenv"):
        yield monkeypatch


def test_cli_key_wins_over_environment(clean_env):
    clean_env.setenv("OPENAI_API_KEY", "env-key")
    assert resolve_api_key("cli-key") == "cli-key"


def test_environment_variables_are_checked_in_order(clean_env):
    clean_env.setenv("OPENROUTER_API_KEY", "router-key")
    assert resolve_api_key() == "router-key"

    clean_env.setenv("OPENAI_API_KEY", "openai-key")
    assert resolve_api_key() == "openai-key"

    clean_env.setenv("REACT_HARNESS_API_KEY", "harness-key")
    assert resolve_api_key() == "harness-key"


def test_blank_environment_value_is_skipped(clean_env):
    clean_env.setenv("REACT_HARNESS_API_KEY", "   ")
    clean_env.setenv("OPENAI_API_KEY", "openai-key")
    assert resolve_api_key() == "openai-key"


def test_missing_key_is_config_error():
    with pytest.raises(ConfigError, match="No API key provided"):
        load_config()


def test_load_config_defaults_and_overrides(clean_env):
    clean_env.setenv("REACT_HARNESS_MODEL", "env-model")

    config = load_config(api_key="k", variant=AgentVariant.CODE, max_steps=3)

    assert config.model_id == "env-model"
    assert config.variant is AgentVariant.CODE
    assert config.max_steps == 3
    assert config.api_key.get_secret_value() == "k"


def test_explicit_arguments_beat_environment(clean_env):
    clean_env.setenv("REACT_HARNESS_BASE_URL", "http://env:8000/v1")
    config = load_config(api_key="k", base_url="http://cli:8000/v1", model_id=DEFAULT_MODEL_ID)
    assert config.base_url == "http://cli:8000/v1"


def test_invalid_field_is_config_error():
    with pytest.raises(ConfigError, match="Invalid configuration"):
        load_config(api_key="k", max_steps=0)


def test_config_is_frozen_and_hides_key():
    config = AgentConfig(api_key="super-secret")

    with pytest.raises(ValidationError):
        config.max_steps = 99
    assert "super-secret" not in repr(config)


def test_serpapi_key_is_read_from_environment(clean_env):
    assert load_config(api_key="k").serpapi_api_key is None

    clean_env.setenv(SERPAPI_ENV_VAR, "serp-key")
    config = load_config(api_key="k", tools=("google_search",))
    assert config.serpapi_api_key.get_secret_value() == "serp-key"
    assert "serp-key" not in repr(config)


def test_explicit_serpapi_key_wins(clean_env):
    clean_env.setenv(SERPAPI_ENV_VAR, "serp-key")
    assert load_config(api_key="k", serpapi_api_key="cli").serpapi_api_key.get_secret_value() == "cli"
