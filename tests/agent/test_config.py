"""Tests for agent/config.py -- config.yaml, environment and CLI precedence.

Covers:
    - defaults when nothing is configured
    - config.yaml sections and malformed files
    - precedence: kwargs > env > yaml
    - provider API key environment variables
    - validate_config / require_valid
"""

import os
from unittest.mock import patch

import pytest

from agent.config import (
    AgentConfig,
    ConfigValidationError,
    load_config,
    load_env_files,
    load_yaml_config,
    require_valid,
    validate_config,
)
from hive_constants import DEFAULT_MODEL, MAX_STEPS

_ENV_VARS = (
    "HIVE_PROVIDER", "HIVE_MODEL", "HIVE_BASE_URL", "HIVE_API_KEY", "HIVE_MAX_STEPS",
    "HIVE_MAX_CONTEXT_TOKENS", "HIVE_MAX_OUTPUT_TOKENS", "HIVE_MAX_RETRY_ATTEMPTS",
    "HIVE_APPROVAL_TIMEOUT", "HIVE_CLIENT_IDENTIFIER", "HIVE_CLIENT_PLATFORM",
    "OPENROUTER_API_KEY", "OPENAI_API_KEY",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config_file(tmp_path):
    def write(text):
        path = tmp_path / "config.yaml"
        path.write_text(text, encoding="utf-8")
        return path
    return write


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

class TestLoadConfig:
    def test_defaults(self, tmp_path):
        config = load_config(tmp_path / "missing.yaml", load_env=False)
        assert config.provider == "openrouter"
        assert config.model == DEFAULT_MODEL
        assert config.max_steps == MAX_STEPS
        assert config.approval_timeout is None

    def test_yaml_sections(self, config_file):
        path = config_file(
            "model:\n  provider: OpenAI\n  default: gpt-4o\n"
            "agent:\n  max_steps: 10\n  max_retry_attempts: 2\n"
            "approval:\n  timeout: 30\n"
            "client:\n  identifier: ext/1.0\n"
        )
        config = load_config(path, load_env=False)
        assert config.provider == "openai"
        assert config.model == "gpt-4o"
        assert config.max_steps == 10
        assert config.max_retry_attempts == 2
        assert config.approval_timeout == 30.0
        assert config.client_identifier == "ext/1.0"

    def test_env_overrides_yaml(self, config_file, monkeypatch):
        path = config_file("agent:\n  max_steps: 10\n")
        monkeypatch.setenv("HIVE_MAX_STEPS", "25")
        assert load_config(path, load_env=False).max_steps == 25

    def test_kwargs_override_env(self, config_file, monkeypatch):
        path = config_file("model:\n  default: from-yaml\n")
        monkeypatch.setenv("HIVE_MODEL", "from/env")
        config = load_config(path, load_env=False, model="from/kwargs", max_steps=None)
        assert config.model == "from/kwargs"
        assert config.max_steps == MAX_STEPS

    def test_unknown_override_rejected(self, tmp_path):
        with pytest.raises(ConfigValidationError, match="Unknown config option"):
            load_config(tmp_path / "missing.yaml", load_env=False, colour="blue")

    def test_bad_number(self, tmp_path, monkeypatch):
        monkeypatch.setenv("HIVE_MAX_STEPS", "lots")
        with pytest.raises(ConfigValidationError, match="max_steps"):
            load_config(tmp_path / "missing.yaml", load_env=False)


class TestApiKeys:
    def test_provider_key_env_beats_yaml(self, config_file, monkeypatch):
        path = config_file("model:\n  api_key: yaml-key\n")
        monkeypatch.setenv("OPENROUTER_API_KEY", "env-key")
        assert load_config(path, load_env=False).api_key == "env-key"

    def test_hive_api_key_beats_provider_key(self, tmp_path, monkeypatch):
        monkeypatch.setenv("OPENROUTER_API_KEY", "provider-key")
        monkeypatch.setenv("HIVE_API_KEY", "hive-key")
        assert load_config(tmp_path / "missing.yaml", load_env=False).api_key == "hive-key"

    def test_kwarg_key_wins(self, tmp_path, monkeypatch):
        monkeypatch.setenv("OPENROUTER_API_KEY", "provider-key")
        config = load_config(tmp_path / "missing.yaml", load_env=False, api_key="cli-key")
        assert config.api_key == "cli-key"

    def test_key_matches_selected_provider(self, tmp_path, monkeypatch):
        monkeypatch.setenv("OPENROUTER_API_KEY", "or-key")
        monkeypatch.setenv("OPENAI_API_KEY", "oa-key")
        config = load_config(tmp_path / "missing.yaml", load_env=False, provider="openai")
        assert config.api_key == "oa-key"


class TestFiles:
    def test_malformed_yaml(self, config_file):
        with pytest.raises(ConfigValidationError, match="Could not parse"):
            load_yaml_config(config_file("model: [unclosed\n"))

    def test_non_mapping_yaml(self, config_file):
        with pytest.raises(ConfigValidationError, match="mapping"):
            load_yaml_config(config_file("- just\n- a list\n"))

    def test_empty_yaml(self, config_file):
        assert load_yaml_config(config_file("")) == {}

    def test_env_file_loaded_from_home(self, tmp_path):
        (tmp_path / ".env").write_text("HIVE_MODEL=from/dotenv\n", encoding="utf-8")
        with patch.dict(os.environ):
            assert load_env_files(tmp_path) == tmp_path / ".env"
            assert load_config(tmp_path / "missing.yaml", load_env=False).model == "from/dotenv"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

class TestValidateConfig:
    def test_valid(self):
        results = validate_config(AgentConfig(api_key="k"))
        assert results["is_valid"]
        assert results["errors"] == []

    def test_missing_key(self):
        results = validate_config(AgentConfig())
        assert not results["is_valid"]
        assert "OPENROUTER_API_KEY" in results["errors"][0]

    def test_ollama_needs_no_key(self):
        assert validate_config(AgentConfig(provider="ollama", model="llama3.1"))["is_valid"]

    def test_unknown_provider(self):
        results = validate_config(AgentConfig(provider="acme"))
        assert "Unknown provider 'acme'" in results["errors"][0]

    def test_limits(self):
        config = AgentConfig(api_key="k", max_steps=0, max_retry_attempts=-1, approval_timeout=0)
        errors = validate_config(config)["errors"]
        assert len(errors) == 3

    def test_openrouter_model_warning(self):
        results = validate_config(AgentConfig(api_key="k", model="gpt-4o"))
        assert results["is_valid"]
        assert results["warnings"]

    def test_require_valid_raises(self):
        with pytest.raises(ConfigValidationError):
            require_valid(AgentConfig())
        config = AgentConfig(api_key="k")
        assert require_valid(config) is config
