"""Agent configuration loading and validation.

Sources, highest precedence first:

    1. explicit keyword arguments (CLI flags)
    2. environment variables (HIVE_* and the provider API keys), after
       loading $HIVE_HOME/.env, or the project .env as a dev fallback
    3. $HIVE_HOME/config.yaml
    4. built-in defaults

config.yaml layout (every key optional):

    model:
      provider: openrouter        # openrouter | openai | ollama
      default: anthropic/claude-sonnet-4
      base_url: https://openrouter.ai/api/v1
    agent:
      max_steps: 50
      max_context_tokens: 12000
      max_output_tokens: 1024
      max_retry_attempts: 5
    approval:
      timeout: 120                # seconds; omit to wait forever
    client:
      identifier: my-extension/1.0
      platform: Darwin
"""

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from hive_constants import (
    DEFAULT_MODEL,
    HIVE_HOME,
    MAX_CONTEXT_TOKENS,
    MAX_OUTPUT_TOKENS,
    MAX_RETRY_ATTEMPTS,
    MAX_STEPS,
)

logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS = ("openrouter", "openai", "ollama")

# Provider -> environment variable holding its API key
PROVIDER_KEY_ENV = {
    "openrouter": "OPENROUTER_API_KEY",
    "openai": "OPENAI_API_KEY",
}

_PROJECT_ENV = Path(__file__).resolve().parent.parent / ".env"

# AgentConfig field -> (environment variable, config.yaml section, key)
_SOURCES = {
    "provider": ("HIVE_PROVIDER", "model", "provider"),
    "model": ("HIVE_MODEL", "model", "default"),
    "base_url": ("HIVE_BASE_URL", "model", "base_url"),
    "api_key": ("HIVE_API_KEY", "model", "api_key"),
    "max_steps": ("HIVE_MAX_STEPS", "agent", "max_steps"),
    "max_context_tokens": ("HIVE_MAX_CONTEXT_TOKENS", "agent", "max_context_tokens"),
    "max_output_tokens": ("HIVE_MAX_OUTPUT_TOKENS", "agent", "max_output_tokens"),
    "max_retry_attempts": ("HIVE_MAX_RETRY_ATTEMPTS", "agent", "max_retry_attempts"),
    "approval_timeout": ("HIVE_APPROVAL_TIMEOUT", "approval", "timeout"),
    "client_identifier": ("HIVE_CLIENT_IDENTIFIER", "client", "identifier"),
    "client_platform": ("HIVE_CLIENT_PLATFORM", "client", "platform"),
}

_INT_FIELDS = ("max_steps", "max_context_tokens", "max_output_tokens", "max_retry_attempts")


class ConfigValidationError(Exception):
    """Raised when configuration is invalid."""
    pass


@dataclass
class AgentConfig:
    provider: str = "openrouter"
    model: str = DEFAULT_MODEL
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    max_steps: int = MAX_STEPS
    max_context_tokens: int = MAX_CONTEXT_TOKENS
    max_output_tokens: int = MAX_OUTPUT_TOKENS
    max_retry_attempts: int = MAX_RETRY_ATTEMPTS
    approval_timeout: Optional[float] = None
    client_identifier: Optional[str] = None
    client_platform: Optional[str] = None


def load_env_files(home: Optional[Path] = None) -> Optional[Path]:
    """Load $HIVE_HOME/.env, falling back to the project .env.

    Already-set environment variables win. Returns the file loaded, if any.
    """
    home = Path(home) if home is not None else HIVE_HOME
    for env_path in (home / ".env", _PROJECT_ENV):
        if not env_path.exists():
            continue
        try:
            load_dotenv(dotenv_path=env_path, encoding="utf-8")
        except UnicodeDecodeError:
            load_dotenv(dotenv_path=env_path, encoding="latin-1")
        logger.info("Loaded environment variables from %s", env_path)
        return env_path
    logger.info("No .env file found. Using system environment variables.")
    return None


def load_yaml_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """Parse config.yaml. A missing file is an empty config."""
    path = Path(path) if path is not None else HIVE_HOME / "config.yaml"
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigValidationError(f"Could not parse {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigValidationError(f"{path} must contain a mapping at the top level")
    return data


def _coerce(name: str, value: Any) -> Any:
    if value is None or value == "":
        return None
    try:
        if name in _INT_FIELDS:
            return int(value)
        if name == "approval_timeout":
            return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigValidationError(f"Invalid value for {name}: {value!r}") from e
    return str(value)


def load_config(config_path: Optional[Path] = None, load_env: bool = True, **overrides) -> AgentConfig:
    """Resolve an ``AgentConfig`` from kwargs, environment and config.yaml.

    ``overrides`` whose value is None are ignored, so CLI flags can be passed
    through unconditionally.
    """
    unknown = set(overrides) - {f.name for f in fields(AgentConfig)}
    if unknown:
        raise ConfigValidationError(f"Unknown config option(s): {', '.join(sorted(unknown))}")

    if load_env:
        load_env_files()
    file_config = load_yaml_config(config_path)

    values: Dict[str, Any] = {}
    for name, (env_var, section, key) in _SOURCES.items():
        value = overrides.get(name)
        if value is None:
            value = os.getenv(env_var)
        if value is None:
            section_data = file_config.get(section) or {}
            if isinstance(section_data, dict):
                value = section_data.get(key)
        value = _coerce(name, value)
        if value is not None:
            values[name] = value

    config = AgentConfig(**values)
    config.provider = config.provider.lower()

    # Provider API key env vars outrank config.yaml but not HIVE_API_KEY or kwargs
    key_env = PROVIDER_KEY_ENV.get(config.provider)
    if key_env and overrides.get("api_key") is None and not os.getenv("HIVE_API_KEY"):
        provider_key = os.getenv(key_env)
        if provider_key:
            config.api_key = provider_key

    return config


def validate_config(config: AgentConfig) -> Dict[str, Any]:
    """Check a resolved config.

    Returns:
        Dictionary with ``errors``, ``warnings`` and ``is_valid``.
    """
    errors: List[str] = []
    warnings: List[str] = []

    if config.provider not in SUPPORTED_PROVIDERS:
        errors.append(
            f"Unknown provider '{config.provider}'. Supported: {', '.join(SUPPORTED_PROVIDERS)}"
        )
    elif config.provider != "ollama" and not config.api_key:
        errors.append(
            f"No API key configured for {config.provider}. "
            f"Set {PROVIDER_KEY_ENV[config.provider]} or HIVE_API_KEY"
        )

    if not config.model:
        errors.append("No model specified")
    elif config.provider == "openrouter" and "/" not in config.model:
        warnings.append(f"OpenRouter models are usually 'vendor/model', got '{config.model}'")

    if config.max_steps < 1:
        errors.append("max_steps must be at least 1")
    if config.max_context_tokens < 1:
        errors.append("max_context_tokens must be at least 1")
    if config.max_output_tokens < 1:
        errors.append("max_output_tokens must be at least 1")
    if config.max_retry_attempts < 0:
        errors.append("max_retry_attempts cannot be negative")
    if config.approval_timeout is not None and config.approval_timeout <= 0:
        errors.append("approval timeout must be positive (omit it to wait indefinitely)")

    if config.max_output_tokens >= config.max_context_tokens:
        warnings.append("max_output_tokens is not smaller than max_context_tokens")

    return {"errors": errors, "warnings": warnings, "is_valid": not errors}


def require_valid(config: AgentConfig) -> AgentConfig:
    """Log warnings and raise ``ConfigValidationError`` on any error."""
    results = validate_config(config)
    for warning in results["warnings"]:
        logger.warning("Config: %s", warning)
    if not results["is_valid"]:
        raise ConfigValidationError("; ".join(results["errors"]))
    return config
