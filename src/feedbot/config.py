# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Environment-driven provider settings."""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Mapping, cast

from dotenv import load_dotenv

from feedbot.llm.openai_client import AZURE_DEFAULT_API_VERSION

logger = logging.getLogger(__name__)

Provider = Literal["azure", "openrouter", "openai", "ollama"]

PROVIDERS: tuple[Provider, ...] = ("azure", "openrouter", "openai", "ollama")
DEFAULT_PROVIDER: Provider = "azure"
DEFAULT_OLLAMA_HOST: str = "http://localhost:11434"

MODELS_BY_PROVIDER: dict[Provider, tuple[str, ...]] = {
    "azure": ("gpt-5-mini",),
    "openrouter": (
        "openai/gpt-4o-mini",
        "deepseek/deepseek-chat-v3",
        "anthropic/claude-3-haiku",
        "google/gemini-2.5-flash-lite",
    ),
    "openai": ("gpt-4o-mini",),
    "ollama": ("llama3.1",),
}


class ConfigError(ValueError):
    """Represent missing or invalid configuration."""


@dataclass(frozen=True)
class ProviderPacing:
    """Describe default request pacing for a provider."""

    delay_seconds: float
    combination_delay_seconds: float
    concurrency: int


PACING_BY_PROVIDER: dict[Provider, ProviderPacing] = {
    "azure": ProviderPacing(delay_seconds=2.0, combination_delay_seconds=5.0, concurrency=1),
    "openrouter": ProviderPacing(delay_seconds=0.0, combination_delay_seconds=0.0, concurrency=4),
    "openai": ProviderPacing(delay_seconds=0.0, combination_delay_seconds=0.0, concurrency=4),
    "ollama": ProviderPacing(delay_seconds=0.0, combination_delay_seconds=0.0, concurrency=4),
}


@dataclass(frozen=True)
class Settings:
    """Represent resolved provider settings.

    Attributes:
        provider: Selected provider.
        models: Models to run, in order.
        pacing: Default request pacing for the provider.
        api_key: Credential for the selected provider, if it needs one.
        endpoint: Azure endpoint or Ollama host.
        api_version: Azure API version.
    """

    provider: Provider
    models: tuple[str, ...]
    pacing: ProviderPacing
    api_key: str | None = None
    endpoint: str | None = None
    api_version: str = AZURE_DEFAULT_API_VERSION


def load_settings(
    environ: Mapping[str, str] | None = None, dotenv_path: Path | None = None
) -> Settings:
    """Resolve settings from the environment.

    When ``environ`` is omitted, a ``.env`` file is loaded first and the process
    environment is used.

    Args:
        environ: Explicit environment mapping, mainly for tests.
        dotenv_path: Optional ``.env`` location.

    Returns:
        Resolved settings.

    Raises:
        ConfigError: If the provider is unknown or its credentials are missing.
    """
    if environ is None:
        load_dotenv(dotenv_path=dotenv_path)
        environ = os.environ

    provider_name = environ.get("LLM_PROVIDER", DEFAULT_PROVIDER).strip().lower()
    if provider_name not in PROVIDERS:
        logger.warning(f"Unknown LLM provider (provider={provider_name})")
        raise ConfigError(
            f"Unknown LLM_PROVIDER: {provider_name} (expected one of {', '.join(PROVIDERS)})"
        )
    provider = cast(Provider, provider_name)
    models = _parse_models(environ.get("FEEDBOT_MODELS", "")) or MODELS_BY_PROVIDER[provider]
    pacing = PACING_BY_PROVIDER[provider]

    if provider == "azure":
        api_key = _require(environ, "AZURE_OPENAI_KEY", provider)
        endpoint = _require(environ, "AZURE_OPENAI_ENDPOINT", provider)
        api_version = environ.get("AZURE_OPENAI_API_VERSION") or AZURE_DEFAULT_API_VERSION
        return Settings(
            provider=provider,
            models=models,
            pacing=pacing,
            api_key=api_key,
            endpoint=endpoint,
            api_version=api_version,
        )
    if provider == "openrouter":
        api_key = _require(environ, "OPEN_ROUTER_KEY", provider)
        return Settings(provider=provider, models=models, pacing=pacing, api_key=api_key)
    if provider == "openai":
        api_key = _require(environ, "OPENAI_API_KEY", provider)
        return Settings(provider=provider, models=models, pacing=pacing, api_key=api_key)
    return Settings(
        provider=provider,
        models=models,
        pacing=pacing,
        endpoint=environ.get("OLLAMA_HOST") or DEFAULT_OLLAMA_HOST,
    )


def _parse_models(raw: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def _require(environ: Mapping[str, str], name: str, provider: str) -> str:
    value = environ.get(name, "").strip()
    if not value:
        logger.warning(f"Missing provider credential (provider={provider} variable={name})")
        raise ConfigError(f"{name} environment variable is required for {provider}")
    return value
