# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""LLM client implementations for feedbot."""

from feedbot.llm.ollama_client import OllamaClient
from feedbot.llm.openai_client import OPENROUTER_BASE_URL, OpenAIClient

__all__ = ["OllamaClient", "OpenAIClient", "OPENROUTER_BASE_URL"]
