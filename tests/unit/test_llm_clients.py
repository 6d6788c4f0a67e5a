from types import SimpleNamespace
from typing import Any

import httpx
import ollama
import openai
import pytest

from feedbot.llm import OllamaClient, OpenAIClient
from feedbot.llm.openai_client import supports_temperature
from feedbot.llm_client import ChatMessage, ProviderError, UsageMetadata

MESSAGES = [ChatMessage(role="user", content="Explain the failing test.")]


class _FakeCompletions:
    def __init__(self, response: Any = None, error: Exception | None = None) -> None:
        self._response = response
        self._error = error
        self.params: dict[str, Any] = {}

    def create(self, **params: Any) -> Any:
        self.params = params
        if self._error is not None:
            raise self._error
        return self._response


def _sdk(completions: _FakeCompletions) -> Any:
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


def _completion(content: str, cost: float | None = None) -> Any:
    usage = SimpleNamespace(prompt_tokens=12, completion_tokens=3, total_tokens=15, cost=cost)
    message = SimpleNamespace(content=content)
    return SimpleNamespace(id="gen-1", choices=[SimpleNamespace(message=message)], usage=usage)


class _FakeOllama:
    def __init__(self, response: Any = None, error: Exception | None = None) -> None:
        self._response = response
        self._error = error
        self.kwargs: dict[str, Any] = {}

    def chat(self, **kwargs: Any) -> Any:
        self.kwargs = kwargs
        if self._error is not None:
            raise self._error
        return self._response


def test_ph3_llm_001_openai_client_returns_content_and_usage() -> None:
    completions = _FakeCompletions(response=_completion("Check bounds.", cost=0.0004))
    client = OpenAIClient(provider="openrouter", include_cost=True, client=_sdk(completions))

    result = client.process("openai/gpt-4o-mini", MESSAGES, temperature=0.2, max_tokens=100)

    assert result.content == "Check bounds."
    assert result.usage == UsageMetadata(
        prompt_tokens=12,
        completion_tokens=3,
        total_tokens=15,
        cost_usd=0.0004,
        response_id="gen-1",
    )
    assert completions.params["temperature"] == 0.2
    assert completions.params["max_tokens"] == 100
    assert completions.params["extra_body"] == {"usage": {"include": True}}
    assert completions.params["messages"] == [
        {"role": "user", "content": "Explain the failing test."}
    ]


def test_ph3_llm_002_reasoning_models_drop_sampling_parameters() -> None:
    completions = _FakeCompletions(response=_completion("ok"))
    client = OpenAIClient(provider="azure", client=_sdk(completions))

    client.process("gpt-5-mini", MESSAGES, temperature=0.2, max_tokens=50)

    assert "temperature" not in completions.params
    assert completions.params["max_completion_tokens"] == 50
    assert "extra_body" not in completions.params
    assert supports_temperature("openai/gpt-4o-mini")
    assert not supports_temperature("openai/gpt-5-mini")


def test_ph3_llm_003_openai_rate_limit_maps_to_rate_limit_kind(caplog) -> None:
    request = httpx.Request("POST", "https://openrouter.ai/api/v1/chat/completions")
    response = httpx.Response(429, request=request)
    error = openai.RateLimitError("Too many requests", response=response, body=None)
    client = OpenAIClient(client=_sdk(_FakeCompletions(error=error)))
    caplog.set_level("WARNING")

    with pytest.raises(ProviderError) as excinfo:
        client.process("gpt-4o-mini", MESSAGES)

    assert excinfo.value.is_rate_limit
    assert isinstance(excinfo.value.__cause__, openai.RateLimitError)
    assert any("rate limited" in record.message for record in caplog.records)


def test_ph3_llm_004_openai_connection_failure_is_terminal() -> None:
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    error = openai.APIConnectionError(request=request)
    client = OpenAIClient(client=_sdk(_FakeCompletions(error=error)))

    with pytest.raises(ProviderError) as excinfo:
        client.process("gpt-4o-mini", MESSAGES)

    assert excinfo.value.kind == "terminal"


def test_ph3_llm_005_openai_missing_choices_yield_empty_content() -> None:
    response = SimpleNamespace(id=None, choices=[], usage=None)
    client = OpenAIClient(client=_sdk(_FakeCompletions(response=response)))

    result = client.process("gpt-4o-mini", MESSAGES)

    assert result.content == ""
    assert result.usage is None


def test_ph3_llm_006_ollama_client_maps_options_and_usage() -> None:
    fake = _FakeOllama(
        response={
            "message": {"role": "assistant", "content": "Look at the loop."},
            "prompt_eval_count": 40,
            "eval_count": 8,
        }
    )
    client = OllamaClient(provider_url="http://localhost:11434", client=fake)

    result = client.process("llama3.1", MESSAGES, temperature=0.2, max_tokens=64)

    assert result.content == "Look at the loop."
    assert result.usage == UsageMetadata(
        prompt_tokens=40, completion_tokens=8, total_tokens=48, cost_usd=0.0
    )
    assert fake.kwargs["options"] == {"temperature": 0.2, "num_predict": 64}
    assert fake.kwargs["stream"] is False


def test_ph3_llm_007_ollama_status_429_is_rate_limit() -> None:
    fake = _FakeOllama(error=ollama.ResponseError("slow down", status_code=429))
    client = OllamaClient(provider_url="http://localhost:11434", client=fake)

    with pytest.raises(ProviderError) as excinfo:
        client.process("llama3.1", MESSAGES)

    assert excinfo.value.is_rate_limit


def test_ph3_llm_008_ollama_other_errors_are_terminal() -> None:
    fake = _FakeOllama(error=ollama.ResponseError("model not found", status_code=404))
    client = OllamaClient(provider_url="http://localhost:11434", client=fake)

    with pytest.raises(ProviderError) as excinfo:
        client.process("missing", MESSAGES)

    assert excinfo.value.kind == "terminal"
    assert "model not found" in str(excinfo.value)
