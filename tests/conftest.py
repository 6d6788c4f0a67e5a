import sys
from pathlib import Path

import pytest

PROVIDER_ENV_VARS: tuple[str, ...] = (
    "LLM_PROVIDER",
    "FEEDBOT_MODELS",
    "AZURE_OPENAI_KEY",
    "AZURE_OPENAI_ENDPOINT",
    "AZURE_OPENAI_API_VERSION",
    "OPEN_ROUTER_KEY",
    "OPENAI_API_KEY",
    "OLLAMA_HOST",
)


def _add_src_to_path() -> None:
    root = Path(__file__).resolve().parents[1]
    src_path = root / "src"
    if str(src_path) not in sys.path:
        sys.path.insert(0, str(src_path))


_add_src_to_path()


@pytest.fixture(autouse=True)
def _clear_provider_environment(monkeypatch) -> None:
    """Keep developer credentials and provider overrides out of every test."""
    for name in PROVIDER_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
