"""Tests for model provider dispatch with mocked SDK clients."""

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from app.core.errors import AiProviderError
from app.core.llm_providers import (
    MISTRAL_BASE_URL,
    ProviderRequest,
    call_model_provider,
    stream_model_provider,
)
from app.core.schemas_agents import AiModelConfig


def _config(provider: str, **overrides) -> AiModelConfig:
    data = {
        "id": "cfg-1",
        "code": f"{provider}-model",
        "provider": provider,
        "model": "some-model",
        "api_key_env_var": "OPENAI_API_KEY" if provider != "anthropic" else "ANTHROPIC_API_KEY",
    }
    data.update(overrides)
    return AiModelConfig(**data)


REQUEST = ProviderRequest(system_prompt="Système", user_prompt="Question", max_output_tokens=200)


def test_anthropic_call():
    with patch("app.core.llm_providers.Anthropic") as mock_cls:
        response = MagicMock()
        response.content = [
            SimpleNamespace(type="text", text=" Bonjour "),
            SimpleNamespace(type="tool_use", text="ignored"),
        ]
        response.model_dump.return_value = {"id": "msg_1"}
        mock_cls.return_value.messages.create.return_value = response

        result = call_model_provider(
            _config("anthropic", additional_headers={"anthropic-beta": "x"}), REQUEST
        )

    assert result.content == "Bonjour"
    assert result.raw == {"id": "msg_1"}
    assert mock_cls.call_args.kwargs["default_headers"] == {"anthropic-beta": "x"}
    params = mock_cls.return_value.messages.create.call_args.kwargs
    assert params["system"] == "Système"
    assert params["max_tokens"] == 200
    assert params["messages"] == [{"role": "user", "content": "Question"}]


def test_mistral_uses_default_base_url():
    with patch("app.core.llm_providers.OpenAI") as mock_cls:
        response = MagicMock()
        response.choices = [SimpleNamespace(message=SimpleNamespace(content="Salut"))]
        response.model_dump.return_value = {}
        mock_cls.return_value.chat.completions.create.return_value = response

        result = call_model_provider(_config("mistral"), REQUEST)

    assert result.content == "Salut"
    assert mock_cls.call_args.kwargs["base_url"] == MISTRAL_BASE_URL
    messages = mock_cls.return_value.chat.completions.create.call_args.kwargs["messages"]
    assert messages[0] == {"role": "system", "content": "Système"}


def test_custom_provider_requires_base_url():
    with pytest.raises(AiProviderError, match="requires a base_url"):
        call_model_provider(_config("custom"), REQUEST)


def test_unknown_provider():
    with pytest.raises(AiProviderError, match="Unsupported AI provider"):
        call_model_provider(_config("cohere"), REQUEST)


def test_missing_api_key(monkeypatch):
    monkeypatch.delenv("MISTRAL_API_KEY", raising=False)

    with pytest.raises(AiProviderError, match="Missing API key"):
        call_model_provider(_config("mistral", api_key_env_var="MISTRAL_API_KEY"), REQUEST)


def test_anthropic_stream_yields_text():
    with patch("app.core.llm_providers.Anthropic") as mock_cls:
        stream = MagicMock()
        stream.text_stream = iter(["Bon", "", "jour"])
        mock_cls.return_value.messages.stream.return_value.__enter__.return_value = stream

        chunks = list(stream_model_provider(_config("anthropic"), REQUEST))

    assert chunks == ["Bon", "jour"]
    params = mock_cls.return_value.messages.stream.call_args.kwargs
    assert params["system"] == "Système"
    assert params["max_tokens"] == 200


def test_openai_stream_yields_deltas():
    def _chunk(content):
        return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=content))])

    with patch("app.core.llm_providers.OpenAI") as mock_cls:
        mock_cls.return_value.chat.completions.create.return_value = iter(
            [_chunk("Sa"), SimpleNamespace(choices=[]), _chunk(None), _chunk("lut")]
        )

        chunks = list(stream_model_provider(_config("openai"), REQUEST))

    assert chunks == ["Sa", "lut"]
    assert mock_cls.return_value.chat.completions.create.call_args.kwargs["stream"] is True


def test_stream_unknown_provider():
    with pytest.raises(AiProviderError, match="Unsupported AI provider"):
        stream_model_provider(_config("cohere"), REQUEST)
