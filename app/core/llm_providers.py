"""Model provider dispatch: Anthropic through its SDK, OpenAI-compatible APIs through openai."""

import os
from collections.abc import Iterator
from typing import Any

from anthropic import Anthropic
from openai import OpenAI
from pydantic import BaseModel, Field

from app.core.config import get_settings
from app.core.errors import AiProviderError
from app.core.logging import get_logger
from app.core.schemas_agents import AiModelConfig

logger = get_logger(__name__)

MISTRAL_BASE_URL = "https://api.mistral.ai/v1"
OPENAI_COMPATIBLE_PROVIDERS = {"openai", "mistral", "custom"}


class ProviderRequest(BaseModel):
    """Prompts and generation options sent to a model."""

    system_prompt: str
    user_prompt: str
    max_output_tokens: int | None = None
    temperature: float | None = None


class ProviderResponse(BaseModel):
    """Text produced by a model with the provider's raw payload."""

    content: str
    raw: dict[str, Any] = Field(default_factory=dict)


def resolve_api_key(config: AiModelConfig) -> str:
    """
    Resolve the API key a model configuration points to.

    The process environment is read first, then the settings field of the same name.

    Raises:
        AiProviderError: If no key is available
    """
    env_var = config.api_key_env_var
    value = os.environ.get(env_var) or getattr(get_settings(), env_var, None)
    if not value:
        raise AiProviderError(f"Missing API key for model {config.code} ({env_var})")
    return value


def _extra_headers(config: AiModelConfig) -> dict[str, str] | None:
    if not config.additional_headers:
        return None
    return {key: str(value) for key, value in config.additional_headers.items()}


def _anthropic_client(config: AiModelConfig) -> Anthropic:
    return Anthropic(
        api_key=resolve_api_key(config),
        base_url=config.base_url or None,
        default_headers=_extra_headers(config),
    )


def _anthropic_params(config: AiModelConfig, request: ProviderRequest) -> dict[str, Any]:
    params: dict[str, Any] = {
        "model": config.model,
        "max_tokens": request.max_output_tokens or get_settings().DEFAULT_MAX_OUTPUT_TOKENS,
        "messages": [{"role": "user", "content": request.user_prompt}],
    }
    if request.system_prompt:
        params["system"] = request.system_prompt
    if request.temperature is not None:
        params["temperature"] = request.temperature
    return params


def _call_anthropic(config: AiModelConfig, request: ProviderRequest) -> ProviderResponse:
    response = _anthropic_client(config).messages.create(**_anthropic_params(config, request))

    content = "".join(block.text for block in response.content if block.type == "text")
    return ProviderResponse(content=content.strip(), raw=response.model_dump())


def _stream_anthropic(config: AiModelConfig, request: ProviderRequest) -> Iterator[str]:
    client = _anthropic_client(config)
    with client.messages.stream(**_anthropic_params(config, request)) as stream:
        for text in stream.text_stream:
            if text:
                yield text


def _openai_client(config: AiModelConfig) -> OpenAI:
    provider = config.provider.lower()
    base_url = config.base_url
    if not base_url and provider == "mistral":
        base_url = MISTRAL_BASE_URL
    if not base_url and provider == "custom":
        raise AiProviderError(f"Custom model {config.code} requires a base_url")

    return OpenAI(
        api_key=resolve_api_key(config),
        base_url=base_url,
        default_headers=_extra_headers(config),
    )


def _openai_params(config: AiModelConfig, request: ProviderRequest) -> dict[str, Any]:
    messages = []
    if request.system_prompt:
        messages.append({"role": "system", "content": request.system_prompt})
    messages.append({"role": "user", "content": request.user_prompt})

    params: dict[str, Any] = {"model": config.model, "messages": messages}
    if request.max_output_tokens:
        params["max_tokens"] = request.max_output_tokens
    if request.temperature is not None:
        params["temperature"] = request.temperature
    return params


def _call_openai_compatible(config: AiModelConfig, request: ProviderRequest) -> ProviderResponse:
    response = _openai_client(config).chat.completions.create(**_openai_params(config, request))

    content = (response.choices[0].message.content or "") if response.choices else ""
    return ProviderResponse(content=content.strip(), raw=response.model_dump())


def _stream_openai_compatible(config: AiModelConfig, request: ProviderRequest) -> Iterator[str]:
    client = _openai_client(config)
    chunks = client.chat.completions.create(**_openai_params(config, request), stream=True)
    for chunk in chunks:
        if not chunk.choices:
            continue
        text = chunk.choices[0].delta.content
        if text:
            yield text


def call_model_provider(config: AiModelConfig, request: ProviderRequest) -> ProviderResponse:
    """
    Send one completion request to the provider of a model configuration.

    Args:
        config: Model configuration (provider, model, base_url, key variable)
        request: Prompts and generation options

    Returns:
        ProviderResponse with the generated text

    Raises:
        AiProviderError: If the provider is unknown or misconfigured
        Exception: Provider SDK errors are propagated
    """
    provider = (config.provider or "").lower()
    logger.debug(f"Calling {provider} model {config.model}", extra={"model": config.code})

    if provider == "anthropic":
        return _call_anthropic(config, request)
    if provider in OPENAI_COMPATIBLE_PROVIDERS:
        return _call_openai_compatible(config, request)

    raise AiProviderError(f"Unsupported AI provider: {config.provider}")


def stream_model_provider(config: AiModelConfig, request: ProviderRequest) -> Iterator[str]:
    """
    Stream a completion from the provider of a model configuration.

    Returns:
        Iterator over the text chunks, empty chunks skipped

    Raises:
        AiProviderError: If the provider is unknown
    """
    provider = (config.provider or "").lower()
    logger.debug(f"Streaming {provider} model {config.model}", extra={"model": config.code})

    if provider == "anthropic":
        return _stream_anthropic(config, request)
    if provider in OPENAI_COMPATIBLE_PROVIDERS:
        return _stream_openai_compatible(config, request)

    raise AiProviderError(f"Unsupported AI provider: {config.provider}")
