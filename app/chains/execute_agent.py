"""Execute a database-configured AI agent with logging, retries and model fallback."""

import time
from collections.abc import Iterator
from typing import Any

from app.core.config import get_settings
from app.core.errors import AgentExecutionError
from app.core.llm_providers import ProviderRequest, call_model_provider, stream_model_provider
from app.core.logging import get_logger
from app.core.prompt_templates import render_template
from app.core.schemas_agents import (
    AgentExecutionResult,
    AgentLog,
    AiAgent,
    AiModelConfig,
    PromptOverride,
)
from app.db.agent_logs import (
    complete_agent_log,
    create_agent_log,
    fail_agent_log,
    mark_agent_log_processing,
)
from app.db.ai_agents import fetch_agent_by_slug

logger = get_logger(__name__)


def _ensure_agent_has_model(agent: AiAgent) -> None:
    if agent.model_config_id and agent.primary_model is None:
        raise AgentExecutionError(f"Agent {agent.slug} is missing its primary model configuration")
    if agent.fallback_model_config_id and agent.fallback_model is None:
        raise AgentExecutionError(
            f"Agent {agent.slug} is missing its fallback model configuration"
        )
    if agent.primary_model is None:
        raise AgentExecutionError(f"Agent {agent.slug} is not linked to any model configuration")


def _pick_model_configs(agent: AiAgent) -> list[AiModelConfig]:
    configs = [agent.primary_model] if agent.primary_model else []
    fallback = agent.fallback_model
    if fallback and all(config.id != fallback.id for config in configs):
        configs.append(fallback)
    return configs


def _resolve_prompt(
    override: str | PromptOverride | dict[str, Any] | None,
    fallback: str,
    variables: dict[str, Any],
) -> str:
    if not override:
        return render_template(fallback, variables)

    if isinstance(override, str):
        return render_template(override, variables)

    if isinstance(override, dict):
        override = PromptOverride.model_validate(override)

    if not override.render:
        return override.template

    return render_template(override.template, override.variables or variables)


def _active_variables(agent: AiAgent, variables: dict[str, Any]) -> dict[str, Any]:
    """Variables declared by the agent (plus ask_key) for the log payload."""
    active = {key: variables[key] for key in agent.available_variables if key in variables}
    if variables.get("ask_key") and "ask_key" not in active:
        active["ask_key"] = variables["ask_key"]
    return active


def _prepare_interaction(
    agent_slug: str,
    interaction_type: str,
    variables: dict[str, Any],
    ask_session_id: str | None,
    message_id: str | None,
    override_prompts: dict[str, Any] | None,
) -> tuple[AiAgent, str, str, AgentLog]:
    """Load the agent, render its prompts and open the pending log."""
    agent = fetch_agent_by_slug(agent_slug, include_models=True)
    if agent is None:
        raise AgentExecutionError(f'Unable to find AI agent with slug "{agent_slug}"')

    _ensure_agent_has_model(agent)

    overrides = override_prompts or {}
    system_prompt = _resolve_prompt(overrides.get("system"), agent.system_prompt, variables)
    user_prompt = _resolve_prompt(overrides.get("user"), agent.user_prompt, variables)

    log = create_agent_log(
        interaction_type=interaction_type,
        agent_id=agent.id,
        ask_session_id=ask_session_id,
        message_id=message_id,
        request_payload={
            "agentSlug": agent.slug,
            "modelConfigId": agent.model_config_id,
            "fallbackModelConfigId": agent.fallback_model_config_id,
            "systemPrompt": system_prompt,
            "userPrompt": user_prompt,
            "variables": _active_variables(agent, variables),
        },
    )
    return agent, system_prompt, user_prompt, log


def execute_agent(
    agent_slug: str,
    interaction_type: str,
    variables: dict[str, Any],
    ask_session_id: str | None = None,
    message_id: str | None = None,
    max_output_tokens: int | None = None,
    temperature: float | None = None,
    override_prompts: dict[str, Any] | None = None,
) -> AgentExecutionResult:
    """
    Render an agent's prompts and call its model, falling back on failure.

    Each model configuration (primary, then fallback) gets AGENT_MAX_ATTEMPTS
    attempts separated by AGENT_RETRY_DELAY_SECONDS. The interaction is tracked
    in ai_agent_logs from pending to completed or failed.

    Args:
        agent_slug: Slug of the agent in ai_agents
        interaction_type: Log interaction type (e.g. "ask.chat.response")
        variables: Template variables for the prompts
        ask_session_id: ASK session the interaction belongs to
        message_id: Message the interaction relates to
        max_output_tokens: Completion budget (defaults to DEFAULT_MAX_OUTPUT_TOKENS)
        temperature: Sampling temperature
        override_prompts: Optional {"system": ..., "user": ...} replacing the
            stored templates; each value is a template string or a PromptOverride

    Returns:
        AgentExecutionResult with the generated content

    Raises:
        AgentExecutionError: If the agent or its model configuration is missing
        Exception: The last provider error once every attempt has failed
    """
    settings = get_settings()

    agent, system_prompt, user_prompt, log = _prepare_interaction(
        agent_slug, interaction_type, variables, ask_session_id, message_id, override_prompts
    )

    request = ProviderRequest(
        system_prompt=system_prompt,
        user_prompt=user_prompt,
        max_output_tokens=max_output_tokens or settings.DEFAULT_MAX_OUTPUT_TOKENS,
        temperature=temperature,
    )

    max_attempts = max(1, settings.AGENT_MAX_ATTEMPTS)
    last_error: Exception | None = None

    for config in _pick_model_configs(agent):
        mark_agent_log_processing(log.id, config.id)

        for attempt in range(1, max_attempts + 1):
            try:
                t0 = time.monotonic()
                response = call_model_provider(config, request)
                latency_ms = int((time.monotonic() - t0) * 1000)

                complete_agent_log(log.id, response.raw, latency_ms)

                logger.info(
                    f"Agent {agent.slug} answered with {config.code} in {latency_ms}ms",
                    extra={
                        "agent": agent.slug,
                        "model": config.code,
                        "interaction_type": interaction_type,
                        "attempt": attempt,
                    },
                )
                return AgentExecutionResult(
                    content=response.content,
                    raw=response.raw,
                    log_id=log.id,
                    agent=agent,
                    model_used=config,
                )

            except Exception as e:
                last_error = e
                logger.warning(
                    f"Agent {agent.slug} attempt {attempt}/{max_attempts} "
                    f"with {config.code} failed: {e}"
                )
                if attempt < max_attempts:
                    time.sleep(settings.AGENT_RETRY_DELAY_SECONDS)

    message = str(last_error) if last_error else "Unknown error while executing AI agent"
    fail_agent_log(log.id, message)
    logger.error(f"Agent {agent.slug} failed on every model configuration: {message}")

    if last_error is not None:
        raise last_error
    raise AgentExecutionError(message)


class AgentStream:
    """
    Text chunks of a streamed agent reply.

    Only the primary model is used. The log is marked processing when iteration
    starts, completed with the full content when the provider stream ends, and
    failed when it raises.
    """

    def __init__(
        self, agent: AiAgent, request: ProviderRequest, log: AgentLog, interaction_type: str
    ):
        self.agent = agent
        self.request = request
        self.log = log
        self.interaction_type = interaction_type
        self.content = ""

    def __iter__(self) -> Iterator[str]:
        config = self.agent.primary_model
        mark_agent_log_processing(self.log.id, config.id)

        t0 = time.monotonic()
        try:
            for chunk in stream_model_provider(config, self.request):
                self.content += chunk
                yield chunk
        except Exception as e:
            fail_agent_log(self.log.id, str(e))
            logger.error(
                f"Agent {self.agent.slug} stream with {config.code} failed: {e}",
                extra={"agent": self.agent.slug, "model": config.code},
            )
            raise

        latency_ms = int((time.monotonic() - t0) * 1000)
        complete_agent_log(self.log.id, {"content": self.content, "streaming": True}, latency_ms)
        logger.info(
            f"Agent {self.agent.slug} streamed with {config.code} in {latency_ms}ms",
            extra={
                "agent": self.agent.slug,
                "model": config.code,
                "interaction_type": self.interaction_type,
            },
        )


def start_agent_stream(
    agent_slug: str,
    interaction_type: str,
    variables: dict[str, Any],
    ask_session_id: str | None = None,
    max_output_tokens: int | None = None,
    temperature: float | None = None,
) -> AgentStream:
    """
    Render an agent's prompts and open its log, ready to stream the reply.

    Raises:
        AgentExecutionError: If the agent or its model configuration is missing
    """
    agent, system_prompt, user_prompt, log = _prepare_interaction(
        agent_slug, interaction_type, variables, ask_session_id, None, None
    )

    request = ProviderRequest(
        system_prompt=system_prompt,
        user_prompt=user_prompt,
        max_output_tokens=max_output_tokens or get_settings().DEFAULT_MAX_OUTPUT_TOKENS,
        temperature=temperature,
    )
    return AgentStream(agent, request, log, interaction_type)
