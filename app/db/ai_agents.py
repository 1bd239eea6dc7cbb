"""AI agent and model configuration database operations."""

from typing import Any
from uuid import uuid4

from app.core.logging import get_logger
from app.core.schemas_agents import AiAgent, AiModelConfig
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)

BUILTIN_DEFAULT_MODEL = {
    "code": "anthropic-claude-sonnet",
    "name": "Claude Sonnet",
    "provider": "anthropic",
    "model": "claude-sonnet-4-5",
    "api_key_env_var": "ANTHROPIC_API_KEY",
    "base_url": None,
    "additional_headers": {},
    "is_default": True,
    "is_fallback": False,
}


def sanitize_prompt_variables(values: Any) -> list[str] | None:
    """Trimmed, non-empty, de-duplicated variable names; None for non-lists."""
    if not isinstance(values, list):
        return None

    unique: list[str] = []
    for value in values:
        if not isinstance(value, str):
            continue
        trimmed = value.strip()
        if trimmed and trimmed not in unique:
            unique.append(trimmed)
    return unique


def _map_agent_row(row: dict[str, Any]) -> AiAgent:
    data = dict(row)
    data["available_variables"] = sanitize_prompt_variables(row.get("available_variables")) or []
    data["voice"] = bool(row.get("voice"))
    data["system_prompt"] = row.get("system_prompt") or ""
    data["user_prompt"] = row.get("user_prompt") or ""
    return AiAgent.model_validate(data)


def fetch_model_config_by_id(config_id: str) -> AiModelConfig | None:
    supabase = get_supabase()
    response = (
        supabase.table("ai_model_configs").select("*").eq("id", config_id).limit(1).execute()
    )
    return AiModelConfig.model_validate(response.data[0]) if response.data else None


def fetch_model_config_by_code(code: str) -> AiModelConfig | None:
    supabase = get_supabase()
    response = supabase.table("ai_model_configs").select("*").eq("code", code).limit(1).execute()
    return AiModelConfig.model_validate(response.data[0]) if response.data else None


def list_model_configs() -> list[AiModelConfig]:
    supabase = get_supabase()
    response = (
        supabase.table("ai_model_configs").select("*").order("created_at", desc=False).execute()
    )
    return [AiModelConfig.model_validate(row) for row in response.data or []]


def get_default_model_config() -> AiModelConfig:
    """
    Model configuration flagged as default.

    Returns:
        The default row, or a built-in Anthropic configuration when none is flagged

    Raises:
        Exception: If database operation fails
    """
    supabase = get_supabase()

    try:
        response = (
            supabase.table("ai_model_configs")
            .select("*")
            .eq("is_default", True)
            .limit(1)
            .execute()
        )
    except Exception as e:
        logger.error(f"Failed to fetch default model config: {e}")
        raise

    if response.data:
        return AiModelConfig.model_validate(response.data[0])

    logger.warning("No default model config flagged, using built-in Anthropic default")
    return AiModelConfig(id=str(uuid4()), **BUILTIN_DEFAULT_MODEL)


def get_fallback_model_config() -> AiModelConfig | None:
    supabase = get_supabase()

    try:
        response = (
            supabase.table("ai_model_configs")
            .select("*")
            .eq("is_fallback", True)
            .limit(1)
            .execute()
        )
    except Exception as e:
        logger.warning(f"Failed to fetch fallback model config: {e}")
        return None

    return AiModelConfig.model_validate(response.data[0]) if response.data else None


def _attach_models(agent: AiAgent) -> AiAgent:
    if agent.model_config_id:
        agent.primary_model = fetch_model_config_by_id(agent.model_config_id)
    if agent.fallback_model_config_id:
        agent.fallback_model = fetch_model_config_by_id(agent.fallback_model_config_id)
    return agent


def fetch_agent_by_slug(slug: str, include_models: bool = False) -> AiAgent | None:
    """
    Load an agent definition by slug.

    Args:
        slug: Agent slug (e.g. "ask-conversation-response")
        include_models: Also resolve primary and fallback model configurations

    Returns:
        AiAgent or None when no agent has this slug

    Raises:
        Exception: If database operation fails
    """
    supabase = get_supabase()

    try:
        response = supabase.table("ai_agents").select("*").eq("slug", slug).limit(1).execute()
    except Exception as e:
        logger.error(f"Failed to fetch agent {slug}: {e}")
        raise

    if not response.data:
        return None

    agent = _map_agent_row(response.data[0])
    return _attach_models(agent) if include_models else agent


def list_agents(include_models: bool = False) -> list[AiAgent]:
    supabase = get_supabase()
    response = supabase.table("ai_agents").select("*").order("created_at", desc=False).execute()
    agents = [_map_agent_row(row) for row in response.data or []]
    if include_models:
        agents = [_attach_models(agent) for agent in agents]
    return agents
