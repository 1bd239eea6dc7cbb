"""Pydantic schemas for AI agents, model configurations and agent execution."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

AgentLogStatus = Literal["pending", "processing", "completed", "failed"]


class AiModelConfig(BaseModel):
    """Row of ai_model_configs: one provider/model pairing."""

    model_config = ConfigDict(protected_namespaces=())

    id: str
    code: str
    name: str = ""
    provider: str
    model: str
    base_url: str | None = None
    api_key_env_var: str
    additional_headers: dict[str, Any] | None = None
    is_default: bool = False
    is_fallback: bool = False
    created_at: str | None = None
    updated_at: str | None = None


class AiAgent(BaseModel):
    """Row of ai_agents with its resolved model configurations."""

    model_config = ConfigDict(protected_namespaces=())

    id: str
    slug: str
    name: str = ""
    description: str | None = None
    model_config_id: str | None = None
    fallback_model_config_id: str | None = None
    system_prompt: str = ""
    user_prompt: str = ""
    available_variables: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] | None = None
    voice: bool = False
    created_at: str | None = None
    updated_at: str | None = None

    primary_model: AiModelConfig | None = None
    fallback_model: AiModelConfig | None = None


class PromptOverride(BaseModel):
    """Replacement prompt for one agent execution."""

    template: str
    render: bool = True
    variables: dict[str, Any] | None = None


class AgentExecutionResult(BaseModel):
    """Outcome of a successful agent execution."""

    model_config = ConfigDict(protected_namespaces=())

    content: str
    raw: dict[str, Any] = Field(default_factory=dict)
    log_id: str
    agent: AiAgent
    model_used: AiModelConfig


class AgentLog(BaseModel):
    """Row of ai_agent_logs."""

    model_config = ConfigDict(protected_namespaces=())

    id: str
    agent_id: str | None = None
    model_config_id: str | None = None
    ask_session_id: str | None = None
    message_id: str | None = None
    interaction_type: str
    request_payload: dict[str, Any] = Field(default_factory=dict)
    response_payload: dict[str, Any] | None = None
    status: AgentLogStatus = "pending"
    error_message: str | None = None
    latency_ms: int | None = None
    created_at: str | None = None
