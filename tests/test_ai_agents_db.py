"""Tests for the agent/model registry and agent logs."""

from app.db.agent_logs import (
    complete_agent_log,
    create_agent_log,
    fail_agent_log,
    list_agent_logs,
    mark_agent_log_processing,
)
from app.db.ai_agents import (
    fetch_agent_by_slug,
    fetch_model_config_by_code,
    get_default_model_config,
    get_fallback_model_config,
    list_agents,
    list_model_configs,
    sanitize_prompt_variables,
)


def _seed_models(fake_db):
    fake_db.seed(
        "ai_model_configs",
        {
            "id": "model-primary",
            "code": "claude",
            "provider": "anthropic",
            "model": "claude-sonnet-4-5",
            "api_key_env_var": "ANTHROPIC_API_KEY",
            "is_default": True,
        },
        {
            "id": "model-fallback",
            "code": "gpt",
            "provider": "openai",
            "model": "gpt-4o-mini",
            "api_key_env_var": "OPENAI_API_KEY",
            "is_fallback": True,
        },
    )


def test_sanitize_prompt_variables():
    assert sanitize_prompt_variables([" ask_key ", "", "ask_key", 3, "messages_json"]) == [
        "ask_key",
        "messages_json",
    ]
    assert sanitize_prompt_variables("ask_key") is None


def test_fetch_agent_with_models(fake_db):
    _seed_models(fake_db)
    fake_db.seed(
        "ai_agents",
        {
            "id": "agent-1",
            "slug": "ask-conversation-response",
            "model_config_id": "model-primary",
            "fallback_model_config_id": "model-fallback",
            "system_prompt": None,
            "user_prompt": "{{latest_user_message}}",
            "available_variables": ["latest_user_message", " ", "latest_user_message"],
            "voice": None,
        },
    )

    agent = fetch_agent_by_slug("ask-conversation-response", include_models=True)

    assert agent.system_prompt == ""
    assert agent.available_variables == ["latest_user_message"]
    assert agent.voice is False
    assert agent.primary_model.code == "claude"
    assert agent.fallback_model.code == "gpt"

    bare = fetch_agent_by_slug("ask-conversation-response")
    assert bare.primary_model is None
    assert fetch_agent_by_slug("unknown") is None


def test_list_agents(fake_db):
    fake_db.seed("ai_agents", {"id": "a", "slug": "one"}, {"id": "b", "slug": "two"})

    assert [agent.slug for agent in list_agents()] == ["one", "two"]


def test_default_and_fallback_model(fake_db):
    _seed_models(fake_db)

    assert get_default_model_config().code == "claude"
    assert get_fallback_model_config().code == "gpt"


def test_model_config_by_code_and_listing(fake_db):
    _seed_models(fake_db)

    config = fetch_model_config_by_code("gpt")

    assert config.id == "model-fallback"
    assert config.provider == "openai"
    assert fetch_model_config_by_code("mistral") is None
    assert [config.code for config in list_model_configs()] == ["claude", "gpt"]


def test_no_model_configs(fake_db):
    assert list_model_configs() == []


def test_builtin_default_when_none_flagged(fake_db):
    default = get_default_model_config()

    assert default.provider == "anthropic"
    assert default.api_key_env_var == "ANTHROPIC_API_KEY"
    assert get_fallback_model_config() is None


def test_agent_log_lifecycle(fake_db):
    log = create_agent_log(
        "ask.chat.response",
        {"systemPrompt": "s", "userPrompt": "u"},
        agent_id="agent-1",
        ask_session_id="ask-1",
    )
    assert log.status == "pending"

    mark_agent_log_processing(log.id, "model-primary")
    complete_agent_log(log.id, {"id": "msg"}, latency_ms=120)

    row = fake_db.rows("ai_agent_logs")[0]
    assert row["status"] == "completed"
    assert row["model_config_id"] == "model-primary"
    assert row["latency_ms"] == 120

    other = create_agent_log("ask.insight.detection", {})
    fail_agent_log(other.id, "timeout")

    logs = list_agent_logs()
    assert [entry.id for entry in logs] == [other.id, log.id]
    assert logs[0].status == "failed"
    assert logs[0].error_message == "timeout"
