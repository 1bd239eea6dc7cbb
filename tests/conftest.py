"""Pytest configuration and fixtures."""

import os
from contextlib import ExitStack
from unittest.mock import patch

import pytest

from tests.fakes.fake_supabase import FakeSupabase

SUPABASE_MODULES = [
    "app.db.asks",
    "app.db.profiles",
    "app.db.projects",
    "app.db.conversation_plans",
    "app.db.ai_agents",
    "app.db.agent_logs",
    "app.db.insights",
    "app.db.insight_jobs",
    "app.core.session_auth",
]


@pytest.fixture(scope="session", autouse=True)
def setup_test_env():
    """Set up test environment variables."""
    os.environ["SUPABASE_URL"] = "https://test.supabase.co"
    os.environ["SUPABASE_SERVICE_ROLE_KEY"] = "test-key"
    os.environ["OPENAI_API_KEY"] = "test-openai-key"
    os.environ["ANTHROPIC_API_KEY"] = "test-anthropic-key"
    os.environ["APP_ENV"] = "test"
    os.environ["AGENT_RETRY_DELAY_SECONDS"] = "0"


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Settings are cached; tests that change env vars need a fresh instance."""
    from app.core.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def fake_db():
    """FakeSupabase patched into every module that talks to Supabase."""
    db = FakeSupabase()
    with ExitStack() as stack:
        for module in SUPABASE_MODULES:
            stack.enter_context(patch(f"{module}.get_supabase", return_value=db))
        yield db
