"""Configuration management for the ASK conversation engine."""

from functools import lru_cache

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file (only if accessible)
try:
    load_dotenv()
except (PermissionError, OSError):
    # Sandboxed environments set variables directly
    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Supabase configuration (required)
    SUPABASE_URL: str = Field(..., description="Supabase project URL")
    SUPABASE_SERVICE_ROLE_KEY: str = Field(..., description="Supabase service role key")

    # Model provider keys (resolved per model config via api_key_env_var)
    OPENAI_API_KEY: str = Field(default="", description="OpenAI API key")
    ANTHROPIC_API_KEY: str = Field(default="", description="Anthropic API key")
    MISTRAL_API_KEY: str = Field(default="", description="Mistral API key")

    # Environment
    APP_ENV: str = Field(default="dev", description="Environment: dev, staging, prod, test")
    IS_DEV: bool = Field(
        default=False, description="Dev bypass: auth failures fall back to admin access"
    )

    # External ASK backend
    EXTERNAL_RESPONSE_WEBHOOK: str | None = Field(
        default=None, description="Webhook URL of the external ASK backend"
    )
    WEBHOOK_TIMEOUT_SECONDS: float = Field(default=15.0, description="Webhook request timeout")
    APP_BASE_URL: str = Field(
        default="http://localhost:8000", description="Public base URL of this service"
    )

    # Embedding configuration
    EMBEDDING_MODEL: str = Field(
        default="text-embedding-3-small", description="OpenAI embedding model"
    )
    EMBEDDING_DIM: int = Field(default=1536, description="Embedding vector dimension")

    # Agent execution
    AGENT_MAX_ATTEMPTS: int = Field(default=3, description="Attempts per model configuration")
    AGENT_RETRY_DELAY_SECONDS: float = Field(
        default=3.0, description="Delay between agent attempts"
    )
    DEFAULT_MAX_OUTPUT_TOKENS: int = Field(
        default=1024, description="Default completion token budget"
    )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings instance loaded from environment

    Raises:
        ValidationError: If required environment variables are missing
    """
    return Settings()
