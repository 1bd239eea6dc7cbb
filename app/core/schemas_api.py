"""Pydantic schemas for the ASK HTTP API (camelCase on the wire)."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

MAX_INSIGHT_CONTENT_LENGTH = 10000


class ApiResponse(BaseModel):
    """Envelope returned by every endpoint."""

    success: bool
    data: Any = None
    error: str | None = None
    message: str | None = None


class RespondRequest(BaseModel):
    """Body of POST /ask/{key}/respond."""

    model_config = ConfigDict(populate_by_name=True)

    detect_insights: bool = Field(default=False, alias="detectInsights")
    ask_session_id: str | None = Field(default=None, alias="askSessionId")
    message: str | None = Field(default=None, description="User message to store before answering")


class StreamRequest(BaseModel):
    """Body of POST /ask/{key}/stream; message wins over content."""

    message: str | None = None
    content: str | None = None

    @property
    def user_message(self) -> str:
        return self.message or self.content or ""


class GuestParticipantCreate(BaseModel):
    """Body of POST /ask/{key}/participants/guest."""

    model_config = ConfigDict(populate_by_name=True)

    first_name: str = Field(..., min_length=1, max_length=100, alias="firstName")
    last_name: str = Field(..., min_length=1, max_length=100, alias="lastName")
    speaker: str = Field(..., min_length=1)


class TimerUpdate(BaseModel):
    """Body of PATCH /ask/{key}/timer."""

    model_config = ConfigDict(populate_by_name=True)

    elapsed_active_seconds: float = Field(..., ge=0, alias="elapsedActiveSeconds")
    current_step_id: str | None = Field(default=None, alias="currentStepId")
    step_elapsed_seconds: float | None = Field(default=None, ge=0, alias="stepElapsedSeconds")


class StepSummaryRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    step_id: str = Field(..., min_length=1, alias="stepId")
    ask_session_id: str = Field(..., min_length=1, alias="askSessionId")


class InsightUpdate(BaseModel):
    """Body of PATCH /insights/{insight_id}; content is trimmed."""

    content: str

    @field_validator("content")
    @classmethod
    def validate_content(cls, value: str) -> str:
        trimmed = value.strip()
        if not trimmed:
            raise ValueError("Content is required")
        if len(trimmed) > MAX_INSIGHT_CONTENT_LENGTH:
            raise ValueError(f"Content must be at most {MAX_INSIGHT_CONTENT_LENGTH} characters")
        return trimmed


class EmbeddingRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    insight_id: str | None = Field(default=None, alias="insightId")
