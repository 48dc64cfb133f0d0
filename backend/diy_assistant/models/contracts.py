"""DIY assistant contract models.

Internal models (runs, messages, orchestrator results) use snake_case.
Models that cross the HTTP boundary serialize as camelCase to match the
browser client, and accept either spelling on input.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

# === Runs ===

RUN_STATUSES = frozenset(
    {
        "queued",
        "in_progress",
        "requires_action",
        "cancelling",
        "completed",
        "failed",
        "cancelled",
        "expired",
        "incomplete",
    }
)
TERMINAL_FAILURE_STATUSES = frozenset({"failed", "cancelled", "expired", "incomplete"})


class RunError(BaseModel):
    """Provider-supplied detail for a run that did not complete."""

    code: str = "unknown"
    message: str = ""


class Run(BaseModel):
    id: str
    thread_id: str
    status: str
    last_error: RunError | None = None

    @property
    def is_completed(self) -> bool:
        return self.status == "completed"

    @property
    def is_terminated(self) -> bool:
        return self.status in TERMINAL_FAILURE_STATUSES

    @property
    def requires_action(self) -> bool:
        return self.status == "requires_action"


class ChatMessage(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str


# === Recommendations ===


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ProductItem(_CamelModel):
    name: str
    affiliate_url: str


class Recommendations(_CamelModel):
    materials: list[ProductItem] = []
    tools: list[ProductItem] = []


class ExtractedRecommendations(BaseModel):
    """Parsed recommendation block, before affiliate links are attached."""

    materials: list[dict[str, Any]]
    tools: list[dict[str, Any]]


# === Orchestrator results ===


class AssistantTurn(BaseModel):
    """Outcome of one orchestrator operation.

    ``in_progress`` means the polling budget ran out before the run
    finished; ``run_id`` lets the caller resume through the poll endpoint.
    """

    thread_id: str
    run_id: str | None = None
    message: str | None = None
    raw_message: str | None = None
    recommendations: Recommendations | None = None
    in_progress: bool = False
    status: str | None = None
    fallback: bool = False


# === API Request/Response Models ===

ChatAction = Literal["createThread", "sendMessage", "generateRecommendations"]


class ChatActionRequest(_CamelModel):
    action: ChatAction
    thread_id: str | None = None
    message: str | None = None
    # Start a new run without appending the message again (after a partial failure)
    retry_run: bool = False

    @model_validator(mode="after")
    def _check_required_fields(self) -> ChatActionRequest:
        if self.message is not None and not self.message.strip():
            self.message = None
        if self.action in ("sendMessage", "generateRecommendations") and not self.thread_id:
            raise ValueError(f"threadId is required for {self.action}")
        if self.action == "sendMessage" and self.message is None and not self.retry_run:
            raise ValueError("message is required for sendMessage")
        return self


class ChatActionResponse(_CamelModel):
    success: bool
    thread_id: str | None = None
    message: str | None = None
    recommendations: Recommendations | None = None
    in_progress: bool | None = None
    run_id: str | None = None
    status: str | None = None
    fallback: bool | None = None
    message_appended: bool | None = None
    error: str | None = None
    detail: str | None = None


class PollRequest(_CamelModel):
    thread_id: str = Field(min_length=1)
    run_id: str = Field(min_length=1)
    # generateRecommendations resumes with fail-soft extraction
    action: ChatAction = "sendMessage"


class PollResponse(_CamelModel):
    success: bool
    completed: bool
    message: str | None = None
    status: str | None = None
    recommendations: Recommendations | None = None
    fallback: bool | None = None
    error: str | None = None
    detail: str | None = None


class ErrorResponse(BaseModel):
    success: Literal[False] = False
    error: str
    message: str
    retryable: bool
    detail: str | None = None
