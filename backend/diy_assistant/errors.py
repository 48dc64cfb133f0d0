"""Domain exceptions for the assistant pipeline.

Each error knows its HTTP status and a stable error code so the API layer
can answer with a consistent JSON body. A run that is still pending when
the polling budget runs out is not an error (see ``RunPending`` in the
poller).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import status

if TYPE_CHECKING:
    from diy_assistant.models.contracts import RunError

APOLOGY_MESSAGE = "I'm sorry, I couldn't process your request. Please try again."


class DomainError(Exception):
    """Base class for assistant pipeline errors."""

    error: str = "domain_error"
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    user_message: str = APOLOGY_MESSAGE
    thread_id: str | None = None
    # True once the user's text has reached the thread; retries must not append it again
    message_appended: bool = False

    def __init__(self, message: str, *, error: str | None = None, status_code: int | None = None):
        super().__init__(message)
        if error:
            self.error = error
        if status_code:
            self.status_code = status_code


class ConfigurationError(DomainError):
    """Missing credentials or assistant identifiers."""

    error = "configuration_error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class ProviderError(DomainError):
    """A call to the assistant provider failed."""

    error = "provider_error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        *,
        operation: str,
        thread_id: str | None = None,
        message_appended: bool = False,
        retryable: bool = True,
    ):
        super().__init__(message)
        self.operation = operation
        self.thread_id = thread_id
        self.message_appended = message_appended
        self.retryable = retryable


class RunTerminatedError(DomainError):
    """The run ended in failed, cancelled, expired or incomplete."""

    error = "run_terminated"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        run_id: str,
        run_status: str,
        last_error: RunError | None = None,
        *,
        thread_id: str | None = None,
    ):
        detail = f"Run ended with status: {run_status}"
        if last_error is not None:
            detail = f"{detail} ({last_error.code}: {last_error.message})"
        super().__init__(detail)
        self.run_id = run_id
        self.run_status = run_status
        self.last_error = last_error
        self.thread_id = thread_id


class UnsupportedActionError(DomainError):
    """The run stopped at requires_action; there is no tool-call handling."""

    error = "unsupported_action"
    status_code = status.HTTP_200_OK
    user_message = (
        "I'm sorry, I tried to use a tool I don't have access to. "
        "Could you rephrase your question?"
    )

    def __init__(self, run_id: str, *, thread_id: str | None = None):
        super().__init__(f"Run {run_id} requires an action this assistant cannot perform")
        self.run_id = run_id
        self.thread_id = thread_id
        self.run_status = "requires_action"
