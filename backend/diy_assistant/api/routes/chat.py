"""Chat API: one action-dispatch endpoint plus a resumable poll endpoint.

``POST /chat`` runs createThread / sendMessage / generateRecommendations
and waits a bounded time for the assistant. If the run is still going
when the wait budget runs out, the response carries ``inProgress`` and
``runId`` and the client continues with ``POST /chat/poll``.

Success is reported in the body's ``success`` flag. Failures still carry
an assistant-facing apology in ``message`` so the transcript is never
left without a reply.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from diy_assistant.assistant.orchestrator import ConversationOrchestrator
from diy_assistant.errors import (
    ConfigurationError,
    DomainError,
    ProviderError,
    RunTerminatedError,
    UnsupportedActionError,
)
from diy_assistant.models.contracts import (
    AssistantTurn,
    ChatActionRequest,
    ChatActionResponse,
    ErrorResponse,
    PollRequest,
    PollResponse,
)
from diy_assistant.utils.affiliate import fallback_recommendations

logger = structlog.get_logger()

router = APIRouter(tags=["chat"])


def get_orchestrator(request: Request) -> ConversationOrchestrator:
    """Return the orchestrator built at startup, or fail with the startup error."""
    orchestrator: ConversationOrchestrator | None = getattr(
        request.app.state, "orchestrator", None
    )
    if orchestrator is None:
        startup_error = getattr(request.app.state, "configuration_error", None)
        raise ConfigurationError(str(startup_error or "Assistant is not configured"))
    return orchestrator


def _json(model: ChatActionResponse | PollResponse, status_code: int) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=model.model_dump(mode="json", by_alias=True, exclude_none=True),
    )


def _log_failure(event: str, exc: DomainError, **fields) -> None:
    if isinstance(exc, UnsupportedActionError):
        logger.warning(event, error=exc.error, detail=str(exc), **fields)
    else:
        logger.error(event, error=exc.error, detail=str(exc), **fields)


def _action_response(turn: AssistantTurn) -> ChatActionResponse:
    return ChatActionResponse(
        success=True,
        thread_id=turn.thread_id,
        message=turn.message,
        recommendations=turn.recommendations,
        in_progress=True if turn.in_progress else None,
        run_id=turn.run_id,
        status=turn.status,
        fallback=True if turn.fallback else None,
    )


def _action_failure(body: ChatActionRequest, exc: DomainError) -> JSONResponse:
    _log_failure(
        "chat_action_failed",
        exc,
        action=body.action,
        thread_id=exc.thread_id or body.thread_id,
        message_appended=exc.message_appended,
    )
    response = ChatActionResponse(
        success=False,
        thread_id=exc.thread_id or body.thread_id,
        message=exc.user_message,
        status=getattr(exc, "run_status", None),
        message_appended=True if exc.message_appended else None,
        error=exc.error,
        detail=str(exc),
    )
    if body.action == "generateRecommendations":
        response.recommendations = fallback_recommendations()
        response.fallback = True
    return _json(response, exc.status_code)


@router.post(
    "/chat",
    response_model=ChatActionResponse,
    response_model_exclude_none=True,
    responses={400: {"model": ErrorResponse}, 500: {"model": ChatActionResponse}},
)
async def chat_action(
    body: ChatActionRequest,
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
):
    """Dispatch one chat action against the assistant."""
    structlog.contextvars.bind_contextvars(action=body.action)
    try:
        if body.action == "createThread":
            turn = await orchestrator.create_thread(body.message)
        elif body.action == "sendMessage":
            assert body.thread_id is not None  # enforced by ChatActionRequest
            turn = await orchestrator.send_message(
                body.thread_id,
                body.message,
                append=not body.retry_run,
            )
        else:
            assert body.thread_id is not None
            turn = await orchestrator.generate_recommendations(body.thread_id)
    except DomainError as exc:
        return _action_failure(body, exc)

    logger.info(
        "chat_action_complete",
        thread_id=turn.thread_id,
        run_id=turn.run_id,
        in_progress=turn.in_progress,
        has_recommendations=turn.recommendations is not None,
        fallback=turn.fallback,
    )
    return _action_response(turn)


@router.post(
    "/chat/poll",
    response_model=PollResponse,
    response_model_exclude_none=True,
    responses={400: {"model": ErrorResponse}, 500: {"model": PollResponse}},
)
async def poll_run(body: PollRequest, request: Request):
    """Check a run that an earlier /chat call left in progress."""
    wants_recommendations = body.action == "generateRecommendations"
    try:
        orchestrator = get_orchestrator(request)
        turn = await orchestrator.resume(
            body.thread_id,
            body.run_id,
            recommendations=wants_recommendations,
        )
    except (RunTerminatedError, UnsupportedActionError) as exc:
        # The run is over, just not successfully: answer 200 with completed=true
        _log_failure("poll_run_ended", exc, thread_id=body.thread_id, run_id=body.run_id)
        response = PollResponse(
            success=False,
            completed=True,
            message=exc.user_message,
            status=exc.run_status,
            error=exc.error,
            detail=str(exc),
        )
        if wants_recommendations:
            response.recommendations = fallback_recommendations()
            response.fallback = True
        return _json(response, 200)
    except (ConfigurationError, ProviderError) as exc:
        _log_failure("poll_run_failed", exc, thread_id=body.thread_id, run_id=body.run_id)
        return _json(
            PollResponse(
                success=False,
                completed=False,
                message=exc.user_message,
                error=exc.error,
                detail=str(exc),
            ),
            exc.status_code,
        )

    if turn.in_progress:
        return PollResponse(success=True, completed=False, status=turn.status)
    return PollResponse(
        success=True,
        completed=True,
        message=turn.message,
        status=turn.status,
        recommendations=turn.recommendations,
        fallback=True if turn.fallback else None,
    )
