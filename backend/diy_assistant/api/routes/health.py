"""Health check endpoint with an assistant-provider connectivity probe.

The probe has a short timeout. A provider reporting "disconnected" does
not change the overall status ("ok"); the endpoint always returns 200 so
load balancers keep routing.
"""

from __future__ import annotations

import asyncio

import structlog
from fastapi import APIRouter, Request

from diy_assistant.config import settings

logger = structlog.get_logger()

router = APIRouter(tags=["health"])

_CHECK_TIMEOUT = 3.0  # seconds

VERSION = "0.1.0"


async def _check_assistant(request: Request) -> str:
    """Retrieve the configured assistant to confirm the provider answers."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        return "not_configured"
    if orchestrator.provider.name == "mock":
        return "mock"
    try:
        await asyncio.wait_for(
            orchestrator.provider.retrieve_assistant(orchestrator.assistant_id),
            timeout=_CHECK_TIMEOUT,
        )
        return "connected"
    except Exception as exc:
        logger.debug("health_assistant_failed", error=str(exc))
        return "disconnected"


@router.get("/health")
async def health_check(request: Request) -> dict:
    """Confirm the API process is alive and report provider reachability."""
    return {
        "status": "ok",
        "version": VERSION,
        "environment": settings.environment,
        "assistant": await _check_assistant(request),
    }
