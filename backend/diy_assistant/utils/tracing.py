"""LangSmith tracing for assistant provider calls.

Off unless LANGSMITH_API_KEY is set. The key and the langsmith import are
checked when a client is wrapped, not at import time. If tracing is asked
for but langsmith is missing or refuses the client, the unwrapped client
is returned with a log entry.
"""

from __future__ import annotations

import os
from typing import Any

import structlog

_log = structlog.get_logger("tracing")


def tracing_enabled() -> bool:
    return bool(os.environ.get("LANGSMITH_API_KEY", "").strip())


def wrap_openai(client: Any) -> Any:
    """Wrap an (Async)OpenAI client for auto-tracing. No-op without LANGSMITH_API_KEY."""
    if not tracing_enabled():
        return client
    try:
        from langsmith.wrappers import wrap_openai as _wrap
    except ImportError:
        _log.warning(
            "langsmith_not_installed",
            reason="LANGSMITH_API_KEY is set but langsmith is not installed; "
            "install with: pip install 'diy-assistant[tracing]'",
        )
        return client
    try:
        return _wrap(client)
    except Exception as exc:
        _log.error(
            "langsmith_wrap_failed",
            error=str(exc),
            error_type=type(exc).__name__,
            reason="continuing without tracing",
        )
        return client
