"""Assistant provider interface and the OpenAI Assistants implementation.

The orchestrator only needs threads, messages and runs. Everything the
provider returns is converted to contract models here so the rest of the
package never touches SDK objects. Any SDK failure is re-raised as
ProviderError naming the operation that failed.
"""

from __future__ import annotations

import contextlib
from collections.abc import Iterator
from pathlib import Path
from typing import Any, Protocol

import openai
import structlog

from diy_assistant.errors import ProviderError
from diy_assistant.models.contracts import ChatMessage, Run, RunError
from diy_assistant.utils.tracing import wrap_openai

log = structlog.get_logger("provider")

PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"

_prompt_cache: dict[str, str] = {}


def load_prompt(name: str) -> str:
    """Read a prompt template from the prompts directory (cached after first read)."""
    if name not in _prompt_cache:
        _prompt_cache[name] = (PROMPTS_DIR / f"{name}.txt").read_text().strip()
    return _prompt_cache[name]


class AssistantProvider(Protocol):
    """Thread/run operations consumed by the orchestrator."""

    name: str

    async def create_thread(self) -> str: ...

    async def append_message(self, thread_id: str, content: str) -> None: ...

    async def create_run(
        self,
        thread_id: str,
        assistant_id: str,
        instructions: str | None = None,
    ) -> Run: ...

    async def retrieve_run(self, thread_id: str, run_id: str) -> Run: ...

    async def list_messages(self, thread_id: str, limit: int = 1) -> list[ChatMessage]:
        """Return the newest ``limit`` messages, newest first."""
        ...

    async def retrieve_assistant(self, assistant_id: str) -> str: ...

    async def find_assistant(self, name: str) -> str | None: ...

    async def create_assistant(self, name: str, model: str, instructions: str) -> str: ...

    async def close(self) -> None: ...


@contextlib.contextmanager
def _provider_call(operation: str, thread_id: str | None = None) -> Iterator[None]:
    """Translate OpenAI SDK errors into ProviderError."""
    try:
        yield
    except openai.APIStatusError as exc:
        # 429 and 5xx are worth retrying; other 4xx are caller mistakes
        retryable = exc.status_code == 429 or exc.status_code >= 500
        log.error(
            "provider_call_failed",
            operation=operation,
            thread_id=thread_id,
            status=exc.status_code,
            error=str(exc),
        )
        raise ProviderError(
            f"OpenAI {operation} failed ({exc.status_code}): {exc}",
            operation=operation,
            thread_id=thread_id,
            retryable=retryable,
        ) from exc
    except openai.APIError as exc:
        log.error(
            "provider_call_failed",
            operation=operation,
            thread_id=thread_id,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        raise ProviderError(
            f"OpenAI {operation} failed: {exc}",
            operation=operation,
            thread_id=thread_id,
        ) from exc


def _to_run(raw: Any, thread_id: str) -> Run:
    last_error = None
    if getattr(raw, "last_error", None) is not None:
        last_error = RunError(
            code=str(raw.last_error.code or "unknown"),
            message=raw.last_error.message or "",
        )
    return Run(id=raw.id, thread_id=thread_id, status=raw.status, last_error=last_error)


def _message_text(raw: Any) -> str:
    """Concatenate the text parts of a provider message, skipping images and files."""
    text = ""
    for part in raw.content or []:
        if getattr(part, "type", None) == "text":
            text += part.text.value
    return text


class OpenAIAssistantProvider:
    """AssistantProvider backed by the OpenAI Assistants (threads/runs) API."""

    name = "openai"

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str | None = None,
        timeout: float = 30.0,
        client: Any | None = None,
    ) -> None:
        if client is None:
            client = wrap_openai(
                openai.AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout)
            )
        self._client = client

    async def create_thread(self) -> str:
        with _provider_call("create_thread"):
            thread = await self._client.beta.threads.create()
        log.info("thread_created", thread_id=thread.id)
        return str(thread.id)

    async def append_message(self, thread_id: str, content: str) -> None:
        with _provider_call("append_message", thread_id):
            await self._client.beta.threads.messages.create(
                thread_id=thread_id,
                role="user",
                content=content,
            )

    async def create_run(
        self,
        thread_id: str,
        assistant_id: str,
        instructions: str | None = None,
    ) -> Run:
        kwargs: dict[str, Any] = {"thread_id": thread_id, "assistant_id": assistant_id}
        if instructions:
            kwargs["instructions"] = instructions
        with _provider_call("create_run", thread_id):
            raw = await self._client.beta.threads.runs.create(**kwargs)
        return _to_run(raw, thread_id)

    async def retrieve_run(self, thread_id: str, run_id: str) -> Run:
        with _provider_call("retrieve_run", thread_id):
            raw = await self._client.beta.threads.runs.retrieve(
                run_id=run_id,
                thread_id=thread_id,
            )
        return _to_run(raw, thread_id)

    async def list_messages(self, thread_id: str, limit: int = 1) -> list[ChatMessage]:
        with _provider_call("list_messages", thread_id):
            page = await self._client.beta.threads.messages.list(
                thread_id=thread_id,
                order="desc",
                limit=limit,
            )
        return [ChatMessage(role=m.role, content=_message_text(m)) for m in page.data]

    async def retrieve_assistant(self, assistant_id: str) -> str:
        with _provider_call("retrieve_assistant"):
            assistant = await self._client.beta.assistants.retrieve(assistant_id)
        log.info("assistant_verified", assistant_id=assistant.id, model=assistant.model)
        return str(assistant.id)

    async def find_assistant(self, name: str) -> str | None:
        with _provider_call("list_assistants"):
            async for assistant in self._client.beta.assistants.list(order="desc", limit=100):
                if assistant.name == name:
                    return str(assistant.id)
        return None

    async def create_assistant(self, name: str, model: str, instructions: str) -> str:
        with _provider_call("create_assistant"):
            assistant = await self._client.beta.assistants.create(
                name=name,
                model=model,
                instructions=instructions,
            )
        return str(assistant.id)

    async def close(self) -> None:
        await self._client.close()
