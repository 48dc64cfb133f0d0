"""Async client for the chat API, with the browser session's bookkeeping.

``ChatSession`` remembers the thread id, mirrors the transcript locally,
follows in-progress replies through the poll endpoint and keeps the
latest recommendations plus the user's shopping-list selection. Every
failure still produces an assistant-role message so a UI built on it is
never stuck waiting.
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
import structlog

from diy_assistant.assistant.poller import PollPolicy, Sleep
from diy_assistant.models.contracts import ChatMessage, ProductItem, Recommendations

log = structlog.get_logger("client")

CHAT_PATH = "/api/v1/chat"
POLL_PATH = "/api/v1/chat/poll"

SYSTEM_PROMPT = (
    "You are a DIY construction assistant that provides helpful advice on construction "
    "projects, renovation tips, and material recommendations. Be concise and practical "
    "in your responses."
)
CLIENT_ERROR_MESSAGE = "Sorry, I encountered an error. Please try again."
STILL_WORKING_MESSAGE = (
    "I'm still working on that. Give me a moment and check back for my answer."
)
RECOMMENDATIONS_ERROR_MESSAGE = (
    "I'm sorry, I couldn't generate recommendations at this time. Please try again."
)

_RECOMMENDATION_KEYWORDS = (
    "recommend",
    "suggest",
    "shopping list",
    "materials",
    "tools",
    "supplies",
)


def wants_recommendations(text: str) -> bool:
    """Whether an assistant reply talks about materials, tools or shopping."""
    lowered = text.lower()
    return any(keyword in lowered for keyword in _RECOMMENDATION_KEYWORDS)


class SessionError(Exception):
    """The API answered with something other than a JSON body."""


class ShoppingList:
    """Items the user picked from the recommendations, unique by name."""

    def __init__(self) -> None:
        self._items: list[ProductItem] = []

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, item: object) -> bool:
        return isinstance(item, ProductItem) and self.is_selected(item)

    @property
    def items(self) -> list[ProductItem]:
        return list(self._items)

    def is_selected(self, item: ProductItem) -> bool:
        return any(selected.name == item.name for selected in self._items)

    def select(self, item: ProductItem) -> bool:
        """Add ``item``; returns False if an item with that name is already selected."""
        if self.is_selected(item):
            return False
        self._items.append(item)
        return True

    def deselect(self, name: str) -> bool:
        before = len(self._items)
        self._items = [item for item in self._items if item.name != name]
        return len(self._items) < before

    def clear(self) -> None:
        self._items.clear()


class ChatSession:
    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        poll_policy: PollPolicy | None = None,
        sleep: Sleep = asyncio.sleep,
        auto_recommend: bool = False,
    ) -> None:
        self._http = http
        self._sleep = sleep
        self.poll_policy = poll_policy or PollPolicy(max_attempts=30, max_delay=2.0)
        self.auto_recommend = auto_recommend

        self.thread_id: str | None = None
        self.transcript: list[ChatMessage] = [ChatMessage(role="system", content=SYSTEM_PROMPT)]
        self.recommendations: Recommendations | None = None
        self.shopping_list = ShoppingList()
        # Set when the server kept our text but failed later; retry() reruns without resending
        self.retry_pending = False
        # (run_id, action) of a reply we stopped waiting for
        self.pending_run: tuple[str, str] | None = None

    @property
    def messages(self) -> list[ChatMessage]:
        """Transcript without the system prompt, as shown to the user."""
        return [m for m in self.transcript if m.role != "system"]

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        response = await self._http.post(path, json=payload)
        try:
            data: dict[str, Any] = response.json()
        except ValueError as exc:
            raise SessionError(f"{path} answered {response.status_code} without JSON") from exc
        if response.status_code >= 400:
            log.warning(
                "chat_api_error",
                path=path,
                status=response.status_code,
                error=data.get("error"),
                detail=data.get("detail"),
            )
        return data

    async def _follow(self, run_id: str, action: str) -> dict[str, Any] | None:
        """Poll a pending run; returns the final body, or None if we gave up."""
        assert self.thread_id is not None
        payload = {"threadId": self.thread_id, "runId": run_id, "action": action}
        for attempt in range(1, self.poll_policy.max_attempts + 1):
            await self._sleep(self.poll_policy.delay(attempt))
            data = await self._post(POLL_PATH, payload)
            if not data.get("success") or data.get("completed"):
                self.pending_run = None
                return data
        log.info("chat_poll_gave_up", thread_id=self.thread_id, run_id=run_id)
        self.pending_run = (run_id, action)
        return None

    def _apply_recommendations(self, data: dict[str, Any]) -> None:
        if data.get("recommendations"):
            # A new result replaces the old one, never merges
            self.recommendations = Recommendations.model_validate(data["recommendations"])

    def _reply(self, content: str) -> ChatMessage:
        message = ChatMessage(role="assistant", content=content)
        self.transcript.append(message)
        return message

    async def _finish(self, data: dict[str, Any], action: str) -> str:
        if not data.get("success"):
            if data.get("messageAppended"):
                self.retry_pending = True
            self._apply_recommendations(data)
            return data.get("message") or CLIENT_ERROR_MESSAGE

        self.retry_pending = False
        if data.get("inProgress"):
            followed = await self._follow(data["runId"], action)
            if followed is None:
                return STILL_WORKING_MESSAGE
            return await self._finish(followed, action)

        self._apply_recommendations(data)
        return data.get("message") or CLIENT_ERROR_MESSAGE

    async def _chat(self, payload: dict[str, Any]) -> ChatMessage:
        try:
            data = await self._post(CHAT_PATH, payload)
            if data.get("threadId") and self.thread_id is None:
                self.thread_id = data["threadId"]
            content = await self._finish(data, "sendMessage")
        except (httpx.HTTPError, SessionError) as exc:
            log.warning("chat_request_failed", error=str(exc), error_type=type(exc).__name__)
            content = CLIENT_ERROR_MESSAGE

        reply = self._reply(content)
        if self.auto_recommend and wants_recommendations(reply.content) and self.thread_id:
            await self.generate_recommendations()
        return reply

    async def send(self, text: str) -> ChatMessage:
        """Send user text, creating the thread on first use, and return the reply."""
        self.transcript.append(ChatMessage(role="user", content=text))
        if self.thread_id is None:
            payload = {"action": "createThread", "message": text}
        else:
            payload = {"action": "sendMessage", "threadId": self.thread_id, "message": text}
        return await self._chat(payload)

    async def retry(self) -> ChatMessage:
        """Rerun the assistant on text the server already has, without resending it."""
        if self.thread_id is None:
            raise SessionError("No thread to retry")
        return await self._chat(
            {"action": "sendMessage", "threadId": self.thread_id, "retryRun": True}
        )

    async def resume(self) -> ChatMessage | None:
        """Pick up a reply we stopped waiting for. Returns None if nothing is pending."""
        if self.pending_run is None:
            return None
        run_id, action = self.pending_run
        try:
            followed = await self._follow(run_id, action)
            if followed is None:
                content = STILL_WORKING_MESSAGE
            else:
                content = await self._finish(followed, action)
        except (httpx.HTTPError, SessionError) as exc:
            log.warning("chat_resume_failed", error=str(exc))
            content = CLIENT_ERROR_MESSAGE
        return self._reply(content)

    async def generate_recommendations(self) -> Recommendations | None:
        """Ask for the materials/tools list for this conversation.

        Returns the new recommendations (the server falls back to a general
        kit rather than an empty list), or None without a thread or on a
        transport failure.
        """
        if self.thread_id is None:
            log.warning("recommendations_without_thread")
            return None
        try:
            data = await self._post(
                CHAT_PATH,
                {"action": "generateRecommendations", "threadId": self.thread_id},
            )
            content = await self._finish(data, "generateRecommendations")
        except (httpx.HTTPError, SessionError) as exc:
            log.warning("recommendations_request_failed", error=str(exc))
            self._reply(RECOMMENDATIONS_ERROR_MESSAGE)
            return None
        self._reply(content)
        return self.recommendations
