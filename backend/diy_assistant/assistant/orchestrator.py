"""Conversation orchestrator: threads, messages, runs and replies.

One orchestrator serves every user. It holds the provider, the assistant
id resolved at startup, the pollers and the link builder, and nothing
per-conversation: the thread id travels with each call and the provider
keeps the history.

Provider calls are not atomic. If the user's text reached the thread and a
later step fails, the raised error has ``message_appended`` set so the
caller can retry with ``append=False`` instead of duplicating the text.
"""

from __future__ import annotations

import structlog

from diy_assistant.assistant.poller import PollPolicy, RunPending, RunPoller
from diy_assistant.assistant.provider import AssistantProvider, load_prompt
from diy_assistant.errors import DomainError
from diy_assistant.models.contracts import AssistantTurn, Recommendations
from diy_assistant.utils.affiliate import AffiliateLinkBuilder, fallback_recommendations
from diy_assistant.utils.json_extract import extract_recommendations, strip_recommendation_json

log = structlog.get_logger("orchestrator")

NO_RESPONSE_MESSAGE = "I apologize, but I couldn't generate a response at this time."
RECOMMENDATIONS_READY_MESSAGE = (
    "Your personalized recommendations are ready! "
    "You can view them in the recommendations panel."
)


def _pending_turn(thread_id: str, outcome: RunPending) -> AssistantTurn:
    return AssistantTurn(
        thread_id=thread_id,
        run_id=outcome.run_id,
        in_progress=True,
        status=outcome.status,
    )


def _is_empty(recommendations: Recommendations | None) -> bool:
    return recommendations is None or not (recommendations.materials or recommendations.tools)


class ConversationOrchestrator:
    def __init__(
        self,
        provider: AssistantProvider,
        assistant_id: str,
        *,
        poller: RunPoller | None = None,
        resume_poller: RunPoller | None = None,
        links: AffiliateLinkBuilder | None = None,
        recommendation_instructions: str | None = None,
    ) -> None:
        self.provider = provider
        self.assistant_id = assistant_id
        self.poller = poller or RunPoller(provider, PollPolicy.from_settings())
        self.resume_poller = resume_poller or RunPoller(
            provider, self.poller.policy.with_attempts(1)
        )
        self.links = links or AffiliateLinkBuilder()
        self.recommendation_instructions = recommendation_instructions or load_prompt(
            "recommendations"
        )

    async def create_thread(self, initial_message: str | None = None) -> AssistantTurn:
        """Open a thread and, when given a first message, answer it."""
        thread_id = await self.provider.create_thread()
        structlog.contextvars.bind_contextvars(thread_id=thread_id)
        if not initial_message:
            return AssistantTurn(thread_id=thread_id)
        try:
            return await self.send_message(thread_id, initial_message)
        except DomainError as exc:
            # The thread exists even though the first turn failed; let the caller keep it
            exc.thread_id = thread_id
            raise

    async def send_message(
        self,
        thread_id: str,
        message: str | None,
        *,
        append: bool = True,
    ) -> AssistantTurn:
        """Append the user's message, run the assistant and return its reply.

        With ``append=False`` the message is not sent again and only a new run
        is started; that is the retry path after a partial failure.
        """
        appended = False
        if append and message:
            await self.provider.append_message(thread_id, message)
            appended = True
        log.info("message_submitted", thread_id=thread_id, appended=appended)

        try:
            run = await self.provider.create_run(thread_id, self.assistant_id)
            outcome = await self.poller.wait(thread_id, run.id)
            if isinstance(outcome, RunPending):
                return _pending_turn(thread_id, outcome)
            return await self._reply(thread_id, run.id)
        except DomainError as exc:
            exc.thread_id = thread_id
            exc.message_appended = exc.message_appended or appended
            raise

    async def generate_recommendations(self, thread_id: str) -> AssistantTurn:
        """Ask the assistant for a materials/tools block and decorate it.

        Never returns an empty panel: an unparseable or empty block yields the
        fallback recommendations with ``fallback=True``.
        """
        try:
            run = await self.provider.create_run(
                thread_id,
                self.assistant_id,
                instructions=self.recommendation_instructions,
            )
            outcome = await self.poller.wait(thread_id, run.id)
            if isinstance(outcome, RunPending):
                return _pending_turn(thread_id, outcome)
            return await self._reply(thread_id, run.id, recommendations=True)
        except DomainError as exc:
            exc.thread_id = thread_id
            raise

    async def resume(
        self,
        thread_id: str,
        run_id: str,
        *,
        recommendations: bool = False,
    ) -> AssistantTurn:
        """Check a run started by an earlier request, without a long wait."""
        outcome = await self.resume_poller.wait(thread_id, run_id)
        if isinstance(outcome, RunPending):
            return _pending_turn(thread_id, outcome)
        return await self._reply(thread_id, run_id, recommendations=recommendations)

    async def latest_assistant_message(self, thread_id: str) -> str:
        messages = await self.provider.list_messages(thread_id, limit=1)
        if not messages or messages[0].role != "assistant":
            log.warning(
                "assistant_message_missing",
                thread_id=thread_id,
                newest_role=messages[0].role if messages else None,
            )
            return NO_RESPONSE_MESSAGE
        return messages[0].content

    async def _reply(
        self,
        thread_id: str,
        run_id: str,
        *,
        recommendations: bool = False,
    ) -> AssistantTurn:
        raw = await self.latest_assistant_message(thread_id)
        extracted = extract_recommendations(raw)
        decorated = self.links.decorate(extracted) if extracted is not None else None
        if _is_empty(decorated):
            decorated = None

        fallback = False
        if recommendations and decorated is None:
            log.warning("recommendations_fallback", thread_id=thread_id, run_id=run_id)
            decorated = fallback_recommendations(self.links)
            fallback = True
        elif decorated is not None:
            log.info(
                "recommendations_extracted",
                thread_id=thread_id,
                materials=len(decorated.materials),
                tools=len(decorated.tools),
            )

        message = strip_recommendation_json(raw)
        if not message:
            message = RECOMMENDATIONS_READY_MESSAGE if decorated else NO_RESPONSE_MESSAGE

        return AssistantTurn(
            thread_id=thread_id,
            run_id=run_id,
            message=message,
            raw_message=raw,
            recommendations=decorated,
            status="completed",
            fallback=fallback,
        )
