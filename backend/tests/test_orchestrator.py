"""Tests for the conversation orchestrator against a scripted provider."""

from unittest.mock import AsyncMock

import pytest
from conftest import TEST_TAG, make_orchestrator

from diy_assistant.assistant.orchestrator import (
    NO_RESPONSE_MESSAGE,
    RECOMMENDATIONS_READY_MESSAGE,
)
from diy_assistant.errors import ProviderError, RunTerminatedError, UnsupportedActionError
from diy_assistant.models.contracts import ChatMessage, Run, RunError

TILING_ADVICE = (
    "Great project! Waterproof the shower walls before you tile, "
    "and let the thinset cure for a day before grouting."
)
TILING_BLOCK = (
    "```json\n"
    '{"materials": [{"name": "Thinset Mortar"}, {"name": "Porcelain Tile"}],'
    ' "tools": [{"name": "Notched Trowel"}]}\n'
    "```"
)


def _provider(reply: str = TILING_ADVICE, status: str = "completed") -> AsyncMock:
    provider = AsyncMock()
    provider.name = "fake"
    provider.create_thread.return_value = "t1"
    provider.create_run.return_value = Run(id="run_1", thread_id="t1", status="queued")
    provider.retrieve_run.return_value = Run(id="run_1", thread_id="t1", status=status)
    provider.list_messages.return_value = [ChatMessage(role="assistant", content=reply)]
    return provider


class TestCreateThread:
    @pytest.mark.asyncio
    async def test_bathroom_scenario(self):
        """First message gets tiling advice without the JSON; recommendations follow."""
        provider = _provider(f"{TILING_ADVICE}\n\n{TILING_BLOCK}")
        orch = make_orchestrator(provider)

        turn = await orch.create_thread("I'm renovating my bathroom")
        assert turn.thread_id == "t1"
        assert turn.message == TILING_ADVICE
        assert turn.in_progress is False
        provider.append_message.assert_awaited_once_with("t1", "I'm renovating my bathroom")

        provider.list_messages.return_value = [
            ChatMessage(role="assistant", content=f"Here's your list:\n{TILING_BLOCK}")
        ]
        recs = await orch.generate_recommendations("t1")
        assert recs.fallback is False
        assert [m.name for m in recs.recommendations.materials] == [
            "Thinset Mortar",
            "Porcelain Tile",
        ]
        assert [t.name for t in recs.recommendations.tools] == ["Notched Trowel"]
        for item in recs.recommendations.materials + recs.recommendations.tools:
            assert f"tag={TEST_TAG}" in item.affiliate_url
        assert recs.message == "Here's your list:"

    @pytest.mark.asyncio
    async def test_without_message_only_creates_thread(self):
        provider = _provider()
        turn = await make_orchestrator(provider).create_thread()
        assert turn.thread_id == "t1"
        assert turn.message is None
        provider.append_message.assert_not_awaited()
        provider.create_run.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_first_turn_keeps_thread_id(self):
        provider = _provider(status="failed")
        with pytest.raises(RunTerminatedError) as exc_info:
            await make_orchestrator(provider).create_thread("Hello")
        assert exc_info.value.thread_id == "t1"
        assert exc_info.value.message_appended is True


class TestSendMessage:
    @pytest.mark.asyncio
    async def test_reply_returned(self):
        provider = _provider("Use a stud finder first.")
        turn = await make_orchestrator(provider).send_message("t1", "How do I hang a shelf?")
        assert turn.message == "Use a stud finder first."
        assert turn.raw_message == "Use a stud finder first."
        assert turn.recommendations is None
        assert turn.status == "completed"
        provider.create_run.assert_awaited_once_with("t1", "asst_mock")
        provider.list_messages.assert_awaited_once_with("t1", limit=1)

    @pytest.mark.asyncio
    async def test_inline_block_is_decorated(self):
        provider = _provider(f"{TILING_ADVICE}\n\n{TILING_BLOCK}")
        turn = await make_orchestrator(provider).send_message("t1", "What materials?")
        assert turn.recommendations is not None
        assert turn.recommendations.materials[0].name == "Thinset Mortar"
        assert turn.fallback is False

    @pytest.mark.asyncio
    async def test_retry_does_not_append_again(self):
        provider = _provider()
        await make_orchestrator(provider).send_message("t1", "Hello", append=False)
        provider.append_message.assert_not_awaited()
        provider.create_run.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_run_creation_failure_marks_message_appended(self):
        """The text is already on the thread, so the error says not to resend it."""
        provider = _provider()
        provider.create_run.side_effect = ProviderError("boom", operation="create_run")
        with pytest.raises(ProviderError) as exc_info:
            await make_orchestrator(provider).send_message("t1", "Hello")
        assert exc_info.value.message_appended is True
        assert exc_info.value.thread_id == "t1"

    @pytest.mark.asyncio
    async def test_append_failure_is_not_marked_appended(self):
        provider = _provider()
        provider.append_message.side_effect = ProviderError("boom", operation="append_message")
        with pytest.raises(ProviderError) as exc_info:
            await make_orchestrator(provider).send_message("t1", "Hello")
        assert exc_info.value.message_appended is False
        provider.create_run.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_terminated_run_carries_detail(self):
        provider = _provider(status="expired")
        provider.retrieve_run.return_value = Run(
            id="run_1",
            thread_id="t1",
            status="expired",
            last_error=RunError(code="timeout", message="took too long"),
        )
        with pytest.raises(RunTerminatedError, match="timeout: took too long"):
            await make_orchestrator(provider).send_message("t1", "Hello")

    @pytest.mark.asyncio
    async def test_requires_action_raises_unsupported(self):
        provider = _provider(status="requires_action")
        with pytest.raises(UnsupportedActionError) as exc_info:
            await make_orchestrator(provider).send_message("t1", "Hello")
        assert exc_info.value.thread_id == "t1"

    @pytest.mark.asyncio
    async def test_pending_when_budget_runs_out(self):
        provider = _provider(status="in_progress")
        turn = await make_orchestrator(provider, max_attempts=2).send_message("t1", "Hello")
        assert turn.in_progress is True
        assert turn.run_id == "run_1"
        assert turn.status == "in_progress"
        assert turn.message is None
        assert provider.retrieve_run.await_count == 2
        provider.list_messages.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_assistant_message_gets_apology(self):
        provider = _provider()
        provider.list_messages.return_value = [ChatMessage(role="user", content="Hello")]
        turn = await make_orchestrator(provider).send_message("t1", "Hello")
        assert turn.message == NO_RESPONSE_MESSAGE
        assert turn.recommendations is None

    @pytest.mark.asyncio
    async def test_empty_thread_gets_apology(self):
        provider = _provider()
        provider.list_messages.return_value = []
        turn = await make_orchestrator(provider).send_message("t1", "Hello")
        assert turn.message == NO_RESPONSE_MESSAGE


class TestGenerateRecommendations:
    @pytest.mark.asyncio
    async def test_run_uses_instruction_override(self):
        provider = _provider(TILING_BLOCK)
        orch = make_orchestrator(provider)
        await orch.generate_recommendations("t1")
        provider.create_run.assert_awaited_once_with(
            "t1",
            "asst_mock",
            instructions=orch.recommendation_instructions,
        )
        provider.append_message.assert_not_awaited()
        assert "materials" in orch.recommendation_instructions

    @pytest.mark.asyncio
    async def test_json_only_reply_gets_ready_message(self):
        turn = await make_orchestrator(_provider(TILING_BLOCK)).generate_recommendations("t1")
        assert turn.message == RECOMMENDATIONS_READY_MESSAGE
        assert turn.fallback is False

    @pytest.mark.asyncio
    async def test_extraction_miss_falls_back(self):
        """No parseable block still fills the panel, flagged as fallback."""
        provider = _provider("Sorry, I can't make a list right now.")
        turn = await make_orchestrator(provider).generate_recommendations("t1")
        assert turn.fallback is True
        assert len(turn.recommendations.materials) == 5
        assert len(turn.recommendations.tools) == 5
        assert turn.message == "Sorry, I can't make a list right now."

    @pytest.mark.asyncio
    async def test_empty_lists_fall_back(self):
        provider = _provider('```json\n{"materials": [], "tools": []}\n```')
        turn = await make_orchestrator(provider).generate_recommendations("t1")
        assert turn.fallback is True
        assert turn.recommendations.materials
        assert turn.message == RECOMMENDATIONS_READY_MESSAGE

    @pytest.mark.asyncio
    async def test_failure_sets_thread_id(self):
        provider = _provider(status="cancelled")
        with pytest.raises(RunTerminatedError) as exc_info:
            await make_orchestrator(provider).generate_recommendations("t1")
        assert exc_info.value.thread_id == "t1"
        assert exc_info.value.message_appended is False


class TestResume:
    @pytest.mark.asyncio
    async def test_still_running(self):
        provider = _provider(status="in_progress")
        turn = await make_orchestrator(provider).resume("t1", "run_1")
        assert turn.in_progress is True
        assert provider.retrieve_run.await_count == 1

    @pytest.mark.asyncio
    async def test_completed(self):
        provider = _provider("All done.")
        turn = await make_orchestrator(provider).resume("t1", "run_1")
        assert turn.in_progress is False
        assert turn.message == "All done."
        assert turn.run_id == "run_1"

    @pytest.mark.asyncio
    async def test_recommendations_resume_is_fail_soft(self):
        provider = _provider("No list, sorry.")
        turn = await make_orchestrator(provider).resume("t1", "run_1", recommendations=True)
        assert turn.fallback is True
        assert turn.recommendations.tools


class TestWithMockProvider:
    @pytest.mark.asyncio
    async def test_bathroom_conversation(self, orchestrator):
        """The canned bathroom conversation flows end to end in mock mode."""
        turn = await orchestrator.create_thread("I'm renovating my bathroom")
        assert turn.thread_id.startswith("thread_mock_")
        assert "waterproof" in turn.message
        assert "```" not in turn.message

        recs = await orchestrator.generate_recommendations(turn.thread_id)
        assert recs.fallback is False
        assert recs.recommendations.materials[0].name == "Cement Backer Board"
        assert "k=Cement+Backer+Board" in recs.recommendations.materials[0].affiliate_url
        assert recs.message == "Here's what I'd pick up for this project:"
