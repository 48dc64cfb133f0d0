"""In-memory assistant provider for mock mode.

Returns canned DIY advice and canned recommendation blocks so the API and
the browser client can be exercised without an OpenAI key. Runs report
``in_progress`` for a configurable number of status checks before they
complete, which keeps the polling path honest in local development.

State lives in this object only. It stands in for the external provider
and disappears with the process.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from uuid import uuid4

import structlog

from diy_assistant.errors import ProviderError
from diy_assistant.models.contracts import ChatMessage, Run

log = structlog.get_logger("mock_provider")

MOCK_ASSISTANT_ID = "asst_mock"


@dataclass(frozen=True)
class _Topic:
    keywords: tuple[str, ...]
    advice: str
    materials: tuple[str, ...]
    tools: tuple[str, ...]


_TOPICS: tuple[_Topic, ...] = (
    _Topic(
        keywords=("bathroom", "tile", "tiling", "shower", "grout"),
        advice=(
            "For a bathroom renovation, start with the wet areas: make sure the "
            "substrate is cement board, not drywall, and waterproof the shower walls "
            "before tiling. Dry-lay your first rows to plan cuts, keep spacers "
            "consistent, and let thinset cure 24 hours before grouting."
        ),
        materials=(
            "Cement Backer Board",
            "Waterproofing Membrane",
            "Thinset Mortar",
            "Porcelain Floor Tile",
            "Sanded Grout",
            "Tile Spacers",
        ),
        tools=("Notched Trowel", "Tile Cutter", "Grout Float", "Level", "Mixing Paddle"),
    ),
    _Topic(
        keywords=("deck", "patio", "pergola"),
        advice=(
            "Before building a deck, check local permit rules and find your frost "
            "line depth for the footings. Use pressure-treated lumber rated for "
            "ground contact on posts and joists, and hot-dip galvanized or "
            "stainless fasteners throughout."
        ),
        materials=(
            "Pressure-Treated Lumber",
            "Concrete Mix",
            "Joist Hangers",
            "Composite Decking Boards",
            "Exterior Deck Screws",
        ),
        tools=("Circular Saw", "Post Hole Digger", "Speed Square", "Impact Driver", "Level"),
    ),
    _Topic(
        keywords=("paint", "painting", "repaint", "primer"),
        advice=(
            "Good paint jobs are mostly prep: fill holes with spackle, sand smooth, "
            "wipe the dust, and tape edges. Prime patched areas and any stain, then "
            "cut in along the ceiling and trim before rolling the walls in two thin coats."
        ),
        materials=("Interior Wall Paint", "Wall Primer", "Painter's Tape", "Spackle"),
        tools=("Paint Roller", "Angled Brush", "Paint Tray", "Sanding Sponge", "Drop Cloth"),
    ),
    _Topic(
        keywords=("drywall", "wall", "hole", "patch"),
        advice=(
            "Small drywall holes can be patched with a mesh patch and joint compound. "
            "For larger damage, cut back to the nearest studs, screw in a new piece, "
            "tape the seams, and apply three thin coats of compound, sanding between coats."
        ),
        materials=("Drywall Sheets", "Joint Compound", "Drywall Tape", "Drywall Screws"),
        tools=("Drywall Saw", "Taping Knife", "Utility Knife", "Drill", "Sanding Pole"),
    ),
)

_GENERAL_ADVICE = (
    "Happy to help with your project! Tell me which room you're working on, "
    "roughly how big the area is, and what's there today, and I'll walk you "
    "through the steps and what you'll need."
)

_SHOPPING_KEYWORDS = ("shopping list", "materials", "tools", "supplies", "recommend")


def _pick_topic(messages: list[ChatMessage]) -> _Topic | None:
    """Match the newest user message first, then the rest of the conversation."""
    user_texts = [m.content.lower() for m in reversed(messages) if m.role == "user"]
    for text in user_texts:
        for topic in _TOPICS:
            if any(keyword in text for keyword in topic.keywords):
                return topic
    return None


def _recommendation_block(topic: _Topic | None) -> str:
    if topic is None:
        topic = _TOPICS[-1]
    payload = {
        "materials": [{"name": name} for name in topic.materials],
        "tools": [{"name": name} for name in topic.tools],
    }
    return f"```json\n{json.dumps(payload, indent=2)}\n```"


def canned_reply(messages: list[ChatMessage], instructions: str | None = None) -> str:
    """Build the assistant reply for a thread's history."""
    topic = _pick_topic(messages)
    if instructions:
        return "Here's what I'd pick up for this project:\n\n" + _recommendation_block(topic)

    advice = topic.advice if topic else _GENERAL_ADVICE
    latest = next((m.content.lower() for m in reversed(messages) if m.role == "user"), "")
    if topic is not None and any(keyword in latest for keyword in _SHOPPING_KEYWORDS):
        return f"{advice}\n\n{_recommendation_block(topic)}"
    return advice


@dataclass
class _MockRun:
    run: Run
    remaining_steps: int
    instructions: str | None = None
    messages: list[ChatMessage] = field(default_factory=list)


class MockAssistantProvider:
    """AssistantProvider that answers from canned content, in memory."""

    name = "mock"

    def __init__(self, run_steps: int = 1) -> None:
        self.run_steps = run_steps
        self._threads: dict[str, list[ChatMessage]] = {}
        self._runs: dict[str, _MockRun] = {}

    def _thread(self, thread_id: str, operation: str) -> list[ChatMessage]:
        try:
            return self._threads[thread_id]
        except KeyError:
            raise ProviderError(
                f"No thread found with id '{thread_id}'",
                operation=operation,
                thread_id=thread_id,
                retryable=False,
            ) from None

    async def create_thread(self) -> str:
        thread_id = f"thread_mock_{uuid4().hex[:12]}"
        self._threads[thread_id] = []
        log.info("thread_created", thread_id=thread_id, provider=self.name)
        return thread_id

    async def append_message(self, thread_id: str, content: str) -> None:
        self._thread(thread_id, "append_message").append(ChatMessage(role="user", content=content))

    async def create_run(
        self,
        thread_id: str,
        assistant_id: str,
        instructions: str | None = None,
    ) -> Run:
        history = self._thread(thread_id, "create_run")
        run = Run(id=f"run_mock_{uuid4().hex[:12]}", thread_id=thread_id, status="queued")
        self._runs[run.id] = _MockRun(
            run=run,
            remaining_steps=self.run_steps,
            instructions=instructions,
            messages=list(history),
        )
        return run.model_copy()

    async def retrieve_run(self, thread_id: str, run_id: str) -> Run:
        history = self._thread(thread_id, "retrieve_run")
        mock_run = self._runs.get(run_id)
        if mock_run is None or mock_run.run.thread_id != thread_id:
            raise ProviderError(
                f"No run found with id '{run_id}'",
                operation="retrieve_run",
                thread_id=thread_id,
                retryable=False,
            )
        if mock_run.run.status != "completed":
            if mock_run.remaining_steps > 0:
                mock_run.remaining_steps -= 1
                mock_run.run.status = "in_progress"
            else:
                reply = canned_reply(mock_run.messages, mock_run.instructions)
                history.append(ChatMessage(role="assistant", content=reply))
                mock_run.run.status = "completed"
        return mock_run.run.model_copy()

    async def list_messages(self, thread_id: str, limit: int = 1) -> list[ChatMessage]:
        history = self._thread(thread_id, "list_messages")
        return list(reversed(history))[:limit]

    async def retrieve_assistant(self, assistant_id: str) -> str:
        return assistant_id

    async def find_assistant(self, name: str) -> str | None:
        return MOCK_ASSISTANT_ID

    async def create_assistant(self, name: str, model: str, instructions: str) -> str:
        return MOCK_ASSISTANT_ID

    async def close(self) -> None:
        self._threads.clear()
        self._runs.clear()
