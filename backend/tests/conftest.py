"""Shared fixtures: the API wired to the in-memory mock provider."""

import os

# Settings are read at import time; pin mock mode before the package loads
os.environ["ASSISTANT_MODE"] = "mock"
os.environ["ENVIRONMENT"] = "development"
os.environ.pop("LANGSMITH_API_KEY", None)

import pytest  # noqa: E402
import structlog  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from diy_assistant.assistant.mock_provider import (  # noqa: E402
    MOCK_ASSISTANT_ID,
    MockAssistantProvider,
)
from diy_assistant.assistant.orchestrator import ConversationOrchestrator  # noqa: E402
from diy_assistant.assistant.poller import PollPolicy, RunPoller  # noqa: E402
from diy_assistant.main import app  # noqa: E402
from diy_assistant.utils.affiliate import AffiliateLinkBuilder  # noqa: E402

# structlog.testing.capture_logs only sees loggers that are not cached
structlog.configure(cache_logger_on_first_use=False)

TEST_TAG = "test-20"
TEST_BASE_URL = "https://www.amazon.com/s"


async def no_sleep(_seconds: float) -> None:
    return None


def make_orchestrator(
    provider,
    *,
    max_attempts: int = 3,
    resume_attempts: int = 1,
) -> ConversationOrchestrator:
    policy = PollPolicy(max_attempts=max_attempts, strategy="fixed", interval=0.0)
    return ConversationOrchestrator(
        provider,
        MOCK_ASSISTANT_ID,
        poller=RunPoller(provider, policy, sleep=no_sleep),
        resume_poller=RunPoller(provider, policy.with_attempts(resume_attempts), sleep=no_sleep),
        links=AffiliateLinkBuilder(TEST_TAG, TEST_BASE_URL),
    )


@pytest.fixture
def mock_provider():
    """Mock provider whose runs complete on the first status check."""
    return MockAssistantProvider(run_steps=0)


@pytest.fixture
def orchestrator(mock_provider):
    return make_orchestrator(mock_provider)


@pytest.fixture
async def client(orchestrator):
    """HTTP client against the app, with the orchestrator installed on app state.

    ASGITransport does not run the lifespan, so the fixture does its job.
    """
    app.state.orchestrator = orchestrator
    app.state.configuration_error = None
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.state.orchestrator = None
    app.state.configuration_error = None
