"""Run poller: waits for an assistant run to reach a terminal status.

The poller only observes runs; the provider owns every transition. Each
call to ``wait`` is bounded by the policy's attempt budget so a request
handler never holds its connection open for long. When the budget runs
out the caller gets ``RunPending`` back and resumes later through the
poll endpoint.

Outcomes:
- ``completed``                               -> RunCompleted
- ``failed`` / ``cancelled`` / ``expired`` /
  ``incomplete``                              -> RunTerminatedError
- ``requires_action``                         -> UnsupportedActionError
- still queued / in progress after the budget -> RunPending
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Literal

import structlog

from diy_assistant.assistant.provider import AssistantProvider
from diy_assistant.config import Settings, settings
from diy_assistant.errors import RunTerminatedError, UnsupportedActionError
from diy_assistant.models.contracts import Run

log = structlog.get_logger("poller")

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class PollPolicy:
    """Attempt budget and delay schedule between status checks."""

    max_attempts: int = 10
    strategy: Literal["fixed", "exponential"] = "exponential"
    interval: float = 1.0
    initial_delay: float = 0.3
    backoff_factor: float = 1.5
    max_delay: float = 1.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def delay(self, attempt: int) -> float:
        """Seconds to wait after status check number ``attempt`` (1-based)."""
        if self.strategy == "fixed":
            return self.interval
        return min(self.initial_delay * self.backoff_factor ** (attempt - 1), self.max_delay)

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> PollPolicy:
        config = config or settings
        return cls(
            max_attempts=config.poll_max_attempts,
            strategy=config.poll_strategy,
            interval=config.poll_interval_seconds,
            initial_delay=config.poll_initial_delay_seconds,
            backoff_factor=config.poll_backoff_factor,
            max_delay=config.poll_max_delay_seconds,
        )

    def with_attempts(self, max_attempts: int) -> PollPolicy:
        return PollPolicy(
            max_attempts=max_attempts,
            strategy=self.strategy,
            interval=self.interval,
            initial_delay=self.initial_delay,
            backoff_factor=self.backoff_factor,
            max_delay=self.max_delay,
        )


@dataclass(frozen=True)
class RunCompleted:
    run: Run
    attempts: int


@dataclass(frozen=True)
class RunPending:
    """Budget exhausted before the run finished. Not an error."""

    run: Run
    attempts: int

    @property
    def run_id(self) -> str:
        return self.run.id

    @property
    def status(self) -> str:
        return self.run.status


PollOutcome = RunCompleted | RunPending


class RunPoller:
    def __init__(
        self,
        provider: AssistantProvider,
        policy: PollPolicy | None = None,
        *,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.provider = provider
        self.policy = policy or PollPolicy()
        self._sleep = sleep

    async def wait(self, thread_id: str, run_id: str) -> PollOutcome:
        run: Run | None = None
        for attempt in range(1, self.policy.max_attempts + 1):
            run = await self.provider.retrieve_run(thread_id, run_id)
            log.debug(
                "run_status",
                thread_id=thread_id,
                run_id=run_id,
                status=run.status,
                attempt=attempt,
            )

            if run.is_completed:
                log.info("run_completed", thread_id=thread_id, run_id=run_id, attempts=attempt)
                return RunCompleted(run=run, attempts=attempt)

            if run.is_terminated:
                log.error(
                    "run_terminated",
                    thread_id=thread_id,
                    run_id=run_id,
                    status=run.status,
                    error_code=run.last_error.code if run.last_error else None,
                    error_message=run.last_error.message if run.last_error else None,
                )
                raise RunTerminatedError(run_id, run.status, run.last_error, thread_id=thread_id)

            if run.requires_action:
                log.warning("run_requires_action", thread_id=thread_id, run_id=run_id)
                raise UnsupportedActionError(run_id, thread_id=thread_id)

            if attempt < self.policy.max_attempts:
                await self._sleep(self.policy.delay(attempt))

        assert run is not None  # max_attempts >= 1
        log.info(
            "run_still_pending",
            thread_id=thread_id,
            run_id=run_id,
            status=run.status,
            attempts=self.policy.max_attempts,
        )
        return RunPending(run=run, attempts=self.policy.max_attempts)
