"""Startup wiring: pick the provider strategy and resolve the assistant id.

Both choices are made once, when the API starts, never per request:

- provider: ``mock`` (canned local replies) or ``live`` (OpenAI). ``auto``
  means mock when no API key is configured.
- assistant: a fixed ``OPENAI_ASSISTANT_ID`` (optionally verified with one
  retrieve call) or, with ``ASSISTANT_AUTO_PROVISION``, an idempotent
  lookup by name that creates the assistant only if none exists.
"""

from __future__ import annotations

from typing import Literal

import structlog

from diy_assistant.assistant.mock_provider import MOCK_ASSISTANT_ID, MockAssistantProvider
from diy_assistant.assistant.orchestrator import ConversationOrchestrator
from diy_assistant.assistant.poller import PollPolicy, RunPoller, Sleep
from diy_assistant.assistant.provider import AssistantProvider, OpenAIAssistantProvider, load_prompt
from diy_assistant.config import Settings, settings
from diy_assistant.errors import ConfigurationError, ProviderError
from diy_assistant.utils.affiliate import AffiliateLinkBuilder

log = structlog.get_logger("factory")


def select_mode(config: Settings) -> Literal["mock", "live"]:
    if config.assistant_mode == "auto":
        return "live" if config.openai_api_key else "mock"
    return config.assistant_mode


def create_provider(config: Settings, mode: Literal["mock", "live"]) -> AssistantProvider:
    if mode == "mock":
        return MockAssistantProvider(run_steps=config.mock_run_steps)
    if not config.openai_api_key:
        raise ConfigurationError("OPENAI_API_KEY is not set (required when ASSISTANT_MODE=live)")
    return OpenAIAssistantProvider(
        config.openai_api_key,
        base_url=config.openai_base_url,
        timeout=config.openai_timeout_seconds,
    )


async def resolve_assistant_id(provider: AssistantProvider, config: Settings) -> str:
    """Return the assistant id to run against, creating the assistant if allowed."""
    if config.openai_assistant_id:
        if not config.verify_assistant_on_startup:
            return config.openai_assistant_id
        try:
            return await provider.retrieve_assistant(config.openai_assistant_id)
        except ProviderError as exc:
            if not exc.retryable:
                raise ConfigurationError(
                    f"Assistant {config.openai_assistant_id!r} could not be retrieved: {exc}"
                ) from exc
            # Provider hiccup at startup: keep the configured id, runs will surface errors
            log.warning(
                "assistant_verification_skipped",
                assistant_id=config.openai_assistant_id,
                error=str(exc),
            )
            return config.openai_assistant_id

    if not config.assistant_auto_provision:
        raise ConfigurationError(
            "OPENAI_ASSISTANT_ID is not set and ASSISTANT_AUTO_PROVISION is disabled"
        )

    existing = await provider.find_assistant(config.assistant_name)
    if existing:
        log.info("assistant_found", assistant_id=existing, name=config.assistant_name)
        return existing

    created = await provider.create_assistant(
        config.assistant_name,
        config.assistant_model,
        load_prompt("assistant_instructions"),
    )
    log.info(
        "assistant_provisioned",
        assistant_id=created,
        name=config.assistant_name,
        model=config.assistant_model,
    )
    return created


async def build_orchestrator(
    config: Settings | None = None,
    *,
    provider: AssistantProvider | None = None,
    sleep: Sleep | None = None,
) -> ConversationOrchestrator:
    """Create the orchestrator for this process.

    Raises ConfigurationError when live mode lacks credentials or an
    assistant id cannot be resolved.
    """
    config = config or settings
    mode = select_mode(config)
    if provider is None:
        provider = create_provider(config, mode)

    if mode == "mock":
        assistant_id = config.openai_assistant_id or MOCK_ASSISTANT_ID
    else:
        try:
            assistant_id = await resolve_assistant_id(provider, config)
        except Exception:
            await provider.close()
            raise

    policy = PollPolicy.from_settings(config)
    poller_kwargs = {"sleep": sleep} if sleep is not None else {}
    orchestrator = ConversationOrchestrator(
        provider,
        assistant_id,
        poller=RunPoller(provider, policy, **poller_kwargs),
        resume_poller=RunPoller(
            provider, policy.with_attempts(config.resume_poll_attempts), **poller_kwargs
        ),
        links=AffiliateLinkBuilder(config.affiliate_tag, config.affiliate_base_url),
    )
    log.info(
        "orchestrator_ready",
        mode=mode,
        provider=provider.name,
        assistant_id=assistant_id,
        poll_strategy=policy.strategy,
        poll_max_attempts=policy.max_attempts,
    )
    return orchestrator
