"""
Application context — every long-lived component, wired once.

The API routers, the WebSocket endpoint and the CLI all take their
collaborators from an AppContext instead of module globals, so tests can
build one with fakes and hand it to `create_app()`.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

import httpx
from fastapi import Request

from oblivion.agent.orchestrator import MultiAIOrchestrator
from oblivion.config import Settings, settings as default_settings
from oblivion.providers.base import static_secret
from oblivion.providers.registry import ProviderRegistry
from oblivion.services.aggregator import QueryAggregator
from oblivion.services.consensus import ConsensusEngine
from oblivion.services.credentials import CredentialStore
from oblivion.services.fleet import FleetManager
from oblivion.services.ollama_manager import OllamaManager
from oblivion.services.prompts import PromptLibrary
from oblivion.services.sandbox import ExecutionSandbox, create_sandbox
from oblivion.services.session import ProviderSession
from oblivion.services.synthesizer import LLMSynthesizer
from oblivion.services.usage import UsageLedger

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    settings: Settings
    registry: ProviderRegistry
    credentials: CredentialStore
    fleet: FleetManager
    usage: UsageLedger
    aggregator: QueryAggregator
    orchestrator: MultiAIOrchestrator
    sandbox: ExecutionSandbox
    prompts: PromptLibrary
    ollama: OllamaManager
    http_client: Optional[httpx.AsyncClient] = None
    # broadcast_id → cancel event of broadcasts still running
    broadcasts: Dict[str, asyncio.Event] = field(default_factory=dict)

    @classmethod
    def build(
        cls,
        config: Optional[Settings] = None,
        registry: Optional[ProviderRegistry] = None,
        credentials: Optional[CredentialStore] = None,
        sandbox: Optional[ExecutionSandbox] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        prompts: Optional[PromptLibrary] = None,
        ollama: Optional[OllamaManager] = None,
    ) -> "AppContext":
        config = config or default_settings
        if http_client is None:
            http_client = httpx.AsyncClient(timeout=config.provider_http_timeout)
        registry = registry or ProviderRegistry()
        if credentials is None:
            credentials = CredentialStore(
                config.credential_store_path or None, iterations=config.credential_kdf_iterations
            )

        fleet = FleetManager(registry, max_active=config.max_active_sessions, http_client=http_client)
        usage = UsageLedger(max_calls=config.usage_max_calls)
        if prompts is None:
            prompts = PromptLibrary(config.prompt_store_path or None)
        aggregator = QueryAggregator(
            fleet, timeout_seconds=config.query_timeout_seconds, ledger=usage, prompts=prompts
        )
        engine = ConsensusEngine(
            max_active=config.max_active_sessions,
            agreement_threshold=config.agreement_threshold,
            top_k=config.synthesis_top_k,
            latency_norm_ms=config.latency_norm_ms,
        )
        orchestrator = MultiAIOrchestrator(
            aggregator, engine, synthesizer=build_synthesizer(config, registry, http_client)
        )

        return cls(
            settings=config,
            registry=registry,
            credentials=credentials,
            fleet=fleet,
            usage=usage,
            aggregator=aggregator,
            orchestrator=orchestrator,
            sandbox=sandbox or create_sandbox(config.sandbox_mode, http_client=http_client),
            prompts=prompts,
            ollama=ollama or OllamaManager(
                config.ollama_host, http_client, pull_timeout_seconds=config.ollama_pull_timeout_seconds
            ),
            http_client=http_client,
        )

    async def aclose(self) -> None:
        for event in self.broadcasts.values():
            event.set()
        if self.http_client is not None:
            await self.http_client.aclose()


def build_synthesizer(
    config: Settings,
    registry: ProviderRegistry,
    http_client: Optional[httpx.AsyncClient] = None,
) -> Optional[LLMSynthesizer]:
    """The synthesizer session lives outside the fleet and never counts toward its capacity."""
    if not (config.synthesizer_provider and config.synthesizer_model):
        return None

    provider = registry.get(config.synthesizer_provider)
    adapter = registry.create_adapter(
        provider.provider_id,
        config.synthesizer_model,
        static_secret(config.synthesizer_api_key or None),
        http_client,
    )
    session = ProviderSession(
        provider=provider,
        model_name=config.synthesizer_model,
        adapter=adapter,
        capability_tags=registry.capabilities_of(provider.provider_id, config.synthesizer_model),
    )
    logger.info(f"LLM synthesis enabled with {session.label}")
    return LLMSynthesizer(session)


def get_context(request: Request) -> AppContext:
    """FastAPI dependency."""
    return request.app.state.context
