"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import pytest

from oblivion.models.schemas import (
    AdapterKind,
    Provider,
    QueryOptions,
    QueryResult,
    Success,
)
from oblivion.providers.base import ProviderAdapter
from oblivion.providers.registry import ProviderRegistry
from oblivion.services.aggregator import QueryAggregator
from oblivion.services.fleet import FleetManager
from oblivion.services.usage import UsageLedger


@dataclass
class Script:
    """What a scripted provider answers: a reply, or an error, after an optional delay."""
    reply: str = "ok"
    delay: float = 0.0
    error: Optional[Exception] = None
    prompts: List[str] = field(default_factory=list)
    system_prompts: List[Optional[str]] = field(default_factory=list)
    keys: List[Optional[str]] = field(default_factory=list)


class ScriptedAdapter(ProviderAdapter):
    """In-process adapter driven by a Script; no network."""

    def __init__(self, provider, model_name, script: Script, secret_source=None):
        super().__init__(provider, model_name, secret_source, max_retries=1, retry_base_delay=0.0)
        self.script = script

    async def _complete(self, prompt: str, options: QueryOptions) -> str:
        self.script.prompts.append(prompt)
        self.script.system_prompts.append(options.system_prompt)
        self.script.keys.append((await self._api_key()) or None)
        if self.script.delay:
            await asyncio.sleep(self.script.delay)
        if self.script.error is not None:
            raise self.script.error
        return self.script.reply


def scripted_provider(provider_id: str, requires_key: bool = False, tags=("general",)) -> Provider:
    return Provider(
        provider_id=provider_id,
        display_name=provider_id.title(),
        capability_tags=frozenset(tags),
        kind=AdapterKind.CUSTOM,
        requires_key=requires_key,
    )


@pytest.fixture
def scripts() -> Dict[str, Script]:
    """label ("provider/model") → Script; created on first use."""
    return {}


@pytest.fixture
def registry(scripts):
    registry = ProviderRegistry(providers=[])

    def factory(provider, model_name, secret_source, http_client):
        script = scripts.setdefault(f"{provider.provider_id}/{model_name}", Script())
        return ScriptedAdapter(provider, model_name, script, secret_source)

    for pid in ("alpha", "beta", "gamma", "delta"):
        registry.register(scripted_provider(pid), factory)
    registry.register(scripted_provider("analyst", tags=("analysis", "general")), factory)
    registry.register(scripted_provider("locked", requires_key=True), factory)
    return registry


@pytest.fixture
def fleet(registry):
    return FleetManager(registry, max_active=3)


@pytest.fixture
def ledger():
    return UsageLedger()


@pytest.fixture
def aggregator(fleet, ledger):
    return QueryAggregator(fleet, timeout_seconds=2.0, ledger=ledger)


def success(text: str, provider_id: str = "alpha", model_name: str = "m1", latency_ms: int = 100,
            session_id: Optional[str] = None) -> QueryResult:
    """Build a settled successful result without going through a fleet."""
    return QueryResult(
        session_id=session_id or f"{provider_id}-{model_name}",
        provider_id=provider_id,
        model_name=model_name,
        outcome=Success(text=text, latency_ms=latency_ms),
    )
