"""
ProviderSession — one bound (provider, model, credential) unit.

A session issues one query at a time and returns a Success or raises
ProviderError. It never lets an SDK- or transport-specific exception
escape.
"""
from __future__ import annotations

import logging
import time
import uuid
from typing import FrozenSet, Optional

from oblivion.errors import ProviderError
from oblivion.models.schemas import Provider, QueryOptions, SessionInfo, SessionStatus, Success
from oblivion.providers.base import ProviderAdapter

logger = logging.getLogger(__name__)


class ProviderSession:

    def __init__(
        self,
        provider: Provider,
        model_name: str,
        adapter: ProviderAdapter,
        capability_tags: Optional[FrozenSet[str]] = None,
        session_id: Optional[str] = None,
    ):
        self.session_id = session_id or str(uuid.uuid4())
        self.provider = provider
        self.model_name = model_name
        self.adapter = adapter
        self.capability_tags = capability_tags if capability_tags is not None else provider.capability_tags
        self.last_response_time_ms = 0
        self.status = SessionStatus.ACTIVE

    @property
    def provider_id(self) -> str:
        return self.provider.provider_id

    @property
    def label(self) -> str:
        return f"{self.provider_id}/{self.model_name}"

    async def query(self, prompt: str, options: Optional[QueryOptions] = None) -> Success:
        """
        Send one prompt to the provider.

        Returns:
            Success with the response text and wall-clock latency.

        Raises:
            ProviderError: any failure, whatever the provider raised.
        """
        t0 = time.monotonic()
        try:
            text = await self.adapter.complete(prompt, options)
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError(f"{type(e).__name__}: {e}") from e

        latency_ms = int((time.monotonic() - t0) * 1000)
        self.last_response_time_ms = latency_ms
        return Success(text=text, latency_ms=latency_ms)

    def info(self) -> SessionInfo:
        return SessionInfo(
            session_id=self.session_id,
            provider_id=self.provider_id,
            model_name=self.model_name,
            capability_tags=sorted(self.capability_tags),
            last_response_time_ms=self.last_response_time_ms,
            status=self.status,
        )

    def __repr__(self) -> str:
        return f"ProviderSession({self.session_id[:8]}, {self.label}, {self.status.value})"
