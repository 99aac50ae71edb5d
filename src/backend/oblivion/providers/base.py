"""
Provider adapter boundary.

Each adapter wraps exactly one external provider API. Whatever the
underlying SDK or HTTP client raises, only ProviderError leaves this layer.
Transient errors (429 / 5xx / connection / timeout) are retried with
exponential backoff before giving up.
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Callable, Optional

import httpx

from oblivion.config import settings
from oblivion.errors import ProviderError
from oblivion.models.schemas import Provider, QueryOptions

logger = logging.getLogger(__name__)

# Resolves the API key for one call. Never cached by adapters.
SecretSource = Callable[[], Optional[str]]


def static_secret(value: Optional[str]) -> SecretSource:
    """Wrap a plaintext key (or None) as a SecretSource."""
    return lambda: value


class ProviderAdapter(ABC):
    """
    Base class for one provider's query capability.

    Subclasses implement `_complete()`; callers use `complete()`, which adds
    error mapping and retries.
    """

    def __init__(
        self,
        provider: Provider,
        model_name: str,
        secret_source: Optional[SecretSource] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        base_url: Optional[str] = None,
        max_retries: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
    ):
        self.provider = provider
        self.model_name = model_name
        self._secret_source = secret_source or static_secret(None)
        self._http_client = http_client
        self.base_url = (base_url or provider.base_url or "").rstrip("/")
        self.max_retries = max(1, max_retries if max_retries is not None else settings.provider_max_retries)
        self.retry_base_delay = (
            retry_base_delay if retry_base_delay is not None else settings.provider_retry_base_delay
        )

    async def _get_client(self) -> httpx.AsyncClient:
        """Lazy-initialize the HTTP client when none was shared with us."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=settings.provider_http_timeout)
        return self._http_client

    async def _api_key(self) -> str:
        # Secret sources may decrypt or prompt; keep them off the event loop
        key = await asyncio.to_thread(self._secret_source)
        if self.provider.requires_key and not key:
            raise ProviderError(f"No API key configured for {self.provider.display_name}")
        return key or ""

    async def complete(self, prompt: str, options: Optional[QueryOptions] = None) -> str:
        """
        Send one prompt and return the response text.

        Raises:
            ProviderError: on any failure, after retrying transient ones.
        """
        options = options or QueryOptions()
        last_error: Optional[ProviderError] = None

        for attempt in range(self.max_retries):
            try:
                return await self._complete(prompt, options)
            except ProviderError as e:
                last_error = e
            except httpx.HTTPStatusError as e:
                last_error = ProviderError(_error_detail(e.response), e.response.status_code)
            except httpx.TimeoutException as e:
                last_error = ProviderError(f"Request timed out: {e}")
            except httpx.TransportError as e:
                last_error = ProviderError(f"Connection error: {e}")
            except (KeyError, IndexError, TypeError, ValueError) as e:
                raise ProviderError(f"Malformed response from {self.provider.display_name}: {e}") from e

            if last_error.is_transient and attempt < self.max_retries - 1:
                delay = self.retry_base_delay * (2 ** attempt)
                logger.warning(
                    f"{self.provider.provider_id}/{self.model_name} transient error "
                    f"(attempt {attempt + 1}/{self.max_retries}): {last_error}. "
                    f"Retrying in {delay:.1f}s..."
                )
                await asyncio.sleep(delay)
                continue
            break

        logger.error(f"{self.provider.provider_id}/{self.model_name} failed: {last_error}")
        raise last_error

    @abstractmethod
    async def _complete(self, prompt: str, options: QueryOptions) -> str:
        ...

    # Shared option helpers

    @staticmethod
    def _temperature(options: QueryOptions) -> float:
        return options.temperature if options.temperature is not None else settings.default_temperature

    @staticmethod
    def _max_tokens(options: QueryOptions) -> int:
        return options.max_tokens or settings.default_max_tokens


def _error_detail(response: httpx.Response) -> str:
    """Best-effort error message from a provider error body."""
    try:
        data = response.json()
    except ValueError:
        return response.text[:300] or response.reason_phrase
    if isinstance(data, dict):
        err = data.get("error", data.get("message", data))
        if isinstance(err, dict):
            return str(err.get("message", err))
        return str(err)
    return str(data)[:300]
