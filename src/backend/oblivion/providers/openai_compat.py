"""
OpenAI-compatible chat completions adapter.

Covers OpenAI itself and every provider exposing the same
/chat/completions surface (Groq, Mistral, DeepSeek, Together, Perplexity,
Fireworks, DeepInfra, Cerebras, and user-configured "OpenAI-Like" hosts).
"""
from __future__ import annotations

import logging

import openai
from openai import AsyncOpenAI

from oblivion.errors import ProviderError
from oblivion.models.schemas import QueryOptions
from oblivion.providers.base import ProviderAdapter

logger = logging.getLogger(__name__)


class OpenAICompatibleAdapter(ProviderAdapter):

    async def _client(self, api_key: str) -> AsyncOpenAI:
        # Built per call so the key does not outlive the request.
        # SDK retries are disabled; ProviderAdapter.complete() owns retrying.
        return AsyncOpenAI(
            api_key=api_key or "not-needed",
            base_url=self.base_url or None,
            http_client=await self._get_client(),
            max_retries=0,
        )

    async def _complete(self, prompt: str, options: QueryOptions) -> str:
        if not self.base_url:
            raise ProviderError(f"No base URL configured for {self.provider.display_name}")

        messages = []
        if options.system_prompt:
            messages.append({"role": "system", "content": options.system_prompt})
        messages.append({"role": "user", "content": prompt})

        client = await self._client(await self._api_key())
        try:
            response = await client.chat.completions.create(
                model=self.model_name,
                messages=messages,
                max_tokens=self._max_tokens(options),
                temperature=self._temperature(options),
            )
        except openai.APIStatusError as e:
            raise ProviderError(e.message, e.status_code) from e
        except openai.APITimeoutError as e:
            raise ProviderError(f"Request timed out: {e}") from e
        except openai.APIConnectionError as e:
            raise ProviderError(f"Connection error: {e}") from e
        except openai.OpenAIError as e:
            raise ProviderError(str(e)) from e

        if not response.choices:
            raise ProviderError(f"{self.provider.display_name} returned no choices")
        return response.choices[0].message.content or ""
