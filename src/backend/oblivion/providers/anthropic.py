"""
Anthropic Messages API adapter (plain HTTP via httpx).
"""
from __future__ import annotations

from oblivion.models.schemas import QueryOptions
from oblivion.providers.base import ProviderAdapter

ANTHROPIC_VERSION = "2023-06-01"


class AnthropicAdapter(ProviderAdapter):

    async def _complete(self, prompt: str, options: QueryOptions) -> str:
        client = await self._get_client()
        body = {
            "model": self.model_name,
            "max_tokens": self._max_tokens(options),
            "temperature": self._temperature(options),
            "messages": [{"role": "user", "content": prompt}],
        }
        if options.system_prompt:
            body["system"] = options.system_prompt

        resp = await client.post(
            f"{self.base_url}/v1/messages",
            json=body,
            headers={
                "x-api-key": await self._api_key(),
                "anthropic-version": ANTHROPIC_VERSION,
                "content-type": "application/json",
            },
        )
        resp.raise_for_status()
        data = resp.json()
        # Content is a list of blocks; only text blocks carry the answer
        return "".join(
            block["text"] for block in data["content"] if block.get("type") == "text"
        )
