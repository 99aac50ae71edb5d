"""
Cohere v2 chat adapter.
"""
from __future__ import annotations

from oblivion.models.schemas import QueryOptions
from oblivion.providers.base import ProviderAdapter


class CohereAdapter(ProviderAdapter):

    async def _complete(self, prompt: str, options: QueryOptions) -> str:
        client = await self._get_client()
        messages = []
        if options.system_prompt:
            messages.append({"role": "system", "content": options.system_prompt})
        messages.append({"role": "user", "content": prompt})

        resp = await client.post(
            f"{self.base_url}/v2/chat",
            json={
                "model": self.model_name,
                "messages": messages,
                "temperature": self._temperature(options),
                "max_tokens": self._max_tokens(options),
            },
            headers={"Authorization": f"Bearer {await self._api_key()}"},
        )
        resp.raise_for_status()
        data = resp.json()
        return "".join(
            block.get("text", "") for block in data["message"]["content"] if block.get("type") == "text"
        )
