"""
Ollama adapter — local or remote Ollama HTTP API.

Uses POST /api/generate with streaming disabled, so the whole answer comes
back in the "response" field. No key is required; if one is configured it
is sent as a bearer token (for Ollama instances behind an auth proxy).
"""
from __future__ import annotations

from oblivion.models.schemas import QueryOptions
from oblivion.providers.base import ProviderAdapter


class OllamaAdapter(ProviderAdapter):

    async def _complete(self, prompt: str, options: QueryOptions) -> str:
        client = await self._get_client()
        body = {
            "model": self.model_name,
            "prompt": prompt,
            "stream": False,
            "options": {
                "temperature": self._temperature(options),
                "num_predict": self._max_tokens(options),
            },
        }
        if options.system_prompt:
            body["system"] = options.system_prompt

        headers = {}
        key = await self._api_key()
        if key:
            headers["Authorization"] = f"Bearer {key}"

        resp = await client.post(f"{self.base_url}/api/generate", json=body, headers=headers)
        resp.raise_for_status()
        return resp.json()["response"]
