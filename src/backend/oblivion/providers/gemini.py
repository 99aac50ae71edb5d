"""
Google Gemini generateContent adapter.

The key travels in the x-goog-api-key header rather than the query string
so it never shows up in logged URLs.
"""
from __future__ import annotations

from oblivion.errors import ProviderError
from oblivion.models.schemas import QueryOptions
from oblivion.providers.base import ProviderAdapter


class GeminiAdapter(ProviderAdapter):

    async def _complete(self, prompt: str, options: QueryOptions) -> str:
        client = await self._get_client()
        body = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self._temperature(options),
                "maxOutputTokens": self._max_tokens(options),
            },
        }
        if options.system_prompt:
            body["systemInstruction"] = {"parts": [{"text": options.system_prompt}]}

        resp = await client.post(
            f"{self.base_url}/v1beta/models/{self.model_name}:generateContent",
            json=body,
            headers={"x-goog-api-key": await self._api_key()},
        )
        resp.raise_for_status()
        data = resp.json()

        candidates = data.get("candidates") or []
        if not candidates:
            feedback = data.get("promptFeedback", {})
            raise ProviderError(f"Gemini returned no candidates (blockReason={feedback.get('blockReason')})")
        parts = candidates[0].get("content", {}).get("parts", [])
        return "".join(p.get("text", "") for p in parts)
