"""
Ollama model management: the local server's model inventory.

Queries go through OllamaAdapter like any other provider; this service only
manages which models the server has:

  GET    /api/version   connection check
  GET    /api/tags      installed models
  POST   /api/pull      download a model (newline-delimited JSON progress)
  POST   /api/show      model details
  DELETE /api/delete    remove a model

Every HTTP failure leaves this layer as OllamaError.
"""
from __future__ import annotations

import json
import logging
from typing import Awaitable, Callable, List, Optional, Sequence

import httpx

from oblivion.config import settings
from oblivion.errors import OllamaError
from oblivion.models.schemas import OllamaModel, OllamaStatus, PullProgress

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[PullProgress], Awaitable[None]]

# Preferred installed model per purpose, best first
PREFERRED_MODELS = {
    "code": ("deepseek-coder:latest", "codellama:latest", "qwen2.5-coder:latest", "starcoder2:latest"),
    "security": ("deepseek-coder:latest", "llama3.2:latest", "codellama:latest"),
    "general": ("llama3.2:latest", "llama3.1:latest", "mistral:latest"),
}
FALLBACK_MODEL = "llama3.2:latest"


class OllamaManager:
    """
    Usage:
        ollama = OllamaManager()
        if (await ollama.status()).connected:
            await ollama.pull("llama3.2:latest")
            models = await ollama.list_models()
    """

    def __init__(
        self,
        host: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        pull_timeout_seconds: Optional[float] = None,
    ):
        self.host = (host or settings.ollama_host).rstrip("/")
        self._http_client = http_client
        self.pull_timeout_seconds = (
            pull_timeout_seconds if pull_timeout_seconds is not None else settings.ollama_pull_timeout_seconds
        )

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=settings.provider_http_timeout)
        return self._http_client

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        client = await self._get_client()
        try:
            resp = await client.request(method, f"{self.host}{path}", **kwargs)
        except httpx.HTTPError as e:
            raise OllamaError(f"Ollama not reachable at {self.host}: {e}") from e
        if resp.is_error:
            raise OllamaError(_error_detail(resp), resp.status_code)
        return resp

    async def status(self) -> OllamaStatus:
        """Connection check. Never raises; an unreachable server is reported as disconnected."""
        try:
            version = (await self._request("GET", "/api/version")).json().get("version")
            models = await self.list_models()
        except (OllamaError, ValueError, AttributeError) as e:
            logger.info(f"Ollama at {self.host} unavailable: {e}")
            return OllamaStatus(connected=False, host=self.host, error=str(e))
        return OllamaStatus(connected=True, host=self.host, version=version, installed_models=len(models))

    async def list_models(self) -> List[OllamaModel]:
        resp = await self._request("GET", "/api/tags")
        try:
            entries = resp.json().get("models") or []
            return [_model(entry) for entry in entries]
        except (ValueError, AttributeError, TypeError, KeyError) as e:
            raise OllamaError(f"Malformed model list from Ollama: {e}") from e

    async def is_installed(self, name: str) -> bool:
        return any(m.name == name for m in await self.list_models())

    async def show(self, name: str) -> dict:
        """Modelfile, parameters and template of one installed model."""
        resp = await self._request("POST", "/api/show", json={"model": name})
        try:
            data = resp.json()
        except ValueError as e:
            raise OllamaError(f"Malformed model details from Ollama: {e}") from e
        if not isinstance(data, dict):
            raise OllamaError("Malformed model details from Ollama")
        return data

    async def delete(self, name: str) -> None:
        await self._request("DELETE", "/api/delete", json={"model": name})
        logger.info(f"Ollama model {name} deleted")

    async def pull(self, name: str, on_progress: Optional[ProgressCallback] = None) -> PullProgress:
        """
        Download a model, reporting each progress line as it arrives.

        Returns:
            The last progress update ("success" when the pull completed).

        Raises:
            OllamaError: the server rejected the pull or reported an error mid-stream
        """
        client = await self._get_client()
        last = PullProgress(status="pending")
        logger.info(f"Pulling Ollama model {name}")
        try:
            async with client.stream(
                "POST",
                f"{self.host}/api/pull",
                json={"model": name, "stream": True},
                timeout=self.pull_timeout_seconds,
            ) as resp:
                if resp.is_error:
                    await resp.aread()
                    raise OllamaError(_error_detail(resp), resp.status_code)
                async for line in resp.aiter_lines():
                    if not line.strip():
                        continue
                    try:
                        data = json.loads(line)
                    except json.JSONDecodeError:
                        logger.debug(f"Skipping unparsable pull line: {line[:100]}")
                        continue
                    if not isinstance(data, dict):
                        continue
                    if data.get("error"):
                        raise OllamaError(f"Pull of {name} failed: {data['error']}")
                    last = PullProgress(
                        status=str(data.get("status", "")),
                        completed=int(data.get("completed") or 0),
                        total=int(data.get("total") or 0),
                    )
                    if on_progress is not None:
                        await on_progress(last)
        except httpx.HTTPError as e:
            raise OllamaError(f"Ollama not reachable at {self.host}: {e}") from e

        logger.info(f"Pull of {name} finished: {last.status}")
        return last

    async def best_model(self, purpose: str = "code") -> str:
        """First preferred model for `purpose` that is installed, else the fallback."""
        installed = {m.name for m in await self.list_models()}
        return pick_model(PREFERRED_MODELS.get(purpose, PREFERRED_MODELS["general"]), installed)


def pick_model(preferred: Sequence[str], installed) -> str:
    for name in preferred:
        if name in installed:
            return name
    return FALLBACK_MODEL


def _model(entry: dict) -> OllamaModel:
    details = entry.get("details") or {}
    return OllamaModel(
        name=entry["name"],
        size=int(entry.get("size") or 0),
        digest=entry.get("digest", ""),
        modified_at=entry.get("modified_at"),
        family=details.get("family"),
        parameter_size=details.get("parameter_size"),
        quantization_level=details.get("quantization_level"),
    )


def _error_detail(response: httpx.Response) -> str:
    """Ollama reports errors as {"error": "..."}."""
    try:
        data = response.json()
    except ValueError:
        return response.text[:300] or response.reason_phrase
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return str(data)[:300]
