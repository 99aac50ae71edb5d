"""Tests for Ollama model management against a mocked Ollama server."""
import json

import httpx
import pytest

from oblivion.errors import OllamaError
from oblivion.services.ollama_manager import FALLBACK_MODEL, OllamaManager, pick_model

TAGS = {
    "models": [
        {
            "name": "codellama:latest",
            "size": 3825819519,
            "digest": "8fdf8f752f6e",
            "modified_at": "2024-05-01T10:00:00Z",
            "details": {"family": "llama", "parameter_size": "7B", "quantization_level": "Q4_0"},
        },
        {"name": "llama3.2:latest", "size": 2019393189},
    ]
}


class FakeOllama:
    """Minimal Ollama server: records requests, answers from a route table."""

    def __init__(self):
        self.requests = []
        self.pull_lines = [
            {"status": "pulling manifest"},
            {"status": "downloading", "completed": 50, "total": 200},
            {"status": "downloading", "completed": 200, "total": 200},
            {"status": "success"},
        ]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        self.requests.append((request.method, request.url.path, body))
        route = (request.method, request.url.path)
        if route == ("GET", "/api/version"):
            return httpx.Response(200, json={"version": "0.3.12"})
        if route == ("GET", "/api/tags"):
            return httpx.Response(200, json=TAGS)
        if route == ("POST", "/api/show"):
            if body["model"] == "missing":
                return httpx.Response(404, json={"error": "model 'missing' not found"})
            return httpx.Response(200, json={"modelfile": "FROM llama", "parameters": "stop <|eot|>"})
        if route == ("DELETE", "/api/delete"):
            return httpx.Response(200)
        if route == ("POST", "/api/pull"):
            content = "\n".join(json.dumps(line) for line in self.pull_lines) + "\n"
            return httpx.Response(200, content=content.encode())
        return httpx.Response(404, json={"error": "not found"})


@pytest.fixture
def server():
    return FakeOllama()


@pytest.fixture
def ollama(server):
    client = httpx.AsyncClient(transport=httpx.MockTransport(server))
    return OllamaManager("http://ollama.test/", http_client=client, pull_timeout_seconds=5)


def _unreachable(request):
    raise httpx.ConnectError("connection refused", request=request)


class TestInventory:

    @pytest.mark.asyncio
    async def test_status(self, ollama):
        status = await ollama.status()
        assert status.connected is True
        assert status.version == "0.3.12"
        assert status.installed_models == 2
        assert status.host == "http://ollama.test"

    @pytest.mark.asyncio
    async def test_status_when_unreachable(self):
        ollama = OllamaManager(
            "http://ollama.test", http_client=httpx.AsyncClient(transport=httpx.MockTransport(_unreachable))
        )
        status = await ollama.status()
        assert status.connected is False
        assert "not reachable" in status.error

    @pytest.mark.asyncio
    async def test_list_models(self, ollama):
        models = await ollama.list_models()
        assert [m.name for m in models] == ["codellama:latest", "llama3.2:latest"]
        assert models[0].parameter_size == "7B"
        assert models[1].family is None

    @pytest.mark.asyncio
    async def test_show_and_missing(self, ollama, server):
        details = await ollama.show("codellama:latest")
        assert details["modelfile"] == "FROM llama"
        assert server.requests[-1] == ("POST", "/api/show", {"model": "codellama:latest"})

        with pytest.raises(OllamaError) as exc:
            await ollama.show("missing")
        assert exc.value.status_code == 404
        assert "not found" in exc.value.message

    @pytest.mark.asyncio
    async def test_delete(self, ollama, server):
        await ollama.delete("llama3.2:latest")
        assert server.requests[-1] == ("DELETE", "/api/delete", {"model": "llama3.2:latest"})

    @pytest.mark.asyncio
    async def test_malformed_tags(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, json=[1, 2])))
        with pytest.raises(OllamaError):
            await OllamaManager("http://ollama.test", http_client=client).list_models()


class TestPull:

    @pytest.mark.asyncio
    async def test_progress_reported(self, ollama, server):
        seen = []

        async def on_progress(progress):
            seen.append((progress.status, progress.percent))

        final = await ollama.pull("mistral:latest", on_progress)

        assert final.status == "success"
        assert seen == [("pulling manifest", 0), ("downloading", 25), ("downloading", 100), ("success", 0)]
        assert server.requests[-1] == ("POST", "/api/pull", {"model": "mistral:latest", "stream": True})

    @pytest.mark.asyncio
    async def test_error_mid_stream(self, ollama, server):
        server.pull_lines = [{"status": "pulling manifest"}, {"error": "pull model manifest: file does not exist"}]
        with pytest.raises(OllamaError) as exc:
            await ollama.pull("nope:latest")
        assert "file does not exist" in str(exc.value)

    @pytest.mark.asyncio
    async def test_garbage_lines_skipped(self, ollama, server):
        server.pull_lines = ["not json", {"status": "success"}]
        assert (await ollama.pull("mistral:latest")).status == "success"

    @pytest.mark.asyncio
    async def test_unreachable(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(_unreachable))
        with pytest.raises(OllamaError):
            await OllamaManager("http://ollama.test", http_client=client).pull("mistral:latest")


class TestModelSelection:

    @pytest.mark.asyncio
    async def test_best_installed(self, ollama):
        assert await ollama.best_model("code") == "codellama:latest"
        assert await ollama.best_model("security") == "llama3.2:latest"

    def test_fallback(self):
        assert pick_model(("deepseek-coder:latest",), {"phi3:latest"}) == FALLBACK_MODEL
