"""Tests for the execution sandbox."""
import json
import shutil

import httpx
import pytest

from oblivion.errors import SandboxError, UnsafeCommand, UnsupportedLanguage
from oblivion.models.schemas import ExecutionRequest, Language
from oblivion.services.sandbox import (
    MAX_HISTORY,
    TIMEOUT_EXIT_CODE,
    BridgeSandbox,
    LocalProcessSandbox,
    check_command,
    create_sandbox,
)

needs_bash = pytest.mark.skipif(shutil.which("bash") is None, reason="bash not installed")


class TestDenylist:

    @pytest.mark.parametrize("command", [
        "rm -rf /",
        "sudo rm -f /etc/passwd",
        "mkfs.ext4 /dev/sda1",
        "dd if=/dev/zero of=/dev/sda",
        "chmod 777 /",
        "chown root:root /etc",
    ])
    def test_rejected(self, command):
        with pytest.raises(UnsafeCommand):
            check_command(command)

    def test_allowed(self):
        assert check_command("  ls -la  ") == "ls -la"


class TestLocalProcessSandbox:

    @needs_bash
    @pytest.mark.asyncio
    async def test_echo(self):
        sandbox = LocalProcessSandbox(timeout_seconds=5)
        result = await sandbox.execute(ExecutionRequest(command="echo hello", language=Language.BASH))
        assert result.stdout.strip() == "hello"
        assert result.exit_code == 0
        assert [h.command for h in sandbox.history()] == ["echo hello"]

    @needs_bash
    @pytest.mark.asyncio
    async def test_nonzero_exit(self):
        sandbox = LocalProcessSandbox(timeout_seconds=5)
        result = await sandbox.execute(ExecutionRequest(command="echo oops >&2; exit 3"))
        assert result.exit_code == 3
        assert "oops" in result.stderr

    @needs_bash
    @pytest.mark.asyncio
    async def test_timeout_kills_process(self):
        sandbox = LocalProcessSandbox(timeout_seconds=0.2)
        result = await sandbox.execute(ExecutionRequest(command="sleep 5"))
        assert result.exit_code == TIMEOUT_EXIT_CODE
        assert "Timed out" in result.stderr

    @pytest.mark.asyncio
    async def test_unsupported_language(self):
        sandbox = LocalProcessSandbox()
        with pytest.raises(UnsupportedLanguage):
            await sandbox.execute(ExecutionRequest(command="fn main() {}", language=Language.RUST))

    @pytest.mark.asyncio
    async def test_unsafe_command_not_run_or_recorded(self):
        sandbox = LocalProcessSandbox()
        with pytest.raises(UnsafeCommand):
            await sandbox.execute(ExecutionRequest(command="rm -rf /"))
        assert sandbox.history() == []


def _bridge(handler) -> BridgeSandbox:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return BridgeSandbox("http://bridge.test", token="t0k", http_client=client, timeout_seconds=5)


class TestBridgeSandbox:

    @pytest.mark.asyncio
    async def test_exec_protocol(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"stdout": "hi\n", "stderr": "", "exitCode": 0})

        result = await _bridge(handler).execute(ExecutionRequest(command="echo hi"))

        assert seen["url"] == "http://bridge.test/exec"
        assert seen["body"] == {"cmd": "echo hi", "args": [], "language": "bash", "token": "t0k"}
        assert result.stdout == "hi\n"
        assert result.exit_code == 0

    @pytest.mark.asyncio
    async def test_bridge_error_status(self):
        sandbox = _bridge(lambda request: httpx.Response(401, text="bad token"))
        with pytest.raises(SandboxError) as exc:
            await sandbox.execute(ExecutionRequest(command="ls"))
        assert "401" in str(exc.value)

    @pytest.mark.asyncio
    async def test_bridge_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(SandboxError):
            await _bridge(handler).execute(ExecutionRequest(command="ls"))

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [
        [],
        ["stdout", "exitCode"],
        "ok",
        {"stdout": "", "exitCode": None},
        {"stdout": "", "exitCode": "abc"},
        {"stdout": "", "exitCode": {"code": 1}},
    ])
    async def test_malformed_reply(self, payload):
        sandbox = _bridge(lambda request: httpx.Response(200, json=payload))
        with pytest.raises(SandboxError):
            await sandbox.execute(ExecutionRequest(command="ls"))
        assert sandbox.history() == []

    @pytest.mark.asyncio
    async def test_reply_fields_normalized(self):
        sandbox = _bridge(lambda request: httpx.Response(200, json={"stdout": None, "exit_code": "3"}))
        result = await sandbox.execute(ExecutionRequest(command="ls"))
        assert result.stdout == ""
        assert result.stderr == ""
        assert result.exit_code == 3

    @pytest.mark.asyncio
    async def test_history_bounded(self):
        sandbox = _bridge(lambda request: httpx.Response(200, json={"stdout": "", "exitCode": 0}))
        for i in range(MAX_HISTORY + 5):
            await sandbox.execute(ExecutionRequest(command=f"echo {i}"))
        history = sandbox.history()
        assert len(history) == MAX_HISTORY
        assert history[-1].command == f"echo {MAX_HISTORY + 4}"


def test_create_sandbox_modes():
    assert isinstance(create_sandbox("local"), LocalProcessSandbox)
    assert isinstance(create_sandbox("bridge"), BridgeSandbox)
    with pytest.raises(ValueError):
        create_sandbox("docker")
