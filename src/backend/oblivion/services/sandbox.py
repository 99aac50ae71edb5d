"""
Execution Sandbox — runs a command or code snippet outside this process.

Two collaborators implement the same interface:
  - BridgeSandbox: forwards to an execution bridge over HTTP (POST /exec),
    e.g. a Termux bridge on the phone or a remote runner
  - LocalProcessSandbox: spawns a subprocess per request

Both pass every command through `check_command()` first. That denylist
catches a handful of obviously destructive commands; it is not a security
boundary. Real isolation needs OS-level sandboxing (container, jail) on
the runner side.
"""
from __future__ import annotations

import asyncio
import logging
import re
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

import httpx

from oblivion.config import settings
from oblivion.errors import SandboxError, UnsafeCommand, UnsupportedLanguage
from oblivion.models.schemas import (
    CommandHistoryEntry,
    ExecutionRequest,
    ExecutionResult,
    Language,
)

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124
MAX_HISTORY = 200

DANGEROUS_PATTERNS = [
    re.compile(r"rm\s+-rf\s+/"),
    re.compile(r"sudo\s+rm"),
    re.compile(r"mkfs"),
    re.compile(r"dd\s+if=.*of=/dev"),
    re.compile(r"chmod\s+777\s+/"),
    re.compile(r"chown\s+.*:.*\s+/"),
]

# Interpreter argv for languages that accept inline code
LAUNCHERS: Dict[Language, Callable[[str], List[str]]] = {
    Language.PYTHON: lambda code: ["python3", "-c", code],
    Language.JAVASCRIPT: lambda code: ["node", "-e", code],
    Language.NODE: lambda code: ["node", "-e", code],
    Language.BASH: lambda code: ["bash", "-c", code],
    Language.SHELL: lambda code: ["sh", "-c", code],
    Language.PHP: lambda code: ["php", "-r", code],
    Language.RUBY: lambda code: ["ruby", "-e", code],
    Language.PERL: lambda code: ["perl", "-e", code],
    Language.POWERSHELL: lambda code: ["pwsh", "-Command", code],
}


def check_command(command: str) -> str:
    """
    Reject commands matching the dangerous-operation denylist.

    Returns:
        The command stripped of surrounding whitespace.

    Raises:
        UnsafeCommand: a denylisted pattern matched.
    """
    for pattern in DANGEROUS_PATTERNS:
        if pattern.search(command):
            logger.warning(f"Rejected command matching {pattern.pattern!r}")
            raise UnsafeCommand("Command contains potentially dangerous operations")
    return command.strip()


class ExecutionSandbox(ABC):
    """Runs `ExecutionRequest`s and keeps a bounded command history."""

    def __init__(self):
        self._history: List[CommandHistoryEntry] = []

    async def execute(self, request: ExecutionRequest) -> ExecutionResult:
        command = check_command(request.command)
        result = await self._run(command, request.language)
        self._history.append(
            CommandHistoryEntry(command=command, language=request.language, exit_code=result.exit_code)
        )
        del self._history[:-MAX_HISTORY]
        logger.info(f"Executed {request.language.value} command (exit {result.exit_code}, {result.duration_ms}ms)")
        return result

    def history(self) -> List[CommandHistoryEntry]:
        return list(self._history)

    @abstractmethod
    async def _run(self, command: str, language: Language) -> ExecutionResult:
        ...


class BridgeSandbox(ExecutionSandbox):
    """
    Delegates execution to an HTTP bridge.

    Protocol:
      POST {bridge_url}/exec  {"cmd": ..., "args": [], "language": ..., "token": ...}
      → {"stdout": ..., "stderr": ..., "exitCode": ...}
    """

    def __init__(
        self,
        bridge_url: Optional[str] = None,
        token: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: Optional[float] = None,
    ):
        super().__init__()
        self.bridge_url = (bridge_url or settings.bridge_url).rstrip("/")
        self._token = token if token is not None else settings.bridge_token
        self._http_client = http_client
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.sandbox_timeout_seconds

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._http_client

    async def _run(self, command: str, language: Language) -> ExecutionResult:
        client = await self._get_client()
        t0 = time.monotonic()
        try:
            resp = await client.post(
                f"{self.bridge_url}/exec",
                json={"cmd": command, "args": [], "language": language.value, "token": self._token},
                timeout=self.timeout_seconds,
            )
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as e:
            raise SandboxError(f"Bridge returned {e.response.status_code}: {e.response.text[:200]}") from e
        except httpx.HTTPError as e:
            raise SandboxError(f"Bridge request failed: {e}") from e
        except ValueError as e:
            raise SandboxError(f"Bridge returned invalid JSON: {e}") from e

        if not isinstance(data, dict):
            raise SandboxError(f"Bridge returned {type(data).__name__}, expected an object")
        exit_code = data.get("exitCode", data.get("exit_code", 0))
        if isinstance(exit_code, bool) or not isinstance(exit_code, (int, float, str)):
            raise SandboxError(f"Bridge returned invalid exit code: {exit_code!r}")
        try:
            exit_code = int(exit_code)
        except (ValueError, OverflowError) as e:
            raise SandboxError(f"Bridge returned invalid exit code: {exit_code!r}") from e

        return ExecutionResult(
            command=command,
            language=language,
            stdout=str(data.get("stdout") or ""),
            stderr=str(data.get("stderr") or ""),
            exit_code=exit_code,
            duration_ms=int((time.monotonic() - t0) * 1000),
        )


class LocalProcessSandbox(ExecutionSandbox):
    """Runs inline code through a local interpreter subprocess."""

    def __init__(self, cwd: Optional[str] = None, timeout_seconds: Optional[float] = None):
        super().__init__()
        self.cwd = cwd
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.sandbox_timeout_seconds

    async def _run(self, command: str, language: Language) -> ExecutionResult:
        launcher = LAUNCHERS.get(language)
        if launcher is None:
            raise UnsupportedLanguage(f"Local execution of {language.value} is not supported")

        t0 = time.monotonic()
        try:
            proc = await asyncio.create_subprocess_exec(
                *launcher(command),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.cwd,
            )
        except FileNotFoundError as e:
            raise UnsupportedLanguage(f"Interpreter for {language.value} not found: {e.filename}") from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), self.timeout_seconds)
            exit_code = proc.returncode
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            stdout, stderr = b"", f"Timed out after {self.timeout_seconds:g}s".encode()
            exit_code = TIMEOUT_EXIT_CODE
        except asyncio.CancelledError:
            proc.kill()
            await proc.wait()
            raise

        return ExecutionResult(
            command=command,
            language=language,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
            exit_code=exit_code,
            duration_ms=int((time.monotonic() - t0) * 1000),
        )


def create_sandbox(mode: Optional[str] = None, http_client: Optional[httpx.AsyncClient] = None) -> ExecutionSandbox:
    mode = mode or settings.sandbox_mode
    if mode == "local":
        return LocalProcessSandbox()
    if mode == "bridge":
        return BridgeSandbox(http_client=http_client)
    raise ValueError(f"Unknown sandbox mode: {mode}")
