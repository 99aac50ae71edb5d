"""
Error taxonomy shared by the fleet, the provider adapters, the consensus
engine, the credential store, the prompt library, Ollama model management
and the execution sandbox.
"""
from __future__ import annotations

from typing import Optional


class OblivionError(Exception):
    """Base class for every error raised by this package."""


# ──────────────────────────────────────────────
# Fleet
# ──────────────────────────────────────────────

class FleetError(OblivionError):
    """Local precondition failure on the active-session set."""


class CapacityExceeded(FleetError):
    def __init__(self, max_active: int):
        self.max_active = max_active
        super().__init__(f"Maximum {max_active} sessions can be active simultaneously")


class DuplicateSession(FleetError):
    def __init__(self, provider_id: str, model_name: str):
        self.provider_id = provider_id
        self.model_name = model_name
        super().__init__(f"{provider_id}/{model_name} is already active")


class NotFound(FleetError):
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session {session_id} not found")


class UnknownProvider(OblivionError):
    def __init__(self, provider_id: str):
        self.provider_id = provider_id
        super().__init__(f"Unknown provider: {provider_id}")


# ──────────────────────────────────────────────
# Provider calls and consensus
# ──────────────────────────────────────────────

class ProviderError(OblivionError):
    """The single error kind a provider adapter may raise."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(f"[{status_code}] {message}" if status_code else message)

    @property
    def is_transient(self) -> bool:
        if self.status_code is None:
            text = self.message.lower()
            return any(k in text for k in ("connection", "timeout", "timed out", "temporarily"))
        return self.status_code == 429 or self.status_code >= 500


class InsufficientResponses(OblivionError):
    def __init__(self, success_count: int, required: int = 2):
        self.success_count = success_count
        self.required = required
        super().__init__(
            f"At least {required} successful responses required, got {success_count}"
        )


# ──────────────────────────────────────────────
# Credentials
# ──────────────────────────────────────────────

class CredentialNotFound(OblivionError):
    def __init__(self, provider_id: str):
        self.provider_id = provider_id
        super().__init__(f"No stored credential for provider {provider_id}")


class DecryptionError(OblivionError):
    """Wrong passphrase or tampered ciphertext."""


# ──────────────────────────────────────────────
# Prompts
# ──────────────────────────────────────────────

class PromptNotFound(OblivionError):
    def __init__(self, prompt_id: str):
        self.prompt_id = prompt_id
        super().__init__(f"Prompt {prompt_id} not found")


class TemplateNotFound(OblivionError):
    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__(f"Template {template_id} not found")


class InvalidPromptImport(OblivionError):
    """Imported prompt data is not a JSON object of prompts."""


# ──────────────────────────────────────────────
# Ollama model management
# ──────────────────────────────────────────────

class OllamaError(OblivionError):
    """The local Ollama server refused or failed a model-management call."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(f"[{status_code}] {message}" if status_code else message)


# ──────────────────────────────────────────────
# Execution
# ──────────────────────────────────────────────

class SandboxError(OblivionError):
    """The execution collaborator could not run the command."""


class UnsafeCommand(SandboxError):
    pass


class UnsupportedLanguage(SandboxError):
    pass
