"""
Fleet Manager — the bounded set of concurrently active provider sessions.

Rules:
  - at most `max_active` sessions (default 3)
  - at most one active session per (provider_id, model_name)
  - no implicit eviction: callers remove before adding beyond capacity

Precondition failures raise synchronously and leave the active set as it
was. `list_active()` returns a copy, which is the snapshot a broadcast
works from.
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, List, Optional, Union

import httpx

from oblivion.config import settings
from oblivion.errors import CapacityExceeded, DuplicateSession, NotFound
from oblivion.models.schemas import SessionStatus
from oblivion.providers.base import SecretSource, static_secret
from oblivion.providers.registry import ProviderRegistry
from oblivion.services.conversation import ConversationLog
from oblivion.services.session import ProviderSession

logger = logging.getLogger(__name__)

# A plaintext key, a callable resolving it on every call, or None for keyless providers
Credential = Union[str, Callable[[], Optional[str]], None]


class FleetManager:

    def __init__(
        self,
        registry: ProviderRegistry,
        max_active: Optional[int] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.registry = registry
        self.max_active = max_active if max_active is not None else settings.max_active_sessions
        self._http_client = http_client
        # Insertion-ordered: dicts preserve order
        self._sessions: Dict[str, ProviderSession] = {}
        self._logs: Dict[str, ConversationLog] = {}
        self._lock = threading.Lock()

    def add_session(self, provider_id: str, model_name: str, credential: Credential = None) -> ProviderSession:
        """
        Activate a (provider, model, credential) session.

        Raises:
            UnknownProvider: provider id not in the registry
            CapacityExceeded: fleet already holds max_active sessions
            DuplicateSession: the (provider, model) pair is already active
        """
        provider = self.registry.get(provider_id)

        with self._lock:
            if len(self._sessions) >= self.max_active:
                raise CapacityExceeded(self.max_active)
            if any(
                s.provider_id == provider_id and s.model_name == model_name
                for s in self._sessions.values()
            ):
                raise DuplicateSession(provider_id, model_name)

            adapter = self.registry.create_adapter(
                provider_id, model_name, _as_secret_source(credential), self._http_client
            )
            session = ProviderSession(
                provider=provider,
                model_name=model_name,
                adapter=adapter,
                capability_tags=self.registry.capabilities_of(provider_id, model_name),
            )
            self._sessions[session.session_id] = session
            self._logs[session.session_id] = ConversationLog()

        logger.info(f"Session {session.session_id[:8]} added: {session.label} ({len(self)}/{self.max_active})")
        return session

    def remove_session(self, session_id: str) -> None:
        """
        Deactivate a session and discard its conversation log.

        Raises:
            NotFound: no active session with this id
        """
        with self._lock:
            session = self._sessions.pop(session_id, None)
            if session is None:
                raise NotFound(session_id)
            self._logs.pop(session_id, None)
            session.status = SessionStatus.REMOVED

        logger.info(f"Session {session_id[:8]} removed: {session.label}")

    def list_active(self) -> List[ProviderSession]:
        """Active sessions in insertion order (a copy)."""
        with self._lock:
            return list(self._sessions.values())

    def get(self, session_id: str) -> ProviderSession:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise NotFound(session_id)
        return session

    def conversation(self, session_id: str) -> ConversationLog:
        with self._lock:
            log = self._logs.get(session_id)
        if log is None:
            raise NotFound(session_id)
        return log

    def clear_conversation(self, session_id: Optional[str] = None) -> None:
        """Clear one session's log, or every log when no id is given."""
        if session_id is not None:
            self.conversation(session_id).clear()
            return
        with self._lock:
            logs = list(self._logs.values())
        for log in logs:
            log.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


def _as_secret_source(credential: Credential) -> SecretSource:
    if callable(credential):
        return credential
    return static_secret(credential)
