"""Per-session append-only conversation transcript."""
from __future__ import annotations

import threading
from typing import List

from oblivion.models.schemas import ConversationEntry, Role


class ConversationLog:

    def __init__(self):
        self._entries: List[ConversationEntry] = []
        self._lock = threading.Lock()

    def append(self, role: Role, content: str) -> ConversationEntry:
        entry = ConversationEntry(role=role, content=content)
        with self._lock:
            self._entries.append(entry)
        return entry

    def entries(self) -> List[ConversationEntry]:
        with self._lock:
            return list(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
