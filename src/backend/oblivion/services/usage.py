"""
Usage Ledger — token and latency accounting per provider call.

Every settled broadcast entry is recorded here so the API can report how
much each provider was used and how fast it answered. Totals are kept as
running counters for the lifetime of the app; only the most recent
`max_calls` records are retained individually.
"""
from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Dict, List

MAX_CALLS = 1000


@dataclass
class CallRecord:
    """Record of a single provider call."""
    call_id: str
    session_id: str
    provider_id: str
    model_name: str
    input_tokens: int = 0
    output_tokens: int = 0
    latency_ms: int = 0
    succeeded: bool = True
    timestamp: float = 0.0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class ProviderTotals:
    """Running counters for one provider."""
    calls: int = 0
    failures: int = 0
    total_tokens: int = 0
    # Summed over successful calls only
    latency_ms: int = 0

    def add(self, rec: CallRecord) -> None:
        self.calls += 1
        self.total_tokens += rec.total_tokens
        if rec.succeeded:
            self.latency_ms += rec.latency_ms
        else:
            self.failures += 1

    @property
    def avg_latency_ms(self) -> float:
        ok = self.calls - self.failures
        return round(self.latency_ms / ok, 1) if ok else 0.0


@dataclass
class UsageLedger:
    """
    Running ledger of all provider calls for the lifetime of the app.

    Provides aggregate totals, a per-provider breakdown and the most
    recent call records.
    """
    max_calls: int = MAX_CALLS
    calls: List[CallRecord] = field(default_factory=list)
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    call_count: int = 0
    failure_count: int = 0
    _providers: Dict[str, ProviderTotals] = field(default_factory=dict, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def total_tokens(self) -> int:
        return self.total_input_tokens + self.total_output_tokens

    def per_provider(self) -> Dict[str, Dict[str, float]]:
        """Map of provider id → call count, failures, tokens, mean latency of successful calls."""
        with self._lock:
            return {
                provider_id: {
                    "calls": totals.calls,
                    "failures": totals.failures,
                    "total_tokens": totals.total_tokens,
                    "avg_latency_ms": totals.avg_latency_ms,
                }
                for provider_id, totals in sorted(self._providers.items())
            }

    def record(
        self,
        session_id: str,
        provider_id: str,
        model_name: str,
        prompt: str,
        response: str,
        latency_ms: int,
        succeeded: bool = True,
    ) -> CallRecord:
        """Record one provider call. Call this once per settled query."""
        rec = CallRecord(
            call_id=str(uuid.uuid4())[:8],
            session_id=session_id,
            provider_id=provider_id,
            model_name=model_name,
            input_tokens=estimate_tokens(prompt),
            output_tokens=estimate_tokens(response) if response else 0,
            latency_ms=latency_ms,
            succeeded=succeeded,
            timestamp=time.time(),
        )
        with self._lock:
            self.call_count += 1
            self.failure_count += 0 if succeeded else 1
            self.total_input_tokens += rec.input_tokens
            self.total_output_tokens += rec.output_tokens
            self._providers.setdefault(provider_id, ProviderTotals()).add(rec)
            self.calls.append(rec)
            del self.calls[:-self.max_calls]
        return rec

    def to_dict(self) -> dict:
        """Serialize for JSON output."""
        return {
            "total_input_tokens": self.total_input_tokens,
            "total_output_tokens": self.total_output_tokens,
            "total_tokens": self.total_tokens,
            "call_count": self.call_count,
            "failure_count": self.failure_count,
            "per_provider": self.per_provider(),
        }


def estimate_tokens(text: str) -> int:
    """
    Rough token count estimation (4 chars ≈ 1 token for English text).

    Good enough for comparing providers; not a billing figure.
    """
    return max(1, len(text) // 4)
