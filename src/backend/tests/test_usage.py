"""Tests for the usage ledger."""
from oblivion.services.usage import UsageLedger, estimate_tokens


def test_estimate_tokens():
    assert estimate_tokens("") == 1
    assert estimate_tokens("x" * 400) == 100


def test_record_and_totals():
    ledger = UsageLedger()
    ledger.record("s1", "alpha", "m1", prompt="x" * 40, response="y" * 80, latency_ms=100)
    ledger.record("s2", "beta", "m1", prompt="x" * 40, response="", latency_ms=0, succeeded=False)

    assert ledger.call_count == 2
    assert ledger.failure_count == 1
    assert ledger.total_input_tokens == 20
    assert ledger.total_output_tokens == 20


def test_per_provider_latency_counts_successes_only():
    ledger = UsageLedger()
    ledger.record("s1", "alpha", "m1", "p", "r", latency_ms=100)
    ledger.record("s1", "alpha", "m1", "p", "r", latency_ms=300)
    ledger.record("s1", "alpha", "m1", "p", "", latency_ms=0, succeeded=False)

    stats = ledger.per_provider()["alpha"]
    assert stats["calls"] == 3
    assert stats["failures"] == 1
    assert stats["avg_latency_ms"] == 200.0


def test_to_dict():
    ledger = UsageLedger()
    ledger.record("s1", "alpha", "m1", "prompt", "response", latency_ms=10)
    data = ledger.to_dict()
    assert data["call_count"] == 1
    assert "alpha" in data["per_provider"]


def test_records_bounded_totals_kept():
    ledger = UsageLedger(max_calls=5)
    for i in range(12):
        ledger.record(f"s{i}", "alpha", "m1", "x" * 40, "y" * 40, latency_ms=100, succeeded=i % 4 != 0)

    assert len(ledger.calls) == 5
    assert ledger.calls[-1].session_id == "s11"
    assert ledger.call_count == 12
    assert ledger.failure_count == 3
    assert ledger.total_tokens == 12 * 20
    stats = ledger.per_provider()["alpha"]
    assert stats["calls"] == 12
    assert stats["failures"] == 3
    assert stats["avg_latency_ms"] == 100.0
