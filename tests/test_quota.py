"""
Unit tests for the quota gate.
"""

from datetime import timedelta

import pytest

from llm_swarm.core.quota import QuotaExceeded, QuotaGate


class StubLedger:
    """Ledger double returning a fixed remaining count."""

    def __init__(self, remaining, window_duration=timedelta(hours=5)):
        self.remaining = remaining
        self.window_duration = window_duration
        self.calls = 0

    def get_remaining(self):
        self.calls += 1
        return self.remaining


class TestQuotaGate:
    """Test QuotaGate admission rules."""

    def test_query_admitted(self):
        gate = QuotaGate(StubLedger(1000))
        assert gate.check_query() == 1000

    def test_query_refused_when_exhausted(self):
        gate = QuotaGate(StubLedger(0))
        with pytest.raises(QuotaExceeded, match="0 prompts remaining in current 5-hour window") as exc:
            gate.check_query()
        assert exc.value.remaining == 0
        assert exc.value.requested == 1

    def test_window_hours_in_message(self):
        gate = QuotaGate(StubLedger(0, window_duration=timedelta(minutes=90)))
        with pytest.raises(QuotaExceeded, match="1.5-hour window"):
            gate.check_query()

    def test_batch_admitted_when_exactly_enough(self):
        gate = QuotaGate(StubLedger(5))
        assert gate.check_batch(5) == 5

    def test_batch_refused_with_shortfall(self):
        """3 remaining, 5 requested: refuse everything, short by 2."""
        gate = QuotaGate(StubLedger(3))
        with pytest.raises(QuotaExceeded) as exc:
            gate.check_batch(5)

        assert exc.value.shortfall == 2
        assert exc.value.remaining == 3
        assert exc.value.requested == 5
        message = str(exc.value)
        assert "Only 3 prompts remaining but 5 requested" in message
        assert "2 short" in message

    def test_each_check_reads_ledger(self):
        ledger = StubLedger(10)
        gate = QuotaGate(ledger)
        gate.check_query()
        gate.check_batch(2)
        assert ledger.calls == 2
