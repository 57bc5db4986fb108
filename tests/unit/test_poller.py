"""Unit tests for MirrorPoller: bounded polling and transaction confirmation."""

from __future__ import annotations

import pytest

from artproof.core.errors import (
    InsufficientBalance,
    MirrorTimeout,
    MirrorUnavailable,
    TransactionFailed,
)
from artproof.core.poller import MirrorPoller, PollPolicy


class FakeClock:
    """Monotonic clock that only advances when the poller sleeps."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def __call__(self) -> float:
        return self.now


class TestPollPolicy:

    def test_defaults(self):
        policy = PollPolicy()
        assert policy.initial_delay == 3.0
        assert policy.max_attempts == 10
        assert policy.timeout == 90.0

    def test_linear_backoff_is_capped(self):
        policy = PollPolicy(step=2, max_delay=10)
        assert [policy.linear_backoff(k) for k in (2, 3, 4, 5, 6)] == [4, 6, 8, 10, 10]

    def test_from_config(self, config):
        policy = PollPolicy.from_config(config)
        assert policy.max_attempts == config.poll_max_attempts
        assert policy.timeout == config.poll_timeout

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            PollPolicy(max_attempts=0)


class TestPollUntil:
    """poll_until must return the first satisfying result or raise MirrorTimeout."""

    def test_returns_first_satisfying_result(self, poller):
        results = iter([None, None, {"ok": True}])
        assert poller.poll_until(lambda: next(results), lambda r: r is not None) == {"ok": True}

    def test_delay_schedule(self):
        clock = FakeClock()
        poller = MirrorPoller(
            PollPolicy(initial_delay=3, step=2, max_delay=10, max_attempts=6, timeout=None),
            sleep=clock.sleep,
            clock=clock,
        )
        with pytest.raises(MirrorTimeout) as info:
            poller.poll_until(lambda: None, lambda r: r is not None)
        assert clock.sleeps == [3, 4, 6, 8, 10, 10]
        assert info.value.attempts == 6

    def test_overall_timeout_caps_delays(self):
        clock = FakeClock()
        poller = MirrorPoller(
            PollPolicy(initial_delay=3, step=2, max_delay=10, max_attempts=10, timeout=5),
            sleep=clock.sleep,
            clock=clock,
        )
        with pytest.raises(MirrorTimeout) as info:
            poller.poll_until(lambda: None, lambda r: r is not None)
        assert clock.sleeps == [3, 2]
        assert info.value.attempts == 2

    def test_timeout_carries_last_result(self, poller):
        with pytest.raises(MirrorTimeout) as info:
            poller.poll_until(lambda: "0.0.1001", lambda owner: owner == "0.0.2002")
        assert info.value.last_result == "0.0.1001"
        assert info.value.attempts == 5
        assert info.value.context["attempts"] == 5

    def test_mirror_unavailable_counts_as_attempt(self, poller):
        calls = {"n": 0}

        def _query():
            calls["n"] += 1
            if calls["n"] < 3:
                raise MirrorUnavailable("503")
            return "found"

        assert poller.poll_until(_query, lambda r: r == "found") == "found"
        assert calls["n"] == 3

    def test_persistent_outage_reports_last_error(self, poller):
        def _query():
            raise MirrorUnavailable("connection refused")

        with pytest.raises(MirrorTimeout) as info:
            poller.poll_until(_query, lambda r: True)
        assert isinstance(info.value.last_error, MirrorUnavailable)
        assert info.value.last_result is None

    def test_custom_backoff(self):
        clock = FakeClock()
        poller = MirrorPoller(
            PollPolicy(initial_delay=8, max_attempts=3, timeout=None),
            sleep=clock.sleep,
            clock=clock,
        )
        with pytest.raises(MirrorTimeout):
            poller.poll_until(lambda: None, lambda r: False, backoff=lambda _k: 4)
        assert clock.sleeps == [8, 4, 4]

    def test_mirror_timeout_is_a_timeout_error(self, poller):
        with pytest.raises(TimeoutError):
            poller.poll_until(lambda: None, lambda r: False)


class TestWaitForTransaction:

    def test_returns_successful_record(self, poller, fake_mirror):
        fake_mirror.add_transaction("0.0.1001@1700000000.1", entity_id="0.0.5000")
        record = poller.wait_for_transaction(
            fake_mirror, "0.0.1001@1700000000.1", require_entity=True
        )
        assert record["entity_id"] == "0.0.5000"

    def test_waits_for_indexing(self, poller, fake_mirror):
        fake_mirror.fail_next = 2
        fake_mirror.add_transaction("0.0.1001@1700000000.1")
        assert poller.wait_for_transaction(fake_mirror, "0.0.1001@1700000000.1")["result"] == "SUCCESS"
        assert fake_mirror.calls.count("get_transaction") == 3

    def test_failed_result_is_classified(self, poller, fake_mirror):
        fake_mirror.add_transaction("0.0.1001@1700000000.1", result="INSUFFICIENT_PAYER_BALANCE")
        with pytest.raises(InsufficientBalance) as info:
            poller.wait_for_transaction(fake_mirror, "0.0.1001@1700000000.1")
        assert info.value.context["transaction_id"] == "0.0.1001@1700000000.1"

    def test_missing_entity_id(self, poller, fake_mirror):
        fake_mirror.add_transaction("0.0.1001@1700000000.1")
        with pytest.raises(TransactionFailed):
            poller.wait_for_transaction(
                fake_mirror, "0.0.1001@1700000000.1", require_entity=True
            )

    def test_never_indexed_times_out(self, poller, fake_mirror):
        with pytest.raises(MirrorTimeout):
            poller.wait_for_transaction(fake_mirror, "0.0.1001@1700000000.1")
