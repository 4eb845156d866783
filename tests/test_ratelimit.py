"""Unit tests for core/ratelimit.py.

Covers:
- Policy parsing from limits-style strings
- Fixed-window counting: allow up to max, reject after, retry_after <= window
- Window reset after expiry (real time: counting runs on the limits MemoryStorage clock)
- Suspicious-IP flag on breach, and clear_suspicious()
- Burst signal (>20 requests in 10s) audited without rejecting, also when
  the burst straddles a window reset
- Keys include scope and a 50-char user-agent prefix
- sweep() drops entries 60s past their window
"""

import time

import pytest

from core.audit import AuditLogger
from core.ratelimit import RateLimiter, RateLimitPolicy, client_key


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def audit() -> AuditLogger:
    return AuditLogger()


@pytest.fixture
def limiter(audit, clock) -> RateLimiter:
    return RateLimiter(audit=audit, clock=clock)


WRITE = RateLimitPolicy(max_requests=5, window_seconds=60)


class TestPolicy:
    def test_parse_minute(self):
        policy = RateLimitPolicy.parse("5/minute")
        assert policy.max_requests == 5
        assert policy.window_seconds == 60

    def test_parse_hour(self):
        policy = RateLimitPolicy.parse("100/hour")
        assert policy == RateLimitPolicy(max_requests=100, window_seconds=3600)

    def test_parse_rejects_garbage(self):
        with pytest.raises(ValueError):
            RateLimitPolicy.parse("lots")


class TestFixedWindow:
    def test_allows_up_to_max(self, limiter):
        results = [limiter.check("write", "203.0.113.5", "curl/8", WRITE) for _ in range(5)]
        assert all(r.allowed for r in results)
        assert [r.count for r in results] == [1, 2, 3, 4, 5]

    def test_rejects_over_max_with_retry_after(self, limiter):
        for _ in range(5):
            limiter.check("write", "203.0.113.5", "curl/8", WRITE)
        result = limiter.check("write", "203.0.113.5", "curl/8", WRITE)
        assert not result.allowed
        assert 1 <= result.retry_after <= 60

    def test_window_resets(self, limiter):
        short = RateLimitPolicy(max_requests=2, window_seconds=1)
        for _ in range(3):
            limiter.check("write", "203.0.113.5", "curl/8", short)
        assert not limiter.check("write", "203.0.113.5", "curl/8", short).allowed
        time.sleep(1.1)
        result = limiter.check("write", "203.0.113.5", "curl/8", short)
        assert result.allowed
        assert result.count == 1

    def test_instances_do_not_share_counters(self, audit):
        first, second = RateLimiter(audit=audit), RateLimiter(audit=audit)
        for _ in range(6):
            first.check("write", "203.0.113.5", "curl/8", WRITE)
        assert second.check("write", "203.0.113.5", "curl/8", WRITE).count == 1

    def test_scopes_are_independent(self, limiter):
        for _ in range(6):
            limiter.check("write", "203.0.113.5", "curl/8", WRITE)
        assert limiter.check("read", "203.0.113.5", "curl/8", WRITE).allowed

    def test_user_agent_is_part_of_key(self, limiter):
        for _ in range(6):
            limiter.check("write", "203.0.113.5", "agent-a", WRITE)
        assert limiter.check("write", "203.0.113.5", "agent-b", WRITE).allowed

    def test_user_agent_truncated_to_50_chars(self):
        key = client_key("write", "203.0.113.5", "x" * 200)
        assert key == ("write", "203.0.113.5", "x" * 50)

    def test_missing_identity_defaults(self):
        assert client_key("read", "", None) == ("read", "unknown", "unknown")


class TestSuspicious:
    def test_breach_flags_ip_and_audits(self, limiter, audit):
        for _ in range(6):
            limiter.check("write", "198.51.100.7", "curl/8", WRITE)
        assert limiter.is_suspicious("198.51.100.7")
        assert not limiter.is_suspicious("198.51.100.8")
        events = audit.logs_by_event("RATE_LIMIT_EXCEEDED")
        assert len(events) == 1
        assert events[0].ip == "198.51.100.7"

    def test_clear_single_ip(self, limiter):
        for _ in range(6):
            limiter.check("write", "198.51.100.7", "curl/8", WRITE)
        limiter.clear_suspicious("198.51.100.7")
        assert not limiter.is_suspicious("198.51.100.7")

    def test_clear_all(self, limiter):
        for ip in ("198.51.100.7", "198.51.100.9"):
            for _ in range(6):
                limiter.check("write", ip, "curl/8", WRITE)
        limiter.clear_suspicious()
        assert not limiter.is_suspicious("198.51.100.7")
        assert not limiter.is_suspicious("198.51.100.9")

    def test_burst_signal_does_not_reject(self, limiter, audit):
        generous = RateLimitPolicy(max_requests=100, window_seconds=60)
        results = [limiter.check("read", "192.0.2.1", "bot", generous) for _ in range(22)]
        assert all(r.allowed for r in results)
        assert audit.logs_by_event("SUSPICIOUS_ACTIVITY_DETECTED"), "Expected a burst signal after >20 requests in 10s"
        assert not limiter.is_suspicious("192.0.2.1")

    def test_burst_across_window_reset_is_reported(self, limiter, audit):
        short = RateLimitPolicy(max_requests=100, window_seconds=1)
        for _ in range(11):
            limiter.check("read", "192.0.2.1", "bot", short)
        time.sleep(1.1)
        results = [limiter.check("read", "192.0.2.1", "bot", short) for _ in range(11)]
        assert results[0].count == 1
        events = audit.logs_by_event("SUSPICIOUS_ACTIVITY_DETECTED")
        assert events
        assert events[0].details["requests_in_10s"] == 21

    def test_spread_out_requests_are_not_a_burst(self, limiter, audit, clock):
        generous = RateLimitPolicy(max_requests=100, window_seconds=60)
        for _ in range(25):
            limiter.check("read", "192.0.2.1", "bot", generous)
            clock.advance(1)
        assert not audit.logs_by_event("SUSPICIOUS_ACTIVITY_DETECTED")


class TestSweep:
    def test_sweep_keeps_recent_entries(self, limiter, clock):
        limiter.check("write", "203.0.113.5", "curl/8", WRITE)
        clock.advance(100)  # window ended 40s ago
        assert limiter.sweep() == 0
        assert len(limiter) == 1

    def test_sweep_removes_stale_entries(self, limiter, clock):
        limiter.check("write", "203.0.113.5", "curl/8", WRITE)
        limiter.check("read", "203.0.113.6", "curl/8", WRITE)
        clock.advance(121)
        assert limiter.sweep() == 2
        assert len(limiter) == 0
