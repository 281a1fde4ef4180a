"""Tests for the in-memory health registry."""

import threading

import pytest

from copilot_rotator.rotation.health import HealthRegistry, format_ms


@pytest.mark.unit
class TestHealthRecordLifecycle:
    """Record creation, lookup and removal."""

    def test_get_or_create_returns_healthy_record(self, registry):
        record = registry.get_or_create("a")

        assert record.id == "a"
        assert record.score == 100
        assert record.rate_limited_until == 0
        assert record.consecutive_failures == 0
        assert "a" in registry

    def test_get_or_create_returns_same_record(self, registry):
        assert registry.get_or_create("a") is registry.get_or_create("a")

    def test_get_does_not_create(self, registry):
        assert registry.get("missing") is None
        assert "missing" not in registry
        assert len(registry) == 0

    def test_get_returns_copy(self, registry):
        registry.mark_rate_limited("a")
        copy = registry.get("a")
        copy.score = 0

        assert registry.get_or_create("a").score == 90

    def test_snapshot_is_detached(self, registry):
        registry.get_or_create("a")
        registry.get_or_create("b")

        snapshot = registry.snapshot()
        snapshot["a"].rate_limited_until = 42

        assert set(snapshot) == {"a", "b"}
        assert registry.get_or_create("a").rate_limited_until == 0

    def test_reset_forgets_record(self, registry):
        registry.mark_rate_limited("a")
        registry.reset("a")

        assert registry.get("a") is None
        fresh = registry.get_or_create("a")
        assert fresh.score == 100
        assert fresh.rate_limited_until == 0

    def test_success_after_reset_starts_fresh(self, registry):
        registry.mark_rate_limited("a")
        registry.reset("a")
        record = registry.mark_success("a")

        assert record.consecutive_failures == 0
        assert record.score == 100
        assert record.rate_limited_until == 0

    def test_reset_unknown_id_is_noop(self, registry):
        registry.reset("never-seen")
        assert len(registry) == 0

    def test_detached_record_still_checkable(self, registry, clock):
        record = registry.mark_rate_limited("a", 1_000)
        registry.reset("a")
        clock.advance(1_000)

        assert registry.is_available(record) is True

    def test_registries_are_independent(self, clock):
        first = HealthRegistry(clock=clock)
        second = HealthRegistry(clock=clock)

        first.mark_rate_limited("a")

        assert "a" not in second
        assert second.get_or_create("a").rate_limited_until == 0


@pytest.mark.unit
class TestRateLimiting:
    """mark_rate_limited, clamping and recovery."""

    def test_mark_rate_limited_uses_default_window(self, registry, clock):
        record = registry.mark_rate_limited("a")

        assert record.rate_limited_until == clock.now + 60_000
        assert record.score == 90
        assert record.last_failure == clock.now
        assert record.consecutive_failures == 1

    def test_explicit_window_is_honored(self, registry, clock):
        record = registry.mark_rate_limited("a", 5_000)
        assert record.rate_limited_until == clock.now + 5_000

    def test_window_clamped_to_maximum(self, registry, clock):
        record = registry.mark_rate_limited("a", 10_000_000)
        assert record.rate_limited_until == clock.now + 600_000

    def test_negative_window_clamped_to_zero(self, registry, clock):
        record = registry.mark_rate_limited("a", -5_000)
        assert record.rate_limited_until == clock.now

    @pytest.mark.parametrize(
        ("retry_after", "expected"),
        [(None, 60_000), (0, 0), (1, 1), (600_000, 600_000), (600_001, 600_000)],
    )
    def test_clamp_retry_after(self, registry, retry_after, expected):
        assert registry.clamp_retry_after(retry_after) == expected

    def test_score_never_drops_below_zero(self, registry):
        for _ in range(15):
            record = registry.mark_rate_limited("a")
        assert record.score == 0
        assert record.consecutive_failures == 15

    def test_short_window_expires(self, registry, clock):
        record = registry.mark_rate_limited("a", 1)

        assert registry.is_available(record) is False
        clock.advance(1)
        assert registry.is_available(record) is True
        assert record.rate_limited_until == 0

    def test_recovery_bonus_applied_once(self, registry, clock):
        registry.mark_rate_limited("a")
        record = registry.mark_rate_limited("a")
        assert record.score == 80

        clock.advance(60_000)
        assert registry.is_available(record) is True
        assert record.score == 90

        assert registry.is_available(record) is True
        assert record.score == 90

    def test_recovery_bonus_capped(self, registry, clock):
        record = registry.mark_rate_limited("a", 10)
        registry.mark_success("a")
        registry.mark_success("a")
        clock.advance(10)

        registry.is_available(record)
        assert record.score == 100


@pytest.mark.unit
class TestMarkSuccess:
    """mark_success bookkeeping."""

    def test_mark_success_resets_failures(self, registry, clock):
        registry.mark_rate_limited("a", 0)
        record = registry.mark_success("a")

        assert record.consecutive_failures == 0
        assert record.last_success == clock.now
        assert record.score == 91

    def test_mark_success_keeps_rate_limit_window(self, registry, clock):
        registry.mark_rate_limited("a")
        record = registry.mark_success("a")

        assert record.rate_limited_until == clock.now + 60_000
        assert registry.is_available(record) is False

    def test_score_capped_at_maximum(self, registry):
        record = registry.mark_success("a")
        assert record.score == 100


@pytest.mark.unit
def test_concurrent_updates_are_not_lost(registry):
    """Parallel failure reports on one account must all be counted."""
    threads = [
        threading.Thread(target=registry.mark_rate_limited, args=("a",))
        for _ in range(50)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    record = registry.get("a")
    assert record.consecutive_failures == 50
    assert record.score == 0


@pytest.mark.unit
def test_to_dict_formats_timestamps(registry, clock):
    registry.mark_rate_limited("a", 1_000)
    data = registry.get("a").to_dict()

    assert data["rateLimitedUntil"] == format_ms(clock.now + 1_000)
    assert data["rateLimitedUntil"].endswith("Z")
    assert data["lastSuccess"] is None
    assert data["consecutiveFailures"] == 1
