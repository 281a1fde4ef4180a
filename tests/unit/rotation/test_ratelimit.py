"""Tests for retry-after parsing and rate limit message detection."""

from datetime import UTC, datetime

import httpx
import pytest

from copilot_rotator.rotation.ratelimit import is_rate_limit_message, parse_retry_after


@pytest.mark.unit
class TestParseRetryAfter:
    """parse_retry_after"""

    def test_missing_header(self):
        assert parse_retry_after({}) is None

    def test_blank_header(self):
        assert parse_retry_after({"retry-after": "  "}) is None

    def test_integer_seconds(self):
        assert parse_retry_after({"retry-after": "120"}) == 120_000

    def test_fractional_seconds(self):
        assert parse_retry_after({"retry-after": "1.5"}) == 1_500

    def test_header_name_is_case_insensitive(self):
        assert parse_retry_after({"Retry-After": "2"}) == 2_000
        assert parse_retry_after(httpx.Headers({"RETRY-AFTER": "3"})) == 3_000

    def test_http_date(self):
        now = int(datetime(2015, 10, 21, 7, 27, tzinfo=UTC).timestamp() * 1000)
        headers = {"retry-after": "Wed, 21 Oct 2015 07:28:00 GMT"}

        assert parse_retry_after(headers, now=now) == 60_000

    def test_naive_iso_timestamp_assumed_utc(self):
        now = int(datetime(2025, 1, 1, 0, 0, tzinfo=UTC).timestamp() * 1000)
        headers = {"retry-after": "2025-01-01T00:00:30"}

        assert parse_retry_after(headers, now=now) == 30_000

    def test_past_date_yields_zero(self):
        now = int(datetime(2030, 1, 1, tzinfo=UTC).timestamp() * 1000)
        headers = {"retry-after": "Wed, 21 Oct 2015 07:28:00 GMT"}

        assert parse_retry_after(headers, now=now) == 0

    def test_unparsable_value(self):
        assert parse_retry_after({"retry-after": "whenever"}) is None


@pytest.mark.unit
@pytest.mark.parametrize(
    ("message", "expected"),
    [
        ("API rate limit exceeded for user ID 1234.", True),
        ("api RATE limit exceeded", True),
        ("  API rate limit exceeded", True),
        ("Resource not accessible by integration", False),
        ("", False),
        (None, False),
        (403, False),
    ],
)
def test_is_rate_limit_message(message, expected):
    assert is_rate_limit_message(message) is expected
