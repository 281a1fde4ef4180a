"""Rate limit signal parsing shared by the prober and the dispatcher."""

import math
from collections.abc import Mapping
from datetime import UTC

from dateutil import parser as dateutil_parser
from structlog import get_logger

from copilot_rotator.rotation.constants import RATE_LIMIT_MESSAGE_PREFIX
from copilot_rotator.rotation.health import now_ms


logger = get_logger(__name__)


def parse_retry_after(
    headers: Mapping[str, str], now: int | None = None
) -> int | None:
    """Parse the retry-after header into a delay.

    Accepts, in order of preference:
    1. a number of seconds
    2. an HTTP date (RFC 7231) or ISO8601 timestamp

    Args:
        headers: Response headers (case-insensitive lookup)
        now: Reference time in ms, defaults to the wall clock

    Returns:
        Delay in milliseconds, or None if the header is absent or unparsable
    """
    headers_lower = {k.lower(): v for k, v in headers.items()}
    retry_after = headers_lower.get("retry-after")
    if retry_after is None or not retry_after.strip():
        return None
    retry_after = retry_after.strip()

    try:
        seconds = float(retry_after)
    except ValueError:
        pass
    else:
        if math.isfinite(seconds):
            return int(seconds * 1000)

    try:
        dt = dateutil_parser.parse(retry_after)
    except (ValueError, OverflowError, dateutil_parser.ParserError):
        logger.debug("retry_after_unparsable", value=retry_after)
        return None

    # Ensure timezone-aware datetime (assume UTC if naive)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    reference = now if now is not None else now_ms()
    return max(0, int(dt.timestamp() * 1000) - reference)


def is_rate_limit_message(message: object) -> bool:
    """Check whether an upstream 403 message reports API rate limiting."""
    return isinstance(message, str) and message.strip().lower().startswith(
        RATE_LIMIT_MESSAGE_PREFIX
    )
