"""Rotating httpx transport with rate limit failover.

Wraps another transport. For each request it:
1. Selects the highest-priority available account
2. Rewrites auth and Copilot headers for that account
3. On 429, parks the account and replays the request on the next one

Each logical request moves through an explicit state machine::

    SELECTING -> DISPATCHING -> SUCCESS
                             -> SELECTING_EXCLUDING -> DISPATCHING ...
                                                    -> EXHAUSTED

EXHAUSTED always produces a synthesized 429. Every account is tried at most
once per request, and failover is immediate (no sleep between attempts).
"""

import math
from collections.abc import Collection
from enum import StrEnum

import httpx
from structlog import get_logger

from copilot_rotator.rotation.accounts import Credential
from copilot_rotator.rotation.constants import (
    DEFAULT_CLIENT_VERSION,
    INITIATOR_HEADER,
    INTENT_HEADER,
    INTENT_VALUE,
    STRIPPED_REQUEST_HEADERS,
    VISION_HEADER,
)
from copilot_rotator.rotation.health import format_ms
from copilot_rotator.rotation.ratelimit import parse_retry_after
from copilot_rotator.rotation.request_body import (
    Initiator,
    classify_body,
    detect_initiator,
    has_vision_content,
)
from copilot_rotator.rotation.selector import RotationSelector


logger = get_logger(__name__)

THROTTLED_STATUS = httpx.codes.TOO_MANY_REQUESTS

NO_ACCOUNTS_MESSAGE = "No GitHub Copilot accounts configured"
ALL_RATE_LIMITED_MESSAGE = "All accounts rate limited. Earliest recovery: {recovery}"
ALL_EXHAUSTED_MESSAGE = "All accounts exhausted"


class DispatchState(StrEnum):
    """States of a single logical request."""

    SELECTING = "selecting"
    DISPATCHING = "dispatching"
    SELECTING_EXCLUDING = "selecting_excluding"
    SUCCESS = "success"
    EXHAUSTED = "exhausted"


def build_headers(
    request_headers: httpx.Headers,
    account: Credential,
    *,
    client_version: str,
    initiator: Initiator,
    vision: bool,
) -> httpx.Headers:
    """Headers for one attempt on one account.

    Caller headers are kept except for competing credentials; an
    ``x-initiator`` set by the caller wins over detection.
    """
    headers = httpx.Headers(request_headers)
    for name in STRIPPED_REQUEST_HEADERS:
        headers.pop(name, None)
    if INITIATOR_HEADER not in headers:
        headers[INITIATOR_HEADER] = str(initiator)
    headers["User-Agent"] = f"opencode/{client_version}"
    # Replaces any caller-supplied authorization, whatever its casing
    headers["Authorization"] = f"Bearer {account.token}"
    headers[INTENT_HEADER] = INTENT_VALUE
    if vision:
        headers[VISION_HEADER] = "true"
    return headers


class RotatingTransport(httpx.AsyncBaseTransport):
    """Async transport that spreads requests over a pool of accounts."""

    def __init__(
        self,
        selector: RotationSelector,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        client_version: str = DEFAULT_CLIENT_VERSION,
    ):
        """Initialize the transport.

        Args:
            selector: Account selector (its registry receives outcomes)
            transport: Transport performing the real I/O
            client_version: Version reported in the User-Agent header
        """
        self.selector = selector
        self.registry = selector.registry
        self.client_version = client_version
        self._transport = transport or httpx.AsyncHTTPTransport()

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        # Buffer the body so it can be replayed on every attempt
        body = await request.aread()
        parsed = classify_body(body)
        vision = has_vision_content(parsed)
        initiator = detect_initiator(parsed, str(request.url))

        tried: set[str] = set()
        state = DispatchState.SELECTING
        selection = self.selector.pick()
        if selection is None:
            return self._throttled_response(state, tried)

        while selection is not None:
            state = DispatchState.DISPATCHING
            account = selection.account
            tried.add(account.id)
            logger.debug(
                "dispatch_attempt",
                account=account.id,
                attempt=len(tried),
                path=request.url.path,
                initiator=str(initiator),
                vision=vision,
            )

            attempt = httpx.Request(
                request.method,
                request.url,
                headers=build_headers(
                    request.headers,
                    account,
                    client_version=self.client_version,
                    initiator=initiator,
                    vision=vision,
                ),
                content=body,
                extensions=request.extensions,
            )
            response = await self._transport.handle_async_request(attempt)

            if response.status_code != THROTTLED_STATUS:
                state = DispatchState.SUCCESS
                self.registry.mark_success(account.id)
                logger.debug(
                    "dispatch_completed",
                    state=str(state),
                    account=account.id,
                    status=response.status_code,
                    attempts=len(tried),
                )
                return response

            retry_after_ms = parse_retry_after(response.headers)
            await response.aclose()
            self.registry.mark_rate_limited(account.id, retry_after_ms)
            logger.info(
                "dispatch_rate_limited_failover",
                account=account.id,
                attempt=len(tried),
                retry_after_ms=retry_after_ms,
            )

            state = DispatchState.SELECTING_EXCLUDING
            selection = self.selector.pick(tried)

        state = DispatchState.EXHAUSTED
        return self._throttled_response(state, tried)

    def _throttled_response(
        self, state: DispatchState, tried: Collection[str]
    ) -> httpx.Response:
        """Synthesize a 429 describing when the pool recovers."""
        recovery = self.selector.all_rate_limited()
        headers: dict[str, str] = {}
        if recovery is not False:
            message = ALL_RATE_LIMITED_MESSAGE.format(recovery=format_ms(int(recovery)))
            wait_seconds = max(0, math.ceil((int(recovery) - self.registry.now()) / 1000))
            headers["Retry-After"] = str(wait_seconds)
        elif state == DispatchState.EXHAUSTED:
            message = ALL_EXHAUSTED_MESSAGE
        else:
            message = NO_ACCOUNTS_MESSAGE

        logger.warning(
            "dispatch_no_account_available",
            state=str(state),
            tried=len(tried),
            message=message,
        )
        return httpx.Response(
            THROTTLED_STATUS,
            json={"error": message},
            headers=headers,
        )

    async def aclose(self) -> None:
        await self._transport.aclose()
