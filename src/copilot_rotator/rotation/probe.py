"""Out-of-band account health probing.

Checks an account without spending workload quota. Two endpoints are used:

1. Token exchange (``/copilot_internal/v2/token``) accepts the OAuth token
   directly and reports free-tier quota:
   - 200: account active (``limited_user_quotas`` shows free-tier exhaustion)
   - 401: OAuth token invalid or expired
   - 403: rate limited (message starts with "API rate limit exceeded")
     or no Copilot subscription
   - 404: endpoint not available for this deployment
   - 429: HTTP-level rate limit
2. User API (``/user``), used when the token exchange endpoint is missing
   or unreachable. It proves the token works and resolves the login name,
   but says nothing about Copilot quota.

Example:
    >>> prober = AccountProber(registry)
    >>> results = await prober.probe_all(store.list_accounts())
    >>> for account_id, result in results.items():
    ...     print(account_id, result.status)
"""

import asyncio
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import httpx
import orjson
from structlog import get_logger

from copilot_rotator.rotation.accounts import Credential, normalize_domain
from copilot_rotator.rotation.constants import (
    DEFAULT_EDITOR_PLUGIN_VERSION,
    DEFAULT_EDITOR_VERSION,
    DEFAULT_INTEGRATION_ID,
    DEFAULT_PROBE_USER_AGENT,
    ENTERPRISE_USER_API_PATH,
    MAX_QUOTA_RESET_SECONDS,
    PROBE_TIMEOUT_SECONDS,
    PUBLIC_DOMAIN,
    PUBLIC_TOKEN_EXCHANGE_URL,
    PUBLIC_USER_API_URL,
    TOKEN_EXCHANGE_PATH,
)
from copilot_rotator.rotation.health import HealthRegistry, format_ms
from copilot_rotator.rotation.ratelimit import is_rate_limit_message, parse_retry_after


if TYPE_CHECKING:
    from copilot_rotator.config.settings import RotatorSettings


logger = get_logger(__name__)


class ProbeStatus(StrEnum):
    """Outcome of a probe."""

    OK = "ok"
    RATE_LIMITED = "rate_limited"
    QUOTA_EXHAUSTED = "quota_exhausted"
    ERROR = "error"


class ProbeMethod(StrEnum):
    """Which endpoint produced a probe result."""

    TOKEN_EXCHANGE = "token_exchange"
    USER_API = "user_api"


@dataclass
class ProbeResult:
    """Health assessment of one account. Never persisted."""

    id: str
    status: ProbeStatus
    http_status: int | None = None
    retry_after_ms: int | None = None
    quota_reset_date: int | None = None  # Unix timestamp ms
    username: str | None = None
    method: ProbeMethod | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "status": str(self.status),
            "httpStatus": self.http_status,
            "retryAfterMs": self.retry_after_ms,
            "quotaResetDate": (
                format_ms(self.quota_reset_date) if self.quota_reset_date else None
            ),
            "username": self.username,
            "method": str(self.method) if self.method else None,
        }


def token_exchange_url(domain: str) -> str:
    """Token exchange endpoint for a deployment."""
    if domain == PUBLIC_DOMAIN:
        return PUBLIC_TOKEN_EXCHANGE_URL
    return f"https://api.{normalize_domain(domain)}{TOKEN_EXCHANGE_PATH}"


def user_api_url(domain: str) -> str:
    """Identity lookup endpoint for a deployment."""
    if domain == PUBLIC_DOMAIN:
        return PUBLIC_USER_API_URL
    return f"https://{normalize_domain(domain)}{ENTERPRISE_USER_API_PATH}"


def _json_body(response: httpx.Response) -> Any:
    try:
        return orjson.loads(response.content)
    except orjson.JSONDecodeError:
        return None


def _is_depleted(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool) and value <= 0


def _reset_date_ms(value: Any) -> int | None:
    """Epoch-seconds reset date as milliseconds, or None if unusable."""
    if not isinstance(value, int | float) or isinstance(value, bool):
        return None
    if not math.isfinite(value) or not 0 < value <= MAX_QUOTA_RESET_SECONDS:
        return None
    return int(value * 1000)


def default_identity_headers(
    *,
    user_agent: str = DEFAULT_PROBE_USER_AGENT,
    editor_version: str = DEFAULT_EDITOR_VERSION,
    editor_plugin_version: str = DEFAULT_EDITOR_PLUGIN_VERSION,
    integration_id: str = DEFAULT_INTEGRATION_ID,
) -> dict[str, str]:
    """Client identity headers the token exchange endpoint expects."""
    return {
        "User-Agent": user_agent,
        "Editor-Version": editor_version,
        "Editor-Plugin-Version": editor_plugin_version,
        "Copilot-Integration-Id": integration_id,
    }


class AccountProber:
    """Probes accounts and records the outcome in a HealthRegistry.

    Authentication problems and inconclusive responses are reported but
    leave health untouched: only throttling and quota exhaustion park an
    account.
    """

    def __init__(
        self,
        registry: HealthRegistry,
        *,
        timeout: float = PROBE_TIMEOUT_SECONDS,
        identity_headers: Mapping[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the prober.

        Args:
            registry: Health registry receiving probe outcomes
            timeout: Overall limit for each tier's request in seconds
            identity_headers: Client identity sent to the token exchange
                endpoint, which answers 404 without it
            transport: Optional httpx transport (tests inject a mock)
        """
        self.registry = registry
        self.timeout = timeout
        self.identity_headers = dict(identity_headers or default_identity_headers())
        self._transport = transport

    @classmethod
    def from_settings(
        cls,
        registry: HealthRegistry,
        settings: "RotatorSettings",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "AccountProber":
        return cls(
            registry,
            timeout=settings.probe_timeout_seconds,
            identity_headers=default_identity_headers(
                user_agent=settings.probe_user_agent,
                editor_version=settings.editor_version,
                editor_plugin_version=settings.editor_plugin_version,
                integration_id=settings.integration_id,
            ),
            transport=transport,
        )

    @property
    def deadline(self) -> float:
        """Upper bound for one full probe, both tiers included."""
        return self.timeout * 2 + 1

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def probe(self, account: Credential) -> ProbeResult:
        """Assess one account, falling back to the user API if needed."""
        async with self._client() as client:
            result = await self._probe_token_exchange(client, account)
            if result is None:
                result = await self._probe_user_api(client, account)

        logger.info(
            "probe_completed",
            account=account.id,
            status=str(result.status),
            http_status=result.http_status,
            method=str(result.method) if result.method else None,
        )
        return result

    async def probe_all(
        self, accounts: Sequence[Credential]
    ) -> dict[str, ProbeResult]:
        """Probe every account concurrently.

        A probe that raises or overruns its deadline yields an error result
        for that account only.
        """
        if not accounts:
            return {}

        outcomes = await asyncio.gather(
            *(asyncio.wait_for(self.probe(a), self.deadline) for a in accounts),
            return_exceptions=True,
        )

        results: dict[str, ProbeResult] = {}
        for account, outcome in zip(accounts, outcomes, strict=True):
            if isinstance(outcome, ProbeResult):
                results[account.id] = outcome
                continue
            logger.warning(
                "probe_failed",
                account=account.id,
                error_type=type(outcome).__name__,
                error=str(outcome),
            )
            results[account.id] = ProbeResult(id=account.id, status=ProbeStatus.ERROR)
        return results

    async def _probe_token_exchange(
        self, client: httpx.AsyncClient, account: Credential
    ) -> ProbeResult | None:
        """Tier 1. Returns None when the result is inconclusive."""
        url = token_exchange_url(account.domain)
        headers = {
            **self.identity_headers,
            "Authorization": f"Token {account.token}",
            "Accept": "application/json",
        }

        try:
            async with asyncio.timeout(self.timeout):
                response = await client.get(url, headers=headers)
        except (httpx.HTTPError, httpx.InvalidURL, TimeoutError) as e:
            logger.info(
                "probe_token_exchange_unreachable",
                account=account.id,
                error_type=type(e).__name__,
                error=str(e),
            )
            return None

        method = ProbeMethod.TOKEN_EXCHANGE
        status_code = response.status_code

        if status_code == 404:
            logger.debug("probe_token_exchange_unsupported", account=account.id)
            return None

        if status_code == 429:
            retry_after_ms = parse_retry_after(response.headers)
            self.registry.mark_rate_limited(account.id, retry_after_ms)
            return ProbeResult(
                id=account.id,
                status=ProbeStatus.RATE_LIMITED,
                http_status=status_code,
                retry_after_ms=retry_after_ms,
                method=method,
            )

        if status_code == 200:
            exhausted = self._check_quota(account, _json_body(response))
            if exhausted is not None:
                return exhausted
            self.registry.mark_success(account.id)
            return ProbeResult(
                id=account.id,
                status=ProbeStatus.OK,
                http_status=status_code,
                method=method,
            )

        if status_code == 403:
            body = _json_body(response)
            message = body.get("message") if isinstance(body, dict) else None
            if is_rate_limit_message(message):
                self.registry.mark_rate_limited(account.id)
                return ProbeResult(
                    id=account.id,
                    status=ProbeStatus.RATE_LIMITED,
                    http_status=status_code,
                    method=method,
                )
            logger.warning("probe_access_denied", account=account.id, message=message)
            return ProbeResult(
                id=account.id,
                status=ProbeStatus.ERROR,
                http_status=status_code,
                method=method,
            )

        # 401 and anything else: report without touching health
        logger.warning("probe_token_exchange_error", account=account.id, status=status_code)
        return ProbeResult(
            id=account.id,
            status=ProbeStatus.ERROR,
            http_status=status_code,
            method=method,
        )

    def _check_quota(self, account: Credential, body: Any) -> ProbeResult | None:
        """Return a quota_exhausted result if both free-tier counters are spent."""
        if not isinstance(body, dict):
            return None
        quotas = body.get("limited_user_quotas")
        if not isinstance(quotas, dict):
            return None
        if not (_is_depleted(quotas.get("chat")) and _is_depleted(quotas.get("completions"))):
            return None

        quota_reset_date = _reset_date_ms(body.get("limited_user_reset_date"))
        retry_after_ms = (
            max(0, quota_reset_date - self.registry.now())
            if quota_reset_date is not None
            else None
        )
        self.registry.mark_rate_limited(account.id, retry_after_ms)
        logger.info(
            "probe_quota_exhausted",
            account=account.id,
            resets_at=format_ms(quota_reset_date) if quota_reset_date else None,
        )
        return ProbeResult(
            id=account.id,
            status=ProbeStatus.QUOTA_EXHAUSTED,
            http_status=200,
            retry_after_ms=retry_after_ms,
            quota_reset_date=quota_reset_date,
            method=ProbeMethod.TOKEN_EXCHANGE,
        )

    async def _probe_user_api(
        self, client: httpx.AsyncClient, account: Credential
    ) -> ProbeResult:
        """Tier 2. Confirms the token and resolves the login name."""
        url = user_api_url(account.domain)
        headers = {
            "Authorization": f"Bearer {account.token}",
            "Accept": "application/vnd.github+json",
            "User-Agent": self.identity_headers.get("User-Agent", DEFAULT_PROBE_USER_AGENT),
        }
        method = ProbeMethod.USER_API

        try:
            async with asyncio.timeout(self.timeout):
                response = await client.get(url, headers=headers)
        except (httpx.HTTPError, httpx.InvalidURL, TimeoutError) as e:
            logger.warning(
                "probe_user_api_unreachable",
                account=account.id,
                error_type=type(e).__name__,
                error=str(e),
            )
            return ProbeResult(id=account.id, status=ProbeStatus.ERROR, method=method)

        status_code = response.status_code

        if status_code == 200:
            body = _json_body(response)
            username = None
            if isinstance(body, dict):
                username = body.get("login") or body.get("name") or None
            self.registry.mark_success(account.id)
            return ProbeResult(
                id=account.id,
                status=ProbeStatus.OK,
                http_status=status_code,
                username=username,
                method=method,
            )

        if status_code == 403:
            # Platform-level limiting, handled like any other throttle
            retry_after_ms = parse_retry_after(response.headers)
            self.registry.mark_rate_limited(account.id, retry_after_ms)
            return ProbeResult(
                id=account.id,
                status=ProbeStatus.RATE_LIMITED,
                http_status=status_code,
                retry_after_ms=retry_after_ms,
                method=method,
            )

        logger.warning("probe_user_api_error", account=account.id, status=status_code)
        return ProbeResult(
            id=account.id,
            status=ProbeStatus.ERROR,
            http_status=status_code,
            method=method,
        )

