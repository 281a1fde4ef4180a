"""Wiring of store, health registry, selector and transports.

Example:
    >>> async with create_client() as client:
    ...     response = await client.post("/chat/completions", json=payload)
"""

from dataclasses import dataclass
from typing import Any

import httpx
from structlog import get_logger

from copilot_rotator.config.settings import RotatorSettings, get_settings
from copilot_rotator.rotation.accounts import AccountStore, copilot_base_url
from copilot_rotator.rotation.constants import PUBLIC_COPILOT_API_URL
from copilot_rotator.rotation.dispatch import RotatingTransport
from copilot_rotator.rotation.health import HealthRegistry
from copilot_rotator.rotation.probe import AccountProber
from copilot_rotator.rotation.selector import RotationSelector


logger = get_logger(__name__)


@dataclass
class RotationContext:
    """The collaborating parts of one rotation pool."""

    settings: RotatorSettings
    registry: HealthRegistry
    store: AccountStore
    selector: RotationSelector
    probe_transport: httpx.AsyncBaseTransport | None = None

    @classmethod
    def from_settings(
        cls,
        settings: RotatorSettings | None = None,
        *,
        store: AccountStore | None = None,
        registry: HealthRegistry | None = None,
    ) -> "RotationContext":
        settings = settings or get_settings()
        registry = registry or HealthRegistry(
            default_retry_after_ms=settings.default_retry_after_ms,
            max_retry_after_ms=settings.max_retry_after_ms,
        )
        if store is None:
            store = AccountStore(
                settings.accounts_path,
                mirror_path=settings.auth_path,
                registry=registry,
            )
        return cls(
            settings=settings,
            registry=registry,
            store=store,
            selector=RotationSelector(store, registry),
        )

    def prober(self) -> AccountProber:
        return AccountProber.from_settings(
            self.registry, self.settings, self.probe_transport
        )

    def base_url(self) -> str:
        """Copilot API base URL of the top-priority account."""
        accounts = self.store.list_accounts()
        if not accounts:
            return PUBLIC_COPILOT_API_URL
        return copilot_base_url(accounts[0].domain)


def create_client(
    settings: RotatorSettings | None = None,
    store: AccountStore | None = None,
    registry: HealthRegistry | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    **client_kwargs: Any,
) -> httpx.AsyncClient:
    """Build an AsyncClient whose requests rotate across stored accounts.

    Args:
        settings: Settings, defaults to the process-wide instance
        store: Account store, defaults to the configured accounts file
        registry: Health registry shared with other callers, if any
        transport: Inner transport performing the real I/O
        **client_kwargs: Passed through to httpx.AsyncClient

    Returns:
        Client with the rotating transport and the Copilot base URL
    """
    context = RotationContext.from_settings(settings, store=store, registry=registry)
    rotating = RotatingTransport(
        context.selector,
        transport=transport,
        client_version=context.settings.client_version,
    )
    client_kwargs.setdefault("base_url", context.base_url())
    logger.debug(
        "rotating_client_created",
        base_url=str(client_kwargs["base_url"]),
        accounts_path=str(context.store.path),
    )
    return httpx.AsyncClient(transport=rotating, **client_kwargs)
