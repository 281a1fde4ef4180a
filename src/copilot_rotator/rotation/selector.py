"""Priority-ordered account selection with rate limit failover."""

from collections.abc import Collection
from typing import NamedTuple, Protocol

from structlog import get_logger

from copilot_rotator.rotation.accounts import Credential
from copilot_rotator.rotation.health import HealthRecord, HealthRegistry


logger = get_logger(__name__)


class CredentialSource(Protocol):
    """Anything that can list accounts in ascending priority order."""

    def list_accounts(self) -> list[Credential]: ...


class Selection(NamedTuple):
    """An account chosen for a request together with its health record."""

    account: Credential
    health: HealthRecord


class RotationSelector:
    """Picks the highest-priority available account.

    Selection is deterministic: accounts are scanned in priority order and
    the first one whose health allows it wins. Two concurrent callers may
    receive the same account; this is a failover layer, not an admission
    controller.
    """

    def __init__(self, source: CredentialSource, registry: HealthRegistry):
        self.source = source
        self.registry = registry

    def pick(self, exclude_ids: Collection[str] | None = None) -> Selection | None:
        """Return the best available account not in ``exclude_ids``.

        Args:
            exclude_ids: Account ids that must not be returned

        Returns:
            Selection, or None if every account is excluded or rate limited
        """
        excluded = exclude_ids or ()
        for account in self.source.list_accounts():
            if account.id in excluded:
                continue
            health = self.registry.get_or_create(account.id)
            if self.registry.is_available(health):
                logger.debug(
                    "account_selected",
                    account=account.id,
                    label=account.label,
                    excluded=len(excluded),
                )
                return Selection(account, health)

        logger.debug("no_accounts_available", excluded=len(excluded))
        return None

    def all_rate_limited(self) -> int | bool:
        """Earliest recovery time if no account is currently usable.

        Returns:
            Unix timestamp (ms) when the first account frees up, or False if
            the pool is empty or some account is available right now
        """
        accounts = self.source.list_accounts()
        if not accounts:
            return False

        earliest: int | None = None
        for account in accounts:
            health = self.registry.get_or_create(account.id)
            if self.registry.is_available(health):
                return False
            until = health.rate_limited_until
            if earliest is None or until < earliest:
                earliest = until
        return earliest if earliest is not None else False
