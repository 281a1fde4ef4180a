"""Account model and file operations for multi-account rotation.

Handles loading, validating, and persisting accounts from
~/.local/share/opencode/multi-copilot-accounts.json.
"""

import os
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import orjson
from structlog import get_logger

from copilot_rotator.exceptions import AccountStoreError, InvalidAccountError
from copilot_rotator.rotation.constants import (
    AUTH_MIRROR_KEY,
    PUBLIC_COPILOT_API_URL,
    PUBLIC_DOMAIN,
    STORE_VERSION,
)


if TYPE_CHECKING:
    from copilot_rotator.rotation.health import HealthRegistry


logger = get_logger(__name__)


def normalize_domain(url: str) -> str:
    """Strip scheme and trailing slash from a domain or URL."""
    domain = url.strip()
    for scheme in ("https://", "http://"):
        if domain.startswith(scheme):
            domain = domain[len(scheme) :]
            break
    return domain.rstrip("/")


def copilot_base_url(domain: str) -> str:
    """Copilot API base URL for a deployment."""
    if domain == PUBLIC_DOMAIN:
        return PUBLIC_COPILOT_API_URL
    return f"https://copilot-api.{normalize_domain(domain)}"


@dataclass
class Credential:
    """A GitHub Copilot account in the rotation pool."""

    id: str
    label: str
    domain: str  # "github.com" or an enterprise domain
    token: str
    priority: int  # lower = higher priority
    added_at: int = 0  # Unix timestamp in milliseconds

    def __post_init__(self) -> None:
        """Validate account after initialization."""
        self.domain = normalize_domain(self.domain or PUBLIC_DOMAIN)
        self._validate()

    def _validate(self) -> None:
        if not self.id:
            raise InvalidAccountError("Account id must not be empty")
        if not self.token:
            raise InvalidAccountError(
                f"Account '{self.id}' has an empty token", details={"id": self.id}
            )

    @property
    def is_enterprise(self) -> bool:
        return self.domain != PUBLIC_DOMAIN

    @property
    def short_id(self) -> str:
        return self.id[:8]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "label": self.label,
            "domain": self.domain,
            "token": self.token,
            "added_at": self.added_at,
            "priority": self.priority,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Credential":
        """Create from dictionary."""
        return cls(
            id=data["id"],
            label=data.get("label") or data["id"],
            domain=data.get("domain") or PUBLIC_DOMAIN,
            token=data["token"],
            priority=int(data.get("priority", 0)),
            added_at=int(data.get("added_at", 0)),
        )

    def __repr__(self) -> str:
        # Keep tokens out of logs and tracebacks
        return (
            f"Credential(id={self.id!r}, label={self.label!r}, "
            f"domain={self.domain!r}, priority={self.priority})"
        )


def _write_json_atomic(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_name(path.name + ".tmp")
    fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as f:
        f.write(orjson.dumps(data, option=orjson.OPT_INDENT_2))
    os.replace(temp_path, path)


def _read_json(path: Path) -> Any:
    if not path.exists():
        return None
    try:
        return orjson.loads(path.read_bytes())
    except orjson.JSONDecodeError as e:
        raise AccountStoreError(
            f"Invalid JSON in {path}: {e}", path=str(path)
        ) from e


class AccountStore:
    """Priority-ordered account list persisted to a JSON file.

    Writes go to a temp file that replaces the target, so readers never see
    a partial file. When a mirror path is configured, the top-priority
    account is also written there for tools that only know one account.
    """

    def __init__(
        self,
        path: Path,
        *,
        mirror_path: Path | None = None,
        registry: "HealthRegistry | None" = None,
    ):
        """Initialize the store.

        Args:
            path: Accounts file
            mirror_path: Optional auth file that receives the primary account
            registry: Health registry reset when an account is removed
        """
        self.path = Path(path).expanduser()
        self.mirror_path = Path(mirror_path).expanduser() if mirror_path else None
        self.registry = registry

    def load(self) -> list[Credential]:
        """Load accounts from file.

        A missing file or an unknown version yields an empty list.

        Raises:
            AccountStoreError: If the file is not valid JSON or not an object
        """
        data = _read_json(self.path)
        if data is None:
            return []
        if not isinstance(data, dict):
            raise AccountStoreError(
                f"Invalid accounts file format: expected object, got {type(data).__name__}",
                path=str(self.path),
            )
        if data.get("version") != STORE_VERSION:
            logger.warning(
                "accounts_file_version_mismatch",
                path=str(self.path),
                version=data.get("version"),
            )
            return []

        accounts: list[Credential] = []
        for entry in data.get("accounts", []):
            try:
                accounts.append(Credential.from_dict(entry))
            except (KeyError, TypeError, ValueError, InvalidAccountError) as e:
                logger.warning("invalid_account_skipped", error=str(e))
        logger.debug("accounts_loaded", path=str(self.path), count=len(accounts))
        return accounts

    def save(self, accounts: Iterable[Credential]) -> None:
        """Persist accounts and refresh the mirror file."""
        ordered = sorted(accounts, key=lambda a: a.priority)
        _write_json_atomic(
            self.path,
            {"version": STORE_VERSION, "accounts": [a.to_dict() for a in ordered]},
        )
        logger.debug("accounts_saved", path=str(self.path), count=len(ordered))
        if self.mirror_path and ordered:
            self._sync_mirror(ordered[0])

    def list_accounts(self) -> list[Credential]:
        """All accounts in ascending priority order."""
        return sorted(self.load(), key=lambda a: a.priority)

    def get(self, account_id: str) -> Credential | None:
        return next((a for a in self.load() if a.id == account_id), None)

    def add(self, account: Credential) -> list[Credential]:
        """Insert or replace an account by id."""
        accounts = self.list_accounts()
        for index, existing in enumerate(accounts):
            if existing.id == account.id:
                accounts[index] = account
                break
        else:
            account.priority = len(accounts)
            accounts.append(account)
            logger.info("account_added", account=account.id, label=account.label)
        self.save(accounts)
        return accounts

    def remove(self, account_id: str) -> list[Credential]:
        """Drop an account, renumber priorities and clear its health."""
        accounts = [a for a in self.list_accounts() if a.id != account_id]
        for index, account in enumerate(accounts):
            account.priority = index
        self.save(accounts)
        if self.registry is not None:
            self.registry.reset(account_id)
        logger.info("account_removed", account=account_id, remaining=len(accounts))
        return accounts

    def reorder(self, ids: Iterable[str]) -> list[Credential]:
        """Put the given ids first, in order; the rest keep their order."""
        remaining = {a.id: a for a in self.list_accounts()}
        reordered: list[Credential] = []
        for account_id in ids:
            account = remaining.pop(account_id, None)
            if account is not None:
                reordered.append(account)
        reordered.extend(remaining.values())
        for index, account in enumerate(reordered):
            account.priority = index
        self.save(reordered)
        return reordered

    def update_label(self, account_id: str, label: str) -> bool:
        """Rename an account. Returns False when the id is unknown."""
        account = self.get(account_id)
        if account is None or account.label == label:
            return False
        account.label = label
        self.add(account)
        return True

    def _sync_mirror(self, primary: Credential) -> None:
        assert self.mirror_path is not None
        try:
            auth = _read_json(self.mirror_path)
        except AccountStoreError:
            logger.warning("auth_mirror_unreadable", path=str(self.mirror_path))
            auth = None
        if not isinstance(auth, dict):
            auth = {}
        entry: dict[str, Any] = {
            "type": "oauth",
            "refresh": primary.token,
            "access": primary.token,
            "expires": 0,
        }
        if primary.is_enterprise:
            entry["enterpriseUrl"] = primary.domain
        auth[AUTH_MIRROR_KEY] = entry
        _write_json_atomic(self.mirror_path, auth)

