"""Shared fixtures for copilot-rotator tests."""

from collections.abc import Iterator
from pathlib import Path

import pytest
import structlog

from copilot_rotator.config.settings import get_settings
from copilot_rotator.rotation.accounts import AccountStore, Credential
from copilot_rotator.rotation.health import HealthRegistry


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture(autouse=True)
def reset_global_state() -> Iterator[None]:
    """Keep structlog config and cached settings from leaking between tests."""
    yield
    structlog.reset_defaults()
    get_settings.cache_clear()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def registry(clock: FakeClock) -> HealthRegistry:
    return HealthRegistry(
        default_retry_after_ms=60_000,
        max_retry_after_ms=600_000,
        clock=clock,
    )


def _credential(
    account_id: str,
    priority: int = 0,
    *,
    domain: str = "github.com",
    label: str | None = None,
) -> Credential:
    return Credential(
        id=account_id,
        label=label or f"user-{account_id}",
        domain=domain,
        token=f"gho_{account_id}",
        priority=priority,
        added_at=1_700_000_000_000,
    )


@pytest.fixture
def make_credential():
    """Factory for valid credentials with predictable tokens."""
    return _credential


@pytest.fixture
def store(tmp_path: Path, registry: HealthRegistry) -> AccountStore:
    """Store with a mirror file, backed by tmp_path."""
    return AccountStore(
        tmp_path / "multi-copilot-accounts.json",
        mirror_path=tmp_path / "auth.json",
        registry=registry,
    )
