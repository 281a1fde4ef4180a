"""Multi-account rotation for GitHub Copilot."""

from copilot_rotator.rotation.accounts import AccountStore, Credential
from copilot_rotator.rotation.dispatch import DispatchState, RotatingTransport
from copilot_rotator.rotation.health import HealthRecord, HealthRegistry
from copilot_rotator.rotation.probe import (
    AccountProber,
    ProbeMethod,
    ProbeResult,
    ProbeStatus,
)
from copilot_rotator.rotation.selector import RotationSelector, Selection


__all__ = [
    "AccountProber",
    "AccountStore",
    "Credential",
    "DispatchState",
    "HealthRecord",
    "HealthRegistry",
    "ProbeMethod",
    "ProbeResult",
    "ProbeStatus",
    "RotatingTransport",
    "RotationSelector",
    "Selection",
]
