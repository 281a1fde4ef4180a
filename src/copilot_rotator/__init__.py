"""Rotate GitHub Copilot requests across several accounts."""

from copilot_rotator.client import RotationContext, create_client
from copilot_rotator.rotation import (
    AccountProber,
    AccountStore,
    Credential,
    HealthRegistry,
    RotatingTransport,
    RotationSelector,
)


__version__ = "0.2.4"

__all__ = [
    "AccountProber",
    "AccountStore",
    "Credential",
    "HealthRegistry",
    "RotatingTransport",
    "RotationContext",
    "RotationSelector",
    "__version__",
    "create_client",
]
