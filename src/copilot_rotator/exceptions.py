"""Exception hierarchy for copilot-rotator.

All exceptions use proper exception chaining with the `from` keyword.
Availability, authentication and transport problems met while probing or
dispatching are reported as results or synthesized responses, not raised.
"""

from typing import Any


class RotatorError(Exception):
    """Base exception for all copilot-rotator errors.

    Carries a human readable message plus optional structured details.
    """

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(RotatorError):
    """Raised when configuration loading or validation fails."""


class AccountStoreError(RotatorError):
    """Raised when the accounts file cannot be read or has an invalid shape."""

    def __init__(self, message: str, *, path: str | None = None) -> None:
        super().__init__(message, details={"path": path} if path else None)
        self.path = path


class InvalidAccountError(RotatorError):
    """Raised when a credential fails validation."""


class AccountNotFoundError(RotatorError):
    """No account matches the given label or id prefix."""

    def __init__(self, name: str) -> None:
        super().__init__(
            f'No account found matching "{name}"', details={"name": name}
        )
        self.name = name
