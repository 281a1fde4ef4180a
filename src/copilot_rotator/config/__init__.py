"""Configuration module for copilot-rotator."""

from copilot_rotator.exceptions import ConfigurationError

from .settings import RotatorSettings, get_settings, setup_logging


__all__ = [
    "ConfigurationError",
    "RotatorSettings",
    "get_settings",
    "setup_logging",
]
