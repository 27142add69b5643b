"""Core primitives shared by every groundwork subsystem: errors, logging, settings."""

from groundwork.core.errors import (
    ConfigurationError,
    ErrorCategory,
    ErrorContext,
    GroundworkError,
)
from groundwork.core.logging import LogContext, configure_logging, get_logger
from groundwork.core.settings import GroundworkSettings, get_settings

__all__ = [
    "ConfigurationError",
    "ErrorCategory",
    "ErrorContext",
    "GroundworkError",
    "GroundworkSettings",
    "LogContext",
    "configure_logging",
    "get_logger",
    "get_settings",
]
