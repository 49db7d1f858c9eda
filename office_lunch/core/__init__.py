"""
Core module initialization.
Exports configuration, logging utilities and error types.
"""

from office_lunch.core.config import get_settings, Settings, EnvironmentMode
from office_lunch.core.exceptions import (
    LunchError,
    ValidationError,
    ConfigurationError,
    IngestionError,
    AnalysisUnavailableError,
    StoreError,
    AuthorizationError,
    OrderingClosedError,
)

__all__ = [
    "get_settings",
    "Settings",
    "EnvironmentMode",
    "LunchError",
    "ValidationError",
    "ConfigurationError",
    "IngestionError",
    "AnalysisUnavailableError",
    "StoreError",
    "AuthorizationError",
    "OrderingClosedError",
]
