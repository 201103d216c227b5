"""
Core module initialization.
Exports configuration, logging utilities and the error taxonomy.
"""

from quickserve.core.config import get_settings, Settings, EnvironmentMode
from quickserve.core.exceptions import (
    QuickServeError,
    ValidationError,
    NotFoundError,
    InvalidTransitionError,
    ConflictError,
    StoreError,
)

__all__ = [
    "get_settings",
    "Settings",
    "EnvironmentMode",
    "QuickServeError",
    "ValidationError",
    "NotFoundError",
    "InvalidTransitionError",
    "ConflictError",
    "StoreError",
]
