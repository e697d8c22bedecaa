"""Utility modules"""

from .config_loader import load_config, load_settings, save_config
from .errors import (
    DonationEngineError,
    ConfigurationError,
    ValidationError,
    PersistenceError,
    DocumentRenderError,
    DeliveryError,
)

__all__ = [
    "load_config",
    "load_settings",
    "save_config",
    "DonationEngineError",
    "ConfigurationError",
    "ValidationError",
    "PersistenceError",
    "DocumentRenderError",
    "DeliveryError",
]
