"""
Core module initialization.
Exports configuration, logging and error utilities.
"""

from cafe_orders.core.config import get_settings, setup_logging, Settings, EnvironmentMode
from cafe_orders.core.errors import ServiceError

__all__ = ["get_settings", "setup_logging", "Settings", "EnvironmentMode", "ServiceError"]
