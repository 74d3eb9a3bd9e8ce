"""Configuration, logging and retry primitives."""

from .config import Settings, get_settings
from .retry import RetryPolicy

__all__ = ["RetryPolicy", "Settings", "get_settings"]
