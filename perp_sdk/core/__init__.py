"""
Core module for the trading SDK.

Provides logging, exceptions, exact decimal helpers, typed events and the
exchange data models.
"""

from .events import EventChannel, Subscription
from .logger import get_logger, set_log_level, setup_logger

__all__ = [
    "setup_logger",
    "get_logger",
    "set_log_level",
    "EventChannel",
    "Subscription",
]
