"""Core application utilities."""

from .alerts import send_alert
from .config import Settings, get_settings
from .database import (
    build_engine,
    build_session_factory,
    close_db,
    get_engine,
    get_session_factory,
    init_db,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Database
    "build_engine",
    "build_session_factory",
    "get_engine",
    "get_session_factory",
    "init_db",
    "close_db",
    # Alerts
    "send_alert",
]
