"""
Configuration package for the vendor bridge services
"""

from .app_config import AppConfig
from .kafka_config import KafkaBridgeConfig
from .settings import ApplicationSettings, get_settings, reload_settings

__all__ = [
    "AppConfig",
    "ApplicationSettings",
    "KafkaBridgeConfig",
    "get_settings",
    "reload_settings",
]
