"""
Seller Analytics Core
Configuration Module
"""
from .settings import (
    Settings,
    EngineSettings,
    CacheSettings,
    MonitoringSettings,
    SecuritySettings,
    get_settings,
)

__all__ = [
    "Settings",
    "EngineSettings",
    "CacheSettings",
    "MonitoringSettings",
    "SecuritySettings",
    "get_settings",
]
