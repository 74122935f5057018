"""Configuration module for SoulScan."""

from .settings import (
    DatabaseSettings,
    EnrichmentSettings,
    ScanSettings,
    Settings,
    StorageSettings,
    get_settings,
)

__all__ = [
    "DatabaseSettings",
    "EnrichmentSettings",
    "ScanSettings",
    "Settings",
    "StorageSettings",
    "get_settings",
]
