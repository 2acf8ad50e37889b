"""Configuration module for Custodian."""

from custodian.config.settings import PurgeSettings, Settings, get_settings

__all__ = ["Settings", "PurgeSettings", "get_settings"]
