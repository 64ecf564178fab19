"""
Settings dependency used by routes and the API-key check.
"""

from fastapi import Depends

from tokenrelay.core.config import AppSettings, get_settings


def get_app_settings() -> AppSettings:
    """Process-wide settings; route tests swap this out via ``dependency_overrides``."""
    return get_settings()


SettingsDependency = Depends(get_app_settings)

__all__ = ["SettingsDependency", "get_app_settings"]
