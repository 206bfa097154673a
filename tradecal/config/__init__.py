"""
Configuration module
"""
from tradecal.config.settings import settings, Settings

__all__ = [
    "settings",
    "Settings",
]
