"""
Configuration module exports.
"""

from visual_replay.config.settings import EXECUTION_METHODS, Settings, get_settings

__all__ = [
    "EXECUTION_METHODS",
    "Settings",
    "get_settings",
]
