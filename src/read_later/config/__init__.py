"""Configuration package for Read Later.

Re-exports the settings symbols so that callers can write::

    from read_later.config import get_settings
"""

from __future__ import annotations

from read_later.config.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
