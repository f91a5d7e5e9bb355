"""Configuration package for NewsRadar.

Re-exports the settings symbols so that callers can write::

    from newsradar.config import get_settings
"""

from __future__ import annotations

from newsradar.config.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
