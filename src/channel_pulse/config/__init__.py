"""Configuration package for channel-pulse.

Re-exports the settings symbols so that callers can write::

    from channel_pulse.config import get_settings
"""

from __future__ import annotations

from channel_pulse.config.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
