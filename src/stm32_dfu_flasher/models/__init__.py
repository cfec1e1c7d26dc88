"""
Chip registry for STM32 parts.

Provides a unified layer for flash layout presets.
"""

from .registry import (
    ChipConfig,
    DEFAULT_CHIP,
    list_chips,
    get_chip,
    resolve_geometry,
)

__all__ = [
    "ChipConfig",
    "DEFAULT_CHIP",
    "list_chips",
    "get_chip",
    "resolve_geometry",
]
