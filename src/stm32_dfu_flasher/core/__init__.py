"""
Core module for STM32 DFU Flasher.

This module provides the single source of truth for:
- Size parsing (parsing.py)
- Flash geometry validation (geometry.py)
- The update orchestrator (update.py)
- Write gating / confirmation (safety.py)
- Result objects (results.py)
- Standardized warnings/messages (messages.py)
- Unified flash/erase workflows (actions.py)

Front ends should call into this module rather than implementing their
own logic.
"""

from .parsing import parse_int_value, parse_size_value, format_size
from .geometry import (
    FlashGeometry,
    ConfigError,
    InvalidSizeValue,
    FlashSizeAlignmentError,
    PageSizeAlignmentError,
    FlashPageMismatchError,
)
from .update import (
    UpdateOrchestrator,
    UpdateObserver,
    UpdateSession,
    UpdateStage,
    UpdateFailed,
    UPDATE_COMPLETE,
)
from .safety import SafetyContext, require_write_permission, WritePermissionError
from .results import OperationResult
from .messages import MessageLevel, WarningCode, WarningItem, result_to_warnings
from .actions import load_firmware, plan_update, flash_firmware, erase_flash

__all__ = [
    # Parsing
    "parse_int_value",
    "parse_size_value",
    "format_size",
    # Geometry
    "FlashGeometry",
    "ConfigError",
    "InvalidSizeValue",
    "FlashSizeAlignmentError",
    "PageSizeAlignmentError",
    "FlashPageMismatchError",
    # Update
    "UpdateOrchestrator",
    "UpdateObserver",
    "UpdateSession",
    "UpdateStage",
    "UpdateFailed",
    "UPDATE_COMPLETE",
    # Safety
    "SafetyContext",
    "require_write_permission",
    "WritePermissionError",
    # Results
    "OperationResult",
    # Messages
    "MessageLevel",
    "WarningCode",
    "WarningItem",
    "result_to_warnings",
    # Actions
    "load_firmware",
    "plan_update",
    "flash_firmware",
    "erase_flash",
]
