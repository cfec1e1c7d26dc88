"""
Standardized warning and message system for STM32 DFU Flasher.

Provides structured warning items with stable codes that every front end
can display consistently.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Dict, Any


class MessageLevel(Enum):
    """Severity level for messages."""
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class WarningCode(Enum):
    """Stable warning codes for known conditions."""
    # Device/USB warnings
    W_DEVICE_NOT_FOUND = "W_DEVICE_NOT_FOUND"
    W_USB_BACKEND = "W_USB_BACKEND"
    W_USB_TRANSFER = "W_USB_TRANSFER"

    # Protocol warnings
    W_DEVICE_FAULT = "W_DEVICE_FAULT"
    W_REQUEST_REJECTED = "W_REQUEST_REJECTED"
    W_PARTIAL_PROGRAM = "W_PARTIAL_PROGRAM"

    # Input warnings
    W_IMAGE_TOO_LARGE = "W_IMAGE_TOO_LARGE"
    W_IMAGE_PADDED = "W_IMAGE_PADDED"
    W_CONFIG_INVALID = "W_CONFIG_INVALID"

    # Safety warnings
    W_WRITE_DISABLED = "W_WRITE_DISABLED"
    W_DRY_RUN = "W_DRY_RUN"

    # Generic
    W_UNKNOWN = "W_UNKNOWN"


# Default remediation hints for each warning code
WARNING_REMEDIATIONS: Dict[WarningCode, str] = {
    WarningCode.W_DEVICE_NOT_FOUND:
        "Hold BOOT0 high while resetting the board, then run 'devices' to check it enumerates.",
    WarningCode.W_USB_BACKEND:
        "Install libusb-1.0 (Linux/macOS) or bind the DFU device with Zadig (Windows).",
    WarningCode.W_USB_TRANSFER:
        "Check the USB cable and permissions (udev rule for 0483:df11 on Linux).",
    WarningCode.W_DEVICE_FAULT:
        "Power cycle the board into DFU mode and retry; the status is cleared on connect.",
    WarningCode.W_REQUEST_REJECTED:
        "The bootloader stalled a request. Check the flash size matches the part.",
    WarningCode.W_PARTIAL_PROGRAM:
        "Flash is partially written. Run the update again to erase and reprogram.",
    WarningCode.W_IMAGE_TOO_LARGE:
        "Check --chip / --flash-size, or build a smaller image.",
    WarningCode.W_IMAGE_PADDED:
        "The final block is padded with zero bytes.",
    WarningCode.W_CONFIG_INVALID:
        "Flash size must be a multiple of 1024 and of the page size; page size a multiple of 4.",
    WarningCode.W_WRITE_DISABLED:
        "Add --write to perform the actual flash operation.",
    WarningCode.W_DRY_RUN:
        "Dry run complete. Add --write flag to perform actual operation.",
    WarningCode.W_UNKNOWN:
        "Re-run with --verbose and check logs for more details.",
}


@dataclass
class WarningItem:
    """
    Structured warning message with stable code.

    Attributes:
        level: Severity (INFO, WARN, ERROR)
        code: Stable warning code for programmatic handling
        title: Short, user-facing title
        detail: Longer explanation of the issue
        remediation: Suggested action to resolve the issue
    """
    level: MessageLevel
    code: WarningCode
    title: str
    detail: str = ""
    remediation: str = ""

    def __post_init__(self):
        """Set default remediation if not provided."""
        if not self.remediation and self.code in WARNING_REMEDIATIONS:
            self.remediation = WARNING_REMEDIATIONS[self.code]

    @classmethod
    def info(cls, code: WarningCode, title: str, detail: str = "") -> "WarningItem":
        """Create an INFO-level warning."""
        return cls(MessageLevel.INFO, code, title, detail)

    @classmethod
    def warn(cls, code: WarningCode, title: str, detail: str = "") -> "WarningItem":
        """Create a WARN-level warning."""
        return cls(MessageLevel.WARN, code, title, detail)

    @classmethod
    def error(cls, code: WarningCode, title: str, detail: str = "") -> "WarningItem":
        """Create an ERROR-level warning."""
        return cls(MessageLevel.ERROR, code, title, detail)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON/display."""
        return {
            "level": self.level.value,
            "code": self.code.value,
            "title": self.title,
            "detail": self.detail,
            "remediation": self.remediation,
        }


# Exception class names mapped to warning codes. Matched by name so this
# module stays free of protocol imports.
_ERROR_CODES: Dict[str, WarningCode] = {
    "DeviceNotFound": WarningCode.W_DEVICE_NOT_FOUND,
    "UsbBackendError": WarningCode.W_USB_BACKEND,
    "TransferError": WarningCode.W_USB_TRANSFER,
    "TransportError": WarningCode.W_USB_TRANSFER,
    "DeviceReportedFault": WarningCode.W_DEVICE_FAULT,
    "MalformedStatus": WarningCode.W_DEVICE_FAULT,
    "TransportRejected": WarningCode.W_REQUEST_REJECTED,
    "ImageTooLarge": WarningCode.W_IMAGE_TOO_LARGE,
    "InvalidSizeValue": WarningCode.W_CONFIG_INVALID,
    "FlashSizeAlignmentError": WarningCode.W_CONFIG_INVALID,
    "PageSizeAlignmentError": WarningCode.W_CONFIG_INVALID,
    "FlashPageMismatchError": WarningCode.W_CONFIG_INVALID,
    "WritePermissionError": WarningCode.W_WRITE_DISABLED,
}


def code_for_error(error_type: str) -> WarningCode:
    """Return the warning code for an exception class name."""
    return _ERROR_CODES.get(error_type, WarningCode.W_UNKNOWN)


def result_to_warnings(result: "OperationResult") -> List[WarningItem]:
    """
    Convert Result object's warnings and errors to WarningItem list.

    Errors use result.error_type (set by core.actions) to pick a code.

    Args:
        result: OperationResult from core operations

    Returns:
        List of WarningItem objects
    """
    items = []

    for msg in result.warnings:
        if "dry run" in msg.lower():
            # Nothing went wrong, the device was simply left alone
            items.append(WarningItem.info(WarningCode.W_DRY_RUN, msg))
            continue
        code = WarningCode.W_IMAGE_PADDED if "padded" in msg.lower() else WarningCode.W_UNKNOWN
        items.append(WarningItem.warn(code, msg))

    error_code = code_for_error(result.error_type)
    for err in result.errors:
        items.append(WarningItem.error(error_code, err))

    if result.interrupted_programming:
        items.append(WarningItem.warn(
            WarningCode.W_PARTIAL_PROGRAM,
            "Programming was interrupted",
        ))

    return items
