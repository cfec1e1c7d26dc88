"""USB DFU protocol layer - transport, status polling and flash sequences."""

from .usb_transport import (
    UsbDfuTransport,
    TransferResult,
    TransportError,
    DeviceNotFound,
    UsbBackendError,
    TransferError,
    STM32_VENDOR_ID,
    STM32_DFU_PRODUCT_ID,
)
from .dfu_protocol import (
    DfuStatusPoller,
    DfuStatus,
    DfuRequest,
    DfuStatusCode,
    DfuState,
    DfuProtocolError,
    DeviceReportedFault,
    TransportRejected,
    MalformedStatus,
    ImageTooLarge,
    parse_status,
    build_command,
    block_count,
    split_blocks,
    FLASH_BASE_ADDRESS,
    TRANSFER_SIZE,
    CMD_ERASE,
    CMD_SET_ADDRESS,
)
from .dfu_sequencers import EraseSequencer, ProgramSequencer

__all__ = [
    # Transport
    "UsbDfuTransport",
    "TransferResult",
    "TransportError",
    "DeviceNotFound",
    "UsbBackendError",
    "TransferError",
    "STM32_VENDOR_ID",
    "STM32_DFU_PRODUCT_ID",
    # DFU protocol
    "DfuStatusPoller",
    "DfuStatus",
    "DfuRequest",
    "DfuStatusCode",
    "DfuState",
    "DfuProtocolError",
    "DeviceReportedFault",
    "TransportRejected",
    "MalformedStatus",
    "ImageTooLarge",
    "parse_status",
    "build_command",
    "block_count",
    "split_blocks",
    "FLASH_BASE_ADDRESS",
    "TRANSFER_SIZE",
    "CMD_ERASE",
    "CMD_SET_ADDRESS",
    # Sequences
    "EraseSequencer",
    "ProgramSequencer",
]
