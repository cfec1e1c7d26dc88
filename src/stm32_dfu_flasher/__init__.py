"""
STM32 DFU Flasher - firmware update over the STM32 ROM DFU bootloader

Erase, program and restart an STM32 through USB DFU control transfers.
"""

__version__ = "0.1.0"

from stm32_dfu_flasher.protocol import UsbDfuTransport, DfuStatusPoller
from stm32_dfu_flasher.core import FlashGeometry, UpdateOrchestrator, UpdateObserver

__all__ = [
    "UsbDfuTransport",
    "DfuStatusPoller",
    "FlashGeometry",
    "UpdateOrchestrator",
    "UpdateObserver",
    "__version__",
]
