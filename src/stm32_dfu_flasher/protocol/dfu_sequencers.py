"""
Erase and program sequences for the STM32 DFU bootloader.

Both sequences are strictly sequential: every DNLOAD is confirmed with two
GET_STATUS exchanges before the next request is issued, since the
bootloader rejects requests while in dfuDNBUSY.
"""

import logging
from typing import Callable, Optional

from .dfu_protocol import (
    CMD_ERASE,
    CMD_SET_ADDRESS,
    COMMAND_BLOCK,
    FIRST_DATA_BLOCK,
    TRANSFER_SIZE,
    DfuStatusPoller,
    ImageTooLarge,
    block_count,
    build_command,
    split_blocks,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]


class EraseSequencer:
    """Erases flash page by page using the DfuSe ERASE command."""

    def __init__(self, poller: DfuStatusPoller, progress_cb: Optional[ProgressCallback] = None):
        self.poller = poller
        self.progress_cb = progress_cb

    def erase(self, geometry) -> None:
        """
        Erase every page of the flash described by geometry.

        Progress is the percentage of the flash range below the page just
        erased, so the last page reports less than 100.

        Args:
            geometry: FlashGeometry (base_address, flash_size, page_size)

        Raises:
            DfuProtocolError: On the first failing page; erase is not resumed
        """
        self.poller.clear_status()

        base = geometry.base_address
        logger.info(
            f"Erasing {geometry.page_count} pages of {geometry.page_size} bytes "
            f"from 0x{base:08X}"
        )

        for address in geometry.page_addresses():
            logger.debug(f"Erasing page at 0x{address:08X}")
            self.poller.download(COMMAND_BLOCK, build_command(CMD_ERASE, address))
            self.poller.confirm()

            if self.progress_cb:
                self.progress_cb(100.0 * (address - base) / geometry.flash_size)

        logger.info("Erase complete")


class ProgramSequencer:
    """Downloads a firmware image in TRANSFER_SIZE blocks."""

    def __init__(self, poller: DfuStatusPoller, progress_cb: Optional[ProgressCallback] = None):
        self.poller = poller
        self.progress_cb = progress_cb

    def program(self, image: bytes, geometry) -> None:
        """
        Write image to flash starting at the base address.

        The final block is zero-padded. Partial programming is not rolled
        back; an aborted run leaves the device needing a fresh erase.

        Args:
            image: Firmware bytes
            geometry: FlashGeometry the image must fit into

        Raises:
            ImageTooLarge: Before any transfer, if the padded image exceeds flash
            DfuProtocolError: On the first failing block
        """
        total_blocks = block_count(len(image))
        if total_blocks * TRANSFER_SIZE > geometry.flash_size:
            raise ImageTooLarge(len(image), geometry.flash_size)

        base = geometry.base_address
        logger.info(f"Setting address pointer to 0x{base:08X}")
        self.poller.download(COMMAND_BLOCK, build_command(CMD_SET_ADDRESS, base))
        self.poller.confirm()

        logger.info(
            f"Programming {len(image)} bytes in {total_blocks} blocks of {TRANSFER_SIZE} bytes"
        )
        if total_blocks and len(image) % TRANSFER_SIZE:
            logger.debug(f"Final block padded with {TRANSFER_SIZE - len(image) % TRANSFER_SIZE} zero bytes")

        for index, block in split_blocks(image):
            self.poller.download(index + FIRST_DATA_BLOCK, block)
            self.poller.confirm()
            logger.debug(
                f"Block {index + 1}/{total_blocks} written at 0x{base + index * TRANSFER_SIZE:08X}"
            )

            if self.progress_cb:
                self.progress_cb(100.0 * index / total_blocks)

        if self.progress_cb:
            self.progress_cb(100.0)

        logger.info("Programming complete")
