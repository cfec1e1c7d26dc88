"""
USB DFU 1.1 / ST DfuSe Protocol Implementation

Reference: USB DFU 1.1 class specification and ST AN3156
("USB DFU protocol used in the STM32 bootloader").

All requests are class-scoped control transfers addressed to the DFU
interface. The STM32 bootloader extends DNLOAD with command buffers sent
with wValue = 0:

    ERASE        0x41 | addr (LE32)   erase the page containing addr
    SET_ADDRESS  0x21 | addr (LE32)   set the write pointer for data blocks

Data blocks are sent with wValue = block_index + 2 and land at
write_pointer + block_index * transfer_size.

Every DNLOAD is followed by GET_STATUS exchanges: the first starts the
operation and reports dfuDNBUSY with the time it needs, the second
(issued after that delay) confirms completion.
"""

import logging
import struct
import time
from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, List, Tuple

logger = logging.getLogger(__name__)

# Protocol constants
FLASH_BASE_ADDRESS = 0x08000000
TRANSFER_SIZE = 2048  # Bytes per DNLOAD data block
STATUS_LENGTH = 6
DFU_INTERFACE = 0
DFU_CONFIGURATION = 1

# wValue for DNLOAD: 0 = command buffer, 1 = reserved, data blocks start at 2
COMMAND_BLOCK = 0
FIRST_DATA_BLOCK = 2

# DfuSe commands
CMD_SET_ADDRESS = 0x21
CMD_ERASE = 0x41


class DfuRequest(IntEnum):
    """DFU 1.1 class request codes (Table 3.2)."""
    DETACH = 0x00
    DNLOAD = 0x01
    UPLOAD = 0x02
    GETSTATUS = 0x03
    CLRSTATUS = 0x04
    GETSTATE = 0x05
    ABORT = 0x06


class DfuStatusCode(IntEnum):
    """bStatus values reported by GET_STATUS."""
    OK = 0x00
    ERR_TARGET = 0x01
    ERR_FILE = 0x02
    ERR_WRITE = 0x03
    ERR_ERASE = 0x04
    ERR_CHECK_ERASED = 0x05
    ERR_PROG = 0x06
    ERR_VERIFY = 0x07
    ERR_ADDRESS = 0x08
    ERR_NOTDONE = 0x09
    ERR_FIRMWARE = 0x0A
    ERR_VENDOR = 0x0B
    ERR_USBR = 0x0C
    ERR_POR = 0x0D
    ERR_UNKNOWN = 0x0E
    ERR_STALLEDPKT = 0x0F

    @property
    def label(self) -> str:
        """Name as written in the DFU specification (e.g. errERASE)."""
        if self is DfuStatusCode.OK:
            return "OK"
        return "err" + self.name[4:]


class DfuState(IntEnum):
    """bState values reported by GET_STATUS."""
    APP_IDLE = 0
    APP_DETACH = 1
    DFU_IDLE = 2
    DFU_DNLOAD_SYNC = 3
    DFU_DNBUSY = 4
    DFU_DNLOAD_IDLE = 5
    DFU_MANIFEST_SYNC = 6
    DFU_MANIFEST = 7
    DFU_MANIFEST_WAIT_RESET = 8
    DFU_UPLOAD_IDLE = 9
    DFU_ERROR = 10

    @property
    def label(self) -> str:
        """Name as written in the DFU specification (e.g. dfuDNBUSY)."""
        prefix, _, rest = self.name.partition("_")
        return prefix.lower() + rest.replace("_", "-")


STATUS_DESCRIPTION = {
    DfuStatusCode.OK: "No error condition is present.",
    DfuStatusCode.ERR_TARGET: "File is not targeted for use by this device.",
    DfuStatusCode.ERR_FILE: "File is for this device but fails some vendor-specific verification test.",
    DfuStatusCode.ERR_WRITE: "Device is unable to write memory.",
    DfuStatusCode.ERR_ERASE: "Memory erase function failed.",
    DfuStatusCode.ERR_CHECK_ERASED: "Memory erase check failed.",
    DfuStatusCode.ERR_PROG: "Program memory function failed.",
    DfuStatusCode.ERR_VERIFY: "Programmed memory failed verification.",
    DfuStatusCode.ERR_ADDRESS: "Cannot program memory due to received address that is out of range.",
    DfuStatusCode.ERR_NOTDONE: "Received DNLOAD with wLength = 0, but device does not think it has all of the data yet.",
    DfuStatusCode.ERR_FIRMWARE: "Device's firmware is corrupt. It cannot return to run-time operations.",
    DfuStatusCode.ERR_VENDOR: "iString indicates a vendor-specific error.",
    DfuStatusCode.ERR_USBR: "Device detected unexpected USB reset signaling.",
    DfuStatusCode.ERR_POR: "Device detected unexpected power on reset.",
    DfuStatusCode.ERR_UNKNOWN: "Something went wrong, but the device does not know what it was.",
    DfuStatusCode.ERR_STALLEDPKT: "Device stalled an unexpected request.",
}


class DfuProtocolError(Exception):
    """Errors raised by DFU protocol operations."""


class DeviceReportedFault(DfuProtocolError):
    """GET_STATUS reported an error code or the dfuERROR state."""

    def __init__(self, status: DfuStatusCode, state: DfuState):
        self.status = status
        self.state = state
        super().__init__(
            f"Device reported {status.label} in state {state.label}: "
            f"{STATUS_DESCRIPTION[status]}"
        )


class TransportRejected(DfuProtocolError):
    """An OUT request completed with a non-ok status."""

    def __init__(self, request: DfuRequest, result):
        self.request = request
        self.result = result
        super().__init__(f"{request.name} request rejected by device ({result.status})")


class MalformedStatus(DfuProtocolError):
    """GET_STATUS response could not be decoded."""


class ImageTooLarge(DfuProtocolError):
    """Firmware image does not fit in the configured flash."""

    def __init__(self, image_size: int, flash_size: int):
        self.image_size = image_size
        self.flash_size = flash_size
        padded = block_count(image_size) * TRANSFER_SIZE
        super().__init__(
            f"Firmware image of {image_size} bytes ({padded} bytes in "
            f"{TRANSFER_SIZE}-byte blocks) exceeds flash size of {flash_size} bytes"
        )


@dataclass(frozen=True)
class DfuStatus:
    """Decoded GET_STATUS response."""
    status: DfuStatusCode
    poll_timeout_ms: int
    state: DfuState
    string_index: int = 0

    @property
    def is_fault(self) -> bool:
        return self.status != DfuStatusCode.OK or self.state == DfuState.DFU_ERROR


def parse_status(data: bytes, wide_poll_timeout: bool = False) -> DfuStatus:
    """
    Decode a 6-byte GET_STATUS response.

    Layout: [bStatus | bwPollTimeout (3 bytes, LE) | bState | iString]

    The STM32 bootloader never reports a poll timeout above 255 ms, so by
    default only byte 1 is read. Set wide_poll_timeout to decode the full
    24-bit field.

    Raises:
        MalformedStatus: If the response is short or carries unknown codes
    """
    if len(data) < STATUS_LENGTH:
        raise MalformedStatus(
            f"GET_STATUS returned {len(data)} bytes, expected {STATUS_LENGTH}: "
            f"{bytes(data).hex() if data else 'empty'}"
        )

    if wide_poll_timeout:
        poll_timeout = data[1] | (data[2] << 8) | (data[3] << 16)
    else:
        poll_timeout = data[1]

    try:
        status = DfuStatusCode(data[0])
        state = DfuState(data[4])
    except ValueError as e:
        raise MalformedStatus(f"Unrecognised GET_STATUS response {bytes(data).hex()}: {e}")

    return DfuStatus(
        status=status,
        poll_timeout_ms=poll_timeout,
        state=state,
        string_index=data[5],
    )


def build_command(opcode: int, address: int) -> bytes:
    """
    Build a DfuSe command buffer: opcode followed by the address LSB first.

    Example:
        build_command(CMD_ERASE, 0x08000080) == b"\\x41\\x80\\x00\\x00\\x08"
    """
    if not 0 <= address <= 0xFFFFFFFF:
        raise ValueError(f"Address 0x{address:X} does not fit in 32 bits")
    return struct.pack("<BI", opcode, address)


def block_count(image_size: int, block_size: int = TRANSFER_SIZE) -> int:
    """Number of DNLOAD blocks needed for image_size bytes."""
    return (image_size + block_size - 1) // block_size


def split_blocks(image: bytes, block_size: int = TRANSFER_SIZE) -> List[Tuple[int, bytes]]:
    """
    Split a firmware image into (block_index, block) tuples.

    The final block is right-padded with zeroes to block_size.
    """
    blocks: List[Tuple[int, bytes]] = []
    for index, offset in enumerate(range(0, len(image), block_size)):
        block = image[offset:offset + block_size]
        if len(block) < block_size:
            block = block + bytes(block_size - len(block))
        blocks.append((index, bytes(block)))
    return blocks


class DfuStatusPoller:
    """
    Issues DFU requests over a transport and interprets GET_STATUS.

    The transport is any object offering control_transfer_in and
    control_transfer_out (see UsbDfuTransport).
    """

    def __init__(
        self,
        transport,
        interface: int = DFU_INTERFACE,
        wide_poll_timeout: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.transport = transport
        self.interface = interface
        self.wide_poll_timeout = wide_poll_timeout
        self._sleep = sleep

    def get_status(self) -> DfuStatus:
        """
        Read the device status and wait out its poll timeout.

        Returns:
            The decoded status when the device reports no fault

        Raises:
            DeviceReportedFault: If bStatus != OK or bState == dfuERROR
            MalformedStatus: If the response cannot be decoded
        """
        data = self.transport.control_transfer_in(
            request=DfuRequest.GETSTATUS,
            value=0,
            index=self.interface,
            length=STATUS_LENGTH,
        )
        status = parse_status(data, wide_poll_timeout=self.wide_poll_timeout)

        # The device must not be queried again before the timeout elapses
        if status.poll_timeout_ms:
            logger.debug(f"Waiting {status.poll_timeout_ms} ms")
            self._sleep(status.poll_timeout_ms / 1000.0)

        if status.is_fault:
            raise DeviceReportedFault(status.status, status.state)

        logger.debug(f"Status: {status.status.label} in state {status.state.label}")
        return status

    def clear_status(self) -> None:
        """
        Send CLRSTATUS to take the device out of dfuERROR.

        Raises:
            TransportRejected: If the device does not accept the request
        """
        self._send(DfuRequest.CLRSTATUS, 0, None)
        logger.debug("Status cleared")

    def download(self, value: int, data: bytes = b"") -> None:
        """
        Send a DNLOAD request carrying a command buffer or data block.

        Raises:
            TransportRejected: If the device does not accept the request
        """
        self._send(DfuRequest.DNLOAD, value, data or None)

    def confirm(self) -> DfuStatus:
        """
        Run the two GET_STATUS exchanges that follow every DNLOAD.

        The first starts the operation (dfuDNBUSY), the second reports the
        result once the device is done.
        """
        self.get_status()
        return self.get_status()

    def _send(self, request: DfuRequest, value: int, data) -> None:
        result = self.transport.control_transfer_out(
            request=request,
            value=value,
            index=self.interface,
            data=data,
        )
        if not result.ok:
            raise TransportRejected(request, result)
