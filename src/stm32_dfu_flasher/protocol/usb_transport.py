"""
USB DFU Transport Layer

Handles low-level USB control transfers with devices exposing a DFU
interface (STM32 ROM bootloader: VID 0x0483, PID 0xDF11).

This module provides:
- Device lookup by vendor/product filter
- Configuration selection and interface claiming
- Class/interface control transfers in both directions
- Release of the device handle
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Union

try:
    import usb.core
    import usb.util
except ImportError:
    raise ImportError("PyUSB required: pip install pyusb")

logger = logging.getLogger(__name__)

STM32_VENDOR_ID = 0x0483
STM32_DFU_PRODUCT_ID = 0xDF11

# bmRequestType for DFU class requests addressed to an interface
REQUEST_TYPE_OUT = usb.util.build_request_type(
    usb.util.CTRL_OUT, usb.util.CTRL_TYPE_CLASS, usb.util.CTRL_RECIPIENT_INTERFACE
)
REQUEST_TYPE_IN = usb.util.build_request_type(
    usb.util.CTRL_IN, usb.util.CTRL_TYPE_CLASS, usb.util.CTRL_RECIPIENT_INTERFACE
)

DEFAULT_TIMEOUT_MS = 5000

# errno reported by libusb when the device stalls the control pipe
_EPIPE = 32


class TransportError(Exception):
    """Base exception for transport layer errors"""
    pass


class DeviceNotFound(TransportError):
    """No USB device matched the vendor/product filter"""
    pass


class UsbBackendError(TransportError):
    """libusb backend is not available on this host"""
    pass


class TransferError(TransportError):
    """Error during open, configure, claim or a control transfer"""
    pass


@dataclass(frozen=True)
class TransferResult:
    """
    Completion of an OUT control transfer.

    Attributes:
        status: "ok", "stall" (device rejected the request) or "short"
                (fewer bytes accepted than sent)
        length: Number of bytes the device accepted
    """
    status: str
    length: int = 0

    @property
    def ok(self) -> bool:
        return self.status == "ok"


class UsbDfuTransport:
    """
    Low-level USB transport for DFU-class devices.

    Handles:
    - Device lookup and handle management
    - Class-scoped, interface-recipient control transfers
    - Timeout and error handling

    Example:
        transport = UsbDfuTransport()
        transport.open(vendor_id=0x0483)
        transport.select_configuration(1)
        transport.claim_interface(0)
        data = transport.control_transfer_in(request=0x03, value=0, index=0, length=6)
        transport.close()
    """

    def __init__(self, timeout_ms: int = DEFAULT_TIMEOUT_MS):
        """
        Initialize transport layer.

        Args:
            timeout_ms: Control transfer timeout in milliseconds (default 5000)
        """
        self.timeout_ms = timeout_ms
        self.dev: Optional["usb.core.Device"] = None
        self.interface: Optional[int] = None

    @property
    def is_open(self) -> bool:
        return self.dev is not None

    def open(self, vendor_id: int = STM32_VENDOR_ID, product_id: Optional[int] = None) -> None:
        """
        Find and open the first device matching the filter.

        Args:
            vendor_id: USB vendor ID to match
            product_id: Optional USB product ID to match

        Raises:
            UsbBackendError: If libusb is not installed
            DeviceNotFound: If no matching device is attached
        """
        match = {"idVendor": vendor_id}
        if product_id is not None:
            match["idProduct"] = product_id

        try:
            dev = usb.core.find(**match)
        except usb.core.NoBackendError as e:
            raise UsbBackendError(
                f"libusb backend not found: {e}. Install libusb-1.0 (Linux/macOS) "
                "or bind the device with Zadig (Windows)."
            )

        if dev is None:
            raise DeviceNotFound(f"No USB device found matching {_format_filter(vendor_id, product_id)}")

        self.dev = dev
        logger.debug(
            f"Opened USB device {dev.idVendor:04X}:{dev.idProduct:04X} "
            f"(bus {dev.bus}, address {dev.address})"
        )

    def select_configuration(self, configuration: int) -> None:
        """
        Select the USB configuration.

        Raises:
            TransferError: If the device refuses the configuration
        """
        self._require_open()
        try:
            self.dev.set_configuration(configuration)
            logger.debug(f"Selected configuration {configuration}")
        except usb.core.USBError as e:
            raise TransferError(f"Cannot select configuration {configuration}: {e}")

    def claim_interface(self, interface: int) -> None:
        """
        Claim an interface, detaching any kernel driver bound to it.

        Raises:
            TransferError: If the interface cannot be claimed
        """
        self._require_open()
        try:
            if self.dev.is_kernel_driver_active(interface):
                self.dev.detach_kernel_driver(interface)
                logger.debug(f"Detached kernel driver from interface {interface}")
        except (NotImplementedError, usb.core.USBError):
            # Not supported on Windows / macOS
            pass

        try:
            usb.util.claim_interface(self.dev, interface)
            self.interface = interface
            logger.debug(f"Claimed interface {interface}")
        except usb.core.USBError as e:
            raise TransferError(f"Cannot claim interface {interface}: {e}")

    def control_transfer_out(
        self,
        request: int,
        value: int,
        index: int,
        data: Optional[bytes] = None,
    ) -> TransferResult:
        """
        Send a class/interface control request to the device.

        Args:
            request: bRequest code
            value: wValue field
            index: wIndex field (interface number)
            data: Payload bytes, or None for a zero-length request

        Returns:
            TransferResult describing the completion

        Raises:
            TransferError: If the transfer fails for any reason other than a stall
        """
        self._require_open()
        payload = bytes(data) if data else None
        expected = len(payload) if payload else 0

        try:
            written = self.dev.ctrl_transfer(
                REQUEST_TYPE_OUT, request, value, index, payload, timeout=self.timeout_ms
            )
        except usb.core.USBError as e:
            if e.errno == _EPIPE:
                logger.debug(f">>> req=0x{request:02X} value={value} STALL")
                return TransferResult(status="stall")
            raise TransferError(f"Control OUT request 0x{request:02X} failed: {e}")

        logger.debug(
            f">>> req=0x{request:02X} value={value} "
            f"{payload[:16].hex().upper() if payload else '(no data)'}"
            + ("..." if expected > 16 else "")
        )
        if written != expected:
            return TransferResult(status="short", length=written)
        return TransferResult(status="ok", length=written)

    def control_transfer_in(
        self,
        request: int,
        value: int,
        index: int,
        length: int,
    ) -> bytes:
        """
        Read a class/interface control response from the device.

        Raises:
            TransferError: If the transfer fails
        """
        self._require_open()
        try:
            data = self.dev.ctrl_transfer(
                REQUEST_TYPE_IN, request, value, index, length, timeout=self.timeout_ms
            )
        except usb.core.USBError as e:
            raise TransferError(f"Control IN request 0x{request:02X} failed: {e}")

        data = bytes(data)
        logger.debug(f"<<< req=0x{request:02X} {data.hex().upper()}")
        return data

    def close(self) -> None:
        """Release the interface and free the device handle."""
        if not self.is_open:
            return
        try:
            if self.interface is not None:
                usb.util.release_interface(self.dev, self.interface)
            usb.util.dispose_resources(self.dev)
            logger.debug("Closed USB device")
        except usb.core.USBError as e:
            raise TransferError(f"Error releasing USB device: {e}")
        finally:
            self.dev = None
            self.interface = None

    def _require_open(self) -> None:
        if not self.is_open:
            raise TransportError("USB device not open")

    @staticmethod
    def list_devices(vendor_id: int = STM32_VENDOR_ID) -> List[Dict[str, Union[int, str]]]:
        """
        List attached USB devices with the given vendor ID.

        Returns:
            List of dicts with vendor_id, product_id, bus, address, product
        """
        try:
            found = usb.core.find(find_all=True, idVendor=vendor_id)
        except usb.core.NoBackendError as e:
            raise UsbBackendError(f"libusb backend not found: {e}")

        devices = []
        for dev in found:
            devices.append({
                "vendor_id": dev.idVendor,
                "product_id": dev.idProduct,
                "bus": dev.bus,
                "address": dev.address,
                "product": _read_string(dev, dev.iProduct),
                "dfu_mode": dev.idProduct == STM32_DFU_PRODUCT_ID,
            })
        return devices


def _read_string(dev, index: int) -> str:
    """Read a USB string descriptor, empty when unavailable."""
    if not index:
        return ""
    try:
        return usb.util.get_string(dev, index) or ""
    except (usb.core.USBError, ValueError, NotImplementedError):
        return ""


def _format_filter(vendor_id: int, product_id: Optional[int]) -> str:
    if product_id is None:
        return f"VID 0x{vendor_id:04X}"
    return f"{vendor_id:04X}:{product_id:04X}"
