"""
Core workflow actions for STM32 DFU Flasher.

This module exposes functions the CLI (or any other front end) can call.
All erase/program operations go through the safety context for gating,
and device errors come back as OperationResult failures.
"""

import hashlib
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Optional

from stm32_dfu_flasher.protocol.dfu_protocol import (
    TRANSFER_SIZE,
    DeviceReportedFault,
    block_count,
)
from stm32_dfu_flasher.protocol.usb_transport import STM32_VENDOR_ID

from .geometry import FlashGeometry
from .results import OperationResult
from .safety import SafetyContext, require_write_permission
from .update import UpdateFailed, UpdateObserver, UpdateOrchestrator

logger = logging.getLogger(__name__)


class _ListLogHandler(logging.Handler):
    """Capture log records into a list of formatted strings."""

    def __init__(self, level: int = logging.INFO) -> None:
        super().__init__(level)
        self.records = []
        self.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(self.format(record))


@contextmanager
def _capture_logs(logger_name: str = "stm32_dfu_flasher"):
    """Capture logs for core operations into a list."""
    target_logger = logging.getLogger(logger_name)
    handler = _ListLogHandler()
    previous_level = target_logger.level
    if previous_level in (logging.NOTSET, logging.WARNING, logging.ERROR, logging.CRITICAL):
        target_logger.setLevel(logging.INFO)
    target_logger.addHandler(handler)
    try:
        yield handler.records
    finally:
        target_logger.removeHandler(handler)
        target_logger.setLevel(previous_level)


def load_firmware(path: str) -> bytes:
    """
    Read a raw binary firmware image.

    Raises:
        FileNotFoundError: If the file does not exist
    """
    firmware_path = Path(path)
    if not firmware_path.is_file():
        raise FileNotFoundError(f"Firmware image not found: {path}")
    return firmware_path.read_bytes()


def plan_update(image: bytes, geometry: FlashGeometry, device: str = "") -> OperationResult:
    """
    Describe what an update would do, without touching a device.

    Returns:
        OperationResult with metadata:
            - blocks: number of DNLOAD data blocks
            - padding: zero bytes added to the final block
            - pages: pages the erase sequence will visit
            - fits: whether the padded image fits in flash
    """
    blocks = block_count(len(image))
    padded = blocks * TRANSFER_SIZE
    result = OperationResult.success(
        operation="plan_update",
        device=device,
        region=geometry.describe(),
        bytes_len=len(image),
        sha256=hashlib.sha256(image).hexdigest(),
    )
    result.metadata.update({
        "blocks": blocks,
        "padding": padded - len(image),
        "pages": geometry.page_count,
        "flash_size": geometry.flash_size,
        "page_size": geometry.page_size,
        "fits": padded <= geometry.flash_size,
    })

    if not image:
        result.add_warning("Firmware image is empty; only the erase will have an effect")
    if padded != len(image):
        result.add_warning(f"Final block padded with {padded - len(image)} zero bytes")
    if padded > geometry.flash_size:
        result.add_error(
            f"Image needs {padded:,} bytes but flash is {geometry.flash_size:,} bytes",
            error_type="ImageTooLarge",
        )

    return result


def _failure_from_update(
    operation: str,
    exc: UpdateFailed,
    device: str,
    region: str,
    logs: list,
) -> OperationResult:
    result = OperationResult.failure(
        operation=operation,
        error=str(exc.error),
        error_type=type(exc.error).__name__,
        device=device,
        region=region,
        stage=exc.stage.value,
    )
    if isinstance(exc.error, DeviceReportedFault):
        result.metadata["dfu_status"] = exc.error.status.label
        result.metadata["dfu_state"] = exc.error.state.label
    result.logs = logs
    return result


def flash_firmware(
    image: bytes,
    geometry: FlashGeometry,
    safety_ctx: SafetyContext,
    transport=None,
    observer: Optional[UpdateObserver] = None,
    vendor_id: int = STM32_VENDOR_ID,
    product_id: Optional[int] = None,
    wide_poll_timeout: bool = False,
    sleep: Optional[Callable[[float], None]] = None,
) -> OperationResult:
    """
    Erase the device and program image, then start the application.

    Safety context is enforced before any USB traffic.

    Returns:
        OperationResult with stage reached, image hash and, on a device
        fault, metadata["dfu_status"] / metadata["dfu_state"]

    Raises:
        WritePermissionError: If safety check fails
    """
    region = geometry.describe()

    with _capture_logs() as logs:
        require_write_permission(safety_ctx, geometry, image_length=len(image))

        if safety_ctx.simulate:
            result = plan_update(image, geometry, device=safety_ctx.device)
            result.operation = "flash_firmware"
            result.metadata["simulated"] = True
            result.add_warning("Dry run - no actual write performed")
            result.logs = logs
            return result

        orchestrator = _build_orchestrator(
            transport, observer, vendor_id, product_id, wide_poll_timeout, sleep
        )
        try:
            message = orchestrator.run_update_sequence(
                image, geometry.flash_size, geometry.page_size
            )
        except UpdateFailed as e:
            logger.exception("flash_firmware failed")
            return _failure_from_update("flash_firmware", e, safety_ctx.device, region, logs)

        result = OperationResult.success(
            operation="flash_firmware",
            device=safety_ctx.device,
            region=region,
            bytes_len=len(image),
            stage=orchestrator.stage.value,
            sha256=hashlib.sha256(image).hexdigest(),
        )
        result.metadata["message"] = message
        result.metadata["blocks"] = block_count(len(image))
        result.metadata["pages"] = geometry.page_count
        result.logs = logs
        return result


def erase_flash(
    geometry: FlashGeometry,
    safety_ctx: SafetyContext,
    transport=None,
    observer: Optional[UpdateObserver] = None,
    vendor_id: int = STM32_VENDOR_ID,
    product_id: Optional[int] = None,
    wide_poll_timeout: bool = False,
    sleep: Optional[Callable[[float], None]] = None,
) -> OperationResult:
    """
    Erase every flash page and leave the device in DFU mode.

    Raises:
        WritePermissionError: If safety check fails
    """
    region = geometry.describe()

    with _capture_logs() as logs:
        require_write_permission(safety_ctx, geometry)

        if safety_ctx.simulate:
            result = OperationResult.success(
                operation="erase_flash",
                device=safety_ctx.device,
                region=region,
            )
            result.metadata["simulated"] = True
            result.metadata["pages"] = geometry.page_count
            result.add_warning("Dry run - no actual erase performed")
            result.logs = logs
            return result

        orchestrator = _build_orchestrator(
            transport, observer, vendor_id, product_id, wide_poll_timeout, sleep
        )
        try:
            message = orchestrator.run_erase_sequence(geometry.flash_size, geometry.page_size)
        except UpdateFailed as e:
            logger.exception("erase_flash failed")
            return _failure_from_update("erase_flash", e, safety_ctx.device, region, logs)

        result = OperationResult.success(
            operation="erase_flash",
            device=safety_ctx.device,
            region=region,
            bytes_len=geometry.flash_size,
            stage=orchestrator.stage.value,
        )
        result.metadata["message"] = message
        result.metadata["pages"] = geometry.page_count
        result.logs = logs
        return result


def _build_orchestrator(transport, observer, vendor_id, product_id, wide_poll_timeout, sleep):
    kwargs = {}
    if sleep is not None:
        kwargs["sleep"] = sleep
    return UpdateOrchestrator(
        transport=transport,
        observer=observer,
        vendor_id=vendor_id,
        product_id=product_id,
        wide_poll_timeout=wide_poll_timeout,
        **kwargs,
    )
