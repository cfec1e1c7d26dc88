"""
End-to-end firmware update for the STM32 DFU bootloader.

Sequence:
1. Validate flash geometry and image size
2. Connect: open device, select configuration 1, claim interface 0, CLRSTATUS
3. Erase every flash page
4. Program the image from the flash base address
5. Detach: CLRSTATUS, zero-length DNLOAD, GET_STATUS (device resets into
   the application)
6. Disconnect: release the device handle

The device handle is released exactly once, including when a stage fails.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Union

from stm32_dfu_flasher.protocol.usb_transport import STM32_VENDOR_ID, UsbDfuTransport
from stm32_dfu_flasher.protocol.dfu_protocol import (
    COMMAND_BLOCK,
    DFU_CONFIGURATION,
    DFU_INTERFACE,
    TRANSFER_SIZE,
    DfuStatusPoller,
    ImageTooLarge,
    block_count,
)
from stm32_dfu_flasher.protocol.dfu_sequencers import EraseSequencer, ProgramSequencer

from .geometry import FlashGeometry

logger = logging.getLogger(__name__)

UPDATE_COMPLETE = "Update Complete"
ERASE_COMPLETE = "Erase Complete"


class UpdateStage(Enum):
    """Lifecycle stages of an update session."""
    IDLE = "Idle"
    CONNECTING = "Connecting"
    ERASING = "Erasing"
    PROGRAMMING = "Programming"
    DETACHING = "Detaching"
    DISCONNECTING = "Disconnecting"
    COMPLETE = "Complete"
    FAILED = "Failed"


class UpdateFailed(Exception):
    """
    Raised when an update sequence aborts.

    Attributes:
        stage: Stage that was running when the error occurred
        error: The underlying ConfigError, TransportError or DfuProtocolError
    """

    def __init__(self, stage: UpdateStage, error: Exception):
        self.stage = stage
        self.error = error
        super().__init__(f"{stage.value} failed: {error}")


class UpdateObserver:
    """
    Receives stage and progress notifications from the orchestrator.

    All methods are fire-and-forget; the default implementation ignores
    every event. Subclass and override what the UI needs.
    """

    def on_stage(self, stage: UpdateStage) -> None:
        pass

    def on_progress(self, percent: float) -> None:
        pass

    def on_disconnect(self) -> None:
        pass


@dataclass
class UpdateSession:
    """Transient state of one update run."""
    transport: object
    geometry: Optional[FlashGeometry] = None
    image: bytes = b""
    stage: UpdateStage = UpdateStage.IDLE
    handle_open: bool = False


class UpdateOrchestrator:
    """
    Drives a full DFU update against one device.

    Example:
        orchestrator = UpdateOrchestrator(UsbDfuTransport(), observer=MyObserver())
        orchestrator.run_update_sequence(firmware, "0x20000", "0x80")

    Individual steps (connect, erase, program, detach, disconnect) can also
    be called manually after set_flash_and_page_sizes.
    """

    def __init__(
        self,
        transport=None,
        observer: Optional[UpdateObserver] = None,
        vendor_id: int = STM32_VENDOR_ID,
        product_id: Optional[int] = None,
        wide_poll_timeout: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            transport: Transport capability (default UsbDfuTransport)
            observer: Stage/progress observer (default: ignore events)
            vendor_id: USB vendor ID filter (default ST 0x0483)
            product_id: Optional USB product ID filter
            wide_poll_timeout: Decode the full 24-bit poll timeout
            sleep: Delay function used between status polls
        """
        self.transport = transport if transport is not None else UsbDfuTransport()
        self.observer = observer or UpdateObserver()
        self.vendor_id = vendor_id
        self.product_id = product_id
        self.session = UpdateSession(transport=self.transport)
        self.poller = DfuStatusPoller(
            self.transport,
            interface=DFU_INTERFACE,
            wide_poll_timeout=wide_poll_timeout,
            sleep=sleep,
        )

    @property
    def geometry(self) -> Optional[FlashGeometry]:
        return self.session.geometry

    @property
    def stage(self) -> UpdateStage:
        return self.session.stage

    def set_flash_and_page_sizes(
        self,
        flash_size_spec: Union[int, str],
        page_size_spec: Union[int, str],
    ) -> FlashGeometry:
        """
        Validate and store the flash geometry used by erase and program.

        Raises:
            ConfigError: If either size violates the geometry rules
        """
        geometry = FlashGeometry.from_specs(flash_size_spec, page_size_spec)
        self.session.geometry = geometry
        logger.debug(f"Flash geometry: {geometry.describe()}")
        return geometry

    def run_update_sequence(
        self,
        image: bytes,
        flash_size_spec: Union[int, str],
        page_size_spec: Union[int, str],
    ) -> str:
        """
        Run connect, erase, program, detach and disconnect.

        Args:
            image: Firmware bytes
            flash_size_spec: Flash size (int, decimal or hex text)
            page_size_spec: Page size (int, decimal or hex text)

        Returns:
            "Update Complete"

        Raises:
            UpdateFailed: Carrying the failing stage and underlying error
        """
        return self._run_sequence(bytes(image), flash_size_spec, page_size_spec)

    def run_erase_sequence(
        self,
        flash_size_spec: Union[int, str],
        page_size_spec: Union[int, str],
    ) -> str:
        """
        Run connect, erase and disconnect, leaving the device in DFU mode.

        Raises:
            UpdateFailed: Carrying the failing stage and underlying error
        """
        return self._run_sequence(None, flash_size_spec, page_size_spec)

    def _run_sequence(
        self,
        image: Optional[bytes],
        flash_size_spec: Union[int, str],
        page_size_spec: Union[int, str],
    ) -> str:
        self.session = UpdateSession(transport=self.transport, image=image or b"")

        try:
            geometry = self.set_flash_and_page_sizes(flash_size_spec, page_size_spec)
            if image is not None:
                self._check_image_fits(image, geometry)

            self.connect()
            self.erase()
            if image is not None:
                self.program(image)
                self.detach()
            self.disconnect()
        except Exception as e:
            failed_stage = self.session.stage
            logger.error(f"Update failed during {failed_stage.value}: {e}")
            if self.session.handle_open:
                self._disconnect_after_failure()
            self._enter(UpdateStage.FAILED)
            raise UpdateFailed(failed_stage, e) from e
        except BaseException:
            # KeyboardInterrupt or SystemExit: release the device, then let it propagate as is
            logger.warning(f"Update interrupted during {self.session.stage.value}")
            if self.session.handle_open:
                self._disconnect_after_failure()
            self._enter(UpdateStage.FAILED)
            raise

        message = UPDATE_COMPLETE if image is not None else ERASE_COMPLETE
        self._enter(UpdateStage.COMPLETE)
        logger.info(message)
        return message

    def connect(self) -> None:
        """
        Open the device and bring the DFU engine to a clean state.

        Raises:
            TransportError: If the device cannot be found, opened or claimed
            TransportRejected: If CLRSTATUS is refused
        """
        self._enter(UpdateStage.CONNECTING)
        self.transport.open(vendor_id=self.vendor_id, product_id=self.product_id)
        self.session.handle_open = True
        self.transport.select_configuration(DFU_CONFIGURATION)
        self.transport.claim_interface(DFU_INTERFACE)
        self.poller.clear_status()
        logger.info("Connected to DFU device")

    def erase(self) -> None:
        """Erase the flash described by the stored geometry."""
        self._enter(UpdateStage.ERASING)
        EraseSequencer(self.poller, self.observer.on_progress).erase(self._require_geometry())

    def program(self, image: bytes) -> None:
        """Download image into flash."""
        self._enter(UpdateStage.PROGRAMMING)
        ProgramSequencer(self.poller, self.observer.on_progress).program(
            image, self._require_geometry()
        )

    def detach(self) -> None:
        """
        Leave DFU mode.

        A zero-length DNLOAD followed by GET_STATUS makes the bootloader
        manifest and reset into the application.
        """
        self._enter(UpdateStage.DETACHING)
        self.poller.clear_status()
        self.poller.download(COMMAND_BLOCK, b"")
        self.poller.get_status()
        logger.info("Device detached, starting application")

    def disconnect(self) -> None:
        """Release the device handle if it is open and notify the observer."""
        self._enter(UpdateStage.DISCONNECTING)
        try:
            if self.session.handle_open:
                self.session.handle_open = False
                self.transport.close()
                logger.info("Disconnected")
        finally:
            self.observer.on_disconnect()

    def _disconnect_after_failure(self) -> None:
        """Disconnect without letting a close error mask the original one."""
        try:
            self.disconnect()
        except Exception as e:
            logger.warning(f"Error while disconnecting after failure: {e}")

    def _enter(self, stage: UpdateStage) -> None:
        self.session.stage = stage
        logger.info(f"Stage: {stage.value}")
        self.observer.on_stage(stage)

    def _require_geometry(self) -> FlashGeometry:
        if self.session.geometry is None:
            raise RuntimeError("Flash geometry not set; call set_flash_and_page_sizes first")
        return self.session.geometry

    @staticmethod
    def _check_image_fits(image: bytes, geometry: FlashGeometry) -> None:
        if block_count(len(image)) * TRANSFER_SIZE > geometry.flash_size:
            raise ImageTooLarge(len(image), geometry.flash_size)
