"""Tests for core workflow actions and write gating."""

import pytest

from stm32_dfu_flasher.core.actions import erase_flash, flash_firmware, load_firmware, plan_update
from stm32_dfu_flasher.core.geometry import FlashGeometry
from stm32_dfu_flasher.core.messages import WarningCode, result_to_warnings
from stm32_dfu_flasher.core.safety import (
    SafetyContext,
    WritePermissionError,
    erase_details,
    require_write_permission,
)
from stm32_dfu_flasher.protocol.usb_transport import DeviceNotFound

GEOMETRY = FlashGeometry(8192, 2048)


def _allowed_ctx(**kwargs) -> SafetyContext:
    return SafetyContext(
        write_enabled=True,
        confirmation_token="WRITE",
        interactive=False,
        device="test-board",
        **kwargs,
    )


class TestSafetyGating:

    def test_write_flag_required(self):
        ctx = SafetyContext(write_enabled=False)
        with pytest.raises(WritePermissionError, match="--write") as excinfo:
            require_write_permission(ctx, GEOMETRY)
        assert "0x08000000-0x08002000" in excinfo.value.reason
        assert excinfo.value.details["pages"] == 4

    def test_simulate_always_allowed(self):
        details = require_write_permission(SafetyContext(simulate=True), GEOMETRY)
        assert details["erase_range"] == "0x08000000-0x08002000"

    def test_token_mismatch(self):
        ctx = SafetyContext(write_enabled=True, confirmation_token="yes")
        with pytest.raises(WritePermissionError, match="mismatch"):
            require_write_permission(ctx, GEOMETRY)

    def test_token_is_case_insensitive(self):
        ctx = SafetyContext(write_enabled=True, confirmation_token=" write ")
        require_write_permission(ctx, GEOMETRY)

    def test_non_interactive_without_token(self):
        ctx = SafetyContext(write_enabled=True, interactive=False)
        with pytest.raises(WritePermissionError, match="Non-interactive"):
            require_write_permission(ctx, GEOMETRY)

    def test_interactive_prompt_shows_erase_plan(self):
        shown = []
        ctx = SafetyContext(
            write_enabled=True,
            interactive=True,
            device="board",
            prompt_confirmation=lambda text: "WRITE",
            show_details=shown.append,
        )
        require_write_permission(ctx, GEOMETRY, image_length=4096)
        details = shown[0]
        assert details["device"] == "board"
        assert details["erase_range"] == "0x08000000-0x08002000"
        assert details["pages"] == 4
        assert details["page_size"] == 2048
        assert details["bytes_length"] == 4096

    def test_interactive_prompt_refused(self):
        ctx = SafetyContext(
            write_enabled=True,
            interactive=True,
            prompt_confirmation=lambda text: "no",
        )
        with pytest.raises(WritePermissionError, match="aborted"):
            require_write_permission(ctx, GEOMETRY)


class TestEraseDetails:

    def test_erase_only_covers_whole_flash(self):
        details = erase_details(SafetyContext(), FlashGeometry(131072, 128))
        assert details["device"] == "Unknown"
        assert details["erase_range"] == "0x08000000-0x08020000"
        assert details["pages"] == 1024
        assert details["bytes_length"] == 131072
        assert details["warnings"] == [
            "Erase covers the whole flash (1024 pages); the firmware on the device is lost"
        ]

    def test_short_image_leaves_pages_blank(self):
        details = erase_details(SafetyContext(), GEOMETRY, image_length=4000)
        assert len(details["warnings"]) == 2
        assert details["warnings"][1] == "2 pages from 0x08001000 stay blank after programming"

    def test_full_image_has_only_whole_flash_warning(self):
        details = erase_details(SafetyContext(), GEOMETRY, image_length=8192)
        assert len(details["warnings"]) == 1
        assert "whole flash" in details["warnings"][0]


def test_load_firmware(tmp_path) -> None:
    path = tmp_path / "app.bin"
    path.write_bytes(b"\x01\x02\x03")
    assert load_firmware(str(path)) == b"\x01\x02\x03"


def test_load_firmware_missing(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        load_firmware(str(tmp_path / "missing.bin"))


class TestPlanUpdate:

    def test_plan_metadata(self):
        result = plan_update(bytes(5000), FlashGeometry(131072, 128))
        assert result.ok
        assert result.metadata["blocks"] == 3
        assert result.metadata["padding"] == 1144
        assert result.metadata["pages"] == 1024
        assert result.metadata["fits"] is True
        assert len(result.sha256) == 64
        assert any("padded" in warning for warning in result.warnings)

    def test_plan_too_large(self):
        result = plan_update(bytes(135168), FlashGeometry(131072, 128))
        assert not result.ok
        assert result.metadata["fits"] is False
        codes = [item.code for item in result_to_warnings(result)]
        assert WarningCode.W_IMAGE_TOO_LARGE in codes

    def test_plan_exact_fit_has_no_padding_warning(self):
        result = plan_update(bytes(4096), GEOMETRY)
        assert result.ok
        assert result.warnings == []


class TestFlashFirmware:

    def test_permission_error_propagates(self, transport):
        with pytest.raises(WritePermissionError):
            flash_firmware(bytes(16), GEOMETRY, SafetyContext(), transport=transport)
        assert transport.calls == []

    def test_dry_run_touches_no_device(self, transport):
        ctx = SafetyContext(simulate=True, device="board")
        result = flash_firmware(bytes(5000), GEOMETRY, ctx, transport=transport)

        assert result.ok
        assert result.operation == "flash_firmware"
        assert result.metadata["simulated"] is True
        assert transport.calls == []
        codes = [item.code for item in result_to_warnings(result)]
        assert WarningCode.W_DRY_RUN in codes

    def test_success(self, transport, observer, fake_sleep):
        result = flash_firmware(
            bytes(4096),
            GEOMETRY,
            _allowed_ctx(),
            transport=transport,
            observer=observer,
            sleep=fake_sleep,
        )

        assert result.ok
        assert result.stage == "Complete"
        assert result.metadata["message"] == "Update Complete"
        assert result.metadata["blocks"] == 2
        assert result.device == "test-board"
        assert transport.close_count == 1
        assert any("Stage: Programming" in line for line in result.logs)

    def test_device_fault_becomes_failure(self, make_transport, fake_sleep):
        transport = make_transport(fault_after=10)
        result = flash_firmware(
            bytes(4096), GEOMETRY, _allowed_ctx(), transport=transport, sleep=fake_sleep
        )

        assert not result.ok
        assert result.stage == "Programming"
        assert result.error_type == "DeviceReportedFault"
        assert result.metadata["dfu_status"] == "errERASE"
        assert result.metadata["dfu_state"] == "dfuERROR"
        assert transport.close_count == 1

        codes = [item.code for item in result_to_warnings(result)]
        assert WarningCode.W_DEVICE_FAULT in codes
        assert WarningCode.W_PARTIAL_PROGRAM in codes

    def test_device_not_found_becomes_failure(self, transport, fake_sleep):
        transport.open_error = DeviceNotFound("No USB device found matching VID 0x0483")
        result = flash_firmware(
            bytes(4096), GEOMETRY, _allowed_ctx(), transport=transport, sleep=fake_sleep
        )

        assert not result.ok
        assert result.stage == "Connecting"
        assert "No USB device" in result.errors[0]
        codes = [item.code for item in result_to_warnings(result)]
        assert codes == [WarningCode.W_DEVICE_NOT_FOUND]


class TestEraseFlash:

    def test_erase_success(self, transport, fake_sleep):
        result = erase_flash(GEOMETRY, _allowed_ctx(), transport=transport, sleep=fake_sleep)
        assert result.ok
        assert result.metadata["message"] == "Erase Complete"
        assert result.metadata["pages"] == 4
        assert len(transport.dnloads()) == 4

    def test_erase_dry_run(self, transport):
        result = erase_flash(GEOMETRY, SafetyContext(simulate=True), transport=transport)
        assert result.ok
        assert result.metadata["simulated"] is True
        assert transport.calls == []

    def test_erase_requires_write(self, transport):
        with pytest.raises(WritePermissionError):
            erase_flash(GEOMETRY, SafetyContext(), transport=transport)
