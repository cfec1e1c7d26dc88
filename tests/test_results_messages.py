"""Tests for result objects and structured warnings."""

from stm32_dfu_flasher.core.messages import (
    MessageLevel,
    WarningCode,
    WarningItem,
    code_for_error,
    result_to_warnings,
)
from stm32_dfu_flasher.core.results import OperationResult


def test_add_error_marks_failure() -> None:
    result = OperationResult.success(operation="erase_flash")
    result.add_error("boom")
    assert not result.ok
    assert result.errors == ["boom"]


def test_summary_lists_stage_and_errors() -> None:
    result = OperationResult.failure(
        operation="flash_firmware",
        error="Device reported errPROG in state dfuERROR",
        device="STM32L07x-128K",
        stage="Programming",
    )
    summary = result.to_summary()
    assert summary.startswith("[FAILED] flash_firmware (Programming)")
    assert "Device: STM32L07x-128K" in summary
    assert "error: Device reported errPROG" in summary
    assert result.interrupted_programming


def test_to_dict_round_trips_fields() -> None:
    result = OperationResult.success(operation="plan_update", bytes_len=10)
    result.metadata["blocks"] = 1
    data = result.to_dict()
    assert data["ok"] is True
    assert data["bytes_len"] == 10
    assert data["metadata"] == {"blocks": 1}
    assert "logs" in data
    assert "logs" not in result.to_dict(include_logs=False)


def test_add_error_records_error_type() -> None:
    result = OperationResult.success(operation="plan_update")
    result.add_error("too big", error_type="ImageTooLarge")
    assert result.error_type == "ImageTooLarge"
    assert not result.interrupted_programming


def test_warning_item_gets_default_remediation() -> None:
    item = WarningItem.error(WarningCode.W_DEVICE_NOT_FOUND, "No device")
    assert item.level == MessageLevel.ERROR
    assert "BOOT0" in item.remediation
    assert item.to_dict()["code"] == "W_DEVICE_NOT_FOUND"


def test_code_for_error() -> None:
    assert code_for_error("TransportRejected") == WarningCode.W_REQUEST_REJECTED
    assert code_for_error("FlashPageMismatchError") == WarningCode.W_CONFIG_INVALID
    assert code_for_error("SomethingElse") == WarningCode.W_UNKNOWN


def test_result_to_warnings_maps_padding_warning() -> None:
    result = OperationResult.success(operation="plan_update")
    result.add_warning("Final block padded with 904 zero bytes")
    items = result_to_warnings(result)
    assert [item.code for item in items] == [WarningCode.W_IMAGE_PADDED]
    assert items[0].level == MessageLevel.WARN


def test_result_to_warnings_reports_dry_run_as_info() -> None:
    result = OperationResult.success(operation="erase_flash")
    result.add_warning("Dry run - no actual erase performed")
    items = result_to_warnings(result)
    assert [item.code for item in items] == [WarningCode.W_DRY_RUN]
    assert items[0].level == MessageLevel.INFO
