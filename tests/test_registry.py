"""Tests for the chip registry."""

import pytest

from stm32_dfu_flasher.core.geometry import FlashGeometry, PageSizeAlignmentError
from stm32_dfu_flasher.models import DEFAULT_CHIP, get_chip, list_chips, resolve_geometry


def test_default_chip_matches_stm32l0_layout() -> None:
    chip = get_chip(DEFAULT_CHIP)
    assert chip.flash_size == 131072
    assert chip.page_size == 128
    assert chip.geometry.page_count == 1024


def test_all_presets_have_valid_geometry() -> None:
    for name in list_chips():
        assert isinstance(get_chip(name).geometry, FlashGeometry)


def test_lookup_is_case_insensitive() -> None:
    assert get_chip("stm32f072-128k") is get_chip("STM32F072-128K")


def test_unknown_chip_returns_none() -> None:
    assert get_chip("STM32H7-2M") is None
    assert get_chip("") is None


def test_to_dict_formats_usb_id() -> None:
    data = get_chip(DEFAULT_CHIP).to_dict()
    assert data["usb_id"] == "0483:DF11"
    assert data["flash_size"] == 131072


class TestResolveGeometry:

    def test_defaults_to_default_chip(self):
        assert resolve_geometry() == FlashGeometry(131072, 128)

    def test_preset(self):
        assert resolve_geometry("STM32F072-128K") == FlashGeometry(131072, 2048)

    def test_explicit_sizes_override_preset(self):
        geometry = resolve_geometry("STM32F072-128K", flash_size="64K", page_size="0x400")
        assert geometry == FlashGeometry(65536, 1024)

    def test_partial_override_keeps_preset_page(self):
        geometry = resolve_geometry(flash_size="0x30000")
        assert geometry == FlashGeometry(196608, 128)

    def test_unknown_chip_raises_key_error(self):
        with pytest.raises(KeyError):
            resolve_geometry("NOT-A-CHIP")

    def test_invalid_override_raises_config_error(self):
        with pytest.raises(PageSizeAlignmentError):
            resolve_geometry(page_size="6")
