"""
Chip registry for STM32 parts flashed through the ROM DFU bootloader.

Provides a single source of truth for:
- Flash size and erase page size per part
- USB IDs the bootloader enumerates with
- Notes shown by the list-chips command

Usage:
    from stm32_dfu_flasher.models import list_chips, get_chip, resolve_geometry

    # List all known chips
    chips = list_chips()

    # Get config for a specific chip
    config = get_chip("STM32L07x-128K")

    # Geometry from a preset, with explicit overrides
    geometry = resolve_geometry("STM32L07x-128K", page_size="0x80")
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

from stm32_dfu_flasher.core.geometry import FlashGeometry
from stm32_dfu_flasher.protocol.usb_transport import STM32_DFU_PRODUCT_ID, STM32_VENDOR_ID

DEFAULT_CHIP = "STM32L07x-128K"


@dataclass(frozen=True)
class ChipConfig:
    """
    Flash layout and USB identity of an STM32 part.

    Attributes:
        name: Registry key (family plus flash size)
        family: STM32 series
        flash_size: Total flash in bytes
        page_size: Erase page size in bytes
        usb_vid: Bootloader USB vendor ID
        usb_pid: Bootloader USB product ID
        notes: Free-form remarks for display
    """
    name: str
    family: str
    flash_size: int
    page_size: int
    usb_vid: int = STM32_VENDOR_ID
    usb_pid: int = STM32_DFU_PRODUCT_ID
    notes: List[str] = field(default_factory=list)

    @property
    def geometry(self) -> FlashGeometry:
        return FlashGeometry(flash_size=self.flash_size, page_size=self.page_size)

    def to_dict(self) -> Dict:
        """Convert to JSON-serializable dict."""
        return {
            "name": self.name,
            "family": self.family,
            "flash_size": self.flash_size,
            "page_size": self.page_size,
            "usb_id": f"{self.usb_vid:04X}:{self.usb_pid:04X}",
            "notes": list(self.notes),
        }


# ============================================================================
# CHIP REGISTRY - All known parts
# ============================================================================

_CHIP_REGISTRY: Dict[str, ChipConfig] = {}


def _register_chip(config: ChipConfig) -> None:
    """Register a chip configuration."""
    _CHIP_REGISTRY[config.name.upper()] = config


def _init_registry() -> None:
    """Initialize the registry with known parts."""

    # STM32L0 category 5: 128-byte pages erased one at a time
    _register_chip(ChipConfig(
        name="STM32L07x-128K",
        family="STM32L0",
        flash_size=128 * 1024,
        page_size=128,
        notes=["Default layout", "1024 pages of 128 bytes"],
    ))
    _register_chip(ChipConfig(
        name="STM32L07x-192K",
        family="STM32L0",
        flash_size=192 * 1024,
        page_size=128,
        notes=["Dual-bank part, both banks erased page by page"],
    ))

    _register_chip(ChipConfig(
        name="STM32L1-128K",
        family="STM32L1",
        flash_size=128 * 1024,
        page_size=256,
    ))

    _register_chip(ChipConfig(
        name="STM32F042-32K",
        family="STM32F0",
        flash_size=32 * 1024,
        page_size=1024,
    ))
    _register_chip(ChipConfig(
        name="STM32F072-128K",
        family="STM32F0",
        flash_size=128 * 1024,
        page_size=2048,
    ))

    _register_chip(ChipConfig(
        name="STM32G0B1-512K",
        family="STM32G0",
        flash_size=512 * 1024,
        page_size=2048,
    ))

    _register_chip(ChipConfig(
        name="STM32G431-128K",
        family="STM32G4",
        flash_size=128 * 1024,
        page_size=2048,
    ))

    _register_chip(ChipConfig(
        name="STM32L432-256K",
        family="STM32L4",
        flash_size=256 * 1024,
        page_size=2048,
    ))

    _register_chip(ChipConfig(
        name="STM32WB55-1M",
        family="STM32WB",
        flash_size=1024 * 1024,
        page_size=4096,
        notes=["Top of flash holds the wireless stack; erase with care"],
    ))


_init_registry()


def list_chips() -> List[str]:
    """Return registered chip names in registration order."""
    return [config.name for config in _CHIP_REGISTRY.values()]


def get_chip(name: str) -> Optional[ChipConfig]:
    """
    Look up a chip by name (case-insensitive).

    Returns:
        ChipConfig or None if the name is unknown
    """
    if not name:
        return None
    return _CHIP_REGISTRY.get(name.strip().upper())


def resolve_geometry(
    chip: Optional[str] = None,
    flash_size: Union[int, str, None] = None,
    page_size: Union[int, str, None] = None,
) -> FlashGeometry:
    """
    Build a FlashGeometry from a chip preset and explicit overrides.

    Explicit sizes win over the preset. Without a chip, DEFAULT_CHIP
    supplies whatever size was not given.

    Raises:
        KeyError: If chip names an unknown part
        ConfigError: If the resulting sizes are invalid
    """
    config = get_chip(chip or DEFAULT_CHIP)
    if config is None:
        raise KeyError(f"Unknown chip '{chip}'. Use list-chips to see supported parts.")

    return FlashGeometry.from_specs(
        flash_size if flash_size not in (None, "") else config.flash_size,
        page_size if page_size not in (None, "") else config.page_size,
    )
