"""
Flash geometry for the STM32 DFU bootloader.

The erase sequence walks flash page by page, so the flash size must be an
exact multiple of the page size.
"""

from dataclasses import dataclass
from typing import Iterator, Union

from stm32_dfu_flasher.protocol.dfu_protocol import FLASH_BASE_ADDRESS

from .parsing import parse_size_value

FLASH_SIZE_ALIGNMENT = 1024
PAGE_SIZE_ALIGNMENT = 4


class ConfigError(ValueError):
    """Base class for invalid flash/page size configuration."""


class InvalidSizeValue(ConfigError):
    """A size could not be parsed as a non-negative integer."""


class FlashSizeAlignmentError(ConfigError):
    """Flash size is not a multiple of 1024 bytes."""


class PageSizeAlignmentError(ConfigError):
    """Page size is zero or not a multiple of 4 bytes."""


class FlashPageMismatchError(ConfigError):
    """Flash size is not an exact multiple of the page size."""


@dataclass(frozen=True)
class FlashGeometry:
    """
    Flash layout used by the erase and program sequences.

    Attributes:
        flash_size: Total flash size in bytes
        page_size: Erase unit in bytes
        base_address: Flash start address (0x08000000 on STM32)
    """
    flash_size: int
    page_size: int
    base_address: int = FLASH_BASE_ADDRESS

    def __post_init__(self):
        validate_sizes(self.flash_size, self.page_size)

    @property
    def flash_end(self) -> int:
        """Return end address (exclusive)."""
        return self.base_address + self.flash_size

    @property
    def page_count(self) -> int:
        return self.flash_size // self.page_size

    def page_addresses(self) -> Iterator[int]:
        """Yield the start address of every page, lowest first."""
        return iter(range(self.base_address, self.flash_end, self.page_size))

    def describe(self) -> str:
        return (
            f"0x{self.base_address:08X}-0x{self.flash_end:08X} "
            f"({self.page_count} pages x {self.page_size} bytes)"
        )

    @classmethod
    def from_specs(
        cls,
        flash_size_spec: Union[int, str],
        page_size_spec: Union[int, str],
    ) -> "FlashGeometry":
        """
        Build a geometry from decimal/hex text or integers.

        Raises:
            ConfigError: The subclass identifies which rule was violated
        """
        try:
            flash_size = parse_size_value(flash_size_spec, "flash size")
            page_size = parse_size_value(page_size_spec, "page size")
        except ValueError as e:
            raise InvalidSizeValue(str(e))
        return cls(flash_size=flash_size, page_size=page_size)


def validate_sizes(flash_size: int, page_size: int) -> None:
    """
    Check flash/page sizes in order, raising on the first violated rule.

    Raises:
        InvalidSizeValue: If either size is not a non-negative integer
        FlashSizeAlignmentError: If flash_size % 1024 != 0
        PageSizeAlignmentError: If page_size is 0 or page_size % 4 != 0
        FlashPageMismatchError: If flash_size % page_size != 0
    """
    for label, value in (("flash size", flash_size), ("page size", page_size)):
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise InvalidSizeValue(f"Invalid {label} {value!r}: expected a non-negative integer")

    if flash_size % FLASH_SIZE_ALIGNMENT:
        raise FlashSizeAlignmentError(
            f"Flash size {flash_size} is not a multiple of {FLASH_SIZE_ALIGNMENT} bytes"
        )
    if page_size == 0 or page_size % PAGE_SIZE_ALIGNMENT:
        raise PageSizeAlignmentError(
            f"Page size {page_size} is not a positive multiple of {PAGE_SIZE_ALIGNMENT} bytes"
        )
    if flash_size % page_size:
        raise FlashPageMismatchError(
            f"Flash size {flash_size} is not a multiple of page size {page_size}"
        )
