"""
Centralized parsing helpers for sizes, addresses and USB IDs.

Both the CLI and the orchestrator must import these helpers rather than
re-implement.
"""

from typing import Optional, Union


def parse_int_value(value: Union[int, str, None], label: str = "value") -> Optional[int]:
    """
    Parse an integer from an int or a string, supporting multiple formats.

    This is the single source of truth for numeric option parsing.

    Accepts:
        - int: returned unchanged (bool is rejected)
        - Decimal: "131072"
        - Hex with 0x prefix: "0x20000" or "0X20000"
        - Hex with h suffix: "20000h" or "20000H"
        - None or empty string: returns None

    Raises:
        ValueError: If value cannot be parsed.
    """
    if value is None:
        return None

    if isinstance(value, bool):
        raise ValueError(f"Invalid {label} {value!r}: expected a number")
    if isinstance(value, int):
        return value

    text = str(value).strip()
    if not text:
        return None

    try:
        # Hex with 0x/0X prefix
        if text.lower().startswith("0x"):
            return int(text, 16)
        # Hex with h/H suffix
        if text.lower().endswith("h"):
            return int(text[:-1], 16)
        # Decimal
        return int(text, 10)
    except ValueError:
        raise ValueError(
            f"Invalid {label} '{text}'. Use decimal (131072), hex (0x20000), or suffix (20000h)."
        )


def parse_size_value(value: Union[int, str], label: str = "size") -> int:
    """
    Parse a non-negative size in bytes.

    Accepts the same forms as parse_int_value, plus a K suffix for KiB
    ("128K" == 131072).

    Raises:
        ValueError: If value is missing, unparseable or negative.
    """
    if isinstance(value, str) and value.strip().lower().endswith("k"):
        kib = parse_int_value(value.strip()[:-1], label)
        parsed = None if kib is None else kib * 1024
    else:
        parsed = parse_int_value(value, label)

    if parsed is None:
        raise ValueError(f"Missing {label}")
    if parsed < 0:
        raise ValueError(f"Invalid {label} {parsed}: must not be negative")
    return parsed


def format_size(size: int) -> str:
    """Format a byte count as '131,072 bytes (128 KiB)'."""
    if size and size % 1024 == 0:
        return f"{size:,} bytes ({size // 1024} KiB)"
    return f"{size:,} bytes"
