"""
Safety context and write gating for flash operations.

The DFU erase sequence walks every flash page before anything is written,
so a flash or erase always destroys the firmware already on the target.
Both go through require_write_permission first, which shows the pages and
address range about to be erased.
"""

import sys
from dataclasses import dataclass
from typing import Optional, Callable

from stm32_dfu_flasher.protocol.dfu_protocol import TRANSFER_SIZE, block_count

from .geometry import FlashGeometry

# Confirmation token required for non-interactive writes
CONFIRMATION_TOKEN = "WRITE"


class WritePermissionError(Exception):
    """
    Raised when a write operation is not permitted.

    Attributes:
        reason: Human-readable explanation of why write was denied
        details: Erase plan the user was asked to approve
    """
    def __init__(self, reason: str, details: Optional[dict] = None):
        self.reason = reason
        self.details = details or {}
        super().__init__(reason)


@dataclass
class SafetyContext:
    """
    Safety context for flash write operations.

    Attributes:
        write_enabled: Whether the --write flag was provided
        confirmation_token: For non-interactive mode, must match CONFIRMATION_TOKEN
        interactive: Whether the UI can prompt for confirmation
        device: Chip preset or USB ID being targeted
        simulate: Whether this is a dry run
    """
    write_enabled: bool = False
    confirmation_token: Optional[str] = None
    interactive: bool = True
    device: str = ""
    simulate: bool = False

    # Callbacks for interactive prompts
    prompt_confirmation: Optional[Callable[[str], str]] = None
    show_details: Optional[Callable[[dict], None]] = None


def erase_details(
    ctx: SafetyContext,
    geometry: FlashGeometry,
    image_length: Optional[int] = None,
) -> dict:
    """
    Describe the flash the operation will erase.

    The erase sequence always visits every page, whatever the image size.
    image_length is None for an erase-only run.

    Returns:
        Dict with device, erase_range, pages, page_size, bytes_length
        and a list of warnings for display
    """
    details = {
        "device": ctx.device or "Unknown",
        "erase_range": f"0x{geometry.base_address:08X}-0x{geometry.flash_end:08X}",
        "pages": geometry.page_count,
        "page_size": geometry.page_size,
        "bytes_length": geometry.flash_size if image_length is None else image_length,
        "warnings": [
            f"Erase covers the whole flash ({geometry.page_count} pages); "
            "the firmware on the device is lost"
        ],
    }

    if image_length is not None:
        image_end = geometry.base_address + block_count(image_length) * TRANSFER_SIZE
        blank_pages = max(geometry.flash_end - image_end, 0) // geometry.page_size
        if blank_pages:
            details["warnings"].append(
                f"{blank_pages} pages from 0x{image_end:08X} stay blank after programming"
            )

    return details


def require_write_permission(
    ctx: SafetyContext,
    geometry: FlashGeometry,
    image_length: Optional[int] = None,
) -> dict:
    """
    Enforce write permission rules.

    Rules enforced:
    1. If simulate mode: always allowed (no actual write)
    2. If write not enabled: raise with instructions
    3. If confirmation token present: must match exactly
    4. If interactive: show the erase plan and prompt the user

    Returns:
        The erase details from erase_details()

    Raises:
        WritePermissionError: If write is not permitted
    """
    details = erase_details(ctx, geometry, image_length)

    # Rule 1: Simulation mode is always allowed
    if ctx.simulate:
        return details

    # Rule 2: Write must be explicitly enabled
    if not ctx.write_enabled:
        raise WritePermissionError(
            f"Erasing {details['erase_range']} requires explicit permission. "
            "Use the --write flag.",
            details=details,
        )

    # Rule 3: Token-based confirmation for non-interactive
    if ctx.confirmation_token is not None:
        if ctx.confirmation_token.strip().upper() != CONFIRMATION_TOKEN:
            raise WritePermissionError(
                f"Confirmation token mismatch. Expected '{CONFIRMATION_TOKEN}'.",
                details=details,
            )
        return details

    # Rule 4: Interactive confirmation required
    if not ctx.interactive:
        raise WritePermissionError(
            "Non-interactive mode requires confirmation_token.",
            details=details,
        )

    if ctx.show_details:
        ctx.show_details(details)

    if not ctx.prompt_confirmation:
        raise WritePermissionError(
            "Interactive confirmation required but no prompt handler set. "
            "Provide confirmation_token for non-interactive mode.",
            details=details,
        )

    user_input = ctx.prompt_confirmation(
        f"Type '{CONFIRMATION_TOKEN}' to proceed, or anything else to abort"
    )
    if user_input.strip().upper() != CONFIRMATION_TOKEN:
        raise WritePermissionError(
            "Confirmation failed. Write aborted by user.",
            details=details,
        )
    return details


def create_cli_safety_context(
    write_flag: bool,
    device: str = "",
    simulate: bool = False,
    confirmation_token: Optional[str] = None,
) -> SafetyContext:
    """
    Create a SafetyContext configured for CLI usage.

    Interactive when stdin is a TTY and no token was given; the caller
    installs the prompt callbacks.
    """
    interactive = sys.stdin.isatty() and confirmation_token is None

    return SafetyContext(
        write_enabled=write_flag,
        confirmation_token=confirmation_token,
        interactive=interactive,
        device=device,
        simulate=simulate,
    )
