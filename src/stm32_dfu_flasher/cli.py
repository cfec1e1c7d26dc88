"""
STM32 DFU Flasher CLI

Command-line interface for erasing and programming STM32 parts through
the ROM DFU bootloader, with write confirmation.
"""

import sys
import json
import logging
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.logging import RichHandler
from rich.progress import Progress, BarColumn, TextColumn

from stm32_dfu_flasher.protocol import (
    UsbDfuTransport,
    TransportError,
    STM32_VENDOR_ID,
)
from stm32_dfu_flasher.core.parsing import parse_int_value, format_size
from stm32_dfu_flasher.core.geometry import ConfigError, FlashGeometry
from stm32_dfu_flasher.core.safety import (
    WritePermissionError,
    CONFIRMATION_TOKEN,
    create_cli_safety_context,
)
from stm32_dfu_flasher.core.results import OperationResult
from stm32_dfu_flasher.core.update import UpdateObserver, UpdateStage
from stm32_dfu_flasher.core.actions import (
    load_firmware,
    plan_update,
    flash_firmware as core_flash_firmware,
    erase_flash as core_erase_flash,
)
from stm32_dfu_flasher.core.messages import MessageLevel, WarningItem, result_to_warnings
from stm32_dfu_flasher.models import list_chips as registry_list_chips, get_chip, resolve_geometry

# Setup logging
logging.basicConfig(
    level=logging.WARNING,
    format="%(message)s",
    handlers=[RichHandler(rich_tracebacks=True)],
)
logger = logging.getLogger("stm32_dfu_flasher")

# Setup Rich console
console = Console()

app = typer.Typer(help="STM32 DFU Flasher - erase and program STM32 parts over USB DFU")


def print_header(text: str) -> None:
    """Print fancy header."""
    console.print(Panel(text, expand=False, style="bold blue"))


def print_success(text: str) -> None:
    console.print(f"✓ {text}", style="green")


def print_warning(text: str) -> None:
    console.print(f"⚠️  {text}", style="yellow")


def print_error(text: str) -> None:
    console.print(f"❌ {text}", style="red")


def print_structured_warning(warning: WarningItem, verbose: bool = False) -> None:
    """Print a structured warning with optional remediation."""
    if warning.level == MessageLevel.ERROR:
        style, icon = "red", "❌"
    elif warning.level == MessageLevel.WARN:
        style, icon = "yellow", "⚠️"
    else:
        style, icon = "blue", "ℹ️"

    console.print(f"{icon} [{warning.code.value}] {warning.title}", style=style)
    if verbose and warning.detail:
        console.print(f"   {warning.detail}", style="dim")
    if warning.remediation and (verbose or warning.level == MessageLevel.ERROR):
        console.print(f"   → {warning.remediation}", style="cyan")


def print_warnings_from_result(result: OperationResult, verbose: bool = False) -> None:
    """Print all warnings from an OperationResult using structured format."""
    for warning in result_to_warnings(result):
        print_structured_warning(warning, verbose=verbose)


def parse_int(value: Optional[str], label: str) -> Optional[int]:
    """
    Parse an integer option (decimal, 0x hex or h suffix).

    CLI wrapper around core.parsing.parse_int_value that converts
    ValueError to typer.BadParameter for proper CLI error handling.
    """
    try:
        return parse_int_value(value, label)
    except ValueError as e:
        raise typer.BadParameter(str(e))


def resolve_cli_geometry(
    chip: Optional[str],
    flash_size: Optional[str],
    page_size: Optional[str],
) -> FlashGeometry:
    """Resolve --chip/--flash-size/--page-size into a geometry."""
    try:
        return resolve_geometry(chip, flash_size, page_size)
    except (KeyError, ConfigError) as e:
        raise typer.BadParameter(str(e).strip("'\""))


def configure_logging(verbose: bool) -> None:
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)


def confirm_write_with_details(
    write_flag: bool,
    device: str,
    dry_run: bool = False,
    confirm_token: Optional[str] = None,
):
    """
    Build a safety context for a flash write.

    Supports three modes:
    1. Non-interactive (script): --confirm WRITE provided, no prompts
    2. Interactive (TTY): shows the erase plan, then prompts for typed confirmation
    3. Non-interactive without token: the core refuses with remediation
    """
    ctx = create_cli_safety_context(
        write_flag=write_flag,
        device=device,
        simulate=dry_run,
        confirmation_token=confirm_token,
    )

    if ctx.interactive:
        def show_details(details: dict) -> None:
            warnings = "".join(
                f"[yellow]• {warning}[/yellow]\n" for warning in details.get("warnings", [])
            )
            console.print()
            console.print(Panel(
                f"[bold yellow]⚠️  FLASH WRITE CONFIRMATION REQUIRED[/bold yellow]\n\n"
                f"Device:        {details.get('device', 'Unknown')}\n"
                f"Erase range:   {details.get('erase_range', 'Unknown')}\n"
                f"Pages:         {details.get('pages', 0)} x {details.get('page_size', 0)} bytes\n"
                f"Bytes:         {details.get('bytes_length', 0):,}\n"
                f"\n{warnings}"
                f"[bold]Type '{CONFIRMATION_TOKEN}' to proceed, or anything else to abort:[/bold]",
                title="DFU Write Operation",
                expand=False,
            ))

        ctx.show_details = show_details
        ctx.prompt_confirmation = lambda prompt_text: typer.prompt("Confirm")

    return ctx


class RichUpdateObserver(UpdateObserver):
    """
    Render stage changes as lines and progress as a bar.

    The live display starts with the first stage, after any write
    confirmation prompt has been answered.
    """

    def __init__(self, progress: Progress):
        self.progress = progress
        self.task = None

    def on_stage(self, stage: UpdateStage) -> None:
        if not self.progress.live.is_started:
            self.progress.start()
        # Erase progress stops one page short of 100
        if self.task is not None and stage != UpdateStage.FAILED:
            self.progress.update(self.task, completed=100)
            self.task = None

        if stage in (UpdateStage.ERASING, UpdateStage.PROGRAMMING):
            self.task = self.progress.add_task(f"{stage.value}...", total=100)
        else:
            self.progress.console.print(f"[bold]→ {stage.value}[/bold]")

    def on_progress(self, percent: float) -> None:
        if self.task is not None:
            self.progress.update(self.task, completed=percent)

    def on_disconnect(self) -> None:
        self.progress.console.print("[dim]Device released[/dim]")


def _format_usb_id(vendor_id: int, product_id: Optional[int]) -> str:
    if product_id is None:
        return f"VID {vendor_id:04X}"
    return f"{vendor_id:04X}:{product_id:04X}"


def _new_progress() -> Progress:
    return Progress(
        TextColumn("{task.description}"),
        BarColumn(),
        TextColumn("{task.percentage:>3.0f}%"),
        console=console,
    )


def _report(result: OperationResult, verbose: bool, output_json: bool) -> None:
    if output_json:
        data = result.to_dict(include_logs=False)
        console.print_json(json.dumps(data))
    else:
        print_warnings_from_result(result, verbose=verbose)
        if verbose:
            console.print(result.to_summary())
    if not result.ok:
        raise typer.Exit(1)


@app.command()
def devices(
    vid: str = typer.Option(f"0x{STM32_VENDOR_ID:04X}", "--vid", help="USB vendor ID"),
) -> None:
    """List attached USB devices from the given vendor."""
    print_header("USB Devices")
    vendor_id = parse_int(vid, "vid")

    try:
        found = UsbDfuTransport.list_devices(vendor_id)
    except TransportError as e:
        print_error(str(e))
        raise typer.Exit(1)

    if not found:
        print_warning(f"No devices with VID 0x{vendor_id:04X} found")
        return

    table = Table(title="Devices")
    table.add_column("USB ID", style="cyan")
    table.add_column("Bus/Addr", style="magenta")
    table.add_column("Product", style="green")
    table.add_column("DFU mode", style="yellow")

    for dev in found:
        table.add_row(
            f"{dev['vendor_id']:04X}:{dev['product_id']:04X}",
            f"{dev['bus']}/{dev['address']}",
            dev["product"] or "-",
            "yes" if dev["dfu_mode"] else "no",
        )
    console.print(table)


@app.command("list-chips")
def list_chips() -> None:
    """List chip presets and their flash layouts."""
    print_header("Supported Chips")

    table = Table(title="Chip Presets")
    table.add_column("Name", style="cyan")
    table.add_column("Family", style="magenta")
    table.add_column("Flash", style="green")
    table.add_column("Page", style="yellow")
    table.add_column("Notes", style="dim")

    for name in registry_list_chips():
        chip = get_chip(name)
        table.add_row(
            chip.name,
            chip.family,
            format_size(chip.flash_size),
            f"{chip.page_size} bytes",
            "; ".join(chip.notes) or "-",
        )
    console.print(table)


@app.command()
def inspect(
    firmware: str = typer.Argument(..., help="Raw .bin firmware image"),
    chip: Optional[str] = typer.Option(None, "--chip", "-c", help="Chip preset (see list-chips)"),
    flash_size: Optional[str] = typer.Option(None, "--flash-size", help="Flash size: 131072, 0x20000 or 128K"),
    page_size: Optional[str] = typer.Option(None, "--page-size", help="Page size: 128 or 0x80"),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON for scripting"),
) -> None:
    """Show how a firmware image would be erased and programmed."""
    geometry = resolve_cli_geometry(chip, flash_size, page_size)

    try:
        image = load_firmware(firmware)
    except FileNotFoundError as e:
        print_error(str(e))
        raise typer.Exit(1)

    result = plan_update(image, geometry, device=chip or "")

    if not output_json:
        print_header("Update Plan")
        table = Table(show_header=False)
        table.add_column("Field", style="cyan")
        table.add_column("Value")
        table.add_row("Image", f"{firmware} ({format_size(len(image))})")
        table.add_row("SHA-256", result.sha256)
        table.add_row("Flash", geometry.describe())
        table.add_row("Blocks", f"{result.metadata['blocks']} x 2048 bytes")
        table.add_row("Padding", f"{result.metadata['padding']} bytes")
        table.add_row("Fits", "yes" if result.metadata["fits"] else "[red]no[/red]")
        console.print(table)

    _report(result, verbose=False, output_json=output_json)


@app.command()
def flash(
    firmware: str = typer.Argument(..., help="Raw .bin firmware image"),
    chip: Optional[str] = typer.Option(None, "--chip", "-c", help="Chip preset (see list-chips)"),
    flash_size: Optional[str] = typer.Option(None, "--flash-size", help="Flash size: 131072, 0x20000 or 128K"),
    page_size: Optional[str] = typer.Option(None, "--page-size", help="Page size: 128 or 0x80"),
    vid: str = typer.Option(f"0x{STM32_VENDOR_ID:04X}", "--vid", help="USB vendor ID"),
    pid: Optional[str] = typer.Option(None, "--pid", help="USB product ID (default: any)"),
    timeout: int = typer.Option(5000, "--timeout", help="USB transfer timeout in ms"),
    wide_poll_timeout: bool = typer.Option(
        False,
        "--wide-poll-timeout",
        help="Decode the full 24-bit bwPollTimeout instead of its low byte",
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Validate only, no write"),
    write: bool = typer.Option(False, "--write", help="Required flag to enable actual flashing"),
    confirm: Optional[str] = typer.Option(
        None,
        "--confirm",
        help="Non-interactive confirmation token (must be 'WRITE')",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show protocol details"),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output result as JSON"),
) -> None:
    """Erase the device, program FIRMWARE and start the application."""
    print_header("Flash Firmware")
    configure_logging(verbose)

    geometry = resolve_cli_geometry(chip, flash_size, page_size)
    vendor_id = parse_int(vid, "vid")
    product_id = parse_int(pid, "pid")

    try:
        image = load_firmware(firmware)
    except FileNotFoundError as e:
        print_error(str(e))
        raise typer.Exit(1)

    device = chip or _format_usb_id(vendor_id, product_id)
    ctx = confirm_write_with_details(
        write_flag=write,
        device=device,
        dry_run=dry_run,
        confirm_token=confirm,
    )

    progress = _new_progress()
    try:
        result = core_flash_firmware(
            image,
            geometry,
            ctx,
            transport=UsbDfuTransport(timeout_ms=timeout),
            observer=RichUpdateObserver(progress),
            vendor_id=vendor_id,
            product_id=product_id,
            wide_poll_timeout=wide_poll_timeout,
        )
    except WritePermissionError as e:
        print_error(str(e))
        console.print(f"  Re-run with --write (and --confirm {CONFIRMATION_TOKEN} when scripted).")
        raise typer.Exit(1)
    finally:
        progress.stop()

    if result.ok:
        if result.metadata.get("simulated"):
            print_success(f"Dry run complete: {result.metadata['blocks']} blocks, no data written")
        else:
            print_success(result.metadata["message"])
    else:
        print_error(f"Flash failed during {result.stage or 'setup'}")

    _report(result, verbose=verbose, output_json=output_json)


@app.command()
def erase(
    chip: Optional[str] = typer.Option(None, "--chip", "-c", help="Chip preset (see list-chips)"),
    flash_size: Optional[str] = typer.Option(None, "--flash-size", help="Flash size: 131072, 0x20000 or 128K"),
    page_size: Optional[str] = typer.Option(None, "--page-size", help="Page size: 128 or 0x80"),
    vid: str = typer.Option(f"0x{STM32_VENDOR_ID:04X}", "--vid", help="USB vendor ID"),
    pid: Optional[str] = typer.Option(None, "--pid", help="USB product ID (default: any)"),
    timeout: int = typer.Option(5000, "--timeout", help="USB transfer timeout in ms"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Validate only, no erase"),
    write: bool = typer.Option(False, "--write", help="Required flag to enable actual erasing"),
    confirm: Optional[str] = typer.Option(None, "--confirm", help="Non-interactive confirmation token"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show protocol details"),
) -> None:
    """Erase every flash page, leaving the device in DFU mode."""
    print_header("Erase Flash")
    configure_logging(verbose)

    geometry = resolve_cli_geometry(chip, flash_size, page_size)
    vendor_id = parse_int(vid, "vid")
    product_id = parse_int(pid, "pid")

    ctx = confirm_write_with_details(
        write_flag=write,
        device=chip or _format_usb_id(vendor_id, product_id),
        dry_run=dry_run,
        confirm_token=confirm,
    )

    progress = _new_progress()
    try:
        result = core_erase_flash(
            geometry,
            ctx,
            transport=UsbDfuTransport(timeout_ms=timeout),
            observer=RichUpdateObserver(progress),
            vendor_id=vendor_id,
            product_id=product_id,
        )
    except WritePermissionError as e:
        print_error(str(e))
        raise typer.Exit(1)
    finally:
        progress.stop()

    if result.ok:
        if result.metadata.get("simulated"):
            print_success(f"Dry run complete: {geometry.page_count} pages, nothing erased")
        else:
            print_success(result.metadata["message"])
    else:
        print_error(f"Erase failed during {result.stage or 'setup'}")

    _report(result, verbose=verbose, output_json=False)


def main() -> None:
    """Main entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(0)
    except Exception as e:
        console.print(f"\n[red bold]Fatal error:[/red bold] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
