"""
cc2538-bsl - Bootloader Command-Line Interface
==============================================

This module implements the command-line interface for the CC2538 ROM
serial bootloader. It identifies the chip, reads memory, erases flash
and programs raw binary images.

Usage Examples
--------------
List available serial ports:
    $ cc2538-bsl ports

Identify the chip:
    $ cc2538-bsl -p /dev/ttyUSB0 info

Erase, program and verify an image:
    $ cc2538-bsl -p /dev/ttyUSB0 flash firmware.bin --erase --verify

Read a word of memory:
    $ cc2538-bsl read 0x400D3014

Hardware Setup
--------------
The chip must be running its ROM bootloader: either the flash holds no
valid image, or the backdoor pin configured in the CCA page is held
active while the chip resets. Every command starts by sending the sync
preamble, from which the bootloader detects the baud rate.

Exit Codes
----------
0 - Success
1 - Connection, protocol or flashing error
2 - Invalid arguments or configuration error
3 - Internal error
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import click

from cc2538_bsl import __version__
from cc2538_bsl.cli.errors import ExitCode, handle_cli_exception
from cc2538_bsl.comms import (
    ACK_TIMEOUT,
    DEFAULT_BAUD_RATE,
    MAX_CHUNK_RETRIES,
    VALID_BAUD_RATES,
    Bootloader,
    close_serial_port,
    find_bootloader_port,
    format_port_list,
    list_serial_ports,
    open_serial_port,
)
from cc2538_bsl.device import (
    FLASH_BASE_ADDR,
    FLASH_PAGE_SIZE,
    NUM_FLASH_PAGES,
    format_ieee_address,
    page_align,
    read_device_info,
)

# Configure logging
logger = logging.getLogger(__name__)


# =============================================================================
# CLI Context and Utilities
# =============================================================================

class Context:
    """
    Shared context for CLI commands.

    Stores common options like port, baud rate, and verbosity.
    """

    def __init__(self) -> None:
        self.port: Optional[str] = None
        self.baud: int = DEFAULT_BAUD_RATE
        self.verbose: bool = False
        self.timeout: float = ACK_TIMEOUT

    def setup_logging(self) -> None:
        """Configure logging based on verbosity."""
        level = logging.DEBUG if self.verbose else logging.INFO
        logging.basicConfig(
            level=level,
            format="%(levelname)s: %(message)s" if self.verbose else "%(message)s",
        )


pass_context = click.make_pass_decorator(Context, ensure=True)


class AddressType(click.ParamType):
    """Integer parameter accepting decimal, 0x-hex, 0o-octal or 0b-binary."""

    name = "address"

    def convert(self, value, param, ctx):
        if isinstance(value, int):
            return value
        try:
            result = int(value, 0)
        except ValueError:
            self.fail(f"{value!r} is not a valid number", param, ctx)
        if not 0 <= result <= 0xFFFFFFFF:
            self.fail(f"{value!r} does not fit in 32 bits", param, ctx)
        return result


ADDRESS = AddressType()


def progress_bar(current: int, total: int) -> None:
    """Simple text progress bar for flash programming."""
    if total == 0:
        return
    percent = current * 100 // total
    filled = percent // 2
    bar = "=" * filled + "-" * (50 - filled)
    click.echo(f"\r[{bar}] {percent:3d}% ({current}/{total} bytes)", nl=False)
    if current >= total:
        click.echo()  # Newline at end


@contextmanager
def open_session(ctx: Context) -> Iterator[Bootloader]:
    """
    Open the port, start a session and synchronise with the bootloader.

    The port is closed when the block exits.
    """
    port_device = ctx.port or find_bootloader_port()
    if not port_device:
        click.echo("Error: No serial port specified and auto-detect failed.", err=True)
        click.echo("Use --port option or 'cc2538-bsl ports' to find available ports.", err=True)
        raise SystemExit(ExitCode.INVALID_ARGS)

    click.echo(f"Connecting to bootloader on {port_device}...")
    serial_port = open_serial_port(port_device, baud_rate=ctx.baud)
    try:
        bootloader = Bootloader(serial_port, ack_timeout=ctx.timeout)
    except Exception:
        close_serial_port(serial_port)
        raise

    with bootloader:
        bootloader.sync()
        yield bootloader


# =============================================================================
# Main CLI Group
# =============================================================================

@click.group()
@click.option(
    "-p", "--port",
    type=str,
    default=None,
    help="Serial port device (auto-detect if not specified)",
)
@click.option(
    "-b", "--baud",
    type=click.Choice([str(b) for b in VALID_BAUD_RATES]),
    default=str(DEFAULT_BAUD_RATE),
    help=f"Baud rate (default: {DEFAULT_BAUD_RATE})",
)
@click.option(
    "-v", "--verbose",
    is_flag=True,
    help="Enable verbose output (logs every frame)",
)
@click.option(
    "--timeout",
    type=float,
    default=ACK_TIMEOUT,
    help=f"Seconds to wait for each bootloader reply (default: {ACK_TIMEOUT:g})",
)
@click.version_option(version=__version__, prog_name="cc2538-bsl")
@pass_context
def main(ctx: Context, port: Optional[str], baud: str, verbose: bool, timeout: float) -> None:
    """
    Program a CC2538 through its ROM serial bootloader.

    Put the chip into bootloader mode first, then run one of the
    commands below. Use 'cc2538-bsl ports' to list available serial ports.
    """
    ctx.port = port
    ctx.baud = int(baud)
    ctx.verbose = verbose
    ctx.timeout = timeout
    ctx.setup_logging()


# =============================================================================
# Ports Command
# =============================================================================

@main.command()
@click.option(
    "--detailed", "-d",
    is_flag=True,
    help="Show detailed port information",
)
@pass_context
def ports(ctx: Context, detailed: bool) -> None:
    """
    List available serial ports.

    Example:
        cc2538-bsl ports --detailed
    """
    port_list = list_serial_ports()

    if not port_list:
        click.echo(format_port_list([]))
        click.echo("Connect the board (or its debug probe) over USB and try again.")
        return

    click.echo("Available serial ports:")
    click.echo(format_port_list(port_list, verbose=detailed))

    auto_port = find_bootloader_port()
    if auto_port:
        click.echo(f"\nSuggested port: {auto_port}")
    else:
        click.echo("\nNo USB adapter found; pass --port explicitly.")


# =============================================================================
# Info Command
# =============================================================================

@main.command()
@pass_context
def info(ctx: Context) -> None:
    """
    Identify the chip.

    Prints the chip id, flash size, silicon revision and factory IEEE
    address.
    """
    try:
        with open_session(ctx) as bsl:
            device = read_device_info(bsl)
    except Exception as e:
        handle_cli_exception(e, ctx.verbose)

    click.echo(f"Chip: {device.name} (id 0x{device.chip_id:04X})")
    click.echo(f"Flash: {device.flash_size // 1024} KB")
    click.echo(f"Revision: PG{device.revision[0]}.{device.revision[1]}")
    click.echo(f"IEEE address: {format_ieee_address(device.ieee_address)}")


# =============================================================================
# Erase Command
# =============================================================================

@main.command()
@click.option(
    "--address", "-a",
    type=ADDRESS,
    default=FLASH_BASE_ADDR,
    help=f"Start address (default: 0x{FLASH_BASE_ADDR:08X})",
)
@click.option(
    "--length", "-l",
    type=ADDRESS,
    default=NUM_FLASH_PAGES * FLASH_PAGE_SIZE,
    help="Bytes to erase (default: whole flash, including the CCA page)",
)
@pass_context
def erase(ctx: Context, address: int, length: int) -> None:
    """
    Erase a range of flash.

    The range is expanded to whole flash pages.

    Example:
        cc2538-bsl erase --address 0x200000 --length 0x8000
    """
    start, size = page_align(address, length)
    try:
        with open_session(ctx) as bsl:
            click.echo(f"Erasing 0x{start:08X}-0x{start + size:08X}...")
            bsl.erase(start, size)
    except Exception as e:
        handle_cli_exception(e, ctx.verbose, "Erase")

    click.echo("Erase complete.")


# =============================================================================
# Read Command
# =============================================================================

@main.command()
@click.argument("address", type=ADDRESS)
@click.option(
    "--width", "-w",
    type=click.Choice(["1", "4"]),
    default="4",
    help="Access width in bytes (default: 4)",
)
@pass_context
def read(ctx: Context, address: int, width: str) -> None:
    """
    Read a byte or word of memory.

    Example:
        cc2538-bsl read 0x400D3014
    """
    try:
        with open_session(ctx) as bsl:
            value = bsl.memory_read(address, int(width))
    except Exception as e:
        handle_cli_exception(e, ctx.verbose, "Read")

    if width == "1":
        click.echo(f"0x{address:08X}: 0x{value & 0xFF:02X}")
    else:
        click.echo(f"0x{address:08X}: 0x{value:08X}")


# =============================================================================
# CRC Command
# =============================================================================

@main.command()
@click.argument("address", type=ADDRESS)
@click.argument("length", type=ADDRESS)
@pass_context
def crc(ctx: Context, address: int, length: int) -> None:
    """
    Print the CRC32 the device computes over a memory range.

    Example:
        cc2538-bsl crc 0x200000 0x1000
    """
    try:
        with open_session(ctx) as bsl:
            value = bsl.crc32(address, length)
    except Exception as e:
        handle_cli_exception(e, ctx.verbose, "CRC")

    click.echo(f"CRC32 0x{address:08X}+0x{length:X}: 0x{value:08X}")


# =============================================================================
# Flash Command
# =============================================================================

@main.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--address", "-a",
    type=ADDRESS,
    default=FLASH_BASE_ADDR,
    help=f"Flash address to write at (default: 0x{FLASH_BASE_ADDR:08X})",
)
@click.option(
    "--erase/--no-erase",
    default=True,
    help="Erase the pages covering the image first (default: erase)",
)
@click.option(
    "--verify/--no-verify",
    default=True,
    help="Compare the device CRC32 afterwards (default: verify)",
)
@click.option(
    "--retries", "-r",
    type=click.IntRange(min=0),
    default=MAX_CHUNK_RETRIES,
    help=f"Retries per block after FLASH_FAIL (default: {MAX_CHUNK_RETRIES})",
)
@pass_context
def flash(
    ctx: Context,
    file: str,
    address: int,
    erase: bool,
    verify: bool,
    retries: int,
) -> None:
    """
    Program a raw binary image.

    FILE is written byte for byte; no image format is interpreted.

    Example:
        cc2538-bsl flash firmware.bin
        cc2538-bsl flash app.bin --address 0x204000 --no-erase

    Workflow:
        $ cc2538-bsl -p /dev/ttyUSB0 flash firmware.bin
        Connecting to bootloader on /dev/ttyUSB0...
        Erasing 0x00200000-0x00210000...
        Writing 65536 bytes at 0x00200000...
        [==================================] 100% (65536/65536 bytes)
        Flash complete.
    """
    file_path = Path(file)
    try:
        image = file_path.read_bytes()
    except IOError as e:
        click.echo(f"Error reading file: {e}", err=True)
        raise SystemExit(ExitCode.INVALID_ARGS)

    if not image:
        click.echo("Error: Image file is empty", err=True)
        raise SystemExit(ExitCode.INVALID_ARGS)

    click.echo(f"Image: {file_path.name} ({len(image)} bytes)")

    try:
        with open_session(ctx) as bsl:
            if erase:
                start, size = page_align(address, len(image))
                click.echo(f"Erasing 0x{start:08X}-0x{start + size:08X}...")
                bsl.erase(start, size)

            click.echo(f"Writing {len(image)} bytes at 0x{address:08X}...")
            bsl.flash(
                address,
                image,
                progress=progress_bar,
                verify=verify,
                max_retries=retries,
            )
    except Exception as e:
        handle_cli_exception(e, ctx.verbose, "Flash")

    if verify:
        click.echo("Verified.")
    click.echo("Flash complete.")


# =============================================================================
# Entry Point
# =============================================================================

if __name__ == "__main__":
    main()
