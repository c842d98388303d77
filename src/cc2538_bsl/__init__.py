"""
cc2538-bsl - Host Client for the CC2538 ROM Serial Bootloader
=============================================================

This package talks to the serial bootloader built into the ROM of the
TI CC2538 wireless microcontroller. It can identify the chip, read
memory, erase flash, and program raw firmware images.

Main Components
---------------
- **comms**: Protocol engine (framing, packets, handshake, session,
  flash programming) and serial port utilities
- **device**: CC2538 memory map and device information helpers
- **cli**: The `cc2538-bsl` command-line tool

Quick Start
-----------
    >>> from cc2538_bsl import Bootloader, open_serial_port
    >>> port = open_serial_port('/dev/ttyUSB0')
    >>> with Bootloader(port) as bsl:
    ...     bsl.sync()
    ...     bsl.erase(0x200000, 0x40000)
    ...     bsl.flash(0x200000, open('firmware.bin', 'rb').read())

Or use the command-line tool:
    $ cc2538-bsl --port /dev/ttyUSB0 flash firmware.bin --verify

Logging
-------
Modules log through the standard logging package under the
"cc2538_bsl" hierarchy. Nothing is printed unless the application
configures logging.
"""

import logging

__version__ = "1.0.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())

# =============================================================================
# Public API Exports
# =============================================================================

from cc2538_bsl.comms import (
    ACK_TIMEOUT,
    Bootloader,
    CommandCode,
    FlashProgrammer,
    FlashRegion,
    FrameAssembler,
    Packet,
    PortInfo,
    close_serial_port,
    find_bootloader_port,
    flash_image,
    list_serial_ports,
    open_serial_port,
)
from cc2538_bsl.device import DeviceInfo, read_device_info
from cc2538_bsl.errors import (
    BslError,
    ChunkFlashFailure,
    CommsError,
    FlashAborted,
    NakError,
    ProtocolError,
    TransferError,
    TransportWriteError,
    UnexpectedFrameError,
    UnknownCodeError,
    VerifyError,
)
from cc2538_bsl.errors import ConnectionError as BslConnectionError  # Avoid collision with builtin
from cc2538_bsl.errors import TimeoutError as BslTimeoutError  # Avoid collision with builtin

__all__ = [
    "__version__",
    # Protocol engine
    "ACK_TIMEOUT",
    "Bootloader",
    "CommandCode",
    "FlashProgrammer",
    "FlashRegion",
    "FrameAssembler",
    "Packet",
    "flash_image",
    # Serial
    "PortInfo",
    "list_serial_ports",
    "find_bootloader_port",
    "open_serial_port",
    "close_serial_port",
    # Device
    "DeviceInfo",
    "read_device_info",
    # Errors
    "BslError",
    "CommsError",
    "BslConnectionError",
    "BslTimeoutError",
    "TransportWriteError",
    "ProtocolError",
    "NakError",
    "UnexpectedFrameError",
    "UnknownCodeError",
    "TransferError",
    "ChunkFlashFailure",
    "FlashAborted",
    "VerifyError",
]
