"""
CC2538 Bootloader Communication Module
======================================

This module implements the host side of the CC2538 ROM serial
bootloader protocol: framing of the byte stream, the packet codec, the
command/acknowledge handshake, the command set, and chunked flash
programming.

Module Structure
----------------
- **packet**: Packet serialization, frame classification, field extraction
- **framing**: Frame assembler (byte stream to frames, reader thread)
- **handshake**: Bounded waits for ACK and data frames
- **bootloader**: Bootloader session (the command set)
- **flash**: Chunked flash programming with bounded retries
- **serial**: Serial port utilities (detection, configuration)

Quick Start
-----------
    from cc2538_bsl.comms import Bootloader, open_serial_port

    port = open_serial_port('/dev/ttyUSB0', baud_rate=115200)
    with Bootloader(port) as bsl:
        bsl.sync()
        print(f"Chip id: {bsl.get_chip_id():04X}")
        bsl.erase(0x200000, len(image))
        bsl.flash(0x200000, image, verify=True)

Error Handling
--------------
All communication errors inherit from `CommsError`:

- `TimeoutError`: No ACK/data frame within the 3 second timeout
- `NakError`, `UnexpectedFrameError`: Protocol errors
- `TransportWriteError`: The port rejected a write
- `ChunkFlashFailure`, `FlashAborted`, `VerifyError`: Flashing errors

These exceptions are defined in `cc2538_bsl.errors`.

Thread Safety
-------------
A Bootloader runs one background reader thread; all commands must be
issued from a single thread. Sessions on different ports are independent.
"""

# =============================================================================
# Public API Exports
# =============================================================================

# Packet codec
from cc2538_bsl.comms.packet import (
    ACK_FRAME,
    HOST_ACK,
    MAX_PAYLOAD_SIZE,
    NAK_FRAME,
    SYNC_PREAMBLE,
    CommandCode,
    DataFrame,
    Frame,
    FrameKind,
    Packet,
    chip_id,
    classify,
    pack32,
    status_code,
    word32,
)

# Framing and handshake
from cc2538_bsl.comms.framing import FrameAssembler
from cc2538_bsl.comms.handshake import ACK_TIMEOUT, await_ack, await_data

# Session
from cc2538_bsl.comms.bootloader import Bootloader

# Flash programming
from cc2538_bsl.comms.flash import (
    FLASH_CHUNK_SIZE,
    MAX_CHUNK_RETRIES,
    FlashProgrammer,
    FlashRegion,
    ProgressCallback,
    flash_image,
)

# Serial port utilities
from cc2538_bsl.comms.serial import (
    DEFAULT_BAUD_RATE,
    DEFAULT_TIMEOUT,
    VALID_BAUD_RATES,
    PortInfo,
    close_serial_port,
    find_bootloader_port,
    format_port_list,
    list_serial_ports,
    open_serial_port,
)

__all__ = [
    # Packet codec
    "ACK_FRAME",
    "NAK_FRAME",
    "HOST_ACK",
    "SYNC_PREAMBLE",
    "MAX_PAYLOAD_SIZE",
    "CommandCode",
    "Packet",
    "Frame",
    "FrameKind",
    "DataFrame",
    "classify",
    "chip_id",
    "word32",
    "status_code",
    "pack32",
    # Framing and handshake
    "FrameAssembler",
    "ACK_TIMEOUT",
    "await_ack",
    "await_data",
    # Session
    "Bootloader",
    # Flash programming
    "FLASH_CHUNK_SIZE",
    "MAX_CHUNK_RETRIES",
    "FlashRegion",
    "FlashProgrammer",
    "ProgressCallback",
    "flash_image",
    # Serial
    "VALID_BAUD_RATES",
    "DEFAULT_BAUD_RATE",
    "DEFAULT_TIMEOUT",
    "PortInfo",
    "list_serial_ports",
    "find_bootloader_port",
    "open_serial_port",
    "close_serial_port",
    "format_port_list",
]
