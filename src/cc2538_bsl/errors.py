"""
CC2538 Bootloader Error Hierarchy
=================================

This module defines the exception hierarchy for the bootloader client.
All exceptions inherit from BslError, allowing callers to catch every
client-related error with a single except clause if desired.

Exception Hierarchy
-------------------
BslError (base)
└── CommsError (serial communication)
    ├── ConnectionError - cannot open or configure the serial port
    ├── TimeoutError - no frame arrived within the ACK timeout
    ├── TransportWriteError - the transport rejected a write
    ├── ProtocolError - bootloader protocol violation
    │   ├── NakError - device rejected the last command
    │   └── UnexpectedFrameError - frame of the wrong shape arrived
    │       └── UnknownCodeError - status byte outside CommandCode
    └── TransferError - flash programming failed
        ├── ChunkFlashFailure - chunk kept reporting FLASH_FAIL
        ├── FlashAborted - chunk reported a fatal status
        └── VerifyError - CRC32 read-back did not match

Design Philosophy
-----------------
Exceptions carry the structured values needed for diagnostics (the raw
frame, the status code, the flash address and offset) as attributes,
and build a readable message from them when none is supplied.
"""

from typing import Optional


# =============================================================================
# Base Exception Class
# =============================================================================

class BslError(Exception):
    """
    Base exception for all bootloader client errors.

    All exceptions in the package inherit from this class, allowing
    callers to catch every client-related error with a single clause:

        try:
            bootloader.flash(0x200000, image)
        except BslError as e:
            print(f"Error: {e}")
    """
    pass


# =============================================================================
# Communication Exceptions
# =============================================================================

class CommsError(BslError):
    """Base exception for serial communication errors."""
    pass


class ConnectionError(CommsError):
    """
    Cannot connect to the bootloader.

    Raised when:
    - Serial port not found
    - Permission denied
    - Port busy
    """
    pass


class TimeoutError(CommsError):
    """
    No response frame arrived within the ACK timeout.

    This could indicate:
    - Device not in bootloader mode
    - Cable disconnected
    - Sync preamble not sent (the ROM bootloader auto-bauds on it)

    Note:
        This is a bootloader-specific TimeoutError, distinct from the
        Python builtin TimeoutError. It inherits from CommsError for
        consistent error handling in the comms module.
    """
    pass


class TransportWriteError(CommsError):
    """
    The underlying transport rejected a write.

    Fatal to the operation in progress; the client never retries it.
    """
    pass


class ProtocolError(CommsError):
    """
    Bootloader protocol error.

    Raised when the device sends an unexpected response or the
    protocol exchange cannot continue.
    """
    pass


class NakError(ProtocolError):
    """The device answered the last command with a NAK frame."""

    def __init__(self, message: str = "Got NAK, expected ACK"):
        super().__init__(message)


class UnexpectedFrameError(ProtocolError):
    """
    A frame arrived that does not match the expected shape.

    Attributes:
        frame: The raw frame bytes, kept for diagnostics.
    """

    def __init__(self, frame: bytes, message: str = ""):
        self.frame = bytes(frame)
        if not message:
            message = f"Unexpected frame: {self.frame.hex(' ') or '(empty)'}"
        super().__init__(message)


class UnknownCodeError(UnexpectedFrameError):
    """
    A command or status byte that is not a known CommandCode.

    Attributes:
        code: The raw byte.
    """

    def __init__(self, code: int, frame: bytes = b""):
        self.code = code
        super().__init__(
            frame or bytes([code]), f"Unknown command/status code 0x{code:02X}"
        )


# =============================================================================
# Flash Programming Exceptions
# =============================================================================

class TransferError(CommsError):
    """
    Error while programming flash.

    Raised when:
    - A chunk keeps failing to program
    - The bootloader reports a fatal status
    - Read-back verification fails
    """
    pass


class ChunkFlashFailure(TransferError):
    """
    A chunk reported FLASH_FAIL on every permitted attempt.

    Attributes:
        address: Start address of the whole flash operation.
        offset: Offset of the failing chunk within the payload.
        length: Length of the failing chunk.
        attempts: Number of times the chunk was sent.
    """

    def __init__(self, address: int, offset: int, length: int, attempts: int):
        self.address = address
        self.offset = offset
        self.length = length
        self.attempts = attempts
        super().__init__(
            f"Flashing failed at address 0x{address + offset:08X} "
            f"(offset 0x{offset:X}, {length} bytes) after {attempts} attempts"
        )


class FlashAborted(TransferError):
    """
    A chunk reported a status other than SUCCESS or FLASH_FAIL.

    Attributes:
        status: The status code reported by the bootloader.
        address: Start address of the whole flash operation.
        offset: Offset of the chunk within the payload.
    """

    def __init__(self, status: int, address: int, offset: int):
        self.status = status
        self.address = address
        self.offset = offset
        name = getattr(status, "name", None) or f"0x{status:02X}"
        super().__init__(
            f"Flashing aborted with status {name}: "
            f"addr 0x{address:08X} offset 0x{offset:X}"
        )


class VerifyError(TransferError):
    """
    CRC32 read back from the device does not match the payload.

    Attributes:
        expected: CRC32 computed over the local payload.
        actual: CRC32 reported by the device.
    """

    def __init__(self, expected: int, actual: int, message: Optional[str] = None):
        self.expected = expected
        self.actual = actual
        if not message:
            message = f"CRC32 mismatch: expected {expected:08X}, device reported {actual:08X}"
        super().__init__(message)
