"""
CC2538 Bootloader Packet Codec
==============================

This module implements the wire encoding of the CC2538 ROM serial
bootloader. It handles:

- Command packet serialization (length, checksum, command, payload)
- Classification of received frames (ACK, NAK, data)
- Extraction of typed fields from data frame payloads

Packet Format (host to device)
------------------------------
    ┌────────┬──────────┬─────────┬──────────────┐
    │ Length │ Checksum │ Command │   Payload    │
    │ 1 byte │  1 byte  │ 1 byte  │ 0-252 bytes  │
    └────────┴──────────┴─────────┴──────────────┘

- Length counts the whole packet including itself: 3 + len(payload)
- Checksum is (command + sum(payload)) mod 256

Frame Formats (device to host)
------------------------------
- ACK:  00 CC
- NAK:  00 33
- Data: length, checksum, payload[length - 2]

Byte Order
----------
Address and length fields in requests are big-endian. The 32-bit words
returned by CRC32 and MEMORY_READ arrive in device (little-endian)
order. The chip id is a big-endian 16-bit value at payload offset 2.

References
----------
- TI SWRU319 (CC2538 User's Guide), ROM bootloader chapter
"""

import logging
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Final, Union

from cc2538_bsl.errors import UnexpectedFrameError, UnknownCodeError

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Protocol Constants
# =============================================================================

# Packet header: length + checksum + command
PACKET_HEADER_SIZE: Final[int] = 3

# The length byte covers the whole packet, so a packet is at most 255 bytes
MAX_PAYLOAD_SIZE: Final[int] = 0xFF - PACKET_HEADER_SIZE

# Frame marker bytes
ACK_BYTE: Final[int] = 0xCC
NAK_BYTE: Final[int] = 0x33

# Received ACK/NAK frames: zero length byte followed by the marker
ACK_FRAME: Final[bytes] = bytes([0x00, ACK_BYTE])
NAK_FRAME: Final[bytes] = bytes([0x00, NAK_BYTE])

# Raw bytes written by the host outside packet framing
SYNC_PREAMBLE: Final[bytes] = bytes([0x55, 0x55])
HOST_ACK: Final[bytes] = bytes([ACK_BYTE])

# A received frame is an immutable byte string as delimited by the assembler
Frame = bytes


# =============================================================================
# Command Codes
# =============================================================================

class CommandCode(IntEnum):
    """
    Bootloader opcodes and response status codes.

    Request codes are sent in the command byte of a packet. Status codes
    are returned in the data frame that answers GET_STATUS.
    """

    # Requests
    PING = 0x20
    DOWNLOAD = 0x21
    GET_STATUS = 0x23
    SEND_DATA = 0x24
    ERASE = 0x26
    CRC32 = 0x27
    GET_CHIP_ID = 0x28
    MEMORY_READ = 0x2A

    # Responses to GET_STATUS
    SUCCESS = 0x40
    UNKNOWN_CMD = 0x41
    INVALID_CMD = 0x42
    INVALID_ADDR = 0x43
    FLASH_FAIL = 0x44

    @classmethod
    def from_byte(cls, value: int, frame: bytes = b"") -> "CommandCode":
        """
        Convert a wire byte to a CommandCode.

        Raises:
            UnknownCodeError: If the byte is not a known code.
        """
        try:
            return cls(value)
        except ValueError:
            raise UnknownCodeError(value, frame) from None


# =============================================================================
# Packet Class
# =============================================================================

@dataclass(frozen=True)
class Packet:
    """
    An outbound bootloader command.

    Attributes:
        command: Request opcode
        payload: Command arguments (0-252 bytes)

    Example:
        packet = Packet(CommandCode.PING)
        packet.serialize()  # b'\\x03\\x20\\x20'
    """

    command: CommandCode
    payload: bytes = b""

    def __post_init__(self) -> None:
        """Validate packet fields after initialization."""
        if not isinstance(self.payload, bytes):
            raise TypeError(
                f"Payload must be bytes, got {type(self.payload).__name__}"
            )
        if len(self.payload) > MAX_PAYLOAD_SIZE:
            raise ValueError(
                f"Payload too large: {len(self.payload)} bytes, max {MAX_PAYLOAD_SIZE}"
            )

    @property
    def checksum(self) -> int:
        """Checksum over the command byte and every payload byte."""
        return (int(self.command) + sum(self.payload)) & 0xFF

    def serialize(self) -> bytes:
        """
        Serialize the packet for transmission.

        Returns:
            [length, checksum, command, *payload]
        """
        length = PACKET_HEADER_SIZE + len(self.payload)
        wire = bytes([length, self.checksum, int(self.command)]) + self.payload
        logger.debug(
            "Encoded packet: command=%s payload_len=%d wire=%s",
            self.command.name, len(self.payload), wire.hex(" ")
        )
        return wire

    def __repr__(self) -> str:
        data_repr = (
            self.payload[:16].hex() + "..."
            if len(self.payload) > 16
            else self.payload.hex()
        )
        return f"Packet(command={self.command.name}, payload[{len(self.payload)}]={data_repr})"


# =============================================================================
# Frame Classification
# =============================================================================

class FrameKind(Enum):
    """Single-marker frames sent by the bootloader."""

    ACK = "ack"
    NAK = "nak"


@dataclass(frozen=True)
class DataFrame:
    """Payload of a data frame, with the length and checksum bytes stripped."""

    payload: bytes


def classify(frame: Frame) -> Union[FrameKind, DataFrame]:
    """
    Classify a received frame.

    Args:
        frame: Frame bytes as emitted by the assembler.

    Returns:
        FrameKind.ACK, FrameKind.NAK, or a DataFrame with the payload.

    Raises:
        UnexpectedFrameError: If a two-byte frame carries a marker
            other than ACK or NAK, or the frame is too short to classify.
    """
    if len(frame) < 2:
        raise UnexpectedFrameError(frame, f"Frame too short: {len(frame)} bytes")

    if len(frame) == 2:
        if frame[1] == ACK_BYTE:
            return FrameKind.ACK
        if frame[1] == NAK_BYTE:
            return FrameKind.NAK
        raise UnexpectedFrameError(
            frame, f"Unknown ACK/NAK marker 0x{frame[1]:02X}"
        )

    payload = bytes(frame[2:])
    expected = sum(payload) & 0xFF
    if frame[1] != expected:
        # Nothing to resynchronize on, so the payload is passed up as-is
        logger.warning(
            "Data frame checksum mismatch: received %02X, calculated %02X",
            frame[1], expected
        )
    return DataFrame(payload)


# =============================================================================
# Field Extraction
# =============================================================================

def _require(payload: bytes, size: int, what: str) -> None:
    if len(payload) < size:
        raise UnexpectedFrameError(
            payload, f"{what} needs {size} payload bytes, got {len(payload)}"
        )


def chip_id(payload: bytes) -> int:
    """
    Extract the chip id from a GET_CHIP_ID reply.

    The reply is 4 bytes; the first two are reserved (zero) and the id
    follows big-endian. A CC2538 answers 00 00 B9 64.
    """
    _require(payload, 4, "Chip id")
    return (payload[2] << 8) | payload[3]


def word32(payload: bytes) -> int:
    """Extract a little-endian 32-bit word from a CRC32 or MEMORY_READ reply."""
    _require(payload, 4, "32-bit word")
    return int.from_bytes(payload[:4], "little")


def status_code(payload: bytes) -> CommandCode:
    """Extract the status byte of a GET_STATUS reply."""
    _require(payload, 1, "Status")
    return CommandCode.from_byte(payload[0], payload)


def pack32(value: int) -> bytes:
    """
    Encode a 32-bit request field, most significant byte first.

    Raises:
        ValueError: If value does not fit in 32 bits.
    """
    if not 0 <= value <= 0xFFFFFFFF:
        raise ValueError(f"Value out of 32-bit range: {value}")
    return value.to_bytes(4, "big")
