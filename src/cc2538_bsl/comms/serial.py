"""
Serial Port Utilities for the CC2538 Bootloader
===============================================

This module provides utilities for managing the serial connection to a
CC2538 running its ROM bootloader. It handles:

- Port enumeration and detection
- Automatic detection of likely USB-serial adapters
- Port configuration for bootloader communication

Serial Port Settings
--------------------
The ROM bootloader listens on UART0 with these settings:
- Baud Rate: detected automatically from the 55 55 sync preamble
- Data Bits: 8
- Parity: None
- Stop Bits: 1
- Flow Control: None

Entering the Bootloader
-----------------------
The ROM bootloader only runs when the image in flash is invalid or the
backdoor pin configured in the CCA page is held at its active level
during reset. Getting the chip into that state is up to the user.

Read Timeout
------------
Ports are opened with a short read timeout (0.1s). The frame reader
thread reads one byte at a time and checks its stop signal between
reads, so a short timeout keeps shutdown prompt.
"""

import logging
from dataclasses import dataclass
from typing import Final, Optional

import serial
import serial.tools.list_ports

from cc2538_bsl.errors import ConnectionError

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Baud rates the auto-baud detection handles reliably
VALID_BAUD_RATES: Final[tuple[int, ...]] = (
    9600, 19200, 38400, 57600, 115200, 230400, 460800,
)

# Default baud rate
DEFAULT_BAUD_RATE: Final[int] = 115200

# Default read timeout in seconds
DEFAULT_TIMEOUT: Final[float] = 0.1


# USB adapters found on CC2538 boards, best candidate first
USB_VENDOR_IDS: Final[dict[int, str]] = {
    0x0451: "Texas Instruments",  # XDS100/XDS110 probes, SmartRF06 board
    0x0403: "FTDI",               # FT232R/FT2232 on most third-party boards
    0x10C4: "Silicon Labs",       # CP2102/CP2104
    0x1A86: "QinHeng",            # CH340/CH341
    0x067B: "Prolific",           # PL2303
}

# pyserial error text fragments and the hint shown for each
_OPEN_FAILURE_HINTS: Final[tuple[tuple[tuple[str, ...], str], ...]] = (
    (
        ("permission denied",),
        "Permission denied on {device}. Add your user to the 'dialout' "
        "group (sudo usermod -a -G dialout $USER) and log in again.",
    ),
    (
        ("no such file", "not found", "filenotfound"),
        "Serial port {device} does not exist. "
        "Run 'cc2538-bsl ports' to see what is connected.",
    ),
    (
        ("busy", "in use", "access is denied"),
        "Serial port {device} is held by another program "
        "(a terminal or a modem manager?).",
    ),
)


# =============================================================================
# Port Information
# =============================================================================

@dataclass(frozen=True)
class PortInfo:
    """
    A serial port as reported by the operating system.

    Attributes:
        device: Path or name to open ('/dev/ttyUSB0', 'COM3')
        description: Driver description, may be empty
        manufacturer: USB manufacturer string, if any
        product: USB product string, if any
        serial_number: USB serial number, if any
        vid: USB vendor id, None for on-board UARTs
        pid: USB product id, None for on-board UARTs
    """

    device: str
    description: str
    manufacturer: Optional[str]
    product: Optional[str]
    serial_number: Optional[str]
    vid: Optional[int]
    pid: Optional[int]

    @classmethod
    def from_comport(cls, entry) -> "PortInfo":
        """Build from a serial.tools.list_ports ListPortInfo entry."""
        return cls(
            device=entry.device,
            description=entry.description or "",
            manufacturer=entry.manufacturer,
            product=entry.product,
            serial_number=entry.serial_number,
            vid=entry.vid,
            pid=entry.pid,
        )

    @property
    def is_usb(self) -> bool:
        """True for USB-serial adapters."""
        return self.vid is not None

    @property
    def usb_id(self) -> Optional[str]:
        """'VVVV:PPPP' for USB adapters."""
        if not self.is_usb:
            return None
        return f"{self.vid:04X}:{(self.pid or 0):04X}"

    @property
    def vendor_name(self) -> Optional[str]:
        """Adapter vendor, when it is one of USB_VENDOR_IDS."""
        return USB_VENDOR_IDS.get(self.vid) if self.is_usb else None

    @property
    def rank(self) -> int:
        """Auto-detection priority; lower is better."""
        if not self.is_usb:
            return len(USB_VENDOR_IDS) + 1
        vendors = list(USB_VENDOR_IDS)
        return vendors.index(self.vid) if self.vid in vendors else len(vendors)

    def __str__(self) -> str:
        text = self.device
        if self.description:
            text += f" - {self.description}"
        if self.vendor_name:
            text += f" ({self.vendor_name})"
        return text


# =============================================================================
# Port Enumeration
# =============================================================================

def list_serial_ports() -> list[PortInfo]:
    """Return every serial port the operating system reports."""
    ports = [PortInfo.from_comport(entry) for entry in serial.tools.list_ports.comports()]
    for port in ports:
        logger.debug("Found port: %s [%s]", port.device, port.usb_id or "no USB id")
    return ports


def find_bootloader_port() -> Optional[str]:
    """
    Guess which serial port a CC2538 board is attached to.

    Only USB adapters are considered. Known vendors win in the order of
    USB_VENDOR_IDS, and among equals the first enumerated port is used.

    Returns:
        Device path, or None when no USB adapter is present.
    """
    candidates = [port for port in list_serial_ports() if port.is_usb]
    if not candidates:
        logger.debug("No USB serial adapters present")
        return None

    best = min(candidates, key=lambda port: port.rank)
    logger.info("Auto-detected port: %s (%s)", best.device, best.vendor_name or best.description)
    return best.device


# =============================================================================
# Port Configuration
# =============================================================================

def _open_failure_message(device: str, error: Exception) -> str:
    text = str(error).lower()
    for fragments, hint in _OPEN_FAILURE_HINTS:
        if any(fragment in text for fragment in fragments):
            return hint.format(device=device)
    return f"Cannot open {device}: {error}"


def open_serial_port(
    device: str,
    baud_rate: int = DEFAULT_BAUD_RATE,
    timeout: float = DEFAULT_TIMEOUT,
) -> serial.Serial:
    """
    Open a port for the bootloader: 8N1, no flow control, buffers flushed.

    Args:
        device: Port to open ('/dev/ttyUSB0', 'COM3').
        baud_rate: One of VALID_BAUD_RATES.
        timeout: Read timeout in seconds.

    Returns:
        The open serial.Serial. A Bootloader session given this port
        takes ownership of it.

    Raises:
        ValueError: Unsupported baud rate.
        ConnectionError: The port cannot be opened.
    """
    if baud_rate not in VALID_BAUD_RATES:
        raise ValueError(
            f"Invalid baud rate: {baud_rate}. "
            f"Choose one of {', '.join(map(str, VALID_BAUD_RATES))}"
        )

    logger.info("Opening %s at %d baud", device, baud_rate)
    try:
        port = serial.Serial(
            port=device,
            baudrate=baud_rate,
            bytesize=serial.EIGHTBITS,
            parity=serial.PARITY_NONE,
            stopbits=serial.STOPBITS_ONE,
            timeout=timeout,
            xonxoff=False,
            rtscts=False,
            dsrdtr=False,
        )
    except serial.SerialException as e:
        raise ConnectionError(_open_failure_message(device, e)) from e

    # Stale bytes would be mistaken for the sync ACK
    port.reset_input_buffer()
    port.reset_output_buffer()
    return port


def close_serial_port(port: Optional[serial.Serial]) -> None:
    """Close port if it is open; failures are logged, not raised."""
    if port is None or not port.is_open:
        return
    try:
        port.close()
    except serial.SerialException as e:
        logger.warning("Failed to close %s: %s", port.port, e)
    else:
        logger.debug("Closed %s", port.port)


def format_port_list(ports: list[PortInfo], verbose: bool = False) -> str:
    """
    Render ports for the terminal, one per line.

    With verbose, each port is followed by indented detail lines
    (description, manufacturer, USB id and vendor, serial number).
    """
    if not ports:
        return "No serial ports found."

    if not verbose:
        return "\n".join(f"  {port}" for port in ports)

    blocks = []
    for port in ports:
        usb = port.usb_id
        if usb and port.vendor_name:
            usb += f" ({port.vendor_name})"
        details = [
            ("Description", port.description),
            ("Manufacturer", port.manufacturer),
            ("USB VID:PID", usb),
            ("Serial", port.serial_number),
        ]
        block = [f"  {port.device}"]
        block.extend(f"    {label}: {value}" for label, value in details if value)
        blocks.append("\n".join(block))
    return "\n".join(blocks)
