"""
CC2538 Bootloader Session
=========================

This module provides the device-facing command set of the CC2538 ROM
serial bootloader. A Bootloader session owns one transport: it is the
only writer on the port, and the only reader of the frame queue filled
by its FrameAssembler.

Command Flow
------------
Every command is a packet answered by ACK (or NAK). Commands returning
data add one data frame after the ACK, and the host must then write a
single CC byte to acknowledge it:

    host                          device
    ---- packet --------------->
    <--------------------- 00 CC  (ACK)
    <------------- len chk data   (data commands only)
    ---- CC ------------------->  (host ACK, data commands only)

The session must be synchronised first: sync() sends the 55 55 preamble
from which the ROM bootloader detects the baud rate.

Usage:
    port = open_serial_port('/dev/ttyUSB0')
    with Bootloader(port) as bsl:
        bsl.sync()
        print(hex(bsl.get_chip_id()))
        bsl.erase(0x200000, 0x800)
        bsl.flash(0x200000, image)
"""

import logging
import queue
from typing import TYPE_CHECKING, Any, Final, Optional

from cc2538_bsl.comms.framing import FrameAssembler
from cc2538_bsl.comms.handshake import ACK_TIMEOUT, await_ack, await_data
from cc2538_bsl.comms.packet import (
    HOST_ACK,
    SYNC_PREAMBLE,
    CommandCode,
    Packet,
    chip_id,
    pack32,
    status_code,
    word32,
)
from cc2538_bsl.errors import CommsError, TimeoutError, TransportWriteError

if TYPE_CHECKING:
    from cc2538_bsl.comms.flash import ProgressCallback

logger = logging.getLogger(__name__)

# Widths accepted by MEMORY_READ (byte or 32-bit word access)
MEMORY_READ_WIDTHS: Final[tuple[int, ...]] = (1, 4)


class Bootloader:
    """
    A session with one CC2538 ROM bootloader.

    The transport is any object with read(size), write(data) and close()
    methods; a pyserial Serial opened by open_serial_port() fits. Use the
    session as a context manager so the reader thread and the port are
    released on exit.

    Attributes:
        ack_timeout: Seconds to wait for each ACK or data frame.
    """

    def __init__(
        self,
        port: Any,
        ack_timeout: float = ACK_TIMEOUT,
        log: Optional[logging.Logger] = None,
    ):
        """
        Args:
            port: Open transport. The session takes ownership of it.
            ack_timeout: Per-frame wait in seconds (default 3).
            log: Diagnostic sink (module logger by default).
        """
        self._port = port
        self.ack_timeout = ack_timeout
        self._log = log or logger
        self._assembler = FrameAssembler(port, log=self._log)
        self._started = False

    def __enter__(self) -> "Bootloader":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def started(self) -> bool:
        """True between start() and close()."""
        return self._started

    def start(self) -> None:
        """Start reading frames from the transport."""
        if self._started:
            return
        self._assembler.start()
        self._started = True

    def close(self) -> None:
        """Stop the reader thread and close the transport."""
        if not self._started:
            return
        self._started = False
        self._assembler.stop()
        try:
            self._port.close()
        except Exception as e:
            self._log.warning("Error closing transport: %s", e)

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    def sync(self) -> None:
        """
        Send the auto-baud preamble and wait for ACK.

        Raises:
            TimeoutError: Bootloader not listening (not in boot mode).
        """
        self._discard_stale_frames()
        self._write(SYNC_PREAMBLE)
        self._wait_ack()
        self._log.info("Bootloader synchronised")

    def ping(self) -> bool:
        """
        Check the bootloader is responsive.

        Returns:
            True. A missing or negative answer raises instead.
        """
        self._command(Packet(CommandCode.PING))
        return True

    def get_chip_id(self) -> int:
        """Read the 16-bit chip id (0xB964 for a CC2538)."""
        self._command(Packet(CommandCode.GET_CHIP_ID))
        payload = self._read_data()
        return chip_id(payload)

    def erase(self, address: int, length: int) -> None:
        """Erase length bytes of flash starting at address."""
        self._command(Packet(CommandCode.ERASE, pack32(address) + pack32(length)))

    def crc32(self, address: int, length: int) -> int:
        """Compute the CRC32 of a memory range on the device."""
        self._command(Packet(CommandCode.CRC32, pack32(address) + pack32(length)))
        return word32(self._read_data())

    def memory_read(self, address: int, width: int = 4) -> int:
        """
        Read memory at address.

        Args:
            address: Absolute address to read.
            width: 1 for a byte access, 4 for a 32-bit word access.

        Returns:
            The 32-bit word as reported by the device. For width 1 only
            the low byte is meaningful.
        """
        if width not in MEMORY_READ_WIDTHS:
            raise ValueError(f"Read width must be 1 or 4, got {width}")
        self._command(Packet(CommandCode.MEMORY_READ, pack32(address) + bytes([width])))
        return word32(self._read_data())

    def download(self, address: int, length: int) -> None:
        """Announce a write of length bytes at address (precedes send_data)."""
        self._command(Packet(CommandCode.DOWNLOAD, pack32(address) + pack32(length)))

    def send_data(self, data: bytes) -> None:
        """Send one block of the download announced by download()."""
        self._command(Packet(CommandCode.SEND_DATA, bytes(data)))

    def get_status(self) -> CommandCode:
        """Return the status of the last command."""
        self._command(Packet(CommandCode.GET_STATUS))
        status = status_code(self._read_data())
        self._log.debug("Status: %s", status.name)
        return status

    def flash(
        self,
        address: int,
        payload: bytes,
        progress: Optional["ProgressCallback"] = None,
        **options: Any,
    ) -> None:
        """
        Write payload to flash at address.

        Keyword options are passed to FlashProgrammer (chunk_size,
        max_retries) and to FlashProgrammer.program (verify).
        """
        from cc2538_bsl.comms.flash import flash_image

        flash_image(self, address, payload, progress=progress, log=self._log, **options)

    # -------------------------------------------------------------------------
    # Low-Level I/O
    # -------------------------------------------------------------------------

    def _command(self, packet: Packet) -> None:
        self._discard_stale_frames()
        self._write(packet.serialize())
        self._wait_ack()

    def _wait_ack(self) -> None:
        self._ensure_started()
        try:
            await_ack(self._assembler.frames, self.ack_timeout, self._log)
        except TimeoutError:
            self._check_reader()
            raise

    def _read_data(self) -> bytes:
        """Read a data frame and acknowledge it to the device."""
        try:
            payload = await_data(self._assembler.frames, self.ack_timeout, self._log)
        except TimeoutError:
            self._check_reader()
            raise
        self._write(HOST_ACK)
        return payload

    def _write(self, data: bytes) -> None:
        self._ensure_started()
        try:
            written = self._port.write(data)
            flush = getattr(self._port, "flush", None)
            if flush is not None:
                flush()
        except Exception as e:
            raise TransportWriteError(f"Write failed: {e}") from e
        if written is not None and written != len(data):
            raise TransportWriteError(
                f"Short write: {written} of {len(data)} bytes"
            )
        self._log.debug("TX: %s", data.hex(" "))

    def _ensure_started(self) -> None:
        if not self._started:
            raise CommsError("Session not started")
        self._check_reader()

    def _check_reader(self) -> None:
        """Surface a transport failure that stopped the frame reader."""
        error = self._assembler.error
        if error is not None:
            raise CommsError(f"Frame reader stopped: {error}") from error

    def _discard_stale_frames(self) -> None:
        """Drop replies that arrived after an earlier command gave up on them."""
        while True:
            try:
                frame = self._assembler.frames.get_nowait()
            except queue.Empty:
                return
            self._log.debug("Dropped stale frame: %s", frame.hex(" "))
