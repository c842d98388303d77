"""
Frame Assembler
===============

This module turns the raw byte stream coming from the bootloader into
discrete frames. Frames are length-delimited: the first byte gives the
total frame size, including the length byte itself.

ACK and NAK frames are the exception. They report a length of zero yet
carry exactly one trailing marker byte (CC or 33), so a zero length byte
means "one more byte follows".

State Machine
-------------
    AWAITING_LENGTH --(length byte)--> COLLECTING(remaining)
    COLLECTING --(byte, remaining > 1)--> COLLECTING(remaining - 1)
    COLLECTING --(last byte)--> emit frame, AWAITING_LENGTH

There is no resynchronization: a corrupted length byte is trusted and
the following bytes are consumed as if well-formed.

Threading
---------
FrameAssembler.start() runs a daemon thread that reads the transport one
byte at a time and puts completed frames on an unbounded queue.Queue.
The stop signal is checked before every read attempt, so a reader
blocked inside read() only stops once that read returns. Open serial
ports with a short read timeout to keep that delay small.
"""

import logging
import queue
import threading
from typing import Any, Optional

from cc2538_bsl.comms.packet import Frame

logger = logging.getLogger(__name__)


class FrameAssembler:
    """
    Groups transport bytes into frames.

    The byte-level state machine is available synchronously through
    feed(), which is what the reader thread calls for every byte read.

    Attributes:
        frames: Queue receiving completed frames in arrival order.
        error: Exception that stopped the reader thread, if any.

    Example:
        assembler = FrameAssembler(port)
        assembler.start()
        frame = assembler.frames.get(timeout=3.0)
        assembler.stop()
    """

    # Name given to the reader thread
    THREAD_NAME = "bsl-frame-reader"

    def __init__(
        self,
        port: Any = None,
        frames: Optional["queue.Queue[Frame]"] = None,
        log: Optional[logging.Logger] = None,
    ):
        """
        Args:
            port: Transport with a read(size) method. Only needed when
                  the reader thread is used.
            frames: Output queue (a new unbounded queue by default).
            log: Diagnostic sink (module logger by default).
        """
        self.port = port
        self.frames: "queue.Queue[Frame]" = frames if frames is not None else queue.Queue()
        self.error: Optional[BaseException] = None
        self._log = log or logger
        self._buffer = bytearray()
        self._remaining: Optional[int] = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # -------------------------------------------------------------------------
    # State Machine
    # -------------------------------------------------------------------------

    @property
    def awaiting_length(self) -> bool:
        """True when the next byte will be read as a length byte."""
        return self._remaining is None

    def feed(self, data: bytes) -> list[Frame]:
        """
        Advance the state machine over some received bytes.

        Completed frames are put on the output queue and also returned.

        Args:
            data: Bytes read from the transport (may be empty).

        Returns:
            Frames completed by these bytes, in order.
        """
        completed = []
        for byte in data:
            self._buffer.append(byte)
            if self._remaining is None:
                # ACK/NAK report zero length but carry one marker byte
                self._remaining = 1 if byte == 0 else byte - 1
            else:
                self._remaining -= 1

            if self._remaining <= 0:
                frame = bytes(self._buffer)
                self._buffer.clear()
                self._remaining = None
                self._log.debug("RX frame: %s", frame.hex(" "))
                self.frames.put(frame)
                completed.append(frame)
        return completed

    # -------------------------------------------------------------------------
    # Reader Thread
    # -------------------------------------------------------------------------

    @property
    def running(self) -> bool:
        """True while the reader thread is alive."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the background reader thread."""
        if self.running:
            return
        if self.port is None:
            raise ValueError("FrameAssembler has no port to read from")
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._reader_loop, name=self.THREAD_NAME, daemon=True
        )
        self._thread.start()
        self._log.debug("Frame reader started")

    def stop(self, timeout: Optional[float] = 1.0) -> None:
        """
        Signal the reader thread to stop and wait for it.

        Args:
            timeout: Seconds to wait for the thread to exit. A read that
                     is still blocked may outlive this wait.
        """
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                self._log.warning("Frame reader still blocked in read()")
            self._thread = None

    def _reader_loop(self) -> None:
        while not self._stop.is_set():
            try:
                data = self.port.read(1)
            except Exception as e:
                self.error = e
                self._log.error("Frame reader stopped: %s", e)
                break
            if not data:
                continue
            self.feed(data)
        self._log.debug("Frame reader stopped")
