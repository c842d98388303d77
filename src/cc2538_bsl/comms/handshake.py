"""
Command/Acknowledge Handshake
=============================

The bootloader answers every command with exactly one ACK or NAK frame.
Commands that return data (GET_CHIP_ID, CRC32, MEMORY_READ, GET_STATUS)
follow the ACK with one data frame, which the host must acknowledge by
writing a single CC byte.

Every wait here is bounded by a timeout (3 seconds by default). Nothing
is resent when it expires; the caller decides whether to retry.
"""

import logging
import queue
from typing import Final, Optional

from cc2538_bsl.comms.packet import DataFrame, Frame, FrameKind, classify
from cc2538_bsl.errors import NakError, TimeoutError, UnexpectedFrameError

logger = logging.getLogger(__name__)

# Seconds to wait for an ACK or a data frame
ACK_TIMEOUT: Final[float] = 3.0


def _next_frame(frames: "queue.Queue[Frame]", timeout: float, what: str) -> Frame:
    try:
        return frames.get(timeout=timeout)
    except queue.Empty:
        raise TimeoutError(f"Timed out waiting for {what} after {timeout:g}s") from None


def await_ack(
    frames: "queue.Queue[Frame]",
    timeout: float = ACK_TIMEOUT,
    log: Optional[logging.Logger] = None,
) -> None:
    """
    Wait for the ACK answering the last command.

    Args:
        frames: Queue fed by the frame assembler.
        timeout: Maximum wait in seconds.
        log: Diagnostic sink (module logger by default).

    Raises:
        TimeoutError: If no frame arrives in time.
        NakError: If the device answers with NAK.
        UnexpectedFrameError: If any other frame arrives.
    """
    log = log or logger
    frame = _next_frame(frames, timeout, "ACK")
    kind = classify(frame)
    if kind is FrameKind.ACK:
        log.debug("Got ACK [0xcc]")
        return
    if kind is FrameKind.NAK:
        log.debug("Got NAK [0x33]")
        raise NakError()
    raise UnexpectedFrameError(frame, f"Expected ACK, got data frame: {frame.hex(' ')}")


def await_data(
    frames: "queue.Queue[Frame]",
    timeout: float = ACK_TIMEOUT,
    log: Optional[logging.Logger] = None,
) -> bytes:
    """
    Wait for the data frame following an ACK.

    Returns:
        The frame payload (length and checksum bytes stripped).

    Raises:
        TimeoutError: If no frame arrives in time.
        NakError: If a NAK arrives instead.
        UnexpectedFrameError: If an ACK arrives instead.
    """
    log = log or logger
    frame = _next_frame(frames, timeout, "data frame")
    kind = classify(frame)
    if isinstance(kind, DataFrame):
        log.debug("Got data: %s", kind.payload.hex(" "))
        return kind.payload
    if kind is FrameKind.NAK:
        raise NakError("Got NAK, expected data frame")
    raise UnexpectedFrameError(frame, "Expected data frame, got ACK")
