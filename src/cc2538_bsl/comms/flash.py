"""
Flash Programming
=================

This module writes an arbitrary-length payload to CC2538 flash using
the bootloader's DOWNLOAD / SEND_DATA / GET_STATUS commands.

Protocol Flow
-------------
1. DOWNLOAD announces the start address and total length
2. The payload is sent in blocks of at most 248 bytes, in address order
3. After every block GET_STATUS reports the result:
   - SUCCESS: continue with the next block
   - FLASH_FAIL: send the same block again, up to max_retries times
   - anything else: abort the whole operation

A packet carries at most 252 payload bytes; 248 keeps the blocks
word-aligned and leaves headroom below that limit.

Optionally the written range is verified by comparing the device's
CRC32 with zlib.crc32 over the payload.
"""

import logging
import zlib
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Final, Iterator, Optional

from cc2538_bsl.comms.packet import CommandCode
from cc2538_bsl.errors import ChunkFlashFailure, FlashAborted, UnknownCodeError, VerifyError

if TYPE_CHECKING:
    from cc2538_bsl.comms.bootloader import Bootloader

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Bytes per SEND_DATA block
FLASH_CHUNK_SIZE: Final[int] = 248

# FLASH_FAIL retries allowed per block before giving up
MAX_CHUNK_RETRIES: Final[int] = 3

# Type alias for progress callback: (bytes_written, total_bytes)
ProgressCallback = Callable[[int, int], None]


# =============================================================================
# Flash Region
# =============================================================================

@dataclass(frozen=True)
class FlashRegion:
    """
    A payload to be written at an absolute flash address.

    Attributes:
        address: Start address
        data: Bytes to write
    """

    address: int
    data: bytes

    @property
    def end(self) -> int:
        """First address past the region."""
        return self.address + len(self.data)

    def chunks(self, size: int = FLASH_CHUNK_SIZE) -> Iterator[tuple[int, bytes]]:
        """
        Split the region into blocks of at most size bytes.

        Yields:
            (offset, block) pairs in address order. The blocks cover the
            region exactly; the last one may be shorter.
        """
        if size <= 0:
            raise ValueError(f"Chunk size must be positive, got {size}")
        for offset in range(0, len(self.data), size):
            yield offset, self.data[offset:offset + size]


# =============================================================================
# Flash Programmer
# =============================================================================

class FlashProgrammer:
    """
    Drives DOWNLOAD + SEND_DATA + GET_STATUS for one session.

    Example:
        programmer = FlashProgrammer(bootloader, max_retries=5)
        programmer.program(0x200000, image, progress=print_progress)
    """

    def __init__(
        self,
        bootloader: "Bootloader",
        chunk_size: int = FLASH_CHUNK_SIZE,
        max_retries: int = MAX_CHUNK_RETRIES,
        log: Optional[logging.Logger] = None,
    ):
        """
        Args:
            bootloader: Started and synchronised session.
            chunk_size: Bytes per SEND_DATA block (1-248).
            max_retries: FLASH_FAIL retries allowed per block.
            log: Diagnostic sink (module logger by default).
        """
        if not 0 < chunk_size <= FLASH_CHUNK_SIZE:
            raise ValueError(
                f"Chunk size must be 1-{FLASH_CHUNK_SIZE}, got {chunk_size}"
            )
        if max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {max_retries}")
        self.bootloader = bootloader
        self.chunk_size = chunk_size
        self.max_retries = max_retries
        self._log = log or logger

    def program(
        self,
        address: int,
        payload: bytes,
        progress: Optional[ProgressCallback] = None,
        verify: bool = False,
    ) -> None:
        """
        Write payload to flash at address.

        The target range must already be erased.

        Args:
            address: Absolute flash address.
            payload: Bytes to write.
            progress: Optional callback(bytes_written, total_bytes).
            verify: Compare the device CRC32 of the range afterwards.

        Raises:
            ChunkFlashFailure: A block reported FLASH_FAIL on every attempt.
            FlashAborted: A block reported any other non-SUCCESS status.
            VerifyError: CRC32 read-back mismatch (verify=True).
        """
        region = FlashRegion(address, bytes(payload))
        total = len(region.data)

        self._log.info("Flashing %d bytes at 0x%08X", total, address)
        self.bootloader.download(address, total)

        for offset, chunk in region.chunks(self.chunk_size):
            self._write_chunk(region, offset, chunk)
            if progress:
                progress(offset + len(chunk), total)

        self._log.info("Flash complete: 0x%08X-0x%08X", address, region.end)

        if verify:
            self.verify(region)

    def _write_chunk(self, region: FlashRegion, offset: int, chunk: bytes) -> None:
        attempts = 0
        while True:
            attempts += 1
            self.bootloader.send_data(chunk)
            try:
                status = self.bootloader.get_status()
            except UnknownCodeError as e:
                self._log.error(
                    "Flashing failed with unknown status 0x%02X: addr %08X start %X len %X; stopping",
                    e.code, region.address, offset, len(chunk)
                )
                raise FlashAborted(e.code, region.address, offset) from e

            if status == CommandCode.SUCCESS:
                self._log.debug(
                    "Wrote %d bytes at 0x%08X", len(chunk), region.address + offset
                )
                return

            if status != CommandCode.FLASH_FAIL:
                self._log.error(
                    "Flashing failed with status 0x%02X: addr %08X start %X len %X; stopping",
                    status, region.address, offset, len(chunk)
                )
                raise FlashAborted(status, region.address, offset)

            if attempts > self.max_retries:
                raise ChunkFlashFailure(region.address, offset, len(chunk), attempts)

            self._log.warning(
                "Flashing failed with status 0x%02X: addr %08X start %X len %X; "
                "will retry (%d/%d)",
                status, region.address, offset, len(chunk), attempts, self.max_retries
            )

    def verify(self, region: FlashRegion) -> None:
        """
        Compare the device CRC32 of region with the local payload.

        Raises:
            VerifyError: If the checksums differ.
        """
        expected = zlib.crc32(region.data) & 0xFFFFFFFF
        actual = self.bootloader.crc32(region.address, len(region.data))
        if actual != expected:
            raise VerifyError(expected, actual)
        self._log.info("Verified CRC32 %08X", actual)


# =============================================================================
# Convenience Functions
# =============================================================================

def flash_image(
    bootloader: "Bootloader",
    address: int,
    payload: bytes,
    progress: Optional[ProgressCallback] = None,
    verify: bool = False,
    chunk_size: int = FLASH_CHUNK_SIZE,
    max_retries: int = MAX_CHUNK_RETRIES,
    log: Optional[logging.Logger] = None,
) -> None:
    """
    Write payload to flash at address through bootloader.

    See FlashProgrammer.program for the arguments and exceptions.
    """
    programmer = FlashProgrammer(
        bootloader, chunk_size=chunk_size, max_retries=max_retries, log=log
    )
    programmer.program(address, payload, progress=progress, verify=verify)
