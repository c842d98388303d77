"""
CC2538 Memory Map and Device Information
========================================

This module provides the CC2538 addresses and decoding helpers that
bootloader users need: flash geometry, the CCA (customer configuration
area) page, the die configuration registers, and the factory IEEE
address. The protocol engine treats all of them as opaque addresses.

Flash Layout
------------
Flash starts at 0x00200000 and is divided into 2 KB pages. The last
page holds the CCA, which contains the image valid flag and the
bootloader backdoor configuration. Erasing it without rewriting it
re-enables the ROM bootloader on the next reset.

Die Configuration
-----------------
FLASH_CTRL_DIECFG0 bits 30:28 encode the flash size:
    1: 128 KB, 2: 256 KB, 3: 384 KB, 4: 512 KB, other: 64 KB
FLASH_CTRL_DIECFG2 bits 23:20 and 19:16 hold the major and minor
silicon revision.

References
----------
- TI SWRU319 (CC2538 User's Guide), flash controller chapter
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Final

if TYPE_CHECKING:
    from cc2538_bsl.comms.bootloader import Bootloader


# =============================================================================
# Memory Map Constants
# =============================================================================

FLASH_BASE_ADDR: Final[int] = 0x00200000
FLASH_PAGE_SIZE: Final[int] = 2048
NUM_FLASH_PAGES: Final[int] = 256
FLASH_CCA_PAGE: Final[int] = NUM_FLASH_PAGES - 1
CCA_BASE_ADDR: Final[int] = FLASH_BASE_ADDR + FLASH_CCA_PAGE * FLASH_PAGE_SIZE

# Flash controller die configuration registers
FLASH_CTRL_DIECFG0: Final[int] = 0x400D3014
FLASH_CTRL_DIECFG2: Final[int] = 0x400D301C

# Primary (factory) IEEE address location in the info page
IEEE_ADDR: Final[int] = 0x00280028

# Known chip ids as reported by GET_CHIP_ID
CHIP_IDS: Final[dict[int, str]] = {
    0xB964: "CC2538",
}

# Flash size codes from DIECFG0 bits 30:28, in bytes
_FLASH_SIZES: Final[dict[int, int]] = {
    1: 128 * 1024,
    2: 256 * 1024,
    3: 384 * 1024,
    4: 512 * 1024,
}
_DEFAULT_FLASH_SIZE: Final[int] = 64 * 1024


# =============================================================================
# Decoding Helpers
# =============================================================================

def describe_chip(chip_id: int) -> str:
    """Return the part name for a chip id, or a hex placeholder."""
    return CHIP_IDS.get(chip_id, f"unknown (0x{chip_id:04X})")


def decode_flash_size(diecfg0: int) -> int:
    """Decode the flash size in bytes from a DIECFG0 register value."""
    return _FLASH_SIZES.get((diecfg0 >> 28) & 0x07, _DEFAULT_FLASH_SIZE)


def decode_revision(diecfg2: int) -> tuple[int, int]:
    """Decode (major, minor) silicon revision from a DIECFG2 register value."""
    return (diecfg2 >> 20) & 0x0F, (diecfg2 >> 16) & 0x0F


def format_ieee_address(address: bytes) -> str:
    """Format an IEEE address as colon-separated hex, most significant first."""
    return ":".join(f"{b:02X}" for b in address)


def page_align(address: int, length: int) -> tuple[int, int]:
    """
    Expand a range to whole flash pages.

    Args:
        address: Absolute start address.
        length: Length in bytes.

    Returns:
        (start, length) of the smallest page-aligned range covering it.
    """
    offset = address - FLASH_BASE_ADDR
    start = FLASH_BASE_ADDR + (offset // FLASH_PAGE_SIZE) * FLASH_PAGE_SIZE
    end = address + length
    pages = -(-(end - start) // FLASH_PAGE_SIZE)
    return start, pages * FLASH_PAGE_SIZE


# =============================================================================
# Device Queries
# =============================================================================

@dataclass(frozen=True)
class DeviceInfo:
    """
    Identification read from a CC2538 through its bootloader.

    Attributes:
        chip_id: Value returned by GET_CHIP_ID
        flash_size: Flash size in bytes
        revision: (major, minor) silicon revision
        ieee_address: Factory IEEE address, 8 bytes
    """

    chip_id: int
    flash_size: int
    revision: tuple[int, int]
    ieee_address: bytes

    @property
    def name(self) -> str:
        """Part name for the chip id."""
        return describe_chip(self.chip_id)

    def __str__(self) -> str:
        major, minor = self.revision
        return (
            f"{self.name}: {self.flash_size // 1024} KB flash, "
            f"PG{major}.{minor}, IEEE {format_ieee_address(self.ieee_address)}"
        )


def read_ieee_address(bootloader: "Bootloader", address: int = IEEE_ADDR) -> bytes:
    """
    Read the 8-byte IEEE address stored at address.

    The upper word is stored at address + 4. Both words are returned in
    device byte order.
    """
    high = bootloader.memory_read(address + 4)
    low = bootloader.memory_read(address)
    return high.to_bytes(4, "little") + low.to_bytes(4, "little")


def read_device_info(bootloader: "Bootloader") -> DeviceInfo:
    """Query chip id, flash size, revision and IEEE address."""
    chip = bootloader.get_chip_id()
    diecfg0 = bootloader.memory_read(FLASH_CTRL_DIECFG0)
    diecfg2 = bootloader.memory_read(FLASH_CTRL_DIECFG2)
    return DeviceInfo(
        chip_id=chip,
        flash_size=decode_flash_size(diecfg0),
        revision=decode_revision(diecfg2),
        ieee_address=read_ieee_address(bootloader),
    )
