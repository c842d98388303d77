"""
Tests for the Bootloader Session and Flash Programming
======================================================

These tests run complete command exchanges against a simulated ROM
bootloader (see conftest.py). The session's reader thread, frame
assembler and ACK waits all run for real; only the serial port is fake.

Test Categories
---------------
1. Session Tests: start/close, context manager, not-started errors
2. Command Tests: every bootloader command and its wire encoding
3. Failure Tests: NAK, timeouts, write failures
4. Flash Tests: chunking, FLASH_FAIL retry, fatal status, verification
"""

import time

import pytest

from cc2538_bsl.comms.bootloader import Bootloader
from cc2538_bsl.comms.flash import (
    FLASH_CHUNK_SIZE,
    MAX_CHUNK_RETRIES,
    FlashProgrammer,
    FlashRegion,
    flash_image,
)
from cc2538_bsl.comms.packet import CommandCode
from cc2538_bsl.errors import (
    ChunkFlashFailure,
    CommsError,
    FlashAborted,
    NakError,
    TimeoutError,
    TransportWriteError,
    UnknownCodeError,
    VerifyError,
)

from conftest import ACK, FakeTransport


def make_image(size: int) -> bytes:
    return bytes((i * 31 + 7) & 0xFF for i in range(size))


# =============================================================================
# Session Tests
# =============================================================================

class TestSession:
    """Tests for session lifecycle."""

    def test_context_manager(self, transport):
        """The session starts on enter and closes the transport on exit."""
        with Bootloader(transport) as bsl:
            assert bsl.started
        assert not bsl.started
        assert transport.closed

    def test_close_is_idempotent(self, transport):
        bsl = Bootloader(transport)
        bsl.start()
        bsl.close()
        bsl.close()
        assert transport.closed

    def test_command_before_start(self, transport):
        """Commands need a started session."""
        bsl = Bootloader(transport)
        with pytest.raises(CommsError, match="not started"):
            bsl.ping()
        assert transport.writes == []

    def test_sync(self, bootloader, transport, device):
        """sync() writes the 55 55 preamble and waits for ACK."""
        bootloader.sync()
        assert transport.writes == [b"\x55\x55"]
        assert device.syncs == 1


# =============================================================================
# Command Tests
# =============================================================================

class TestCommands:
    """Tests for each bootloader command."""

    def test_ping(self, bootloader, transport):
        assert bootloader.ping() is True
        assert transport.writes == [bytes([0x03, 0x20, 0x20])]

    def test_get_chip_id(self, bootloader, transport, device):
        """Chip id is read and the data frame acknowledged with CC."""
        assert bootloader.get_chip_id() == 0xB964
        assert transport.writes[-1] == b"\xcc"
        assert device.host_acks == 1

    def test_erase(self, bootloader, transport, device):
        """ERASE carries big-endian address and length."""
        bootloader.erase(0x00000000, 16)
        assert transport.writes == [
            bytes([0x0B, 0x36, 0x26, 0, 0, 0, 0, 0, 0, 0, 16])
        ]
        assert device.erased == [(0, 16)]
        assert device.host_acks == 0

    def test_erase_clears_memory(self, bootloader, device):
        device.load(0x200000, b"\x00" * 8)
        bootloader.erase(0x200000, 0x800)
        assert device.dump(0x200000, 8) == b"\xff" * 8

    def test_crc32(self, bootloader, device):
        """CRC32 reply is decoded little-endian."""
        import zlib

        device.load(0x200000, b"123456789")
        assert bootloader.crc32(0x200000, 9) == zlib.crc32(b"123456789")
        assert bootloader.crc32(0x200000, 9) == 0xCBF43926
        assert device.host_acks == 2

    def test_memory_read_word(self, bootloader, device, transport):
        device.write_word(0x20000000, 0x12345678)
        assert bootloader.memory_read(0x20000000) == 0x12345678
        packet = transport.writes[0]
        assert packet[2] == CommandCode.MEMORY_READ
        assert packet[3:] == bytes([0x20, 0x00, 0x00, 0x00, 4])

    def test_memory_read_byte(self, bootloader, device):
        device.load(0x20000000, b"\xab\xcd\xef\x01")
        assert bootloader.memory_read(0x20000000, width=1) & 0xFF == 0xAB

    def test_memory_read_bad_width(self, bootloader, transport):
        with pytest.raises(ValueError, match="width"):
            bootloader.memory_read(0x20000000, width=2)
        assert transport.writes == []

    def test_download_send_data_get_status(self, bootloader, device):
        bootloader.download(0x200000, 4)
        bootloader.send_data(b"\x01\x02\x03\x04")
        assert bootloader.get_status() is CommandCode.SUCCESS
        assert device.dump(0x200000, 4) == b"\x01\x02\x03\x04"
        assert device.commands() == [
            CommandCode.DOWNLOAD,
            CommandCode.SEND_DATA,
            CommandCode.GET_STATUS,
        ]

    def test_host_ack_follows_every_data_frame(self, bootloader, device):
        """Exactly one CC byte is written per data frame received."""
        bootloader.get_chip_id()
        bootloader.crc32(0x200000, 4)
        bootloader.memory_read(0x200000)
        bootloader.get_status()
        bootloader.ping()
        bootloader.erase(0x200000, 0x800)
        assert device.host_acks == 4


# =============================================================================
# Failure Tests
# =============================================================================

class TestFailures:
    """Tests for NAK, timeout and transport failures."""

    def test_nak(self, bootloader, device):
        device.nak_commands.add(CommandCode.ERASE)
        with pytest.raises(NakError):
            bootloader.erase(0x200000, 0x800)

    def test_nak_on_data_command(self, bootloader, device):
        """A NAK'd data command is not acknowledged by the host."""
        device.nak_commands.add(CommandCode.GET_CHIP_ID)
        with pytest.raises(NakError):
            bootloader.get_chip_id()
        assert device.host_acks == 0

    def test_silent_device_times_out(self, transport, device):
        device.silent_commands.add(CommandCode.PING)
        with Bootloader(transport, ack_timeout=0.2) as bsl:
            start = time.monotonic()
            with pytest.raises(TimeoutError):
                bsl.ping()
            assert time.monotonic() - start >= 0.2

    def test_no_sync_reply(self):
        """A port with nothing behind it times out on sync."""
        with Bootloader(FakeTransport(), ack_timeout=0.1) as bsl:
            with pytest.raises(TimeoutError):
                bsl.sync()

    def test_write_failure(self, bootloader, transport):
        transport.fail_writes = True
        with pytest.raises(TransportWriteError):
            bootloader.ping()

    def test_short_write(self, bootloader, transport):
        transport.write = lambda data: len(data) - 1
        with pytest.raises(TransportWriteError, match="Short write"):
            bootloader.ping()

    def test_late_reply_is_discarded(self, transport, device):
        """A reply arriving after a timeout does not answer the next command."""
        device.silent_commands.add(CommandCode.PING)
        with Bootloader(transport, ack_timeout=0.2) as bsl:
            with pytest.raises(TimeoutError):
                bsl.ping()
            transport.feed(ACK)
            time.sleep(0.2)
            assert bsl.get_chip_id() == 0xB964
            assert device.host_acks == 1

    def test_reader_failure_reported(self, transport):
        """A dead transport is reported as such, not as a timeout."""
        with Bootloader(transport, ack_timeout=2.0) as bsl:
            transport.fail_reads = True
            time.sleep(0.2)
            start = time.monotonic()
            with pytest.raises(CommsError, match="Frame reader stopped") as exc_info:
                bsl.ping()
            assert not isinstance(exc_info.value, TimeoutError)
            assert isinstance(exc_info.value.__cause__, OSError)
            assert time.monotonic() - start < 1.0


# =============================================================================
# Flash Region Tests
# =============================================================================

class TestFlashRegion:
    """Tests for splitting a payload into blocks."""

    def test_chunks(self):
        region = FlashRegion(0x200000, make_image(500))
        chunks = list(region.chunks())
        assert [offset for offset, _ in chunks] == [0, 248, 496]
        assert [len(chunk) for _, chunk in chunks] == [248, 248, 4]
        assert b"".join(chunk for _, chunk in chunks) == region.data

    def test_exact_multiple(self):
        region = FlashRegion(0x200000, make_image(496))
        assert [len(c) for _, c in region.chunks()] == [248, 248]

    def test_empty(self):
        assert list(FlashRegion(0x200000, b"").chunks()) == []

    def test_end(self):
        assert FlashRegion(0x200000, b"\x00" * 16).end == 0x200010

    def test_bad_size(self):
        with pytest.raises(ValueError):
            list(FlashRegion(0, b"\x00").chunks(0))


# =============================================================================
# Flash Programming Tests
# =============================================================================

class TestFlashProgrammer:
    """Tests for DOWNLOAD / SEND_DATA / GET_STATUS sequencing."""

    def test_defaults(self):
        assert FLASH_CHUNK_SIZE == 248
        assert MAX_CHUNK_RETRIES == 3

    def test_program_500_bytes(self, bootloader, device):
        """500 bytes go out as 248 + 248 + 4 after one DOWNLOAD."""
        image = make_image(500)
        bootloader.flash(0x200000, image)

        download = device.packets[0]
        assert download == (
            CommandCode.DOWNLOAD,
            bytes([0x00, 0x20, 0x00, 0x00, 0x00, 0x00, 0x01, 0xF4]),
        )
        assert [len(c) for c in device.chunks] == [248, 248, 4]
        assert b"".join(device.chunks) == image
        assert device.commands()[1:] == [
            CommandCode.SEND_DATA, CommandCode.GET_STATUS,
        ] * 3
        assert device.dump(0x200000, 500) == image

    def test_zero_length(self, bootloader, device):
        """An empty payload is announced but no data is sent."""
        bootloader.flash(0x200000, b"")
        assert device.commands() == [CommandCode.DOWNLOAD]
        assert device.packets[0][1][4:] == bytes(4)

    def test_progress(self, bootloader):
        calls = []
        bootloader.flash(0x200000, make_image(500), progress=lambda c, t: calls.append((c, t)))
        assert calls == [(248, 500), (496, 500), (500, 500)]

    def test_persistent_flash_fail(self, bootloader, device):
        """A block that always fails is sent 1 + max_retries times."""
        device.status_for = (
            lambda index, data: CommandCode.FLASH_FAIL if index >= 1 else CommandCode.SUCCESS
        )
        with pytest.raises(ChunkFlashFailure) as exc_info:
            bootloader.flash(0x200000, make_image(500))

        error = exc_info.value
        assert error.address == 0x200000
        assert error.offset == 248
        assert error.length == 248
        assert error.attempts == MAX_CHUNK_RETRIES + 1
        assert len(device.chunks) == 1 + MAX_CHUNK_RETRIES + 1
        # The failing block is retried unchanged and the third never goes out
        assert all(chunk == device.chunks[1] for chunk in device.chunks[1:])

    def test_transient_flash_fail(self, bootloader, device):
        """A block that fails once is resent and the write completes."""
        device.status_for = (
            lambda index, data: CommandCode.FLASH_FAIL if index == 1 else CommandCode.SUCCESS
        )
        image = make_image(500)
        bootloader.flash(0x200000, image)
        assert [len(c) for c in device.chunks] == [248, 248, 248, 4]
        assert device.chunks[1] == device.chunks[2]
        assert device.dump(0x200000, 500) == image

    def test_no_retries(self, bootloader, device):
        device.status_for = lambda index, data: CommandCode.FLASH_FAIL
        with pytest.raises(ChunkFlashFailure) as exc_info:
            bootloader.flash(0x200000, make_image(10), max_retries=0)
        assert exc_info.value.attempts == 1
        assert len(device.chunks) == 1

    def test_fatal_status_aborts(self, bootloader, device):
        """Any status besides SUCCESS/FLASH_FAIL stops without retrying."""
        device.status_for = (
            lambda index, data: CommandCode.INVALID_ADDR if index == 1 else CommandCode.SUCCESS
        )
        with pytest.raises(FlashAborted) as exc_info:
            bootloader.flash(0x200000, make_image(500))
        assert exc_info.value.status is CommandCode.INVALID_ADDR
        assert exc_info.value.offset == 248
        assert len(device.chunks) == 2

    def test_unknown_status_aborts(self, bootloader, device):
        """A status byte outside CommandCode aborts with the failing offset."""
        device.status_for = lambda index, data: 0x45 if index == 1 else CommandCode.SUCCESS
        with pytest.raises(FlashAborted) as exc_info:
            bootloader.flash(0x200000, make_image(500))
        error = exc_info.value
        assert error.status == 0x45
        assert error.address == 0x200000
        assert error.offset == 248
        assert "0x45" in str(error)
        assert isinstance(error.__cause__, UnknownCodeError)
        assert len(device.chunks) == 2

    def test_verify(self, bootloader, device):
        bootloader.flash(0x200000, make_image(500), verify=True)
        assert device.commands()[-1] == CommandCode.CRC32

    def test_verify_mismatch(self, bootloader, device):
        """A device CRC that differs from the payload raises VerifyError."""
        image = make_image(500)
        programmer = FlashProgrammer(bootloader)
        programmer.program(0x200000, image)
        device.load(0x200000, b"\x00")
        with pytest.raises(VerifyError):
            programmer.verify(FlashRegion(0x200000, image))

    def test_custom_chunk_size(self, bootloader, device):
        flash_image(bootloader, 0x200000, make_image(100), chunk_size=32)
        assert [len(c) for c in device.chunks] == [32, 32, 32, 4]

    def test_invalid_settings(self, bootloader):
        with pytest.raises(ValueError):
            FlashProgrammer(bootloader, chunk_size=0)
        with pytest.raises(ValueError):
            FlashProgrammer(bootloader, chunk_size=FLASH_CHUNK_SIZE + 1)
        with pytest.raises(ValueError):
            FlashProgrammer(bootloader, max_retries=-1)
