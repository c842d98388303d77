"""
Shared Test Fixtures
====================

Provides a fake serial transport and a simulated CC2538 ROM bootloader.

The simulated device parses every write from the host exactly as the
real bootloader would (sync preamble, packets, host ACK bytes) and
queues its replies on the transport's receive side, where the session's
reader thread picks them up byte by byte.
"""

import queue
import zlib
from typing import Callable, Optional

import pytest

from cc2538_bsl.comms.packet import CommandCode
from cc2538_bsl.device import FLASH_CTRL_DIECFG0, FLASH_CTRL_DIECFG2, IEEE_ADDR


def make_data_frame(payload: bytes) -> bytes:
    """Build a device-to-host data frame."""
    return bytes([len(payload) + 2, sum(payload) & 0xFF]) + payload


ACK = bytes([0x00, 0xCC])
NAK = bytes([0x00, 0x33])


class FakeTransport:
    """
    In-memory bidirectional byte stream.

    read() returns one queued byte, or b"" after a short wait (like a
    pyserial port with a read timeout). Every write is recorded and, if
    a responder is set, answered by feeding its return value back.
    """

    def __init__(self, responder: Optional[Callable[[bytes], bytes]] = None):
        self.responder = responder
        self.writes: list[bytes] = []
        self.closed = False
        self.fail_writes = False
        self.fail_reads = False
        self._rx: "queue.Queue[int]" = queue.Queue()

    def feed(self, data: bytes) -> None:
        for byte in data:
            self._rx.put(byte)

    def read(self, size: int = 1) -> bytes:
        if self.fail_reads:
            raise OSError("device disconnected")
        try:
            return bytes([self._rx.get(timeout=0.01)])
        except queue.Empty:
            return b""

    def write(self, data: bytes) -> int:
        if self.fail_writes:
            raise OSError("device disconnected")
        data = bytes(data)
        self.writes.append(data)
        if self.responder is not None:
            self.feed(self.responder(data))
        return len(data)

    def flush(self) -> None:
        pass

    def close(self) -> None:
        self.closed = True


class SimulatedDevice:
    """
    Host-facing behaviour of the CC2538 ROM bootloader.

    Attributes:
        memory: Sparse byte-addressed memory (flash and registers).
        packets: (command, payload) of every valid packet received.
        chunks: Payloads of every SEND_DATA received.
        host_acks: Number of CC bytes received from the host.
        status_for: Callable(send_index, data) -> status for each
                    SEND_DATA, where send_index counts SEND_DATA packets.
        nak_commands: Commands answered with NAK.
        silent_commands: Commands that get no reply at all.
    """

    def __init__(self) -> None:
        self.memory: dict[int, int] = {}
        self.packets: list[tuple[CommandCode, bytes]] = []
        self.chunks: list[bytes] = []
        self.host_acks = 0
        self.syncs = 0
        self.erased: list[tuple[int, int]] = []
        self.status_for: Callable[[int, bytes], CommandCode] = (
            lambda index, data: CommandCode.SUCCESS
        )
        self.nak_commands: set[CommandCode] = set()
        self.silent_commands: set[CommandCode] = set()
        self.chip_id_reply = bytes([0x00, 0x00, 0xB9, 0x64])
        self._status = CommandCode.SUCCESS
        self._next_address = 0
        self._remaining = 0

        # CC2538SF53: 512 KB flash, PG2.0
        self.write_word(FLASH_CTRL_DIECFG0, 0x40000000)
        self.write_word(FLASH_CTRL_DIECFG2, 0x00200000)
        self.load(IEEE_ADDR, bytes([0x34, 0x12, 0x4B, 0x00, 0x08, 0x07, 0x06, 0x05]))

    # -------------------------------------------------------------------------
    # Memory
    # -------------------------------------------------------------------------

    def load(self, address: int, data: bytes) -> None:
        for i, byte in enumerate(data):
            self.memory[address + i] = byte

    def write_word(self, address: int, value: int) -> None:
        self.load(address, value.to_bytes(4, "little"))

    def dump(self, address: int, length: int) -> bytes:
        return bytes(self.memory.get(address + i, 0xFF) for i in range(length))

    # -------------------------------------------------------------------------
    # Wire Handling
    # -------------------------------------------------------------------------

    def __call__(self, data: bytes) -> bytes:
        if data == b"\x55\x55":
            self.syncs += 1
            return ACK
        if data == b"\xcc":
            self.host_acks += 1
            return b""
        return self._handle_packet(data)

    def _handle_packet(self, data: bytes) -> bytes:
        length, checksum, command = data[0], data[1], data[2]
        payload = data[3:]
        assert length == len(data), f"bad length byte in {data.hex()}"
        assert checksum == (command + sum(payload)) & 0xFF, f"bad checksum in {data.hex()}"

        command = CommandCode(command)
        self.packets.append((command, payload))

        if command in self.silent_commands:
            return b""
        if command in self.nak_commands:
            self._status = CommandCode.INVALID_CMD
            return NAK

        addr = int.from_bytes(payload[0:4], "big") if len(payload) >= 4 else 0
        size = int.from_bytes(payload[4:8], "big") if len(payload) >= 8 else 0

        if command == CommandCode.PING:
            return ACK
        if command == CommandCode.GET_CHIP_ID:
            return ACK + make_data_frame(self.chip_id_reply)
        if command == CommandCode.ERASE:
            self.erased.append((addr, size))
            for i in range(size):
                self.memory.pop(addr + i, None)
            self._status = CommandCode.SUCCESS
            return ACK
        if command == CommandCode.CRC32:
            crc = zlib.crc32(self.dump(addr, size)) & 0xFFFFFFFF
            return ACK + make_data_frame(crc.to_bytes(4, "little"))
        if command == CommandCode.MEMORY_READ:
            word = self.dump(addr, 4)
            if payload[4] == 1:
                word = word[:1] + bytes(3)
            return ACK + make_data_frame(word)
        if command == CommandCode.DOWNLOAD:
            self._next_address = addr
            self._remaining = size
            self._status = CommandCode.SUCCESS
            return ACK
        if command == CommandCode.SEND_DATA:
            index = len(self.chunks)
            self.chunks.append(bytes(payload))
            self._status = self.status_for(index, bytes(payload))
            if self._status == CommandCode.SUCCESS:
                self.load(self._next_address, payload)
                self._next_address += len(payload)
                self._remaining -= len(payload)
            return ACK
        if command == CommandCode.GET_STATUS:
            return ACK + make_data_frame(bytes([self._status]))
        return NAK

    def commands(self) -> list[CommandCode]:
        return [command for command, _ in self.packets]


@pytest.fixture
def device() -> SimulatedDevice:
    """A fresh simulated bootloader."""
    return SimulatedDevice()


@pytest.fixture
def transport(device: SimulatedDevice) -> FakeTransport:
    """A fake transport wired to the simulated bootloader."""
    return FakeTransport(responder=device)


@pytest.fixture
def bootloader(transport: FakeTransport):
    """A started session on the simulated bootloader, closed after the test."""
    from cc2538_bsl.comms.bootloader import Bootloader

    bsl = Bootloader(transport, ack_timeout=1.0)
    bsl.start()
    yield bsl
    bsl.close()
