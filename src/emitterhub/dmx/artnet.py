"""Art-Net packet helpers and diagnostic listener."""

from __future__ import annotations

import queue
import socket
import struct
import threading
import time
from dataclasses import dataclass
from typing import Optional

import structlog

from emitterhub.core.config import ARTNET_PORT
from emitterhub.core.exceptions import ArtNetError
from emitterhub.dmx.frame import DmxFrame
from emitterhub.dmx.universe import DMX_CHANNEL_COUNT

logger = structlog.get_logger()

ARTNET_HEADER = b"Art-Net\x00"
ARTNET_OPCODE_DMX = 0x5000
ARTNET_PROTOCOL_VERSION = 14
ARTNET_HEADER_SIZE = 18
ARTNET_PACKET_SIZE = ARTNET_HEADER_SIZE + DMX_CHANNEL_COUNT


def build_artdmx_packet(
    universe: int,
    dmx_data: bytes,
    sequence: int = 0,
    physical: int = 0,
) -> bytes:
    """
    Build an ArtDMX packet.

    Expects up to 512 channels of slot data without DMX start code; shorter
    payloads are zero-padded to a full universe.
    """
    if len(dmx_data) > DMX_CHANNEL_COUNT:
        raise ArtNetError(f"ArtDMX payload too large: {len(dmx_data)} bytes")

    payload = bytes(dmx_data).ljust(DMX_CHANNEL_COUNT, b"\x00")
    # Length is big-endian on the wire.
    length = len(payload)

    packet = bytearray()
    packet.extend(ARTNET_HEADER)
    packet.extend(struct.pack("<H", ARTNET_OPCODE_DMX))
    packet.extend(struct.pack(">H", ARTNET_PROTOCOL_VERSION))
    packet.extend(bytes([sequence & 0xFF, physical & 0xFF]))
    packet.extend(struct.pack("<H", universe & 0x7FFF))
    packet.extend(struct.pack(">H", length))
    packet.extend(payload)
    return bytes(packet)


def encode_frame(frame: DmxFrame) -> bytes:
    return build_artdmx_packet(frame.universe, frame.snapshot())


@dataclass(frozen=True)
class ArtDmxPacket:
    """Fields extracted from a received ArtDMX packet."""

    universe: int
    length: int
    data: bytes
    sequence: int = 0
    physical: int = 0

    @property
    def active_channels(self) -> int:
        return sum(1 for v in self.data if v)


def parse_artdmx_packet(packet: bytes) -> Optional[ArtDmxPacket]:
    """Return the decoded packet, or None when it is not a recognised ArtDMX packet."""
    if len(packet) < ARTNET_HEADER_SIZE or packet[:8] != ARTNET_HEADER:
        return None

    (opcode,) = struct.unpack_from("<H", packet, 8)
    if opcode != ARTNET_OPCODE_DMX:
        return None

    sequence, physical = packet[12], packet[13]
    (universe,) = struct.unpack_from("<H", packet, 14)
    (length,) = struct.unpack_from(">H", packet, 16)
    if length > DMX_CHANNEL_COUNT or len(packet) < ARTNET_HEADER_SIZE + length:
        return None

    data = bytes(packet[ARTNET_HEADER_SIZE:ARTNET_HEADER_SIZE + length])
    return ArtDmxPacket(universe, length, data, sequence, physical)


@dataclass(frozen=True)
class ArtNetFrameRow:
    """One received ArtDMX packet, summarised for monitoring."""

    universe: int
    length: int
    active_channels: int
    source_ip: str
    timestamp: float
    data: bytes = b""


class ArtNetListener:
    """
    Diagnostic Art-Net receiver.

    Decoded packets are pushed to a bounded queue; anything that is not
    ArtDMX is ignored.
    """

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = ARTNET_PORT,
        queue_size: int = 1024,
        receive_timeout_s: float = 0.5,
    ):
        self.host = host
        self.port = port
        self.receive_timeout_s = receive_timeout_s
        self.frames: queue.Queue = queue.Queue(maxsize=queue_size)

        self._socket: Optional[socket.socket] = None
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self.packets_received = 0
        self.packets_ignored = 0

    def start(self) -> None:
        if self._thread is not None:
            return

        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((self.host, self.port))
        sock.settimeout(self.receive_timeout_s)
        self._socket = sock

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._listen_loop,
            name="ArtNet-Listen",
            daemon=True,
        )
        self._thread.start()
        logger.info("Art-Net listener started", host=self.host, port=self.port)

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=self.receive_timeout_s * 2 + 1.0)
            self._thread = None
        if self._socket is not None:
            self._socket.close()
            self._socket = None

    def handle_packet(self, data: bytes, source_ip: str) -> Optional[ArtNetFrameRow]:
        info = parse_artdmx_packet(data)
        if info is None:
            self.packets_ignored += 1
            return None

        self.packets_received += 1
        row = ArtNetFrameRow(
            universe=info.universe,
            length=info.length,
            active_channels=info.active_channels,
            source_ip=source_ip,
            timestamp=time.time(),
            data=info.data,
        )
        try:
            self.frames.put_nowait(row)
        except queue.Full:
            logger.debug("Art-Net monitor queue full, dropping frame")
        return row

    def _listen_loop(self) -> None:
        sock = self._socket
        if sock is None:
            return
        while not self._stop_event.is_set():
            try:
                data, addr = sock.recvfrom(65535)
            except socket.timeout:
                continue
            except OSError as e:
                if self._stop_event.is_set():
                    break
                logger.warning("Art-Net listener error", error=str(e))
                continue
            self.handle_packet(data, addr[0])
