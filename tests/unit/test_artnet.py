import struct

import pytest

from emitterhub.core.exceptions import ArtNetError
from emitterhub.dmx.artnet import (
    ARTNET_PACKET_SIZE,
    ArtNetListener,
    build_artdmx_packet,
    encode_frame,
    parse_artdmx_packet,
)
from emitterhub.dmx.frame import DmxFrame


def test_build_artdmx_packet_layout() -> None:
    dmx = bytes(range(1, 6))

    packet = build_artdmx_packet(universe=0x1234, dmx_data=dmx, sequence=7, physical=2)

    assert len(packet) == ARTNET_PACKET_SIZE
    assert packet[:8] == b"Art-Net\x00"
    assert packet[8:10] == b"\x00\x50"  # OpDmx little-endian
    assert packet[10:12] == b"\x00\x0e"  # protocol version 14
    assert packet[12] == 7
    assert packet[13] == 2
    assert packet[14:16] == b"\x34\x12"  # universe little-endian
    assert packet[16:18] == b"\x02\x00"  # length 512 big-endian
    assert packet[18:23] == dmx
    assert packet[23:] == bytes(512 - 5)


def test_oversize_payload_is_rejected() -> None:
    with pytest.raises(ArtNetError):
        build_artdmx_packet(0, bytes(513))


def test_encoded_frame_decodes_to_same_channels() -> None:
    frame = DmxFrame(universe=5, target_ip="10.0.0.5")
    frame.set_rgb(1, 255, 128, 1)
    frame.set_channel(512, 9)

    parsed = parse_artdmx_packet(encode_frame(frame))

    assert parsed.universe == 5
    assert parsed.length == 512
    assert parsed.data == frame.snapshot()
    assert parsed.active_channels == 4


@pytest.mark.parametrize(
    "packet",
    [
        b"Art-Net\x00",
        b"Art-Nex\x00" + bytes(530),
        b"Art-Net\x00" + struct.pack("<H", 0x2000) + bytes(520),
        build_artdmx_packet(1, bytes(512))[:100],
        build_artdmx_packet(1, bytes(512))[:16] + struct.pack(">H", 600) + bytes(600),
    ],
)
def test_parse_rejects_non_artdmx(packet: bytes) -> None:
    assert parse_artdmx_packet(packet) is None


def test_listener_handles_packets_without_socket() -> None:
    listener = ArtNetListener(queue_size=1)

    row = listener.handle_packet(build_artdmx_packet(3, b"\x01\x00\x02"), "10.0.0.9")
    listener.handle_packet(build_artdmx_packet(3, b"\x05"), "10.0.0.9")  # queue full
    listener.handle_packet(b"garbage", "10.0.0.9")

    assert row.universe == 3
    assert row.active_channels == 2
    assert row.source_ip == "10.0.0.9"
    assert listener.frames.get_nowait() == row
    assert listener.packets_received == 2
    assert listener.packets_ignored == 1


def test_listen_loop_without_socket_exits() -> None:
    listener = ArtNetListener()

    listener._listen_loop()

    assert listener.packets_received == 0
