"""
eHuB wire protocol: entity state, message types and datagram decoding.

Datagram layout (all multi-byte integers little-endian):

    0..3   "eHuB" signature
    4      message type (1 = configuration, 2 = update)
    5      eHuB universe selector

Update (type 2):
    6..7   declared entity count N
    8..9   compressed payload length L
    10..   L bytes of zlib/gzip/DEFLATE data inflating to N records of
           [id:u16][r][g][b][w]

Configuration (type 1):
    6..    repeating [start_index:u16][start_id:u16][end_index:u16][end_id:u16]
"""

from __future__ import annotations

import gzip
import struct
import zlib
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional, Sequence, Union

import structlog

from emitterhub.core.exceptions import EHubDecodeError

logger = structlog.get_logger()

EHUB_SIGNATURE = b"eHuB"
EHUB_HEADER_SIZE = 6
EHUB_UPDATE_HEADER_SIZE = 10

MSG_TYPE_CONFIG = 1
MSG_TYPE_UPDATE = 2

ENTITY_RECORD = struct.Struct("<HBBBB")
CONFIG_RECORD = struct.Struct("<HHHH")
UPDATE_HEADER = struct.Struct("<HH")


@dataclass(frozen=True)
class EntityState:
    """Color of one LED entity (RGB with optional white)."""

    id: int
    r: int
    g: int
    b: int
    w: int = 0


EntityBatch = Mapping[int, EntityState]


@dataclass(frozen=True)
class ConfigMessage:
    """Index ↔ entity-id ranges announced by the emitter (diagnostic only)."""

    universe: int
    ranges: tuple[tuple[int, int, int, int], ...]
    index_map: Mapping[int, int] = field(default_factory=dict)


@dataclass(frozen=True)
class UpdateMessage:
    """One decoded batch of entity colors."""

    universe: int
    declared_count: int
    entities: EntityBatch


EHubMessage = Union[ConfigMessage, UpdateMessage]


def _inflate(payload: bytes) -> bytes:
    # Auto-detect zlib or gzip wrappers, then fall back to a raw DEFLATE stream.
    try:
        return zlib.decompress(payload, zlib.MAX_WBITS | 32)
    except zlib.error:
        pass
    try:
        return zlib.decompress(payload, -zlib.MAX_WBITS)
    except zlib.error as e:
        raise EHubDecodeError(f"decompression failed: {e}", MSG_TYPE_UPDATE) from e


def parse_update(data: bytes, universe: int) -> UpdateMessage:
    """Parse an update datagram whose header has already been validated."""
    if len(data) < EHUB_UPDATE_HEADER_SIZE:
        raise EHubDecodeError("update shorter than 10 bytes", MSG_TYPE_UPDATE)

    count, comp_len = UPDATE_HEADER.unpack_from(data, EHUB_HEADER_SIZE)
    end = EHUB_UPDATE_HEADER_SIZE + comp_len
    if len(data) < end:
        raise EHubDecodeError(
            f"truncated payload ({len(data) - EHUB_UPDATE_HEADER_SIZE} of {comp_len} bytes)",
            MSG_TYPE_UPDATE,
        )

    raw = _inflate(bytes(data[EHUB_UPDATE_HEADER_SIZE:end])) if comp_len else b""

    # Records beyond the inflated buffer are silently dropped.
    available = min(count, len(raw) // ENTITY_RECORD.size)
    entities: dict[int, EntityState] = {}
    for i in range(available):
        eid, r, g, b, w = ENTITY_RECORD.unpack_from(raw, i * ENTITY_RECORD.size)
        entities[eid] = EntityState(eid, r, g, b, w)

    return UpdateMessage(universe, count, MappingProxyType(entities))


def parse_config(data: bytes, universe: int) -> ConfigMessage:
    """Parse a configuration datagram whose header has already been validated."""
    ranges: list[tuple[int, int, int, int]] = []
    index_map: dict[int, int] = {}

    offset = EHUB_HEADER_SIZE
    while offset + CONFIG_RECORD.size <= len(data):
        start_index, start_id, end_index, end_id = CONFIG_RECORD.unpack_from(data, offset)
        ranges.append((start_index, start_id, end_index, end_id))
        for index, eid in zip(range(start_index, end_index + 1), range(start_id, end_id + 1)):
            index_map[index] = eid
        offset += CONFIG_RECORD.size

    return ConfigMessage(universe, tuple(ranges), MappingProxyType(index_map))


def decode_datagram(data: bytes, target_universe: int) -> Optional[EHubMessage]:
    """
    Decode one datagram.

    Returns None for traffic that is not ours (missing signature or another
    eHuB universe). Raises EHubDecodeError for malformed datagrams of our
    stream.
    """
    if len(data) < EHUB_HEADER_SIZE or data[:4] != EHUB_SIGNATURE:
        return None

    msg_type = data[4]
    universe = data[5]
    if universe != target_universe:
        return None

    if msg_type == MSG_TYPE_UPDATE:
        return parse_update(data, universe)
    if msg_type == MSG_TYPE_CONFIG:
        return parse_config(data, universe)
    raise EHubDecodeError(f"unsupported message type {msg_type}", msg_type)


class EHubDecoder:
    """
    Stateful decoder for one eHuB universe.

    Never raises: malformed datagrams are counted and yield None.
    """

    def __init__(self, target_universe: int = 0):
        self.target_universe = target_universe
        self.messages_received = 0
        self.decode_errors = 0

    def decode(self, data: bytes) -> Optional[EHubMessage]:
        # Foreign traffic must not touch the counters.
        if len(data) < EHUB_HEADER_SIZE or data[:4] != EHUB_SIGNATURE:
            return None
        if data[5] != self.target_universe:
            return None

        self.messages_received += 1
        try:
            return decode_datagram(data, self.target_universe)
        except EHubDecodeError as e:
            self.decode_errors += 1
            logger.debug("Dropped eHuB datagram", reason=e.reason, size=len(data))
            return None


def build_update_datagram(
    universe: int,
    entities: Sequence[EntityState],
    compress_with_gzip: bool = True,
) -> bytes:
    """Encode entity colors as an update datagram."""
    payload = b"".join(ENTITY_RECORD.pack(e.id, e.r, e.g, e.b, e.w) for e in entities)
    compressed = gzip.compress(payload) if compress_with_gzip else zlib.compress(payload)
    return (
        EHUB_SIGNATURE
        + bytes([MSG_TYPE_UPDATE, universe & 0xFF])
        + UPDATE_HEADER.pack(len(entities), len(compressed))
        + compressed
    )


def build_config_datagram(
    universe: int,
    ranges: Sequence[tuple[int, int, int, int]],
) -> bytes:
    """Encode (start_index, start_id, end_index, end_id) ranges as a config datagram."""
    body = b"".join(CONFIG_RECORD.pack(*r) for r in ranges)
    return EHUB_SIGNATURE + bytes([MSG_TYPE_CONFIG, universe & 0xFF]) + body
