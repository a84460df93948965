"""DMX frames, mapping, patching and Art-Net encoding."""

from emitterhub.dmx.artnet import (
    ArtDmxPacket,
    ArtNetListener,
    build_artdmx_packet,
    encode_frame,
    parse_artdmx_packet,
)
from emitterhub.dmx.frame import DmxFrame
from emitterhub.dmx.mapper import DmxMapper, EntityMapping, MappingStats, layout_entity_range
from emitterhub.dmx.patch import PatchMap, PatchRule
from emitterhub.dmx.universe import (
    DMX_CHANNEL_COUNT,
    DMX_CHANNEL_MAX,
    DMX_CHANNEL_MIN,
    channel_width,
    is_valid_dmx_channel,
)

__all__ = [
    "ArtDmxPacket",
    "ArtNetListener",
    "build_artdmx_packet",
    "encode_frame",
    "parse_artdmx_packet",
    "DmxFrame",
    "DmxMapper",
    "EntityMapping",
    "MappingStats",
    "layout_entity_range",
    "PatchMap",
    "PatchRule",
    "DMX_CHANNEL_COUNT",
    "DMX_CHANNEL_MIN",
    "DMX_CHANNEL_MAX",
    "channel_width",
    "is_valid_dmx_channel",
]
