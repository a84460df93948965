"""
Entity-to-DMX Mapper.

Maintains the entity → (universe, channel, IP) table and projects entity
colors into per-universe DMX frames.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Mapping, Optional

import structlog

from emitterhub.core.exceptions import MappingError
from emitterhub.dmx.frame import DmxFrame
from emitterhub.dmx.patch import PatchMap
from emitterhub.dmx.universe import (
    DMX_CHANNEL_COUNT,
    DMX_CHANNEL_MAX,
    channel_width,
    clamp_dmx_value,
    fits_in_universe,
)
from emitterhub.ehub.protocol import EntityState

logger = structlog.get_logger()


@dataclass(frozen=True)
class EntityMapping:
    """Static assignment of one entity to a DMX location."""

    entity_id: int
    target_ip: str
    universe: int
    start_channel: int
    width: int = 3

    def __post_init__(self) -> None:
        if self.width not in (1, 3, 4):
            raise MappingError(f"entity {self.entity_id}: width must be 1, 3 or 4")
        if self.universe < 0:
            raise MappingError(f"entity {self.entity_id}: negative universe {self.universe}")
        if not fits_in_universe(self.start_channel, self.width):
            raise MappingError(
                f"entity {self.entity_id}: channels {self.start_channel}"
                f"..{self.start_channel + self.width - 1} exceed 1..{DMX_CHANNEL_MAX}"
            )


@dataclass
class MappingStats:
    """Mapping statistics."""

    total_entities: int = 0
    total_universes: int = 0
    active_frames: int = 0
    unmapped_entities: int = 0  # distinct ids with no mapping


def layout_entity_range(
    entity_start: int,
    entity_end: int,
    ip: str,
    universe_start: int,
    universe_end: int,
    channel_mode: str,
    start_channel: int,
) -> list[EntityMapping]:
    """
    Lay out consecutive entity ids in consecutive channel slots.

    Each entity takes channel_width(channel_mode) slots. When the next
    entity would not fit below channel 512 the layout continues at channel 1
    of the following universe. Raises MappingError if the range needs more
    universes than universe_start..universe_end provides.
    """
    if entity_end < entity_start:
        raise MappingError(f"entity range {entity_start}-{entity_end} is reversed")
    if universe_end < universe_start:
        raise MappingError(f"universe range {universe_start}-{universe_end} is reversed")

    width = channel_width(channel_mode)
    if not fits_in_universe(start_channel, width):
        raise MappingError(f"start channel {start_channel} cannot hold a {width}-channel entity")

    mappings: list[EntityMapping] = []
    universe = universe_start
    channel = start_channel
    for entity_id in range(entity_start, entity_end + 1):
        if universe > universe_end:
            raise MappingError(
                f"entities {entity_start}-{entity_end} overflow universes "
                f"{universe_start}-{universe_end} at entity {entity_id}"
            )
        mappings.append(EntityMapping(entity_id, ip, universe, channel, width))

        channel += width
        if channel + width - 1 > DMX_CHANNEL_MAX:
            universe += 1
            channel = 1

    return mappings


class DmxMapper:
    """
    Owns the entity mapping table and the per-universe frame set.

    Only the mapper writes channel bytes; the patch is applied inside its
    mapping pass and the router sends the frames it hands out.
    """

    def __init__(self) -> None:
        self._frames: dict[int, DmxFrame] = {}
        self._mappings: dict[int, EntityMapping] = {}
        self._unmapped: set[int] = set()

    def add_entity_mapping(self, mapping: EntityMapping) -> None:
        """Register one mapping; a later mapping for the same entity wins."""
        self._mappings[mapping.entity_id] = mapping
        self._unmapped.discard(mapping.entity_id)

        frame = self._frames.get(mapping.universe)
        if frame is None:
            self._frames[mapping.universe] = DmxFrame(mapping.universe, mapping.target_ip)
        elif frame.target_ip != mapping.target_ip:
            logger.warning(
                "Universe re-targeted",
                universe=mapping.universe,
                previous_ip=frame.target_ip,
                target_ip=mapping.target_ip,
            )
            frame.target_ip = mapping.target_ip

    def add_entity_range(
        self,
        entity_start: int,
        entity_end: int,
        ip: str,
        universe_start: int,
        universe_end: int,
        channel_mode: str = "RGB",
        start_channel: int = 1,
    ) -> int:
        """Lay out and register an entity range. Returns the number of entities mapped."""
        mappings = layout_entity_range(
            entity_start,
            entity_end,
            ip,
            universe_start,
            universe_end,
            channel_mode,
            start_channel,
        )
        for mapping in mappings:
            self.add_entity_mapping(mapping)

        logger.debug(
            "Entity range mapped",
            entities=f"{entity_start}-{entity_end}",
            ip=ip,
            universes=f"{mappings[0].universe}-{mappings[-1].universe}",
            mode=channel_mode,
        )
        return len(mappings)

    def get_mapping(self, entity_id: int) -> Optional[EntityMapping]:
        return self._mappings.get(entity_id)

    def update_entities(
        self,
        entities: Mapping[int, EntityState],
        patch: Optional[PatchMap] = None,
    ) -> int:
        """
        Rebuild every frame from the complete entity set.

        Each pass starts from blank universes, writes the color of every
        mapped entity, then applies the patch. The result is diffed into the
        frames, so only channels whose value moved are marked dirty.
        Entities absent from ``entities`` read as off. Unmapped entities are
        skipped; each unknown id is logged once. Returns the number of
        changed channels.
        """
        buffers = {universe: bytearray(DMX_CHANNEL_COUNT) for universe in self._frames}

        for entity in entities.values():
            mapping = self._mappings.get(entity.id)
            if mapping is None:
                if entity.id not in self._unmapped:
                    self._unmapped.add(entity.id)
                    logger.warning("No mapping for entity, skipped", entity_id=entity.id)
                continue

            buffer = buffers[mapping.universe]
            index = mapping.start_channel - 1
            buffer[index] = clamp_dmx_value(entity.r)
            if mapping.width >= 3:
                buffer[index + 1] = clamp_dmx_value(entity.g)
                buffer[index + 2] = clamp_dmx_value(entity.b)
            if mapping.width == 4:
                buffer[index + 3] = clamp_dmx_value(entity.w)

        if patch is not None:
            patch.apply_to_buffers(buffers)

        return sum(self._frames[universe].load(buffer) for universe, buffer in buffers.items())

    def get_frame(self, universe: int) -> Optional[DmxFrame]:
        return self._frames.get(universe)

    def get_all_frames(self) -> list[DmxFrame]:
        return list(self._frames.values())

    def get_modified_frames(self) -> list[DmxFrame]:
        """Frames changed since their last successful send."""
        return [f for f in self._frames.values() if f.dirty]

    def get_active_frames(self) -> list[DmxFrame]:
        """Frames with at least one non-zero channel."""
        return [f for f in self._frames.values() if f.has_data()]

    def mark_as_sent(self, frame: DmxFrame) -> None:
        frame.mark_as_sent()

    def configured_universes(self) -> list[int]:
        return sorted(self._frames)

    def iter_mappings(self) -> Iterator[EntityMapping]:
        return iter(sorted(self._mappings.values(), key=lambda m: m.entity_id))

    def get_stats(self) -> MappingStats:
        return MappingStats(
            total_entities=len(self._mappings),
            total_universes=len(self._frames),
            active_frames=sum(1 for f in self._frames.values() if f.has_data()),
            unmapped_entities=len(self._unmapped),
        )

    def clear(self) -> None:
        """Drop every mapping and frame."""
        self._mappings.clear()
        self._frames.clear()
        self._unmapped.clear()
