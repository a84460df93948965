"""
DMX Frame: one universe's 512-channel buffer with change tracking.

Writes compare against the current value first so that re-writing an
unchanged color never marks the frame dirty. Dirty state is tracked per
channel and aggregated into a frame-level flag that is cleared only after
a successful transmission.
"""

from __future__ import annotations

from emitterhub.core.exceptions import DMXAddressError
from emitterhub.dmx.universe import (
    DMX_CHANNEL_COUNT,
    DMX_CHANNEL_MAX,
    clamp_dmx_value,
    is_valid_dmx_channel,
)


class DmxFrame:
    """512-channel buffer for one (universe, target IP) pair."""

    def __init__(self, universe: int = 0, target_ip: str = ""):
        self.universe = universe
        self.target_ip = target_ip

        self._channels = bytearray(DMX_CHANNEL_COUNT)
        self._dirty_channels: set[int] = set()
        self._active_channels = 0

    @property
    def channels(self) -> memoryview:
        """Read-only view of the channel data (index 0 is channel 1)."""
        return memoryview(self._channels).toreadonly()

    @property
    def dirty(self) -> bool:
        return bool(self._dirty_channels)

    @property
    def dirty_channels(self) -> frozenset[int]:
        return frozenset(self._dirty_channels)

    @property
    def active_channel_count(self) -> int:
        """Number of channels holding a non-zero value."""
        return self._active_channels

    def set_channel(self, channel: int, value: int) -> bool:
        """
        Set a channel (1-512) and return True if its value changed.

        Values are clamped to 0-255.
        """
        if not is_valid_dmx_channel(channel):
            raise DMXAddressError(channel, f"channel must be 1-{DMX_CHANNEL_MAX}")

        value = clamp_dmx_value(value)
        index = channel - 1
        previous = self._channels[index]
        if previous == value:
            return False

        self._channels[index] = value
        self._dirty_channels.add(channel)
        if previous == 0:
            self._active_channels += 1
        elif value == 0:
            self._active_channels -= 1
        return True

    def get_channel(self, channel: int) -> int:
        """Get a channel value (1-512); out-of-range channels read as 0."""
        if not is_valid_dmx_channel(channel):
            return 0
        return self._channels[channel - 1]

    def set_rgb(self, start_channel: int, r: int, g: int, b: int) -> bool:
        changed = self.set_channel(start_channel, r)
        changed |= self.set_channel(start_channel + 1, g)
        changed |= self.set_channel(start_channel + 2, b)
        return changed

    def set_rgbw(self, start_channel: int, r: int, g: int, b: int, w: int) -> bool:
        changed = self.set_rgb(start_channel, r, g, b)
        changed |= self.set_channel(start_channel + 3, w)
        return changed

    def has_data(self) -> bool:
        """True when at least one channel is non-zero."""
        return self._active_channels > 0

    def clear(self) -> None:
        """Zero every channel, marking the ones that were lit as dirty."""
        for index, value in enumerate(self._channels):
            if value:
                self._channels[index] = 0
                self._dirty_channels.add(index + 1)
        self._active_channels = 0

    def load(self, data: bytes) -> int:
        """
        Overwrite all 512 channels with ``data``.

        Only channels whose value moved are marked dirty. Returns the number
        of changed channels.
        """
        if len(data) != DMX_CHANNEL_COUNT:
            raise ValueError(f"frame data must be {DMX_CHANNEL_COUNT} bytes, got {len(data)}")
        if self._channels == data:
            return 0

        changed = 0
        for index, (old, new) in enumerate(zip(self._channels, data)):
            if old != new:
                self.set_channel(index + 1, new)
                changed += 1
        return changed

    def snapshot(self) -> bytes:
        """Immutable copy of the 512 channel bytes."""
        return bytes(self._channels)

    def mark_as_sent(self) -> None:
        """Clear the dirty state without touching channel data."""
        self._dirty_channels.clear()

    def __repr__(self) -> str:
        return (
            f"DmxFrame(universe={self.universe}, target_ip={self.target_ip!r}, "
            f"active={self._active_channels}, dirty={self.dirty})"
        )
