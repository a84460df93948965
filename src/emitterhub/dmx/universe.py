"""Canonical DMX universe sizing, indexing and channel-mode helpers."""

from __future__ import annotations

DMX_CHANNEL_COUNT = 512
DMX_CHANNEL_MIN = 1
DMX_CHANNEL_MAX = DMX_CHANNEL_COUNT
DMX_VALUE_MAX = 255

CHANNEL_MODE_WIDTHS = {
    "RGB": 3,
    "RGBW": 4,
}


def is_valid_dmx_channel(channel: int) -> bool:
    """Return True when a channel index is a valid 1-based DMX slot."""
    return DMX_CHANNEL_MIN <= channel <= DMX_CHANNEL_MAX


def clamp_dmx_value(value: int) -> int:
    return max(0, min(DMX_VALUE_MAX, int(value)))


def channel_width(mode: str) -> int:
    """
    Number of consecutive channels one entity occupies for a channel mode.

    RGB uses 3 slots, RGBW 4; any other mode drives a single slot.
    """
    return CHANNEL_MODE_WIDTHS.get(mode.strip().upper(), 1)


def fits_in_universe(start_channel: int, width: int) -> bool:
    """True when ``width`` slots starting at ``start_channel`` stay within 1..512."""
    return is_valid_dmx_channel(start_channel) and start_channel + width - 1 <= DMX_CHANNEL_MAX
