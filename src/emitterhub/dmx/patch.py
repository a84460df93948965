"""
Patch Engine: channel-to-channel copy rules applied after mapping.

Application is two-phase: every source value is read before any
destination is written, so rule order never changes the outcome and a
destination of one rule that is the source of another still contributes
its original value.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping

from emitterhub.core.exceptions import PatchRuleError
from emitterhub.dmx.frame import DmxFrame
from emitterhub.dmx.universe import DMX_CHANNEL_MAX, is_valid_dmx_channel


@dataclass(frozen=True)
class PatchRule:
    """Copy the value of one channel to another channel."""

    src_universe: int
    src_channel: int  # 1..512
    dst_universe: int
    dst_channel: int  # 1..512

    def __post_init__(self) -> None:
        if not is_valid_dmx_channel(self.src_channel) or not is_valid_dmx_channel(self.dst_channel):
            raise PatchRuleError(str(self), f"channels must be in [1..{DMX_CHANNEL_MAX}]")
        if self.src_universe < 0 or self.dst_universe < 0:
            raise PatchRuleError(str(self), "universes must be >= 0")

    def __str__(self) -> str:
        return f"U{self.src_universe}:{self.src_channel} -> U{self.dst_universe}:{self.dst_channel}"


class PatchMap:
    """Ordered rule set plus its application on a set of frames."""

    def __init__(self, rules: Iterable[PatchRule] = ()):
        self._rules: tuple[PatchRule, ...] = ()
        self.replace(rules)

    @property
    def rules(self) -> tuple[PatchRule, ...]:
        return self._rules

    def __len__(self) -> int:
        return len(self._rules)

    def add(self, rule: PatchRule) -> None:
        self.extend([rule])

    def extend(self, rules: Iterable[PatchRule]) -> None:
        """Append rules; nothing is added unless every rule is valid."""
        self._rules = self._rules + self._validated(rules)

    def replace(self, rules: Iterable[PatchRule]) -> None:
        """Swap the whole rule set once every new rule has been validated."""
        self._rules = self._validated(rules)

    def clear(self) -> None:
        self._rules = ()

    @staticmethod
    def _validated(rules: Iterable[PatchRule]) -> tuple[PatchRule, ...]:
        validated = []
        for rule in rules:
            if not isinstance(rule, PatchRule):
                raise PatchRuleError(repr(rule), "not a PatchRule")
            validated.append(rule)
        return tuple(validated)

    def apply(self, frames: Iterable[DmxFrame]) -> int:
        """
        Apply every rule to the frames.

        Rules whose source or destination universe has no frame are skipped.
        Returns the number of destination channels whose value changed.
        """
        rules = self._rules
        if not rules:
            return 0

        by_universe = {f.universe: f for f in frames}

        # 1) Read all sources
        values: list[tuple[DmxFrame, int, int]] = []
        for rule in rules:
            src = by_universe.get(rule.src_universe)
            dst = by_universe.get(rule.dst_universe)
            if src is None or dst is None:
                continue
            values.append((dst, rule.dst_channel, src.get_channel(rule.src_channel)))

        # 2) Write destinations
        changed = 0
        for dst, channel, value in values:
            if dst.set_channel(channel, value):
                changed += 1
        return changed

    def apply_to_buffers(self, buffers: Mapping[int, bytearray]) -> int:
        """Two-phase application on raw 512-byte universe buffers keyed by universe."""
        reads: list[tuple[bytearray, int, int]] = []
        for rule in self._rules:
            src = buffers.get(rule.src_universe)
            dst = buffers.get(rule.dst_universe)
            if src is None or dst is None:
                continue
            reads.append((dst, rule.dst_channel - 1, src[rule.src_channel - 1]))

        changed = 0
        for dst, index, value in reads:
            if dst[index] != value:
                dst[index] = value
                changed += 1
        return changed

    def __repr__(self) -> str:
        return f"PatchMap({len(self._rules)} rules)"
