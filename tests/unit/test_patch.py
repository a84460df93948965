from __future__ import annotations

import pytest

from emitterhub.core.exceptions import PatchRuleError
from emitterhub.dmx.frame import DmxFrame
from emitterhub.dmx.patch import PatchMap, PatchRule


def _frame(universe: int, values: dict[int, int]) -> DmxFrame:
    frame = DmxFrame(universe, "10.0.0.1")
    for channel, value in values.items():
        frame.set_channel(channel, value)
    frame.mark_as_sent()
    return frame


def test_rules_read_sources_before_writing() -> None:
    frame = _frame(0, {1: 10, 2: 20, 3: 30})
    patch = PatchMap([PatchRule(0, 1, 0, 2), PatchRule(0, 2, 0, 3)])

    patch.apply([frame])

    # Channel 3 receives channel 2's value from before the patch ran.
    assert frame.get_channel(2) == 10
    assert frame.get_channel(3) == 20


def test_rule_order_does_not_change_result() -> None:
    forward = _frame(0, {1: 10, 2: 20, 3: 30})
    backward = _frame(0, {1: 10, 2: 20, 3: 30})
    rules = [PatchRule(0, 1, 0, 2), PatchRule(0, 2, 0, 3), PatchRule(0, 3, 0, 1)]

    PatchMap(rules).apply([forward])
    PatchMap(reversed(rules)).apply([backward])

    assert forward.snapshot() == backward.snapshot()


def test_cross_universe_copy_marks_destination_dirty() -> None:
    src = _frame(0, {5: 99})
    dst = _frame(1, {})

    changed = PatchMap([PatchRule(0, 5, 1, 512)]).apply([src, dst])

    assert changed == 1
    assert dst.get_channel(512) == 99
    assert dst.dirty
    assert not src.dirty


def test_rules_for_missing_universes_are_skipped() -> None:
    frame = _frame(0, {1: 10})
    patch = PatchMap([PatchRule(7, 1, 0, 2), PatchRule(0, 1, 8, 2)])

    assert patch.apply([frame]) == 0
    assert frame.get_channel(2) == 0


def test_copy_of_equal_value_changes_nothing() -> None:
    frame = _frame(0, {1: 10, 2: 10})

    assert PatchMap([PatchRule(0, 1, 0, 2)]).apply([frame]) == 0
    assert not frame.dirty


@pytest.mark.parametrize(
    "fields",
    [(0, 0, 0, 1), (0, 1, 0, 513), (-1, 1, 0, 1), (0, 1, -2, 1)],
)
def test_invalid_rules_are_rejected(fields) -> None:
    with pytest.raises(PatchRuleError):
        PatchRule(*fields)


def test_replace_is_all_or_nothing() -> None:
    rule = PatchRule(0, 1, 0, 2)
    patch = PatchMap([rule])

    with pytest.raises(PatchRuleError):
        patch.replace([PatchRule(0, 3, 0, 4), "U0:1 -> U0:2"])

    assert patch.rules == (rule,)


def test_add_extend_and_clear() -> None:
    patch = PatchMap()
    patch.add(PatchRule(0, 1, 0, 2))
    patch.extend([PatchRule(0, 2, 0, 3), PatchRule(1, 1, 1, 2)])

    assert len(patch) == 3
    assert str(patch.rules[0]) == "U0:1 -> U0:2"

    patch.clear()
    assert len(patch) == 0
    assert patch.apply([_frame(0, {1: 1})]) == 0


def test_apply_to_buffers_reads_before_writing() -> None:
    u0 = bytearray(512)
    u1 = bytearray(512)
    u0[0], u0[1] = 10, 20
    patch = PatchMap([
        PatchRule(0, 1, 0, 2),
        PatchRule(0, 2, 1, 1),
        PatchRule(0, 1, 7, 1),  # no buffer for universe 7
    ])

    changed = patch.apply_to_buffers({0: u0, 1: u1})

    assert changed == 2
    assert u0[1] == 10
    assert u1[0] == 20
