from pathlib import Path

import pytest

from emitterhub.core.exceptions import ConfigError, PatchRuleError
from emitterhub.dmx.mapper import DmxMapper
from emitterhub.dmx.patch import PatchRule
from emitterhub.loaders import load_mapping_csv, load_patch_csv


def _write(tmp_path: Path, name: str, text: str) -> Path:
    path = tmp_path / name
    path.write_text(text, encoding="utf-8")
    return path


def test_mapping_csv_loads_valid_rows_and_skips_bad_ones(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        "mapping.csv",
        "entityStart;entityEnd;targetIP;universeStart;universeEnd;channelMode;startChannel\n"
        "100;269;192.168.1.45;0;0;RGB;1\n"
        "\n"
        "300;301;192.168.1.46;2;2;rgbw;1\n"
        "400;401;192.168.1.47;3\n"
        "500;abc;192.168.1.47;3;3;RGB;1\n"
        "600;900;192.168.1.48;4;4;RGB;1\n",
    )
    mapper = DmxMapper()

    report = load_mapping_csv(path, mapper)

    assert report.loaded == 2
    assert report.skipped == 3
    assert report.entities == 172
    assert len(report.errors) == 3
    assert mapper.get_mapping(300).width == 4
    assert mapper.get_mapping(269).start_channel == 508
    assert mapper.get_mapping(600) is None
    assert mapper.configured_universes() == [0, 2]


def test_mapping_csv_without_header(tmp_path: Path) -> None:
    path = _write(tmp_path, "mapping.csv", "1;2;10.0.0.1;0;0;RGB;10\n")
    mapper = DmxMapper()

    report = load_mapping_csv(path, mapper)

    assert report.loaded == 1
    assert mapper.get_mapping(2).start_channel == 13


def test_missing_mapping_csv_is_a_config_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        load_mapping_csv(tmp_path / "nope.csv", DmxMapper())


def test_patch_csv_parses_rules(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        "patch.csv",
        "srcUniverse;srcChannel;dstUniverse;dstChannel\n"
        "0;1;0;2\n"
        "\n"
        "0;2;1;512\n",
    )

    rules = load_patch_csv(path)

    assert rules == [PatchRule(0, 1, 0, 2), PatchRule(0, 2, 1, 512)]


@pytest.mark.parametrize(
    "row",
    ["0;1;0;513", "0;1;0", "0;x;0;2"],
)
def test_patch_csv_rejects_bad_rows_with_line_number(tmp_path: Path, row: str) -> None:
    path = _write(tmp_path, "patch.csv", f"0;1;0;2\n{row}\n")

    with pytest.raises(PatchRuleError) as exc_info:
        load_patch_csv(path)

    assert exc_info.value.line == 2
    assert "line 2" in str(exc_info.value)


def test_missing_patch_csv_is_a_config_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        load_patch_csv(tmp_path / "nope.csv")
