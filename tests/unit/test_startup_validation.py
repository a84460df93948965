from pathlib import Path

import pytest
from click.testing import CliRunner

from emitterhub.core.config import MappingConfig, RouterConfig, Settings
from emitterhub.core.exceptions import ConfigError
from emitterhub.ui.cli import _validate_startup_config, cli


def _mapping_file(tmp_path: Path) -> Path:
    path = tmp_path / "mapping.csv"
    path.write_text("100;103;10.0.0.1;0;0;RGB;1\n", encoding="utf-8")
    return path


def test_startup_validation_requires_mapping_csv() -> None:
    with pytest.raises(ConfigError):
        _validate_startup_config(Settings())


def test_startup_validation_rejects_missing_patch_file(tmp_path: Path) -> None:
    settings = Settings(
        mapping=MappingConfig(
            mapping_csv=_mapping_file(tmp_path),
            patch_csv=tmp_path / "missing_patch.csv",
        )
    )

    with pytest.raises(ConfigError):
        _validate_startup_config(settings)


def test_startup_validation_rejects_non_positive_tick_timeout(tmp_path: Path) -> None:
    settings = Settings(
        mapping=MappingConfig(mapping_csv=_mapping_file(tmp_path)),
        router=RouterConfig(tick_timeout_s=0),
    )

    with pytest.raises(ConfigError):
        _validate_startup_config(settings)


def test_startup_validation_allows_valid_config(tmp_path: Path) -> None:
    settings = Settings(mapping=MappingConfig(mapping_csv=_mapping_file(tmp_path)))

    _validate_startup_config(settings)


def test_layout_command_prints_channel_assignment(tmp_path: Path) -> None:
    result = CliRunner().invoke(cli, ["layout", str(_mapping_file(tmp_path))], obj={})

    assert result.exit_code == 0
    assert "4 entities on 1 universes" in result.output
    assert "entity   103 -> 10.0.0.1 U0   ch  10..12" in result.output


def test_run_without_mapping_exits_with_error() -> None:
    result = CliRunner().invoke(cli, ["run"], obj={})

    assert result.exit_code == 1
    assert "No mapping CSV configured" in result.output


def test_send_test_rejects_bad_color() -> None:
    result = CliRunner().invoke(cli, ["send-test", "--color", "1,2"], obj={})

    assert result.exit_code == 1
