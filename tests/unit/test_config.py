from pathlib import Path

import pytest
from pydantic import ValidationError

from emitterhub.core.config import ReceiverConfig, RouterConfig, SenderConfig, Settings


def test_defaults_match_router_timing() -> None:
    settings = Settings()

    assert settings.receiver.listen_port == 8765
    assert settings.sender.artnet_port == 6454
    assert settings.router.tick_interval_s == pytest.approx(0.025)
    assert settings.sender.global_min_interval_s == pytest.approx(1 / 8000)


def test_invalid_values_are_rejected() -> None:
    with pytest.raises(ValidationError):
        SenderConfig(max_packets_per_second=0)
    with pytest.raises(ValidationError):
        SenderConfig(max_concurrent_sends=0)
    with pytest.raises(ValidationError):
        RouterConfig(tick_rate_hz=-1)


def test_yaml_round_trip(tmp_path: Path) -> None:
    settings = Settings()
    settings.receiver.target_universe = 3
    settings.router.full_resync_every_ticks = 40
    settings.mapping.mapping_csv = tmp_path / "mapping.csv"
    path = tmp_path / "config.yaml"

    settings.to_yaml(path)
    loaded = Settings.from_yaml(path)

    assert loaded.receiver.target_universe == 3
    assert loaded.router.full_resync_every_ticks == 40
    assert loaded.mapping.mapping_csv == tmp_path / "mapping.csv"


def test_empty_yaml_gives_defaults(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("", encoding="utf-8")

    assert Settings.from_yaml(path).receiver.listen_port == 8765


def test_environment_overrides_nested_fields(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("EMITTERHUB_RECEIVER__LISTEN_PORT", "9000")
    monkeypatch.setenv("EMITTERHUB_DEBUG", "true")

    settings = Settings()

    assert settings.receiver.listen_port == 9000
    assert settings.debug is True


def test_listen_port_zero_requests_ephemeral_port() -> None:
    assert ReceiverConfig(listen_port=0).listen_port == 0
    with pytest.raises(ValidationError):
        ReceiverConfig(listen_port=-1)
