from __future__ import annotations

import socket

import pytest

from emitterhub.core.config import SenderConfig
from emitterhub.core.exceptions import SenderStartError
from emitterhub.dmx.artnet import build_artdmx_packet
from emitterhub.net import sender as sender_module
from emitterhub.net.sender import CongestionMonitor, RateControlledSender, SendResult


class _Clock:
    def __init__(self, now: float = 100.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _packet(value: int, universe: int = 0) -> bytes:
    return build_artdmx_packet(universe, bytes([value % 256]))


def test_send_packet_reaches_artnet_port(fake_socket) -> None:
    sender = RateControlledSender(SenderConfig(), sock=fake_socket)

    result = sender.send_packet("10.0.0.1", 0, _packet(1), active_channels=1)

    assert result is SendResult.SENT
    assert fake_socket.sent[0][2] == ("10.0.0.1", 6454)
    snap = sender.snapshot()
    assert snap.packets_sent == 1
    assert snap.bytes_sent == len(_packet(1))
    assert snap.destinations[("10.0.0.1", 0)].last_active_channels == 1


def test_identical_packets_are_deduplicated_unless_forced(fake_socket) -> None:
    sender = RateControlledSender(SenderConfig(destination_min_gap_s=0), sock=fake_socket)

    assert sender.send_packet("10.0.0.1", 0, _packet(1)) is SendResult.SENT
    assert sender.send_packet("10.0.0.1", 0, _packet(1)) is SendResult.DUPLICATE
    assert sender.send_packet("10.0.0.1", 0, _packet(1), force=True) is SendResult.SENT
    assert sender.send_packet("10.0.0.1", 1, _packet(1, universe=1)) is SendResult.SENT

    assert len(fake_socket.sent) == 3
    assert sender.duplicates == 1
    assert SendResult.DUPLICATE.delivered


def test_global_rate_limit_spaces_packets(fake_socket) -> None:
    config = SenderConfig(
        max_packets_per_second=200,
        max_defer_s=1.0,
        destination_min_gap_s=0,
        dedupe_identical=False,
    )
    sender = RateControlledSender(config, sock=fake_socket)

    results = [sender.send_packet(f"10.0.0.{i % 3 + 1}", i % 3, _packet(i)) for i in range(20)]

    assert all(r is SendResult.SENT for r in results)
    times = [t for t, _, _ in fake_socket.sent]
    gaps = [b - a for a, b in zip(times, times[1:])]
    assert min(gaps) >= config.global_min_interval_s - 1e-9


def test_wait_beyond_max_defer_is_throttled(fake_socket) -> None:
    config = SenderConfig(max_packets_per_second=1, max_defer_s=0.01)
    sender = RateControlledSender(config, sock=fake_socket)

    assert sender.send_packet("10.0.0.1", 0, _packet(1)) is SendResult.SENT
    assert sender.send_packet("10.0.0.2", 0, _packet(2)) is SendResult.THROTTLED

    assert sender.throttled == 1
    assert sender.snapshot().dropped == 1
    assert not SendResult.THROTTLED.delivered


def test_destination_gap_is_per_ip(fake_socket) -> None:
    config = SenderConfig(destination_min_gap_s=0.5, max_defer_s=0.01)
    sender = RateControlledSender(config, sock=fake_socket)

    assert sender.send_packet("10.0.0.1", 0, _packet(1)) is SendResult.SENT
    assert sender.send_packet("10.0.0.1", 1, _packet(2, universe=1)) is SendResult.THROTTLED
    assert sender.send_packet("10.0.0.2", 0, _packet(3)) is SendResult.SENT


def test_failed_destination_backs_off_alone(socket_factory) -> None:
    sock = socket_factory(fail_for={"10.0.0.1"})
    sender = RateControlledSender(SenderConfig(failure_backoff_s=60), sock=sock)

    assert sender.send_packet("10.0.0.1", 0, _packet(1)) is SendResult.FAILED
    assert sender.send_packet("10.0.0.1", 0, _packet(2)) is SendResult.BACKOFF
    assert sender.send_packet("10.0.0.2", 0, _packet(3)) is SendResult.SENT

    assert sender.failures == 1
    assert sender.backoff_dropped == 1
    assert sender.snapshot().dropped == 2


def test_send_requires_open_sender() -> None:
    sender = RateControlledSender()

    with pytest.raises(RuntimeError):
        sender.send_packet("10.0.0.1", 0, _packet(1))


def test_cancel_returns_cancelled_until_reopened(fake_socket) -> None:
    sender = RateControlledSender(sock=fake_socket)

    sender.cancel()
    assert sender.send_packet("10.0.0.1", 0, _packet(1)) is SendResult.CANCELLED

    sender.open()
    assert sender.send_packet("10.0.0.1", 0, _packet(1)) is SendResult.SENT


def test_close_releases_socket(fake_socket) -> None:
    sender = RateControlledSender(sock=fake_socket)

    sender.close()
    sender.close()

    assert fake_socket.closed
    assert not sender.is_open


def test_open_failure_raises_sender_start_error(monkeypatch: pytest.MonkeyPatch) -> None:
    def _refuse(*args, **kwargs):
        raise OSError("no sockets left")

    monkeypatch.setattr(sender_module.socket, "socket", _refuse)
    sender = RateControlledSender()

    with pytest.raises(SenderStartError):
        sender.open()
    assert not sender.is_open


def test_congestion_flag_raised_by_failures_and_cools_down() -> None:
    clock = _Clock()
    monitor = CongestionMonitor(
        SenderConfig(congestion_failure_threshold=3, congestion_cooldown_s=2.0),
        clock=clock,
    )

    monitor.record(failed=True)
    monitor.record(failed=True)
    assert not monitor.congested
    monitor.record(failed=True)
    assert monitor.congested
    assert monitor.penalty_s == pytest.approx(0.001)

    clock.now += 2.5
    assert not monitor.congested
    assert monitor.penalty_s == 0.0


def test_congestion_flag_raised_by_packet_rate() -> None:
    clock = _Clock()
    monitor = CongestionMonitor(SenderConfig(congestion_rate_threshold=10), clock=clock)

    for _ in range(9):
        monitor.record(failed=False)
        clock.now += 0.01
    assert not monitor.congested
    monitor.record(failed=False)
    assert monitor.congested


def test_default_sender_uses_real_socket() -> None:
    sender = RateControlledSender()
    sender.open()
    try:
        assert isinstance(sender._socket, socket.socket)
    finally:
        sender.close()
