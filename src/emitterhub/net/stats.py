"""Transmission counters with a rolling one-second rate window."""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from typing import Optional

RATE_WINDOW_S = 1.0


class RollingRate:
    """Events and byte totals over the last ``window_s`` seconds."""

    def __init__(self, window_s: float = RATE_WINDOW_S):
        self.window_s = window_s
        self._events: deque[tuple[float, int]] = deque()
        self._bytes_in_window = 0

    def record(self, now: float, nbytes: int = 0) -> None:
        self._events.append((now, nbytes))
        self._bytes_in_window += nbytes
        self._prune(now)

    def _prune(self, now: float) -> None:
        horizon = now - self.window_s
        while self._events and self._events[0][0] <= horizon:
            _, nbytes = self._events.popleft()
            self._bytes_in_window -= nbytes

    def packet_rate(self, now: float) -> float:
        self._prune(now)
        return len(self._events) / self.window_s

    def byte_rate(self, now: float) -> float:
        self._prune(now)
        return self._bytes_in_window / self.window_s


@dataclass(frozen=True)
class DestinationSnapshot:
    """Read-only copy of one destination's counters."""

    target_ip: str
    universe: int
    packets_sent: int
    bytes_sent: int
    last_send_time: Optional[float]
    packets_per_second: float
    bytes_per_second: float
    last_active_channels: int


@dataclass
class NetworkStats:
    """Counters for one (target IP, universe) destination."""

    target_ip: str
    universe: int
    packets_sent: int = 0
    bytes_sent: int = 0
    last_send_time: Optional[float] = None  # wall clock
    last_active_channels: int = 0
    _rate: RollingRate = field(default_factory=RollingRate, repr=False)

    def record(self, nbytes: int, now: float, active_channels: int = 0) -> None:
        self.packets_sent += 1
        self.bytes_sent += nbytes
        self.last_send_time = time.time()
        self.last_active_channels = active_channels
        self._rate.record(now, nbytes)

    def snapshot(self, now: float) -> DestinationSnapshot:
        return DestinationSnapshot(
            target_ip=self.target_ip,
            universe=self.universe,
            packets_sent=self.packets_sent,
            bytes_sent=self.bytes_sent,
            last_send_time=self.last_send_time,
            packets_per_second=self._rate.packet_rate(now),
            bytes_per_second=self._rate.byte_rate(now),
            last_active_channels=self.last_active_channels,
        )
