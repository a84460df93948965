"""
Rate-Controlled Sender: paced Art-Net transmission over one UDP socket.

Three independent controls apply to every send:
- a concurrency permit bounding sends in flight across all destinations
- a minimum gap between two sends to the same controller IP
- a global minimum interval derived from max_packets_per_second

A send that would have to wait longer than max_defer_s is dropped; the
next tick carries the frame again, and the periodic full resync heals
anything lost.
"""

from __future__ import annotations

import socket
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

import structlog

from emitterhub.core.config import SenderConfig
from emitterhub.core.exceptions import SenderStartError
from emitterhub.net.stats import RATE_WINDOW_S, DestinationSnapshot, NetworkStats, RollingRate

logger = structlog.get_logger()


class SendResult(Enum):
    """Outcome of a single send attempt."""

    SENT = "sent"
    DUPLICATE = "duplicate"
    THROTTLED = "throttled"
    BACKOFF = "backoff"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def delivered(self) -> bool:
        """True when the controller holds this frame's content."""
        return self in (SendResult.SENT, SendResult.DUPLICATE)


class CongestionMonitor:
    """
    Heuristic congestion detector.

    Looks at the last second of send outcomes: too many socket failures or
    a packet rate above the configured ceiling raises the flag, which then
    holds for congestion_cooldown_s after the last trigger.
    """

    def __init__(self, config: SenderConfig, clock: Callable[[], float] = time.monotonic):
        self.config = config
        self._clock = clock
        self._sends = RollingRate(RATE_WINDOW_S)
        self._failures: deque[float] = deque()
        self._congested_until = 0.0
        self._lock = threading.Lock()

    def record(self, failed: bool) -> None:
        now = self._clock()
        with self._lock:
            if failed:
                self._failures.append(now)
            else:
                self._sends.record(now)
            self._evaluate(now)

    def _evaluate(self, now: float) -> None:
        horizon = now - RATE_WINDOW_S
        while self._failures and self._failures[0] <= horizon:
            self._failures.popleft()

        too_many_failures = len(self._failures) >= self.config.congestion_failure_threshold
        too_fast = self._sends.packet_rate(now) >= self.config.congestion_rate_threshold
        if too_many_failures or too_fast:
            if now >= self._congested_until:
                logger.warning(
                    "Network congestion detected",
                    failures=len(self._failures),
                    failures_exceeded=too_many_failures,
                    rate_exceeded=too_fast,
                )
            self._congested_until = now + self.config.congestion_cooldown_s

    @property
    def congested(self) -> bool:
        return self._clock() < self._congested_until

    @property
    def penalty_s(self) -> float:
        """Extra per-destination delay while congested."""
        return self.config.congestion_penalty_s if self.congested else 0.0


@dataclass
class _DestinationState:
    lock: threading.Lock = field(default_factory=threading.Lock)
    last_send: float = float("-inf")
    backoff_until: float = float("-inf")


@dataclass(frozen=True)
class SenderSnapshot:
    """Read-only copy of the sender's counters."""

    packets_sent: int
    bytes_sent: int
    duplicates: int
    throttled: int
    backoff_dropped: int
    failures: int
    congested: bool
    packets_per_second: float
    destinations: dict[tuple[str, int], DestinationSnapshot]

    @property
    def dropped(self) -> int:
        return self.throttled + self.backoff_dropped + self.failures


class RateControlledSender:
    """Sends ArtDMX packets to per-IP endpoints under pacing limits."""

    def __init__(
        self,
        config: Optional[SenderConfig] = None,
        sock: Optional[socket.socket] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or SenderConfig()
        self._socket = sock
        self._clock = clock

        self._permits = threading.BoundedSemaphore(self.config.max_concurrent_sends)
        self._global_lock = threading.Lock()
        self._last_global_send = float("-inf")
        self._cancel = threading.Event()

        self._endpoints: dict[str, tuple[str, int]] = {}
        self._destinations: dict[str, _DestinationState] = {}
        self._registry_lock = threading.Lock()

        self._last_packets: dict[tuple[str, int], bytes] = {}
        self._stats: dict[tuple[str, int], NetworkStats] = {}
        self._stats_lock = threading.Lock()
        self._rate = RollingRate(RATE_WINDOW_S)

        self.congestion = CongestionMonitor(self.config, clock)

        self.packets_sent = 0
        self.bytes_sent = 0
        self.duplicates = 0
        self.throttled = 0
        self.backoff_dropped = 0
        self.failures = 0

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self._socket is not None

    def open(self) -> None:
        """Create the shared UDP socket and re-arm after a cancel()."""
        self._cancel.clear()
        if self._socket is not None:
            return
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            if self.config.broadcast:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
        except OSError as e:
            raise SenderStartError(str(e)) from e
        self._socket = sock
        logger.info(
            "Art-Net sender opened",
            port=self.config.artnet_port,
            max_concurrent=self.config.max_concurrent_sends,
        )

    def cancel(self) -> None:
        """Wake every pacing wait; pending sends return CANCELLED."""
        self._cancel.set()

    def close(self) -> None:
        self._cancel.set()
        if self._socket is not None:
            self._socket.close()
            self._socket = None
            logger.info(
                "Art-Net sender closed",
                packets_sent=self.packets_sent,
                failures=self.failures,
            )

    # -------------------------------------------------------------------------
    # Sending
    # -------------------------------------------------------------------------

    def _endpoint(self, target_ip: str) -> tuple[str, int]:
        endpoint = self._endpoints.get(target_ip)
        if endpoint is None:
            endpoint = (socket.gethostbyname(target_ip), self.config.artnet_port)
            self._endpoints[target_ip] = endpoint
        return endpoint

    def _destination(self, target_ip: str) -> _DestinationState:
        with self._registry_lock:
            state = self._destinations.get(target_ip)
            if state is None:
                state = self._destinations[target_ip] = _DestinationState()
            return state

    def _wait_until(self, deadline: float) -> Optional[SendResult]:
        """Sleep until deadline; returns a drop result instead when not allowed."""
        remaining = deadline - self._clock()
        if remaining <= 0:
            return None
        if remaining > self.config.max_defer_s:
            return SendResult.THROTTLED
        while remaining > 0:
            if self._cancel.wait(remaining):
                return SendResult.CANCELLED
            remaining = deadline - self._clock()
        return None

    def _count_drop(self, result: SendResult) -> SendResult:
        with self._stats_lock:
            if result is SendResult.THROTTLED:
                self.throttled += 1
            elif result is SendResult.BACKOFF:
                self.backoff_dropped += 1
        return result

    def send_packet(
        self,
        target_ip: str,
        universe: int,
        packet: bytes,
        force: bool = False,
        active_channels: int = 0,
    ) -> SendResult:
        """
        Send one encoded packet to target_ip.

        force bypasses the duplicate check (used for full resyncs).
        """
        if self._socket is None:
            raise RuntimeError("RateControlledSender is not open")
        if self._cancel.is_set():
            return SendResult.CANCELLED

        key = (target_ip, universe)
        if self.config.dedupe_identical and not force and self._last_packets.get(key) == packet:
            with self._stats_lock:
                self.duplicates += 1
            return SendResult.DUPLICATE

        dest = self._destination(target_ip)
        if self._clock() < dest.backoff_until:
            return self._count_drop(SendResult.BACKOFF)

        if not self._permits.acquire(timeout=self.config.send_timeout_s):
            return self._count_drop(SendResult.THROTTLED)
        try:
            if not dest.lock.acquire(timeout=self.config.max_defer_s):
                return self._count_drop(SendResult.THROTTLED)
            try:
                gap = self.config.destination_min_gap_s + self.congestion.penalty_s
                blocked = self._wait_until(dest.last_send + gap)
                if blocked is not None:
                    return self._count_drop(blocked)
                return self._send_paced(dest, key, packet, active_channels)
            finally:
                dest.lock.release()
        finally:
            self._permits.release()

    def _send_paced(
        self,
        dest: _DestinationState,
        key: tuple[str, int],
        packet: bytes,
        active_channels: int,
    ) -> SendResult:
        target_ip, universe = key
        if not self._global_lock.acquire(timeout=self.config.max_defer_s):
            return self._count_drop(SendResult.THROTTLED)
        try:
            blocked = self._wait_until(self._last_global_send + self.config.global_min_interval_s)
            if blocked is not None:
                return self._count_drop(blocked)

            sock = self._socket
            if sock is None:
                return SendResult.CANCELLED
            try:
                sock.sendto(packet, self._endpoint(target_ip))
            except OSError as e:
                return self._record_failure(dest, target_ip, universe, e)

            now = self._clock()
            self._last_global_send = now
            dest.last_send = now
        finally:
            self._global_lock.release()

        with self._stats_lock:
            self.packets_sent += 1
            self.bytes_sent += len(packet)
            self._rate.record(now, len(packet))
            stats = self._stats.get(key)
            if stats is None:
                stats = self._stats[key] = NetworkStats(target_ip, universe)
            stats.record(len(packet), now, active_channels)
            self._last_packets[key] = packet
        self.congestion.record(failed=False)
        return SendResult.SENT

    def _record_failure(
        self,
        dest: _DestinationState,
        target_ip: str,
        universe: int,
        error: OSError,
    ) -> SendResult:
        dest.backoff_until = self._clock() + self.config.failure_backoff_s
        with self._stats_lock:
            self.failures += 1
            failures = self.failures
        self.congestion.record(failed=True)
        if failures % 100 == 1:
            logger.error(
                "Art-Net send failed",
                target_ip=target_ip,
                universe=universe,
                error=str(error),
                failures=failures,
            )
        return SendResult.FAILED

    # -------------------------------------------------------------------------
    # Observation
    # -------------------------------------------------------------------------

    def snapshot(self) -> SenderSnapshot:
        now = self._clock()
        with self._stats_lock:
            return SenderSnapshot(
                packets_sent=self.packets_sent,
                bytes_sent=self.bytes_sent,
                duplicates=self.duplicates,
                throttled=self.throttled,
                backoff_dropped=self.backoff_dropped,
                failures=self.failures,
                congested=self.congestion.congested,
                packets_per_second=self._rate.packet_rate(now),
                destinations={k: s.snapshot(now) for k, s in self._stats.items()},
            )
