"""
Router: ties the eHuB receiver, DMX mapper, patch engine and Art-Net
sender into a fixed-rate pipeline.

Every tick snapshots the latest entity table, projects it into DMX
frames, applies the patch, then sends the frames that changed since
their last successful send. A periodic full resync sends every frame to
heal packet loss.
"""

from __future__ import annotations

import queue
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional, Union

import structlog

from emitterhub.core.config import Settings
from emitterhub.core.exceptions import RouterError, RouterStateError
from emitterhub.dmx.artnet import ARTNET_HEADER_SIZE, encode_frame
from emitterhub.dmx.frame import DmxFrame
from emitterhub.dmx.mapper import DmxMapper, MappingStats
from emitterhub.dmx.patch import PatchMap, PatchRule
from emitterhub.ehub.receiver import EHubReceiver
from emitterhub.loaders.csv_mapping import LoadReport, load_mapping_csv
from emitterhub.loaders.csv_patch import load_patch_csv
from emitterhub.net.sender import RateControlledSender, SendResult
from emitterhub.net.stats import DestinationSnapshot

logger = structlog.get_logger()


class RouterState(Enum):
    """Router lifecycle."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass(frozen=True)
class FrameSentEvent:
    """Published after a frame reached the network."""

    universe: int
    target_ip: str
    channels: bytes
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class TickStats:
    """Outcome of one tick."""

    tick: int
    full_resync: bool
    frames_selected: int
    sent: int
    duplicates: int
    dropped: int
    timed_out: int
    duration_s: float
    late_sent: int = 0


@dataclass(frozen=True)
class RouterSnapshot:
    """Read-only view for dashboards and monitors."""

    state: RouterState
    messages_received: int
    active_entities: int
    decode_errors: int
    packets_sent: int
    bytes_sent: int
    dropped: int
    duplicates: int
    congested: bool
    configured_universes: list[int]
    universes: dict[int, DestinationSnapshot]
    mapping: MappingStats
    patch_rules: int
    patch_enabled: bool
    tick_errors: int
    last_tick: Optional[TickStats]


class Router:
    """
    Owns the mapper, patch map and sender; runs the tick loop.

    The receiver runs its own receive loop; the router only reads copies
    of its entity table, so the two loops never share mutable state.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        receiver: Optional[EHubReceiver] = None,
        sender: Optional[RateControlledSender] = None,
    ):
        self.settings = settings or Settings()
        self.config = self.settings.router

        self.receiver = receiver or EHubReceiver(self.settings.receiver)
        self.sender = sender or RateControlledSender(self.settings.sender)
        self.mapper = DmxMapper()
        self._patch = PatchMap()
        self._patch_enabled = self.config.patch_enabled

        self._state = RouterState.STOPPED
        self._state_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._tick_thread: Optional[threading.Thread] = None
        self._executor: Optional[ThreadPoolExecutor] = None

        self._frame_subscribers: list[queue.Queue] = []

        # Tick bookkeeping
        self._tick_count = 0
        self._seen_version = -1
        self._mapping_stale = True
        self._applied_patch: Optional[tuple[PatchRule, ...]] = None
        self._in_flight: dict[int, tuple[DmxFrame, bytes, Future]] = {}
        self._last_resync = time.monotonic()
        self._last_tick: Optional[TickStats] = None
        self.tick_errors = 0

        # Stats logging
        self._last_log_time = time.monotonic()
        self._frames_sent_window = 0

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    def add_entity_range(
        self,
        entity_start: int,
        entity_end: int,
        ip: str,
        universe_start: int,
        universe_end: int,
        channel_mode: str = "RGB",
        start_channel: int = 1,
    ) -> int:
        """Map a range of entities onto consecutive DMX channels."""
        self._mapping_stale = True
        return self.mapper.add_entity_range(
            entity_start,
            entity_end,
            ip,
            universe_start,
            universe_end,
            channel_mode,
            start_channel,
        )

    def load_mapping_csv(self, path: Union[str, Path]) -> LoadReport:
        self._mapping_stale = True
        return load_mapping_csv(path, self.mapper)

    @property
    def patch(self) -> PatchMap:
        return self._patch

    @property
    def patch_enabled(self) -> bool:
        return self._patch_enabled

    def load_patch(self, rules: Iterable[PatchRule]) -> None:
        """Replace the live patch with a validated rule set."""
        # Built aside and swapped in one assignment; the tick reads the reference once.
        self._patch = PatchMap(rules)
        logger.info("Patch loaded", rules=len(self._patch))

    def load_patch_csv(self, path: Union[str, Path]) -> None:
        self.load_patch(load_patch_csv(path))

    def set_patch_enabled(self, enabled: bool) -> None:
        if enabled != self._patch_enabled:
            logger.info("Patch toggled", enabled=enabled)
        self._patch_enabled = enabled

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def state(self) -> RouterState:
        return self._state

    def _set_state(self, state: RouterState) -> None:
        with self._state_lock:
            self._state = state

    def start(self) -> None:
        """
        Start the receive loop, then the tick loop.

        Socket failures propagate to the caller and leave the router stopped.
        """
        with self._state_lock:
            if self._state in (RouterState.STARTING, RouterState.RUNNING):
                return
            if self._state is RouterState.STOPPING:
                raise RouterStateError("start", self._state.value)
            self._state = RouterState.STARTING

        logger.info(
            "Starting router",
            universes=len(self.mapper.configured_universes()),
            tick_rate_hz=self.config.tick_rate_hz,
        )

        try:
            self.sender.open()
            self.receiver.start()
            if not self.receiver.running.wait(timeout=self.settings.receiver.start_timeout_s):
                raise RouterError("eHuB receive loop did not start", recoverable=False)
        except Exception:
            self.receiver.stop()
            self.sender.close()
            self._set_state(RouterState.STOPPED)
            raise

        self._stop_event.clear()
        self._executor = ThreadPoolExecutor(
            max_workers=self.settings.sender.max_concurrent_sends,
            thread_name_prefix="ArtNet-Send",
        )
        self._last_resync = time.monotonic()
        self._last_log_time = time.monotonic()
        self._tick_thread = threading.Thread(
            target=self._tick_loop,
            name="Router-Tick",
            daemon=True,
        )
        self._tick_thread.start()
        self._set_state(RouterState.RUNNING)
        logger.info("Router running")

    def stop(self) -> None:
        """Stop both loops, await outstanding sends and release sockets."""
        with self._state_lock:
            if self._state in (RouterState.STOPPED, RouterState.STOPPING):
                return
            self._state = RouterState.STOPPING

        logger.info("Stopping router")
        self._stop_event.set()
        self.sender.cancel()

        if self._tick_thread is not None:
            self._tick_thread.join(timeout=self.config.tick_interval_s + self.config.tick_timeout_s + 1.0)
            self._tick_thread = None

        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        self._in_flight.clear()

        self.receiver.stop()
        self.sender.close()
        self._set_state(RouterState.STOPPED)
        logger.info("Router stopped", ticks=self._tick_count, packets_sent=self.sender.packets_sent)

    def restart(self) -> None:
        self.stop()
        self.start()

    # -------------------------------------------------------------------------
    # Tick loop
    # -------------------------------------------------------------------------

    def _tick_loop(self) -> None:
        interval = self.config.tick_interval_s

        while not self._stop_event.is_set():
            start = time.monotonic()
            try:
                self.tick()
            except Exception as e:
                self.tick_errors += 1
                if self.tick_errors % 100 == 1:
                    logger.error("Routing tick failed", error=str(e), errors=self.tick_errors)

            self._maybe_log_stats()

            elapsed = time.monotonic() - start
            sleep_time = interval - elapsed
            if sleep_time > 0:
                self._stop_event.wait(sleep_time)
            elif self.settings.debug:
                logger.warning(
                    "Tick overrun",
                    elapsed_ms=elapsed * 1000,
                    target_ms=interval * 1000,
                )

    def _resync_due(self, now: float) -> bool:
        every = self.config.full_resync_every_ticks
        if every and self._tick_count % every == 0:
            return True
        interval = self.config.full_resync_interval_s
        return interval is not None and now - self._last_resync >= interval

    def tick(self) -> TickStats:
        """Run one routing iteration."""
        start = time.monotonic()
        self._tick_count += 1

        late_sent = self._collect_in_flight()

        patch = self._patch
        patch_rules = patch.rules if self._patch_enabled and len(patch) else None
        if (
            self._mapping_stale
            or patch_rules is not self._applied_patch
            or self.receiver.version != self._seen_version
        ):
            self._mapping_stale = False
            self._applied_patch = patch_rules
            self._seen_version, entities = self.receiver.get_snapshot()
            self.mapper.update_entities(entities, patch if patch_rules else None)

        full_resync = self._resync_due(start)
        if full_resync:
            self._last_resync = start
            frames = self.mapper.get_all_frames()
        else:
            frames = self.mapper.get_modified_frames()
        # One send per universe at a time.
        frames = [frame for frame in frames if frame.universe not in self._in_flight]

        jobs = [(frame, encode_frame(frame), frame.active_channel_count) for frame in frames]
        results, timed_out = self._dispatch(jobs, force=full_resync)

        sent = duplicates = dropped = 0
        for frame, packet, result in results:
            if result.delivered:
                self.mapper.mark_as_sent(frame)
            if result is SendResult.SENT:
                sent += 1
                self._publish(frame, packet)
            elif result is SendResult.DUPLICATE:
                duplicates += 1
            else:
                dropped += 1

        self._frames_sent_window += sent
        stats = TickStats(
            tick=self._tick_count,
            full_resync=full_resync,
            frames_selected=len(jobs),
            sent=sent,
            duplicates=duplicates,
            dropped=dropped,
            timed_out=timed_out,
            late_sent=late_sent,
            duration_s=time.monotonic() - start,
        )
        self._last_tick = stats
        return stats

    def _send_one(self, frame: DmxFrame, packet: bytes, active: int, force: bool) -> SendResult:
        return self.sender.send_packet(
            frame.target_ip,
            frame.universe,
            packet,
            force=force,
            active_channels=active,
        )

    def _dispatch(
        self,
        jobs: list[tuple[DmxFrame, bytes, int]],
        force: bool,
    ) -> tuple[list[tuple[DmxFrame, bytes, SendResult]], int]:
        """Send every job, concurrently when running. Returns (results, timed_out)."""
        if not jobs:
            return [], 0

        executor = self._executor
        if executor is None:
            results = []
            for frame, packet, active in jobs:
                try:
                    result = self._send_one(frame, packet, active, force)
                except Exception as e:
                    logger.error("Send failed", universe=frame.universe, error=str(e))
                    result = SendResult.FAILED
                results.append((frame, packet, result))
            return results, 0

        futures: dict[Future, tuple[DmxFrame, bytes]] = {
            executor.submit(self._send_one, frame, packet, active, force): (frame, packet)
            for frame, packet, active in jobs
        }
        done, not_done = wait(futures, timeout=self.config.tick_timeout_s)

        results = []
        for future in done:
            frame, packet = futures[future]
            try:
                result = future.result()
            except Exception as e:
                logger.error("Send failed", universe=frame.universe, error=str(e))
                result = SendResult.FAILED
            results.append((frame, packet, result))

        # A timed-out send keeps its universe busy until it completes; the
        # frame stays dirty and is re-selected once the slot frees up.
        for future in not_done:
            frame, packet = futures[future]
            self._in_flight[frame.universe] = (frame, packet, future)
        return results, len(not_done)

    def _collect_in_flight(self) -> int:
        """Reap timed-out sends that have since completed. Returns how many were SENT."""
        late_sent = 0
        for universe, (frame, packet, future) in list(self._in_flight.items()):
            if not future.done():
                continue
            del self._in_flight[universe]
            try:
                result = future.result()
            except Exception as e:
                logger.error("Send failed", universe=universe, error=str(e))
                continue
            if result is SendResult.SENT:
                late_sent += 1
                self._publish(frame, packet)
        self._frames_sent_window += late_sent
        return late_sent

    # -------------------------------------------------------------------------
    # Observation
    # -------------------------------------------------------------------------

    def subscribe_frames(self, maxsize: Optional[int] = None) -> queue.Queue:
        """Return a queue receiving a FrameSentEvent for every sent frame."""
        subscriber: queue.Queue = queue.Queue(maxsize=maxsize or self.config.event_queue_size)
        self._frame_subscribers.append(subscriber)
        return subscriber

    def unsubscribe_frames(self, subscriber: queue.Queue) -> None:
        if subscriber in self._frame_subscribers:
            self._frame_subscribers.remove(subscriber)

    def _publish(self, frame: DmxFrame, packet: bytes) -> None:
        if not self._frame_subscribers:
            return
        event = FrameSentEvent(frame.universe, frame.target_ip, packet[ARTNET_HEADER_SIZE:])
        for subscriber in list(self._frame_subscribers):
            try:
                subscriber.put_nowait(event)
            except queue.Full:
                pass  # slow monitors miss frames

    def _maybe_log_stats(self) -> None:
        now = time.monotonic()
        if now - self._last_log_time < self.config.stats_log_interval_s:
            return

        sender = self.sender.snapshot()
        logger.info(
            "Router stats",
            tick=self._tick_count,
            ehub_messages=self.receiver.messages_received,
            frames=self._frames_sent_window,
            packets_total=sender.packets_sent,
            dropped=sender.dropped,
            congested=sender.congested,
        )
        self._frames_sent_window = 0
        self._last_log_time = now

    def get_stats(self) -> MappingStats:
        return self.mapper.get_stats()

    def get_configured_universes(self) -> list[int]:
        return self.mapper.configured_universes()

    def snapshot(self) -> RouterSnapshot:
        sender = self.sender.snapshot()
        return RouterSnapshot(
            state=self._state,
            messages_received=self.receiver.messages_received,
            active_entities=self.receiver.active_entities,
            decode_errors=self.receiver.decode_errors,
            packets_sent=sender.packets_sent,
            bytes_sent=sender.bytes_sent,
            dropped=sender.dropped,
            duplicates=sender.duplicates,
            congested=sender.congested,
            configured_universes=self.mapper.configured_universes(),
            universes={universe: snap for (_ip, universe), snap in sender.destinations.items()},
            mapping=self.mapper.get_stats(),
            patch_rules=len(self._patch),
            patch_enabled=self._patch_enabled,
            tick_errors=self.tick_errors,
            last_tick=self._last_tick,
        )
