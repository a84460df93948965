"""
eHuB Receiver: UDP listener feeding the entity table.

A receive thread blocks on the socket (with a timeout so the stop signal
is observed) and hands every datagram to a bounded queue. A decode thread
drains the queue, so a slow decode never delays the next receive.
"""

from __future__ import annotations

import queue
import socket
import threading
from typing import Optional

import structlog

from emitterhub.core.config import ReceiverConfig
from emitterhub.core.exceptions import ReceiverStartError
from emitterhub.ehub.protocol import (
    ConfigMessage,
    EHubDecoder,
    EntityBatch,
    EntityState,
    UpdateMessage,
)

logger = structlog.get_logger()


class EHubReceiver:
    """
    Listens for eHuB datagrams for one eHuB universe.

    The entity table is private to the receiver; consumers read it through
    get_current_entities(), which returns a copy.
    """

    def __init__(self, config: Optional[ReceiverConfig] = None):
        self.config = config or ReceiverConfig()
        self._decoder = EHubDecoder(self.config.target_universe)

        self._entities: dict[int, EntityState] = {}
        self._index_to_entity: dict[int, int] = {}
        self._version = 0
        self._table_lock = threading.Lock()

        self._datagrams: queue.Queue = queue.Queue(maxsize=self.config.queue_size)
        self._subscribers: list[queue.Queue] = []

        self._socket: Optional[socket.socket] = None
        self._stop_event = threading.Event()
        self._running = threading.Event()
        self._rx_thread: Optional[threading.Thread] = None
        self._decode_thread: Optional[threading.Thread] = None

        self.datagrams_dropped = 0

    # -------------------------------------------------------------------------
    # Counters
    # -------------------------------------------------------------------------

    @property
    def messages_received(self) -> int:
        return self._decoder.messages_received

    @property
    def decode_errors(self) -> int:
        return self._decoder.decode_errors

    @property
    def active_entities(self) -> int:
        with self._table_lock:
            return len(self._entities)

    @property
    def running(self) -> threading.Event:
        """Set once the receive loop is active."""
        return self._running

    @property
    def local_address(self) -> Optional[tuple[str, int]]:
        if self._socket is None:
            return None
        return self._socket.getsockname()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Bind the socket and start the receive and decode threads."""
        if self._rx_thread is not None and self._rx_thread.is_alive():
            return

        address = f"{self.config.listen_ip}:{self.config.listen_port}"
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.config.listen_ip, self.config.listen_port))
            sock.settimeout(self.config.receive_timeout_s)
        except OSError as e:
            raise ReceiverStartError(address, str(e)) from e

        self._socket = sock
        self._stop_event.clear()

        self._decode_thread = threading.Thread(
            target=self._decode_loop,
            name="eHuB-Decode",
            daemon=True,
        )
        self._rx_thread = threading.Thread(
            target=self._receive_loop,
            name="eHuB-Receive",
            daemon=True,
        )
        self._decode_thread.start()
        self._rx_thread.start()

        logger.info(
            "eHuB receiver listening",
            address=address,
            universe=self.config.target_universe,
        )

    def stop(self) -> None:
        """Stop both threads and close the socket. Safe to call repeatedly."""
        self._stop_event.set()

        for thread in (self._rx_thread, self._decode_thread):
            if thread is not None:
                thread.join(timeout=self.config.receive_timeout_s * 2 + 1.0)
        self._rx_thread = None
        self._decode_thread = None

        if self._socket is not None:
            self._socket.close()
            self._socket = None
            logger.info(
                "eHuB receiver stopped",
                messages=self.messages_received,
                decode_errors=self.decode_errors,
            )
        self._running.clear()

    def _receive_loop(self) -> None:
        sock = self._socket
        if sock is None:
            return
        self._running.set()

        while not self._stop_event.is_set():
            try:
                data, _addr = sock.recvfrom(self.config.buffer_size)
            except socket.timeout:
                continue
            except OSError as e:
                if self._stop_event.is_set():
                    break
                logger.warning("eHuB receive error", error=str(e))
                continue

            try:
                self._datagrams.put_nowait(data)
            except queue.Full:
                self.datagrams_dropped += 1
                if self.datagrams_dropped % 100 == 1:
                    logger.warning("eHuB queue full, dropping datagram", dropped=self.datagrams_dropped)

        self._running.clear()

    def _decode_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                data = self._datagrams.get(timeout=self.config.receive_timeout_s)
            except queue.Empty:
                continue
            self.handle_datagram(data)

    # -------------------------------------------------------------------------
    # Decoding
    # -------------------------------------------------------------------------

    def handle_datagram(self, data: bytes) -> None:
        """Decode one datagram and apply it to the entity table."""
        message = self._decoder.decode(data)
        if message is None:
            return

        if isinstance(message, UpdateMessage):
            with self._table_lock:
                self._entities.update(message.entities)
                self._version += 1
            self._publish(message.entities)
        elif isinstance(message, ConfigMessage):
            with self._table_lock:
                self._index_to_entity.update(message.index_map)
            logger.debug(
                "eHuB configuration received",
                ranges=len(message.ranges),
                indices=len(message.index_map),
            )

    def _publish(self, batch: EntityBatch) -> None:
        for subscriber in list(self._subscribers):
            try:
                subscriber.put_nowait(batch)
            except queue.Full:
                logger.warning("Entity subscriber queue full, dropping batch")

    def subscribe(self, maxsize: int = 64) -> queue.Queue:
        """Return a queue receiving every decoded entity batch."""
        subscriber: queue.Queue = queue.Queue(maxsize=maxsize)
        self._subscribers.append(subscriber)
        return subscriber

    def unsubscribe(self, subscriber: queue.Queue) -> None:
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)

    # -------------------------------------------------------------------------
    # Snapshots
    # -------------------------------------------------------------------------

    @property
    def version(self) -> int:
        """Incremented every time an update batch is applied."""
        return self._version

    def get_current_entities(self) -> dict[int, EntityState]:
        """Copy of every entity received so far."""
        with self._table_lock:
            return dict(self._entities)

    def get_snapshot(self) -> tuple[int, dict[int, EntityState]]:
        """Consistent (version, entity copy) pair."""
        with self._table_lock:
            return self._version, dict(self._entities)

    def get_index_mapping(self) -> dict[int, int]:
        """Copy of the index → entity id table announced by configuration messages."""
        with self._table_lock:
            return dict(self._index_to_entity)
