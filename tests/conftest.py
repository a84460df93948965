from __future__ import annotations

import time

import pytest


class FakeSocket:
    """Stands in for a UDP socket; records every sendto()."""

    def __init__(self, fail_for: set[str] | None = None) -> None:
        self.sent: list[tuple[float, bytes, tuple[str, int]]] = []
        self.fail_for = fail_for or set()
        self.closed = False

    def sendto(self, data: bytes, addr: tuple[str, int]) -> int:
        if addr[0] in self.fail_for:
            raise OSError("network unreachable")
        self.sent.append((time.monotonic(), bytes(data), addr))
        return len(data)

    def close(self) -> None:
        self.closed = True

    @property
    def packets(self) -> list[bytes]:
        return [data for _, data, _ in self.sent]


@pytest.fixture
def fake_socket() -> FakeSocket:
    return FakeSocket()


@pytest.fixture
def socket_factory():
    """Build fake sockets, optionally failing for some destination IPs."""
    return FakeSocket
