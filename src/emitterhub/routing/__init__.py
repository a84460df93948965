"""Routing loop tying eHuB reception to Art-Net output."""

from emitterhub.routing.router import (
    FrameSentEvent,
    Router,
    RouterSnapshot,
    RouterState,
    TickStats,
)

__all__ = [
    "Router",
    "RouterState",
    "RouterSnapshot",
    "FrameSentEvent",
    "TickStats",
]
