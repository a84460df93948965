"""Outbound Art-Net transmission."""

from emitterhub.net.sender import (
    CongestionMonitor,
    RateControlledSender,
    SenderSnapshot,
    SendResult,
)
from emitterhub.net.stats import DestinationSnapshot, NetworkStats, RollingRate

__all__ = [
    "CongestionMonitor",
    "RateControlledSender",
    "SenderSnapshot",
    "SendResult",
    "DestinationSnapshot",
    "NetworkStats",
    "RollingRate",
]
