"""eHuB protocol decoding and reception."""

from emitterhub.ehub.protocol import (
    ConfigMessage,
    EHubDecoder,
    EntityState,
    UpdateMessage,
    build_config_datagram,
    build_update_datagram,
    decode_datagram,
)
from emitterhub.ehub.receiver import EHubReceiver

__all__ = [
    "EntityState",
    "ConfigMessage",
    "UpdateMessage",
    "EHubDecoder",
    "EHubReceiver",
    "decode_datagram",
    "build_update_datagram",
    "build_config_datagram",
]
