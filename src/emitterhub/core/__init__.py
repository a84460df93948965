"""Core system components for EmitterHub."""

from emitterhub.core.config import (
    MappingConfig,
    ReceiverConfig,
    RouterConfig,
    SenderConfig,
    Settings,
)
from emitterhub.core.exceptions import (
    ConfigError,
    DMXError,
    EHubDecodeError,
    EmitterHubError,
    MappingError,
    PatchRuleError,
)

__all__ = [
    "Settings",
    "ReceiverConfig",
    "SenderConfig",
    "RouterConfig",
    "MappingConfig",
    "EmitterHubError",
    "EHubDecodeError",
    "DMXError",
    "ConfigError",
    "MappingError",
    "PatchRuleError",
]
