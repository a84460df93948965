"""
Custom Exceptions for EmitterHub.

Provides a hierarchy of exceptions for the receive, mapping, and
transmission stages, enabling targeted error handling at the boundary
where each failure occurs.
"""

from __future__ import annotations

from typing import Optional


class EmitterHubError(Exception):
    """Base exception for all EmitterHub errors."""

    def __init__(self, message: str, recoverable: bool = True):
        super().__init__(message)
        self.message = message
        self.recoverable = recoverable


# =============================================================================
# eHuB Errors
# =============================================================================


class EHubError(EmitterHubError):
    """Base exception for eHuB protocol errors."""
    pass


class EHubDecodeError(EHubError):
    """A datagram of our stream could not be decoded."""

    def __init__(self, reason: str, message_type: Optional[int] = None):
        super().__init__(f"eHuB decode error: {reason}", recoverable=True)
        self.reason = reason
        self.message_type = message_type


class ReceiverStartError(EHubError):
    """Failed to bind the eHuB listening socket."""

    def __init__(self, address: str, reason: str):
        super().__init__(
            f"Failed to start eHuB receiver on {address}: {reason}",
            recoverable=False
        )
        self.address = address
        self.reason = reason


# =============================================================================
# DMX Errors
# =============================================================================


class DMXError(EmitterHubError):
    """Base exception for DMX-related errors."""
    pass


class DMXAddressError(DMXError):
    """Invalid DMX address or channel."""

    def __init__(self, address: int, reason: str):
        super().__init__(f"Invalid DMX address {address}: {reason}", recoverable=True)
        self.address = address


class ArtNetError(DMXError):
    """Art-Net packet could not be built."""

    def __init__(self, reason: str):
        super().__init__(f"Art-Net error: {reason}", recoverable=True)


class SenderStartError(DMXError):
    """Failed to create the outbound Art-Net socket."""

    def __init__(self, reason: str):
        super().__init__(
            f"Failed to open Art-Net socket: {reason}",
            recoverable=False
        )
        self.reason = reason


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigError(EmitterHubError):
    """Base exception for configuration errors."""
    pass


class MappingError(ConfigError):
    """Invalid entity-to-DMX mapping."""

    def __init__(self, reason: str):
        super().__init__(f"Mapping error: {reason}")
        self.reason = reason


class PatchRuleError(ConfigError):
    """Invalid patch rule or patch file row."""

    def __init__(self, rule: str, reason: str, line: Optional[int] = None):
        where = f" (line {line})" if line is not None else ""
        super().__init__(f"Patch rule error{where} '{rule}': {reason}")
        self.rule = rule
        self.line = line


# =============================================================================
# Router Errors
# =============================================================================


class RouterError(EmitterHubError):
    """Base exception for router lifecycle errors."""
    pass


class RouterStateError(RouterError):
    """Operation not allowed in the router's current state."""

    def __init__(self, operation: str, state: str):
        super().__init__(f"Cannot {operation} while router is {state}", recoverable=True)
        self.operation = operation
        self.state = state
