"""
EmitterHub: eHuB to Art-Net router for LED installations

Receives compressed eHuB entity color updates over UDP, maps every entity
onto DMX universes, applies optional channel patches, and streams the
resulting frames to Art-Net controllers at a bounded frame rate.
"""

__version__ = "0.1.0"
__author__ = "EmitterHub Team"

from emitterhub.core.config import Settings
from emitterhub.ehub.protocol import EntityState
from emitterhub.routing.router import Router, RouterState

__all__ = [
    "EntityState",
    "Router",
    "RouterState",
    "Settings",
    "__version__",
]
