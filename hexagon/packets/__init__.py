"""
Packet structure: boundaries, constant extension and new-value binding.
"""

from .model import (  # noqa: F401
    ExtensionBinding,
    NewValueBinding,
    Packet,
    Resolution,
    Resolved,
    Unresolved,
)
from .boundary import (  # noqa: F401
    BoundaryResolver,
    CLOSE_MARKER,
    NO_MARKER,
    OPEN_MARKER,
    prefix_for,
    singleton_packet,
    suffix_for,
)
from .extender import apply_extension  # noqa: F401
from .newvalue import resolve_new_values  # noqa: F401
from .pipeline import PacketResolver  # noqa: F401

__all__ = [
    "BoundaryResolver",
    "CLOSE_MARKER",
    "ExtensionBinding",
    "NO_MARKER",
    "NewValueBinding",
    "OPEN_MARKER",
    "Packet",
    "PacketResolver",
    "Resolution",
    "Resolved",
    "Unresolved",
    "apply_extension",
    "prefix_for",
    "resolve_new_values",
    "singleton_packet",
    "suffix_for",
]
