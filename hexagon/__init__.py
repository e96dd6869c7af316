"""
Hexagon packet decoding and parallel-semantics IR.

``arch`` (the Binary Ninja architecture) is not imported here so the packet
and IR layers stay usable without Binary Ninja.
"""

from .analysis import AnalysisRegistry, HexagonAnalysisState, ViewInvalidator  # noqa: F401
from .config import PacketConfig, load_packet_config  # noqa: F401
from .errors import (  # noqa: F401
    AmbiguousNewValueError,
    MalformedPacketError,
    MisplacedExtensionError,
    PacketError,
    UnknownInstructionEncodingError,
)

__all__ = [
    "AmbiguousNewValueError",
    "AnalysisRegistry",
    "HexagonAnalysisState",
    "MalformedPacketError",
    "MisplacedExtensionError",
    "PacketConfig",
    "PacketError",
    "UnknownInstructionEncodingError",
    "ViewInvalidator",
    "load_packet_config",
]
