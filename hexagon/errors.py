"""Error kinds raised while resolving packets and synthesizing their IR."""

from __future__ import annotations


class PacketError(Exception):
    """Base class; every packet error names the offending address."""

    def __init__(self, address: int, message: str) -> None:
        super().__init__(f"{message} at {address:#x}")
        self.address = address
        self.detail = message


class MalformedPacketError(PacketError):
    """No packet boundary within the architecture's maximum packet length,
    or a duplex word that is not the last word of its packet."""


class MisplacedExtensionError(PacketError):
    """A constant extender points at an instruction (or duplex slot) that
    cannot carry the extension. Non-fatal: the target stays unextended."""


class AmbiguousNewValueError(PacketError):
    """The new-value producer writes more than one write-only register."""


class UnknownInstructionEncodingError(PacketError):
    """A packet entry has no IR template; the packet gets no IR at all."""


__all__ = [
    "PacketError",
    "MalformedPacketError",
    "MisplacedExtensionError",
    "AmbiguousNewValueError",
    "UnknownInstructionEncodingError",
]
