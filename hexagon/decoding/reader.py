from __future__ import annotations

from dataclasses import dataclass, field
import struct
import threading
from typing import Optional, Protocol, Tuple

WORD_SIZE = 4
HALF_WORD_SIZE = 2


class InstructionSource(Protocol):
    """Word-level view of a loaded binary's code."""

    def read_word(self, address: int) -> Optional[int]: ...

    def region_start(self, address: int) -> int: ...


@dataclass
class BytesSource:
    """In-memory little-endian code region."""

    base: int
    data: bytearray = field(default_factory=bytearray)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def __post_init__(self) -> None:
        self.data = bytearray(self.data)

    @classmethod
    def from_hex(cls, base: int, hex_bytes: str) -> "BytesSource":
        return cls(base=base, data=bytearray(bytes.fromhex(hex_bytes)))

    @property
    def end(self) -> int:
        return self.base + len(self.data)

    def contains(self, address: int, size: int = WORD_SIZE) -> bool:
        return self.base <= address and address + size <= self.end

    def read_word(self, address: int) -> Optional[int]:
        if address % WORD_SIZE or not self.contains(address):
            return None
        offset = address - self.base
        with self._lock:
            (word,) = struct.unpack_from("<I", self.data, offset)
        return word

    def region_start(self, address: int) -> int:
        return self.base

    def patch(self, address: int, payload: bytes) -> Tuple[int, int]:
        """Overwrite bytes in place; returns the changed half-open range."""
        if not self.contains(address, len(payload)):
            raise ValueError(
                f"Patch {address:#x}+{len(payload)} outside region "
                f"{self.base:#x}-{self.end:#x}"
            )
        offset = address - self.base
        with self._lock:
            self.data[offset : offset + len(payload)] = payload
        return address, address + len(payload)


class BinaryViewSource:
    """Adapter reading words from a Binary Ninja BinaryView."""

    def __init__(self, view) -> None:
        self.view = view

    def read_word(self, address: int) -> Optional[int]:
        if address % WORD_SIZE:
            return None
        data = self.view.read(address, WORD_SIZE)
        if len(data) < WORD_SIZE:
            return None
        (word,) = struct.unpack("<I", data)
        return word

    def region_start(self, address: int) -> int:
        segment = self.view.get_segment_at(address)
        if segment is None:
            return address
        return segment.start


__all__ = [
    "BinaryViewSource",
    "BytesSource",
    "HALF_WORD_SIZE",
    "InstructionSource",
    "WORD_SIZE",
]
