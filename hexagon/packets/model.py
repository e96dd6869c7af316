from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Generic, Iterator, Mapping, Optional, Tuple, TypeVar, Union

from ..decoding.bind import HwLoop, RawInstruction
from ..errors import PacketError

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class ExtensionBinding:
    extender_value: int  # high 26 bits of the 32-bit immediate
    extender_address: int
    target_address: int


@dataclass(frozen=True, slots=True)
class NewValueBinding:
    consumer_address: int
    producer_address: int
    producer_register: str


@dataclass(frozen=True, slots=True)
class Resolved(Generic[T]):
    binding: T


@dataclass(frozen=True, slots=True)
class Unresolved:
    address: int
    reason: str
    error: Optional[PacketError] = None


Resolution = Union[Resolved[T], Unresolved]


@dataclass(frozen=True)
class Packet:
    """
    One execution episode: the resolved entries of a packet in program order.

    Duplex words appear as their two sub-instructions; the constant
    extension (if any) is already applied to `entries`, and `new_values`
    maps each new-value consumer address to its resolution.
    """

    entries: Tuple[RawInstruction, ...]
    end_loop: HwLoop = HwLoop.NONE
    words: Tuple[int, ...] = ()
    extension: Optional[Resolution[ExtensionBinding]] = None
    new_values: Mapping[int, Resolution[NewValueBinding]] = field(default_factory=dict)
    diagnostics: Tuple[PacketError, ...] = ()
    malformed: Optional[PacketError] = None

    def __post_init__(self) -> None:
        if not self.entries:
            raise ValueError("Packet must contain at least one entry")
        # packets are shared across threads through the analysis cache
        object.__setattr__(self, "new_values", MappingProxyType(dict(self.new_values)))

    @property
    def start(self) -> int:
        return self.entries[0].address

    @property
    def end(self) -> int:
        return self.entries[-1].address

    @property
    def next_address(self) -> int:
        last = self.entries[-1]
        if last.is_duplex:
            return getattr(last, "parent_address", last.address) + 4
        return last.address + last.length

    @property
    def size(self) -> int:
        return self.next_address - self.start

    @property
    def addresses(self) -> Tuple[int, ...]:
        return tuple(entry.address for entry in self.entries)

    def __iter__(self) -> Iterator[RawInstruction]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, address: object) -> bool:
        return address in self.addresses

    def entry_at(self, address: int) -> RawInstruction:
        for entry in self.entries:
            if entry.address == address:
                return entry
        raise KeyError(f"{address:#x} is not a member of packet {self.start:#x}")

    def is_first(self, address: int) -> bool:
        return address == self.start

    def is_last(self, address: int) -> bool:
        return address == self.end

    def new_value_register(self, address: int) -> Optional[str]:
        resolution = self.new_values.get(address)
        if isinstance(resolution, Resolved):
            return resolution.binding.producer_register
        return None


__all__ = [
    "ExtensionBinding",
    "NewValueBinding",
    "Packet",
    "Resolution",
    "Resolved",
    "Unresolved",
]
