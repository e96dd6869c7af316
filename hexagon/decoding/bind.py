from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import FrozenSet, Literal, Optional, Tuple

OperandKind = Literal["reg", "pair", "pred", "imm", "pcrel", "newval"]

UNKNOWN_MNEMONIC = "UNKNOWN"


class ContinuationTag(str, Enum):
    """Per-word packet-continuation classification derived from parse bits."""

    CONTINUE = "continue"
    END = "end"
    DUPLEX = "duplex"
    END_HWLOOP0 = "end_hwloop0"
    END_HWLOOP1 = "end_hwloop1"

    @property
    def closes_packet(self) -> bool:
        return self in (ContinuationTag.END, ContinuationTag.DUPLEX)


class HwLoop(str, Enum):
    NONE = ""
    LOOP0 = "endloop0"
    LOOP1 = "endloop1"
    LOOP01 = "endloop01"

    @property
    def suffix(self) -> str:
        return f":{self.value}" if self.value else ""

    @property
    def loops(self) -> Tuple[int, ...]:
        if self is HwLoop.LOOP0:
            return (0,)
        if self is HwLoop.LOOP1:
            return (1,)
        if self is HwLoop.LOOP01:
            return (0, 1)
        return ()


def _to_signed(value: int, bits: int) -> int:
    sign = 1 << (bits - 1)
    return (value & (sign - 1)) - (value & sign)


@dataclass(frozen=True, slots=True)
class Operand:
    key: str
    kind: OperandKind
    value: int  # register number, or the raw encoded field for immediates
    bits: int = 0
    signed: bool = False
    shift: int = 0
    extendable: bool = False
    extended: bool = False

    def __post_init__(self) -> None:
        if self.kind in ("imm", "pcrel") and not self.extended:
            if self.bits <= 0:
                raise ValueError(f"Operand {self.key} needs a field width")
            if not 0 <= self.value < (1 << self.bits):
                raise ValueError(
                    f"Operand {self.key} field out of range: {self.value:#x}"
                )

    @property
    def imm(self) -> int:
        """Decoded immediate value (32-bit two's complement domain)."""
        if self.extended:
            return self.value & 0xFFFFFFFF
        raw = _to_signed(self.value, self.bits) if self.signed else self.value
        return (raw << self.shift) & 0xFFFFFFFF

    @property
    def reg_name(self) -> str:
        if self.kind == "pred":
            return f"P{self.value}"
        if self.kind == "pair":
            return f"R{self.value + 1}:{self.value}"
        return f"R{self.value}"

    @property
    def new_value_distance(self) -> int:
        # Nt[2:1] counts register-writing instructions back from the consumer
        return (self.value >> 1) & 0x3

    def extend(self, extender_value: int) -> "Operand":
        """Concatenate extender bits with the low six bits of the raw field.

        The extended operand carries the exact bit pattern: scaled
        immediates are not shifted again.
        """
        full = (extender_value & 0xFFFFFFC0) | (self.value & 0x3F)
        return replace(self, value=full, shift=0, extended=True)


@dataclass(frozen=True, slots=True)
class RawInstruction:
    address: int
    length: int
    word: int
    mnemonic: str
    operands: Tuple[Operand, ...] = ()
    reads: FrozenSet[str] = frozenset()
    writes: FrozenSet[str] = frozenset()
    parse_bits: int = 0b11
    is_extender: bool = False
    is_duplex: bool = False
    has_new_value: bool = False
    new_value_distance: int = 0
    end_loop: HwLoop = HwLoop.NONE
    extender_value: int = 0
    stores: bool = False

    @property
    def is_known(self) -> bool:
        return self.mnemonic != UNKNOWN_MNEMONIC

    def operand(self, key: str) -> Operand:
        for op in self.operands:
            if op.key == key:
                return op
        raise KeyError(f"{self.mnemonic} has no operand {key!r}")

    def find_operand(self, key: str) -> Optional[Operand]:
        for op in self.operands:
            if op.key == key:
                return op
        return None

    @property
    def extendable_operand(self) -> Optional[Operand]:
        for op in self.operands:
            if op.extendable:
                return op
        return None

    @property
    def new_value_operand(self) -> Optional[Operand]:
        for op in self.operands:
            if op.kind == "newval":
                return op
        return None

    def with_operand(self, operand: Operand) -> "RawInstruction":
        operands = tuple(
            operand if op.key == operand.key else op for op in self.operands
        )
        return replace(self, operands=operands)

    @property
    def write_only(self) -> FrozenSet[str]:
        return self.writes - self.reads


@dataclass(frozen=True, slots=True)
class SubInstruction(RawInstruction):
    parent_address: int = 0
    slot: int = 0


Entry = RawInstruction


__all__ = [
    "ContinuationTag",
    "Entry",
    "HwLoop",
    "Operand",
    "OperandKind",
    "RawInstruction",
    "SubInstruction",
    "UNKNOWN_MNEMONIC",
]
