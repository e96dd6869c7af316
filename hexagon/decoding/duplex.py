"""
Duplex splitting: one 32-bit word carrying two 13-bit sub-instructions.

Slot 0 lives in bits [12:0] and is placed at the word address; slot 1 lives
in bits [28:16] and is placed at word address + 2. The duplex ICLASS is
bits [31:29] concatenated with bit 13 and selects the sub-instruction group
of each slot.
"""

from __future__ import annotations

from typing import Callable, Dict, Optional, Tuple

from .bind import Operand, SubInstruction, UNKNOWN_MNEMONIC
from .decode_map import PARSE_DUPLEX, SUB_REGS, parse_bits
from .reader import HALF_WORD_SIZE

SubGroup = str
SubDecoder = Callable[[int], Optional[dict]]

# ICLASS -> (slot 0 group, slot 1 group); 0xF is reserved
DUPLEX_CLASSES: Dict[int, Tuple[SubGroup, SubGroup]] = {
    0x0: ("L1", "L1"),
    0x1: ("L2", "L1"),
    0x2: ("L2", "L2"),
    0x3: ("A", "A"),
    0x4: ("L1", "A"),
    0x5: ("L2", "A"),
    0x6: ("S1", "A"),
    0x7: ("S2", "A"),
    0x8: ("S1", "L1"),
    0x9: ("S1", "L2"),
    0xA: ("S1", "S1"),
    0xB: ("S2", "S1"),
    0xC: ("S2", "L1"),
    0xD: ("S2", "L2"),
    0xE: ("S2", "S2"),
}

# 3-bit register pair field -> low register of R1:0 .. R23:22
SUB_PAIRS: Tuple[int, ...] = (0, 2, 4, 6, 16, 18, 20, 22)


def duplex_iclass(word: int) -> int:
    return (((word >> 29) & 0x7) << 1) | ((word >> 13) & 0x1)


def _r(field: int) -> int:
    return SUB_REGS[field & 0xF]


def _sub(mnemonic: str, operands, reads=(), writes=(), stores=False) -> dict:
    return {
        "mnemonic": mnemonic,
        "operands": tuple(operands),
        "reads": frozenset(reads),
        "writes": frozenset(writes),
        "stores": stores,
    }


def _sub_a(bits: int) -> Optional[dict]:
    if bits >> 11 == 0b00:
        x = _r(bits)
        imm = Operand("imm", "imm", (bits >> 4) & 0x7F, bits=7, signed=True, extendable=True)
        return _sub(
            "SA1_addi",
            (Operand("x", "reg", x), imm),
            reads=(f"R{x}",),
            writes=(f"R{x}",),
        )
    if bits >> 10 == 0b010:
        d = _r(bits)
        imm = Operand("imm", "imm", (bits >> 4) & 0x3F, bits=6, extendable=True)
        return _sub("SA1_seti", (Operand("d", "reg", d), imm), writes=(f"R{d}",))
    if bits >> 10 == 0b011:
        d = _r(bits)
        imm = Operand("imm", "imm", (bits >> 4) & 0x3F, bits=6, shift=2)
        return _sub(
            "SA1_addsp",
            (Operand("d", "reg", d), imm),
            reads=("R29",),
            writes=(f"R{d}",),
        )
    op = bits >> 8
    if op in (0b10000, 0b10001, 0b10011):
        d, s = _r(bits), _r(bits >> 4)
        mnemonic = {0b10000: "SA1_tfr", 0b10001: "SA1_inc", 0b10011: "SA1_dec"}[op]
        return _sub(
            mnemonic,
            (Operand("d", "reg", d), Operand("s", "reg", s)),
            reads=(f"R{s}",),
            writes=(f"R{d}",),
        )
    return None


def _sub_l1(bits: int) -> Optional[dict]:
    d, s = _r(bits), _r(bits >> 4)
    unsigned_byte = bool(bits >> 12)
    off = Operand(
        "off", "imm", (bits >> 8) & 0xF, bits=4, shift=0 if unsigned_byte else 2
    )
    return _sub(
        "SL1_loadrub_io" if unsigned_byte else "SL1_loadri_io",
        (Operand("d", "reg", d), Operand("s", "reg", s), off),
        reads=(f"R{s}",),
        writes=(f"R{d}",),
    )


def _sub_l2(bits: int) -> Optional[dict]:
    if bits >> 3 == 0b1111111000:
        return _sub("SL2_jumpr31", (), reads=("R31",))
    if bits >> 3 == 0b1111101000:
        return _sub("SL2_return", (), reads=("R30",), writes=("R29", "R30", "R31"))
    if bits >> 9 == 0b1110:
        d = _r(bits)
        off = Operand("off", "imm", (bits >> 4) & 0x1F, bits=5, shift=2)
        return _sub(
            "SL2_loadri_sp",
            (Operand("d", "reg", d), off),
            reads=("R29",),
            writes=(f"R{d}",),
        )
    return None


def _sub_s1(bits: int) -> Optional[dict]:
    t, s = _r(bits), _r(bits >> 4)
    byte = bool(bits >> 12)
    off = Operand("off", "imm", (bits >> 8) & 0xF, bits=4, shift=0 if byte else 2)
    return _sub(
        "SS1_storeb_io" if byte else "SS1_storew_io",
        (Operand("s", "reg", s), off, Operand("t", "reg", t)),
        reads=(f"R{s}", f"R{t}"),
        stores=True,
    )


def _sub_s2(bits: int) -> Optional[dict]:
    if bits >> 11 == 0b00:
        t, s = _r(bits), _r(bits >> 4)
        off = Operand("off", "imm", (bits >> 8) & 0x7, bits=3, shift=1)
        return _sub(
            "SS2_storeh_io",
            (Operand("s", "reg", s), off, Operand("t", "reg", t)),
            reads=(f"R{s}", f"R{t}"),
            stores=True,
        )
    op = bits >> 9
    if op == 0b0100:
        t = _r(bits)
        off = Operand("off", "imm", (bits >> 4) & 0x1F, bits=5, shift=2)
        return _sub(
            "SS2_storew_sp",
            (off, Operand("t", "reg", t)),
            reads=("R29", f"R{t}"),
            stores=True,
        )
    if op == 0b0101:
        t = SUB_PAIRS[bits & 0x7]
        off = Operand("off", "imm", (bits >> 3) & 0x3F, bits=6, signed=True, shift=3)
        return _sub(
            "SS2_stored_sp",
            (off, Operand("t", "pair", t)),
            reads=("R29", f"R{t}", f"R{t + 1}"),
            stores=True,
        )
    if op == 0b1110:
        size = Operand("size", "imm", (bits >> 4) & 0x1F, bits=5, shift=3)
        return _sub(
            "SS2_allocframe",
            (size,),
            reads=("R29", "R30", "R31"),
            writes=("R29", "R30"),
            stores=True,
        )
    if bits >> 10 == 0b100:
        # memw/memb(Rs+#u4)=#0/#1
        s = _r(bits >> 4)
        byte = bool((bits >> 9) & 1)
        off = Operand("off", "imm", bits & 0xF, bits=4, shift=0 if byte else 2)
        mnemonic = f"SS2_store{'b' if byte else 'w'}i{(bits >> 8) & 1}"
        return _sub(mnemonic, (Operand("s", "reg", s), off), reads=(f"R{s}",), stores=True)
    return None


SUB_DECODERS: Dict[SubGroup, SubDecoder] = {
    "A": _sub_a,
    "L1": _sub_l1,
    "L2": _sub_l2,
    "S1": _sub_s1,
    "S2": _sub_s2,
}


def _decode_sub(
    group: Optional[SubGroup], bits: int, word: int, parent: int, slot: int
) -> SubInstruction:
    fields = SUB_DECODERS[group](bits) if group is not None else None
    if fields is None:
        fields = _sub(UNKNOWN_MNEMONIC, ())
    return SubInstruction(
        address=parent + slot * HALF_WORD_SIZE,
        length=HALF_WORD_SIZE,
        word=word,
        parse_bits=PARSE_DUPLEX,
        is_duplex=True,
        parent_address=parent,
        slot=slot,
        **fields,
    )


def split_duplex(word: int, address: int) -> Tuple[SubInstruction, SubInstruction]:
    """Expand a duplex word into its (slot 0, slot 1) sub-instructions."""
    if parse_bits(word) != PARSE_DUPLEX:
        raise ValueError(f"Word {word:#010x} at {address:#x} is not a duplex")
    groups = DUPLEX_CLASSES.get(duplex_iclass(word))
    group0, group1 = groups if groups is not None else (None, None)
    low = _decode_sub(group0, word & 0x1FFF, word, address, 0)
    high = _decode_sub(group1, (word >> 16) & 0x1FFF, word, address, 1)
    return low, high


__all__ = [
    "DUPLEX_CLASSES",
    "SUB_DECODERS",
    "SUB_PAIRS",
    "SUB_REGS",
    "duplex_iclass",
    "split_duplex",
]
