"""
Word encoders for the decoded instruction subset.

The inverse of ``decode_map``/``duplex``: each function returns a 32-bit
word (or a 13-bit duplex slot) with the parse bits left clear. ``packet``
assigns parse bits for a whole packet and ``assemble`` turns packets into
little-endian bytes.
"""

from __future__ import annotations

import struct
from typing import Iterable, List, Optional, Sequence

from .bind import HwLoop
from .decode_map import PARSE_DUPLEX, PARSE_END, PARSE_LOOP_END
from .duplex import SUB_PAIRS, SUB_REGS

PARSE_CONTINUE = 0b01

_PARSE_MASK = 0x3 << 14


def _fits(value: int, bits: int, signed: bool) -> bool:
    if signed:
        return -(1 << (bits - 1)) <= value < (1 << (bits - 1))
    return 0 <= value < (1 << bits)


def _field(value: int, bits: int, *, signed: bool = False, scale: int = 0) -> int:
    """Check and truncate an immediate to its encoded field."""
    if value & ((1 << scale) - 1):
        raise ValueError(f"{value:#x} is not a multiple of {1 << scale}")
    scaled = value >> scale
    if not _fits(scaled, bits, signed):
        raise ValueError(f"{value:#x} does not fit a {bits}-bit field")
    return scaled & ((1 << bits) - 1)


def _spread(value: int, *spans: tuple) -> int:
    """Scatter a field over bit spans (most significant first)."""
    word = 0
    shift = sum(hi - lo + 1 for hi, lo in spans)
    for hi, lo in spans:
        width = hi - lo + 1
        shift -= width
        word |= ((value >> shift) & ((1 << width) - 1)) << lo
    return word


def with_parse(word: int, parse: int) -> int:
    return (word & ~_PARSE_MASK & 0xFFFFFFFF) | (parse << 14)


# ---------------------------------------------------------------------------
# 32-bit instructions


def immext(value: int) -> int:
    payload = (value & 0xFFFFFFFF) >> 6
    return _spread(payload, (27, 16), (13, 0))


def add(d: int, s: int, t: int) -> int:
    return 0xF3000000 | s << 16 | t << 8 | d


def sub(d: int, t: int, s: int) -> int:
    """Rd=sub(Rt,Rs)"""
    return 0xF3200000 | s << 16 | t << 8 | d


def addi(d: int, s: int, imm: int) -> int:
    return 0xB0000000 | s << 16 | d | _spread(_field(imm, 16, signed=True), (27, 21), (13, 5))


def tfr(d: int, s: int) -> int:
    return 0x70600000 | s << 16 | d


def tfrsi(d: int, imm: int) -> int:
    field = _field(imm, 16, signed=True)
    return 0x78000000 | d | _spread(field, (23, 22), (20, 16), (13, 5))


def nop() -> int:
    return 0x7F000000


def jump(offset: int) -> int:
    return 0x58000000 | _spread(_field(offset, 22, signed=True, scale=2), (24, 16), (13, 1))


def call(offset: int) -> int:
    return 0x5A000000 | _spread(_field(offset, 22, signed=True, scale=2), (24, 16), (13, 1))


def call_cond(pred: int, offset: int, sense: bool = True) -> int:
    field = _field(offset, 15, signed=True, scale=2)
    base = 0x5D000000 if sense else 0x5D200000
    return base | pred << 8 | _spread(field, (23, 22), (20, 16), (13, 13), (7, 1))


_CMP_OPS = {"eq": 0b000, "gt": 0b010, "gtu": 0b100}


def cmpi(kind: str, d: int, s: int, imm: int) -> int:
    """Pd=cmp.<kind>(Rs,#imm)"""
    if kind == "gtu":
        return 0x75800000 | s << 16 | _field(imm, 9) << 5 | d
    base = 0x75000000 if kind == "eq" else 0x75400000
    return base | s << 16 | _spread(_field(imm, 10, signed=True), (21, 21), (13, 5)) | d


def jump_cond(pred: int, offset: int, sense: bool = True, new: bool = False) -> int:
    field = _field(offset, 15, signed=True, scale=2)
    base = 0x5C000000 if sense else 0x5C200000
    if new:
        base |= 0x800
    return base | pred << 8 | _spread(field, (23, 22), (20, 16), (13, 13), (7, 1))


def cmp_jump(pred: int, kind: str, sense: bool, s: int, imm: int, offset: int) -> int:
    """Pp=cmp.<kind>(Rs,#U5); if ([!]Pp.new) jump:t #offset"""
    op = _CMP_OPS[kind] | (0 if sense else 1)
    field = _field(offset, 9, signed=True, scale=2)
    return (
        0x10000000
        | pred << 25
        | op << 22
        | sub_reg(s) << 16
        | 1 << 13
        | _field(imm, 5) << 8
        | _spread(field, (21, 20), (7, 1))
    )


def jumpr(s: int) -> int:
    return 0x52800000 | s << 16


def loopi(loop: int, start: int, count: int) -> int:
    base = 0x69200000 if loop else 0x69000000
    start_field = _field(start, 7, signed=True, scale=2)
    return (
        base
        | _spread(start_field, (12, 8), (4, 3))
        | _spread(_field(count, 10), (20, 16), (7, 5), (1, 0))
    )


def allocframe(size: int) -> int:
    return 0xA09D0000 | _field(size, 11, scale=3)


def dealloc_return() -> int:
    return 0x961E001E


_LOAD_UN = {"rb": 0b1000, "rub": 0b1001, "rh": 0b1010, "ruh": 0b1011, "ri": 0b1100}
_STORE_UN = {"rb": 0b1000, "rh": 0b1010, "ri": 0b1100}
_NEW_SZ = {"rb": 0b00, "rh": 0b01, "ri": 0b10}
_SCALE = {"rb": 0, "rub": 0, "rh": 1, "ruh": 1, "ri": 2}


def load_io(kind: str, d: int, s: int, off: int) -> int:
    field = _field(off, 11, signed=True, scale=_SCALE[kind])
    return 0x90000000 | _LOAD_UN[kind] << 21 | s << 16 | d | _spread(field, (26, 25), (13, 5))


def load_pi(kind: str, d: int, x: int, inc: int) -> int:
    field = _field(inc, 4, signed=True, scale=_SCALE[kind])
    return 0x9A000000 | _LOAD_UN[kind] << 21 | x << 16 | field << 5 | d


def store_io(kind: str, s: int, off: int, t: int) -> int:
    field = _field(off, 11, signed=True, scale=_SCALE[kind])
    return (
        0xA0000000
        | _STORE_UN[kind] << 21
        | s << 16
        | t << 8
        | _spread(field, (26, 25), (13, 13), (7, 0))
    )


def store_pi(kind: str, x: int, inc: int, t: int) -> int:
    field = _field(inc, 4, signed=True, scale=_SCALE[kind])
    return 0xAA000000 | _STORE_UN[kind] << 21 | x << 16 | t << 8 | field << 3


def new_value_field(distance: int) -> int:
    if not 0 <= distance <= 3:
        raise ValueError(f"New-value distance {distance} out of range")
    return distance << 1


def store_new_io(kind: str, s: int, off: int, distance: int) -> int:
    field = _field(off, 11, signed=True, scale=_SCALE[kind])
    return (
        0xA1A00000
        | _NEW_SZ[kind] << 11
        | s << 16
        | new_value_field(distance) << 8
        | _spread(field, (26, 25), (13, 13), (7, 0))
    )


def store_new_pi(kind: str, x: int, inc: int, distance: int) -> int:
    field = _field(inc, 4, signed=True, scale=_SCALE[kind])
    return (
        0xABA00000
        | _NEW_SZ[kind] << 11
        | x << 16
        | new_value_field(distance) << 8
        | field << 3
    )


def store_imm_io(kind: str, s: int, off: int, value: int) -> int:
    base = {"rb": 0x3C000000, "rh": 0x3C200000, "ri": 0x3C400000}[kind]
    off_field = _field(off, 6, scale=_SCALE[kind])
    return (
        base
        | s << 16
        | off_field << 7
        | _spread(_field(value, 8, signed=True), (13, 13), (6, 0))
    )


# ---------------------------------------------------------------------------
# duplex sub-instructions (13-bit slots)


def sub_reg(reg: int) -> int:
    return SUB_REGS.index(reg)


def sa1_seti(d: int, imm: int) -> int:
    return 0b010 << 10 | _field(imm, 6) << 4 | sub_reg(d)


def sa1_addi(x: int, imm: int) -> int:
    return _field(imm, 7, signed=True) << 4 | sub_reg(x)


def sa1_addsp(d: int, imm: int) -> int:
    return 0b011 << 10 | _field(imm, 6, scale=2) << 4 | sub_reg(d)


def sa1_tfr(d: int, s: int) -> int:
    return 0b10000 << 8 | sub_reg(s) << 4 | sub_reg(d)


def sa1_inc(d: int, s: int) -> int:
    return 0b10001 << 8 | sub_reg(s) << 4 | sub_reg(d)


def sa1_dec(d: int, s: int) -> int:
    return 0b10011 << 8 | sub_reg(s) << 4 | sub_reg(d)


def sl1_loadri(d: int, s: int, off: int) -> int:
    return _field(off, 4, scale=2) << 8 | sub_reg(s) << 4 | sub_reg(d)


def sl1_loadrub(d: int, s: int, off: int) -> int:
    return 1 << 12 | _field(off, 4) << 8 | sub_reg(s) << 4 | sub_reg(d)


def sl2_loadri_sp(d: int, off: int) -> int:
    return 0b1110 << 9 | _field(off, 5, scale=2) << 4 | sub_reg(d)


def sl2_jumpr31() -> int:
    return 0b1111111000 << 3


def sl2_return() -> int:
    return 0b1111101000 << 3


def ss1_storew(s: int, off: int, t: int) -> int:
    return _field(off, 4, scale=2) << 8 | sub_reg(s) << 4 | sub_reg(t)


def ss1_storeb(s: int, off: int, t: int) -> int:
    return 1 << 12 | _field(off, 4) << 8 | sub_reg(s) << 4 | sub_reg(t)


def ss2_storeh(s: int, off: int, t: int) -> int:
    return _field(off, 3, scale=1) << 8 | sub_reg(s) << 4 | sub_reg(t)


def ss2_storew_sp(off: int, t: int) -> int:
    return 0b0100 << 9 | _field(off, 5, scale=2) << 4 | sub_reg(t)


def ss2_stored_sp(off: int, t: int) -> int:
    """memd(R29+#s6:3)=Rtt; `t` is the low register of the pair."""
    return 0b0101 << 9 | _field(off, 6, signed=True, scale=3) << 3 | SUB_PAIRS.index(t)


def ss2_allocframe(size: int) -> int:
    return 0b1110 << 9 | _field(size, 5, scale=3) << 4


def ss2_storewi(s: int, off: int, value: int) -> int:
    return 0b100 << 10 | (value & 1) << 8 | sub_reg(s) << 4 | _field(off, 4, scale=2)


def ss2_storebi(s: int, off: int, value: int) -> int:
    return 0b1001 << 9 | (value & 1) << 8 | sub_reg(s) << 4 | _field(off, 4)


def duplex(iclass: int, slot0: int, slot1: int) -> int:
    """Pack two sub-instructions; slot 0 is the low half."""
    if not 0 <= iclass < 0xF:
        raise ValueError(f"Duplex ICLASS {iclass:#x} is reserved")
    return (iclass >> 1) << 29 | slot1 << 16 | (iclass & 1) << 13 | slot0


# ---------------------------------------------------------------------------
# packets


def packet(
    words: Sequence[int],
    *,
    duplex_word: Optional[int] = None,
    end_loop: HwLoop = HwLoop.NONE,
) -> List[int]:
    """Assign parse bits to the words of one packet.

    `duplex_word` becomes the closing word; otherwise the last of `words`
    gets the end marker. Loop-end markers need the first (and second) word
    to be a non-closing word.
    """
    words = list(words)
    body = [with_parse(word, PARSE_CONTINUE) for word in words]
    if duplex_word is not None:
        body.append(with_parse(duplex_word, PARSE_DUPLEX))
    elif body:
        body[-1] = with_parse(body[-1], PARSE_END)
    else:
        raise ValueError("Packet needs at least one word")

    marked = [pos for pos, loop in ((0, 0), (1, 1)) if loop in end_loop.loops]
    for pos in marked:
        if pos >= len(body) - 1:
            raise ValueError(f"{end_loop.value} needs word {pos} to be non-closing")
        body[pos] = with_parse(body[pos], PARSE_LOOP_END)
    return body


def assemble(packets: Iterable[Sequence[int]]) -> bytes:
    return b"".join(struct.pack("<I", word) for words in packets for word in words)


__all__ = [
    "PARSE_CONTINUE",
    "add",
    "addi",
    "allocframe",
    "assemble",
    "call",
    "call_cond",
    "cmp_jump",
    "cmpi",
    "dealloc_return",
    "duplex",
    "immext",
    "jump",
    "jump_cond",
    "jumpr",
    "load_io",
    "load_pi",
    "loopi",
    "new_value_field",
    "nop",
    "packet",
    "sa1_addi",
    "sa1_addsp",
    "sa1_dec",
    "sa1_inc",
    "sa1_seti",
    "sa1_tfr",
    "sl1_loadrub",
    "sl1_loadri",
    "sl2_jumpr31",
    "sl2_loadri_sp",
    "sl2_return",
    "ss1_storeb",
    "ss1_storew",
    "ss2_allocframe",
    "ss2_storebi",
    "ss2_stored_sp",
    "ss2_storeh",
    "ss2_storew_sp",
    "ss2_storewi",
    "store_imm_io",
    "store_io",
    "store_new_io",
    "store_new_pi",
    "store_pi",
    "sub",
    "tfr",
    "tfrsi",
    "with_parse",
]
