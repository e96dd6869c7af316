"""
Word-level decoder for the Hexagon instruction subset this plugin lifts.

Bit layouts follow the Hexagon V66 Programmer's Reference Manual. Words that
match no entry still decode, as ``UNKNOWN`` records, so that packet structure
can be resolved around them.
"""

from __future__ import annotations

from typing import Callable, FrozenSet, Iterable, Optional, Tuple

from .bind import (
    ContinuationTag,
    Operand,
    RawInstruction,
    UNKNOWN_MNEMONIC,
)
from .reader import WORD_SIZE

DecoderFunc = Callable[[int, int], RawInstruction]

PARSE_DUPLEX = 0b00
PARSE_LOOP_END = 0b10
PARSE_END = 0b11

LR = "R31"
FP = "R30"
SP = "R29"

# 4-bit sub-instruction and compound register field -> R0-R7, R16-R23
SUB_REGS: Tuple[int, ...] = (0, 1, 2, 3, 4, 5, 6, 7, 16, 17, 18, 19, 20, 21, 22, 23)

# (op field [24:22] of a compare-and-jump, compare, jump when the predicate is set)
_CMP_JUMP_KINDS: Tuple[Tuple[int, str, bool], ...] = (
    (0b000, "eq", True),
    (0b001, "eq", False),
    (0b010, "gt", True),
    (0b011, "gt", False),
    (0b100, "gtu", True),
    (0b101, "gtu", False),
)


def _bits(word: int, hi: int, lo: int) -> int:
    return (word >> lo) & ((1 << (hi - lo + 1)) - 1)


def _field(word: int, *spans: Tuple[int, int]) -> Tuple[int, int]:
    """Concatenate bit spans (most significant first); returns (value, width)."""
    value = 0
    width = 0
    for hi, lo in spans:
        span = hi - lo + 1
        value = (value << span) | _bits(word, hi, lo)
        width += span
    return value, width


def parse_bits(word: int) -> int:
    return _bits(word, 15, 14)


def continuation_tag(word: int, position: int) -> ContinuationTag:
    """Classify a word by its parse bits and its position in the packet.

    ``10`` in the first word marks the end of hardware loop 0, in the second
    word the end of loop 1; anywhere else it just means "not the last word".
    """
    pp = parse_bits(word)
    if pp == PARSE_DUPLEX:
        return ContinuationTag.DUPLEX
    if pp == PARSE_END:
        return ContinuationTag.END
    if pp == PARSE_LOOP_END and position == 0:
        return ContinuationTag.END_HWLOOP0
    if pp == PARSE_LOOP_END and position == 1:
        return ContinuationTag.END_HWLOOP1
    return ContinuationTag.CONTINUE


def _regs(*names: str) -> FrozenSet[str]:
    return frozenset(names)


def _reg(key: str, num: int) -> Operand:
    return Operand(key, "reg", num)


def _imm(
    key: str,
    field: Tuple[int, int],
    *,
    signed: bool = False,
    shift: int = 0,
    extendable: bool = False,
    kind: str = "imm",
) -> Operand:
    value, width = field
    return Operand(
        key,
        kind,  # type: ignore[arg-type]
        value,
        bits=width,
        signed=signed,
        shift=shift,
        extendable=extendable,
    )


def _instr(
    word: int,
    addr: int,
    mnemonic: str,
    operands: Iterable[Operand] = (),
    *,
    reads: FrozenSet[str] = frozenset(),
    writes: FrozenSet[str] = frozenset(),
    **kwargs,
) -> RawInstruction:
    return RawInstruction(
        address=addr,
        length=WORD_SIZE,
        word=word,
        mnemonic=mnemonic,
        operands=tuple(operands),
        reads=reads,
        writes=writes,
        parse_bits=parse_bits(word),
        **kwargs,
    )


# ---------------------------------------------------------------------------
# ICLASS 0: constant extender


def _dec_immext(word: int, addr: int) -> RawInstruction:
    payload, width = _field(word, (27, 16), (13, 0))
    return _instr(
        word,
        addr,
        "A4_ext",
        (Operand("ext", "imm", payload, bits=width, shift=6),),
        is_extender=True,
        extender_value=(payload << 6) & 0xFFFFFFFF,
    )


# ---------------------------------------------------------------------------
# ALU32


def _dec_add(word: int, addr: int) -> RawInstruction:
    d, s, t = _bits(word, 4, 0), _bits(word, 20, 16), _bits(word, 12, 8)
    return _instr(
        word,
        addr,
        "A2_add",
        (_reg("d", d), _reg("s", s), _reg("t", t)),
        reads=_regs(f"R{s}", f"R{t}"),
        writes=_regs(f"R{d}"),
    )


def _dec_sub(word: int, addr: int) -> RawInstruction:
    # Rd=sub(Rt,Rs)
    d, s, t = _bits(word, 4, 0), _bits(word, 20, 16), _bits(word, 12, 8)
    return _instr(
        word,
        addr,
        "A2_sub",
        (_reg("d", d), _reg("t", t), _reg("s", s)),
        reads=_regs(f"R{s}", f"R{t}"),
        writes=_regs(f"R{d}"),
    )


def _dec_addi(word: int, addr: int) -> RawInstruction:
    d, s = _bits(word, 4, 0), _bits(word, 20, 16)
    imm = _imm("imm", _field(word, (27, 21), (13, 5)), signed=True, extendable=True)
    return _instr(
        word,
        addr,
        "A2_addi",
        (_reg("d", d), _reg("s", s), imm),
        reads=_regs(f"R{s}"),
        writes=_regs(f"R{d}"),
    )


def _dec_tfr(word: int, addr: int) -> RawInstruction:
    d, s = _bits(word, 4, 0), _bits(word, 20, 16)
    return _instr(
        word,
        addr,
        "A2_tfr",
        (_reg("d", d), _reg("s", s)),
        reads=_regs(f"R{s}"),
        writes=_regs(f"R{d}"),
    )


def _dec_tfrsi(word: int, addr: int) -> RawInstruction:
    d = _bits(word, 4, 0)
    imm = _imm(
        "imm", _field(word, (23, 22), (20, 16), (13, 5)), signed=True, extendable=True
    )
    return _instr(
        word,
        addr,
        "A2_tfrsi",
        (_reg("d", d), imm),
        writes=_regs(f"R{d}"),
    )


def _dec_nop(word: int, addr: int) -> RawInstruction:
    return _instr(word, addr, "A2_nop")


def _dec_cmpi(compare: str) -> DecoderFunc:
    # Pd=cmp.<compare>(Rs,#s10), unsigned #u9 for gtu
    def _dec(word: int, addr: int) -> RawInstruction:
        d, s = _bits(word, 1, 0), _bits(word, 20, 16)
        if compare == "gtu":
            imm = _imm("imm", _field(word, (13, 5)), extendable=True)
        else:
            imm = _imm(
                "imm", _field(word, (21, 21), (13, 5)), signed=True, extendable=True
            )
        return _instr(
            word,
            addr,
            f"C2_cmp{compare}i",
            (Operand("d", "pred", d), _reg("s", s), imm),
            reads=_regs(f"R{s}"),
            writes=_regs(f"P{d}"),
        )

    return _dec


# ---------------------------------------------------------------------------
# J: jumps, calls, hardware loops


def _dec_jump(word: int, addr: int) -> RawInstruction:
    target = _imm(
        "target",
        _field(word, (24, 16), (13, 1)),
        signed=True,
        shift=2,
        extendable=True,
        kind="pcrel",
    )
    return _instr(word, addr, "J2_jump", (target,))


def _dec_call(word: int, addr: int) -> RawInstruction:
    target = _imm(
        "target",
        _field(word, (24, 16), (13, 1)),
        signed=True,
        shift=2,
        extendable=True,
        kind="pcrel",
    )
    return _instr(word, addr, "J2_call", (target,), writes=_regs(LR))


def _dec_call_cond(mnemonic: str) -> DecoderFunc:
    def _dec(word: int, addr: int) -> RawInstruction:
        u = _bits(word, 9, 8)
        target = _imm(
            "target",
            _field(word, (23, 22), (20, 16), (13, 13), (7, 1)),
            signed=True,
            shift=2,
            extendable=True,
            kind="pcrel",
        )
        return _instr(
            word,
            addr,
            mnemonic,
            (Operand("u", "pred", u), target),
            reads=_regs(f"P{u}"),
            writes=_regs(LR),
        )

    return _dec


def _dec_cmp_jump(pred: int, compare: str, sense: bool) -> DecoderFunc:
    # Pp=cmp.<compare>(Rs,#U5); if ([!]Pp.new) jump #r9:2 in one word
    def _dec(word: int, addr: int) -> RawInstruction:
        s = SUB_REGS[_bits(word, 19, 16)]
        target = _imm(
            "target",
            _field(word, (21, 20), (7, 1)),
            signed=True,
            shift=2,
            kind="pcrel",
        )
        imm = _imm("imm", _field(word, (12, 8)))
        hint = "t" if _bits(word, 13, 13) else "nt"
        return _instr(
            word,
            addr,
            f"J4_cmp{compare}i_{'t' if sense else 'f'}p{pred}_jump_{hint}",
            (Operand("p", "pred", pred), _reg("s", s), imm, target),
            reads=_regs(f"R{s}"),
            writes=_regs(f"P{pred}"),
        )

    return _dec


def _dec_jump_cond(sense: bool, new: bool) -> DecoderFunc:
    def _dec(word: int, addr: int) -> RawInstruction:
        u = _bits(word, 9, 8)
        target = _imm(
            "target",
            _field(word, (23, 22), (20, 16), (13, 13), (7, 1)),
            signed=True,
            shift=2,
            extendable=True,
            kind="pcrel",
        )
        mnemonic = f"J2_jump{'t' if sense else 'f'}{'new' if new else ''}"
        if _bits(word, 12, 12):
            mnemonic += "pt"
        return _instr(
            word,
            addr,
            mnemonic,
            (Operand("u", "pred", u), target),
            reads=_regs(f"P{u}"),
        )

    return _dec


def _dec_jumpr(word: int, addr: int) -> RawInstruction:
    s = _bits(word, 20, 16)
    return _instr(word, addr, "J2_jumpr", (_reg("s", s),), reads=_regs(f"R{s}"))


def _dec_loopi(loop: int) -> DecoderFunc:
    def _dec(word: int, addr: int) -> RawInstruction:
        start = _imm(
            "start",
            _field(word, (12, 8), (4, 3)),
            signed=True,
            shift=2,
            extendable=True,
            kind="pcrel",
        )
        count = _imm("count", _field(word, (20, 16), (7, 5), (1, 0)))
        return _instr(
            word,
            addr,
            f"J2_loop{loop}i",
            (start, count),
            writes=_regs(f"SA{loop}", f"LC{loop}"),
        )

    return _dec


# ---------------------------------------------------------------------------
# LD / ST

# (UN field, mnemonic infix, access size in bytes, sign-extending)
_LOAD_KINDS: Tuple[Tuple[int, str, int, bool], ...] = (
    (0b1000, "rb", 1, True),
    (0b1001, "rub", 1, False),
    (0b1010, "rh", 2, True),
    (0b1011, "ruh", 2, False),
    (0b1100, "ri", 4, False),
)

_STORE_KINDS: Tuple[Tuple[int, str, int], ...] = (
    (0b1000, "rb", 1),
    (0b1010, "rh", 2),
    (0b1100, "ri", 4),
)

_NEW_STORE_KINDS: Tuple[Tuple[int, str, int], ...] = (
    (0b00, "rb", 1),
    (0b01, "rh", 2),
    (0b10, "ri", 4),
)

_SIZE_SHIFT = {1: 0, 2: 1, 4: 2}


def _dec_load_io(infix: str, size: int) -> DecoderFunc:
    def _dec(word: int, addr: int) -> RawInstruction:
        d, s = _bits(word, 4, 0), _bits(word, 20, 16)
        off = _imm(
            "off",
            _field(word, (26, 25), (13, 5)),
            signed=True,
            shift=_SIZE_SHIFT[size],
            extendable=True,
        )
        return _instr(
            word,
            addr,
            f"L2_load{infix}_io",
            (_reg("d", d), _reg("s", s), off),
            reads=_regs(f"R{s}"),
            writes=_regs(f"R{d}"),
        )

    return _dec


def _dec_load_pi(infix: str, size: int) -> DecoderFunc:
    def _dec(word: int, addr: int) -> RawInstruction:
        d, x = _bits(word, 4, 0), _bits(word, 20, 16)
        inc = _imm("inc", _field(word, (8, 5)), signed=True, shift=_SIZE_SHIFT[size])
        return _instr(
            word,
            addr,
            f"L2_load{infix}_pi",
            (_reg("d", d), _reg("x", x), inc),
            reads=_regs(f"R{x}"),
            writes=_regs(f"R{d}", f"R{x}"),
        )

    return _dec


def _dec_store_io(infix: str, size: int) -> DecoderFunc:
    def _dec(word: int, addr: int) -> RawInstruction:
        s, t = _bits(word, 20, 16), _bits(word, 12, 8)
        off = _imm(
            "off",
            _field(word, (26, 25), (13, 13), (7, 0)),
            signed=True,
            shift=_SIZE_SHIFT[size],
            extendable=True,
        )
        return _instr(
            word,
            addr,
            f"S2_store{infix}_io",
            (_reg("s", s), off, _reg("t", t)),
            reads=_regs(f"R{s}", f"R{t}"),
            stores=True,
        )

    return _dec


def _dec_store_pi(infix: str, size: int) -> DecoderFunc:
    def _dec(word: int, addr: int) -> RawInstruction:
        x, t = _bits(word, 20, 16), _bits(word, 12, 8)
        inc = _imm("inc", _field(word, (6, 3)), signed=True, shift=_SIZE_SHIFT[size])
        return _instr(
            word,
            addr,
            f"S2_store{infix}_pi",
            (_reg("x", x), inc, _reg("t", t)),
            reads=_regs(f"R{x}", f"R{t}"),
            writes=_regs(f"R{x}"),
            stores=True,
        )

    return _dec


def _dec_store_new_io(infix: str, size: int) -> DecoderFunc:
    def _dec(word: int, addr: int) -> RawInstruction:
        s = _bits(word, 20, 16)
        nt = Operand("nt", "newval", _bits(word, 10, 8))
        off = _imm(
            "off",
            _field(word, (26, 25), (13, 13), (7, 0)),
            signed=True,
            shift=_SIZE_SHIFT[size],
            extendable=True,
        )
        return _instr(
            word,
            addr,
            f"S2_store{infix}new_io",
            (_reg("s", s), nt, off),
            reads=_regs(f"R{s}"),
            has_new_value=True,
            new_value_distance=nt.new_value_distance,
            stores=True,
        )

    return _dec


def _dec_store_new_pi(infix: str, size: int) -> DecoderFunc:
    def _dec(word: int, addr: int) -> RawInstruction:
        x = _bits(word, 20, 16)
        nt = Operand("nt", "newval", _bits(word, 10, 8))
        inc = _imm("inc", _field(word, (6, 3)), signed=True, shift=_SIZE_SHIFT[size])
        return _instr(
            word,
            addr,
            f"S2_store{infix}new_pi",
            (_reg("x", x), inc, nt),
            reads=_regs(f"R{x}"),
            writes=_regs(f"R{x}"),
            has_new_value=True,
            new_value_distance=nt.new_value_distance,
            stores=True,
        )

    return _dec


def _dec_store_imm_io(infix: str, size: int) -> DecoderFunc:
    def _dec(word: int, addr: int) -> RawInstruction:
        s = _bits(word, 20, 16)
        off = _imm("off", _field(word, (12, 7)), shift=_SIZE_SHIFT[size])
        value = _imm(
            "value", _field(word, (13, 13), (6, 0)), signed=True, extendable=True
        )
        return _instr(
            word,
            addr,
            f"S4_storei{infix}_io",
            (_reg("s", s), off, value),
            reads=_regs(f"R{s}"),
            stores=True,
        )

    return _dec


def _dec_allocframe(word: int, addr: int) -> RawInstruction:
    size = _imm("size", _field(word, (10, 0)), shift=3)
    return _instr(
        word,
        addr,
        "S2_allocframe",
        (size,),
        reads=_regs(SP, FP, LR),
        writes=_regs(SP, FP),
        stores=True,
    )


def _dec_dealloc_return(word: int, addr: int) -> RawInstruction:
    return _instr(
        word,
        addr,
        "L4_return",
        (),
        reads=_regs(FP),
        writes=_regs(SP, FP, LR),
    )


def _build_opcodes() -> Tuple[Tuple[int, int, DecoderFunc], ...]:
    table = [
        (0xF0000000, 0x00000000, _dec_immext),
        (0xFFE00000, 0xF3000000, _dec_add),
        (0xFFE00000, 0xF3200000, _dec_sub),
        (0xF0000000, 0xB0000000, _dec_addi),
        (0xFFE02000, 0x70600000, _dec_tfr),
        (0xFF000000, 0x78000000, _dec_tfrsi),
        (0xFF000000, 0x7F000000, _dec_nop),
        (0xFE000000, 0x58000000, _dec_jump),
        (0xFE000001, 0x5A000000, _dec_call),
        (0xFF200400, 0x5D000000, _dec_call_cond("J2_callt")),
        (0xFF200400, 0x5D200000, _dec_call_cond("J2_callf")),
        (0xFFE00000, 0x52800000, _dec_jumpr),
        (0xFFC0001C, 0x75000000, _dec_cmpi("eq")),
        (0xFFC0001C, 0x75400000, _dec_cmpi("gt")),
        (0xFFE0001C, 0x75800000, _dec_cmpi("gtu")),
        (0xFF200800, 0x5C000000, _dec_jump_cond(True, False)),
        (0xFF200800, 0x5C200000, _dec_jump_cond(False, False)),
        (0xFF200800, 0x5C000800, _dec_jump_cond(True, True)),
        (0xFF200800, 0x5C200800, _dec_jump_cond(False, True)),
        (0xFFE00000, 0x69000000, _dec_loopi(0)),
        (0xFFE00000, 0x69200000, _dec_loopi(1)),
        (0xFFE03800, 0xA0800000, _dec_allocframe),
        (0xFFE03C00, 0x96000000, _dec_dealloc_return),
        (0xFE600000, 0x3C000000, _dec_store_imm_io("rb", 1)),
        (0xFE600000, 0x3C200000, _dec_store_imm_io("rh", 2)),
        (0xFE600000, 0x3C400000, _dec_store_imm_io("ri", 4)),
    ]
    for pred in (0, 1):
        for op, compare, sense in _CMP_JUMP_KINDS:
            table.append(
                (
                    0xFFC00000,
                    0x10000000 | (pred << 25) | (op << 22),
                    _dec_cmp_jump(pred, compare, sense),
                )
            )
    for un, infix, size, _signed in _LOAD_KINDS:
        table.append((0xF9E00000, 0x90000000 | (un << 21), _dec_load_io(infix, size)))
        table.append((0xFFE03000, 0x9A000000 | (un << 21), _dec_load_pi(infix, size)))
    for un, infix, size in _STORE_KINDS:
        table.append((0xF9E00000, 0xA0000000 | (un << 21), _dec_store_io(infix, size)))
        table.append((0xFFE02082, 0xAA000000 | (un << 21), _dec_store_pi(infix, size)))
    for sz, infix, size in _NEW_STORE_KINDS:
        table.append(
            (0xF9E01800, 0xA1A00000 | (sz << 11), _dec_store_new_io(infix, size))
        )
        table.append(
            (0xFFE03882, 0xABA00000 | (sz << 11), _dec_store_new_pi(infix, size))
        )
    return tuple(table)


OPCODES: Tuple[Tuple[int, int, DecoderFunc], ...] = _build_opcodes()

LOAD_SIZES = {f"L2_load{infix}": (size, signed) for _, infix, size, signed in _LOAD_KINDS}
STORE_SIZES = {infix: size for _, infix, size in _STORE_KINDS}

# compare-and-jump mnemonic (either hint) -> (compare, jump when the predicate is set)
CMP_JUMPS = {
    f"J4_cmp{compare}i_{'t' if sense else 'f'}p{pred}_jump_{hint}": (compare, sense)
    for pred in (0, 1)
    for _, compare, sense in _CMP_JUMP_KINDS
    for hint in ("t", "nt")
}


def lookup(word: int) -> Optional[DecoderFunc]:
    for mask, match, decoder in OPCODES:
        if word & mask == match:
            return decoder
    return None


def decode_word(word: int, addr: int) -> RawInstruction:
    """Decode one 32-bit word. Duplex words come back as a single
    ``is_duplex`` placeholder; the duplex splitter expands them."""
    if parse_bits(word) == PARSE_DUPLEX:
        return _instr(word, addr, "DUPLEX", is_duplex=True)
    decoder = lookup(word)
    if decoder is None:
        return _instr(word, addr, UNKNOWN_MNEMONIC)
    return decoder(word, addr)


__all__ = [
    "CMP_JUMPS",
    "LOAD_SIZES",
    "OPCODES",
    "PARSE_DUPLEX",
    "PARSE_END",
    "PARSE_LOOP_END",
    "STORE_SIZES",
    "SUB_REGS",
    "continuation_tag",
    "decode_word",
    "lookup",
    "parse_bits",
]
