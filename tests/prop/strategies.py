from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Tuple

from hypothesis import strategies as st

from hexagon.decoding import encode as enc
from hexagon.decoding.duplex import SUB_REGS

BASE = 0x10000
MAX_WORDS = 4

GPRS = st.integers(0, 28)
SUB_GPRS = st.sampled_from(SUB_REGS)


@dataclass
class Stream:
    """An assembled run of packets plus the layout the assembler chose."""

    packets: List[List[int]] = field(default_factory=list)
    starts: List[int] = field(default_factory=list)
    duplexes: List[int] = field(default_factory=list)

    @property
    def data(self) -> bytes:
        return enc.assemble(self.packets)

    @property
    def end(self) -> int:
        return BASE + len(self.data)

    @property
    def word_addresses(self) -> List[int]:
        return list(range(BASE, self.end, 4))


@st.composite
def alu_words(draw) -> List[int]:
    """One or two words: a plain ALU op, or an extender and its target."""
    kind = draw(st.sampled_from(["add", "sub", "addi", "tfr", "tfrsi", "nop", "ext"]))
    d, s, t = draw(GPRS), draw(GPRS), draw(GPRS)
    if kind == "add":
        return [enc.add(d, s, t)]
    if kind == "sub":
        return [enc.sub(d, t, s)]
    if kind == "addi":
        return [enc.addi(d, s, draw(st.integers(-0x8000, 0x7FFF)))]
    if kind == "tfr":
        return [enc.tfr(d, s)]
    if kind == "tfrsi":
        return [enc.tfrsi(d, draw(st.integers(-0x8000, 0x7FFF)))]
    if kind == "nop":
        return [enc.nop()]
    value = draw(st.integers(0, 0xFFFFFFFF))
    return [enc.immext(value), enc.tfrsi(d, value & 0x3F)]


@st.composite
def memory_words(draw) -> List[int]:
    kind = draw(st.sampled_from(["rb", "rub", "rh", "ruh", "ri"]))
    scale = {"rb": 1, "rub": 1, "rh": 2, "ruh": 2, "ri": 4}[kind]
    off = draw(st.integers(-32, 31)) * scale
    if kind in ("rb", "rh", "ri") and draw(st.booleans()):
        return [enc.store_io(kind, draw(GPRS), off, draw(GPRS))]
    return [enc.load_io(kind, draw(GPRS), draw(GPRS), off)]


@st.composite
def arith_duplexes(draw) -> int:
    slot = st.one_of(
        st.builds(enc.sa1_seti, SUB_GPRS, st.integers(0, 63)),
        st.builds(enc.sa1_addi, SUB_GPRS, st.integers(-64, 63)),
        st.builds(enc.sa1_tfr, SUB_GPRS, SUB_GPRS),
        st.builds(enc.sa1_inc, SUB_GPRS, SUB_GPRS),
        st.builds(enc.sa1_dec, SUB_GPRS, SUB_GPRS),
    )
    load = st.builds(enc.sl1_loadri, SUB_GPRS, SUB_GPRS, st.integers(0, 15).map(lambda n: n * 4))
    if draw(st.booleans()):
        return enc.duplex(0x3, draw(slot), draw(slot))
    return enc.duplex(0x4, draw(load), draw(slot))


@st.composite
def packet_bodies(draw) -> Tuple[List[int], int | None]:
    """Words of one packet (without parse bits) and an optional duplex."""
    use_duplex = draw(st.booleans())
    budget = MAX_WORDS - 1 if use_duplex else MAX_WORDS
    words: List[int] = []
    for _ in range(draw(st.integers(0 if use_duplex else 1, budget))):
        chunk = draw(st.one_of(alu_words(), memory_words()))
        if len(words) + len(chunk) > budget:
            break
        words += chunk
    if not words and not use_duplex:
        words = [enc.nop()]
    return words, draw(arith_duplexes()) if use_duplex else None


@st.composite
def streams(draw, max_packets: int = 6) -> Stream:
    stream = Stream()
    address = BASE
    for _ in range(draw(st.integers(1, max_packets))):
        words, duplex_word = draw(packet_bodies())
        body = enc.packet(words, duplex_word=duplex_word)
        stream.packets.append(body)
        stream.starts.append(address)
        address += 4 * len(body)
        if duplex_word is not None:
            stream.duplexes.append(address - 4)
    return stream


@st.composite
def register_permutations(draw) -> List[Tuple[int, int]]:
    """(dest, src) pairs of a parallel register shuffle; dests are distinct."""
    regs = draw(st.lists(GPRS, min_size=2, max_size=MAX_WORDS, unique=True))
    return list(zip(regs, draw(st.permutations(regs))))


__all__ = [
    "BASE",
    "Stream",
    "alu_words",
    "arith_duplexes",
    "memory_words",
    "packet_bodies",
    "register_permutations",
    "streams",
]
