"""
Packet boundary resolution.

Packets are closed by a word whose parse bits are ``11`` (end) or ``00``
(duplex, always the last word). Mid-packet queries walk backward to the
previous closing word; both walks are bounded by the maximum packet length.
"""

from __future__ import annotations

from dataclasses import replace
import logging
from typing import List, Sequence, Tuple

from ..config import MAX_PACKET_WORDS
from ..decoding.bind import ContinuationTag, HwLoop, RawInstruction
from ..decoding.decode_map import continuation_tag, decode_word
from ..decoding.duplex import split_duplex
from ..decoding.reader import WORD_SIZE, InstructionSource
from ..errors import MalformedPacketError
from .model import Packet

logger = logging.getLogger(__name__)

OPEN_MARKER = "{"
CLOSE_MARKER = "}"
NO_MARKER = " "

Word = Tuple[int, int]  # (address, word)


def word_address(address: int) -> int:
    """Duplex sub-instructions live at word+0 and word+2."""
    return address & ~(WORD_SIZE - 1)


def loop_end_kind(words: Sequence[int]) -> HwLoop:
    tags = [continuation_tag(word, pos) for pos, word in enumerate(words[:2])]
    loop0 = ContinuationTag.END_HWLOOP0 in tags
    loop1 = ContinuationTag.END_HWLOOP1 in tags
    if loop0 and loop1:
        return HwLoop.LOOP01
    if loop0:
        return HwLoop.LOOP0
    if loop1:
        return HwLoop.LOOP1
    return HwLoop.NONE


class BoundaryResolver:
    def __init__(
        self, source: InstructionSource, max_packet_words: int = MAX_PACKET_WORDS
    ) -> None:
        self.source = source
        self.max_packet_words = max_packet_words

    def _closes(self, word: int, position: int) -> bool:
        return continuation_tag(word, position).closes_packet

    def find_packet_start(self, address: int) -> int:
        """Walk backward from `address` to the first word of its packet."""
        cursor = word_address(address)
        if self.source.read_word(cursor) is None:
            raise MalformedPacketError(address, "Address is not mapped code")
        region_start = self.source.region_start(cursor)
        for _ in range(self.max_packet_words):
            prev = cursor - WORD_SIZE
            if prev < region_start:
                return cursor
            word = self.source.read_word(prev)
            if word is None:
                return cursor
            # a word that closes a packet closes it regardless of position
            if self._closes(word, position=2):
                return cursor
            cursor = prev
        raise MalformedPacketError(
            address,
            f"No packet boundary within {self.max_packet_words} words",
        )

    def scan_words(self, start: int) -> List[Word]:
        """Collect the words of the packet beginning at `start`."""
        words: List[Word] = []
        cursor = start
        while len(words) < self.max_packet_words:
            word = self.source.read_word(cursor)
            if word is None:
                raise MalformedPacketError(
                    cursor, f"Packet starting at {start:#x} runs off mapped code"
                )
            words.append((cursor, word))
            if self._closes(word, len(words) - 1):
                return words
            cursor += WORD_SIZE
        raise MalformedPacketError(
            start, f"Packet is not closed within {self.max_packet_words} words"
        )

    def resolve(self, address: int) -> Packet:
        start = self.find_packet_start(address)
        packet = build_packet(self.scan_words(start))
        logger.debug(
            "packet %#x-%#x: %d entries %s",
            packet.start,
            packet.end,
            len(packet),
            packet.end_loop.value or "",
        )
        return packet


def build_packet(words: Sequence[Word]) -> Packet:
    """Decode and split the words of one packet (no extension/new-value yet)."""
    if not words:
        raise ValueError("build_packet needs at least one word")
    entries: List[RawInstruction] = []
    raw_words = [word for _, word in words]
    for pos, (addr, word) in enumerate(words):
        tag = continuation_tag(word, pos)
        last = pos == len(words) - 1
        if tag is ContinuationTag.DUPLEX:
            if not last:
                raise MalformedPacketError(
                    addr, "Duplex word must be the last word of its packet"
                )
            entries.extend(split_duplex(word, addr))
            continue
        if last and tag is not ContinuationTag.END:
            raise MalformedPacketError(addr, "Packet's last word does not close it")
        if not last and tag is ContinuationTag.END:
            raise MalformedPacketError(addr, "Packet closed before its last word")
        entries.append(decode_word(word, addr))

    end_loop = loop_end_kind(raw_words)
    if end_loop is not HwLoop.NONE:
        entries[-1] = replace(entries[-1], end_loop=end_loop)
    return Packet(entries=tuple(entries), end_loop=end_loop, words=tuple(raw_words))


def singleton_packet(
    source: InstructionSource, address: int, error: MalformedPacketError
) -> Packet:
    """Fallback for malformed streams: show the word as its own packet."""
    addr = word_address(address)
    word = source.read_word(addr)
    if word is None:
        raise error
    entry = decode_word(word, addr)
    entries: Tuple[RawInstruction, ...]
    if entry.is_duplex:
        entries = split_duplex(word, addr)
    else:
        entries = (entry,)
    return Packet(entries=entries, words=(word,), malformed=error)


def prefix_for(packet: Packet, address: int) -> str:
    return OPEN_MARKER if packet.is_first(address) else NO_MARKER


def suffix_for(packet: Packet, address: int) -> str:
    if not packet.is_last(address):
        return NO_MARKER
    return CLOSE_MARKER + packet.end_loop.suffix


__all__ = [
    "BoundaryResolver",
    "CLOSE_MARKER",
    "NO_MARKER",
    "OPEN_MARKER",
    "build_packet",
    "loop_end_kind",
    "prefix_for",
    "singleton_packet",
    "suffix_for",
    "word_address",
]
