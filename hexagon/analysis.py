"""
Per-binary packet analysis state.

Packets are memoised by start address with a secondary index from every
member address to its packet start. Decode and synthesis run outside the
lock; the lock only guards installing results, so threads working on
different packets never serialise on each other.
"""

from __future__ import annotations

import logging
import threading
from typing import (
    Callable,
    Dict,
    Generic,
    Hashable,
    Iterator,
    List,
    Optional,
    TypeVar,
)

from .config import PacketConfig
from .decoding.reader import WORD_SIZE, InstructionSource
from .errors import MalformedPacketError
from .packets.boundary import prefix_for, singleton_packet, suffix_for
from .packets.model import Packet
from .packets.pipeline import PacketResolver
from .pil.ast import PacketIR
from .pil.synth import synthesize
from .trace import TraceBuffer, TraceEntry

logger = logging.getLogger(__name__)

S = TypeVar("S")


class HexagonAnalysisState:
    def __init__(
        self,
        source: InstructionSource,
        config: Optional[PacketConfig] = None,
        trace: Optional[TraceBuffer] = None,
    ) -> None:
        self.source = source
        self.config = config or PacketConfig()
        self.trace = trace if trace is not None else TraceBuffer()
        self.resolver = PacketResolver(source, self.config, self.trace)
        self._lock = threading.Lock()
        self._packets: Dict[int, Packet] = {}
        self._members: Dict[int, int] = {}
        self._irs: Dict[int, PacketIR] = {}
        self._hits = 0
        self._misses = 0
        # bumped by invalidate/clear; a resolve that straddles a bump is not cached
        self._epoch = 0

    # -- packets -----------------------------------------------------------

    def _lookup(self, address: int) -> Optional[Packet]:
        # caller holds the lock
        start = self._members.get(address)
        if start is None:
            # the odd half of a plain word resolves to the word's packet
            start = self._members.get(address & ~(WORD_SIZE - 1))
        if start is None:
            return None
        return self._packets.get(start)

    def cached_packet(self, address: int) -> Optional[Packet]:
        with self._lock:
            return self._lookup(address)

    def resolve_packet(self, address: int) -> Packet:
        """Packet containing `address`; raises MalformedPacketError."""
        with self._lock:
            packet = self._lookup(address)
            if packet is not None:
                self._hits += 1
                return packet
            self._misses += 1
            epoch = self._epoch
        packet = self.resolver.resolve(address)
        return self._install(packet, epoch)

    def _install(self, packet: Packet, epoch: int) -> Packet:
        with self._lock:
            if epoch != self._epoch:
                # the code changed while this packet was being resolved
                logger.debug("not caching packet %#x resolved before invalidation", packet.start)
                return packet
            existing = self._packets.get(packet.start)
            if existing is not None and existing.addresses == packet.addresses:
                # a racing thread got here first; drop the duplicate
                return existing
            self._packets[packet.start] = packet
            self._irs.pop(packet.start, None)
            for member in packet.addresses:
                self._members[member] = packet.start
        return packet

    def display_packet(self, address: int) -> Packet:
        """Like resolve_packet, but a malformed stream shows up as a
        singleton packet instead of an error. Singletons are not cached."""
        try:
            return self.resolve_packet(address)
        except MalformedPacketError as e:
            logger.warning("%s; showing it as a single-instruction packet", e)
            if self.config.trace:
                self.trace.record(TraceEntry("MalformedPacketError", e.address, "", e.detail))
            return singleton_packet(self.source, address, e)

    # -- IR ----------------------------------------------------------------

    def packet_ir(self, address: int) -> PacketIR:
        """Synthesized IR of the packet containing `address`.

        MalformedPacketError and UnknownInstructionEncodingError propagate.
        """
        packet = self.resolve_packet(address)
        with self._lock:
            ir = self._irs.get(packet.start)
        if ir is not None:
            return ir
        ir = synthesize(packet)
        with self._lock:
            if self._packets.get(packet.start) is not packet:
                # invalidated while synthesizing; hand back without caching
                return ir
            return self._irs.setdefault(packet.start, ir)

    # -- markers -----------------------------------------------------------

    def mnemonic_prefix(self, address: int) -> str:
        return prefix_for(self.display_packet(address), address)

    def mnemonic_suffix(self, address: int) -> str:
        return suffix_for(self.display_packet(address), address)

    def is_end_of_parallel_group(self, address: int) -> bool:
        return self.display_packet(address).is_last(address)

    # -- maintenance -------------------------------------------------------

    def invalidate(self, start: int, end: int) -> int:
        """Drop packets overlapping [start, end) after the code changed.

        A changed word can also merge with the packet that follows it, so
        the range is widened by one maximum packet length. Returns the
        number of packets dropped.
        """
        end += self.config.max_packet_words * WORD_SIZE
        with self._lock:
            self._epoch += 1
            doomed = [
                packet
                for packet in self._packets.values()
                if packet.start < end and start < packet.next_address
            ]
            for packet in doomed:
                del self._packets[packet.start]
                self._irs.pop(packet.start, None)
                for member in packet.addresses:
                    if self._members.get(member) == packet.start:
                        del self._members[member]
        if doomed:
            logger.debug("invalidated %d packets in %#x-%#x", len(doomed), start, end)
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._epoch += 1
            self._packets.clear()
            self._members.clear()
            self._irs.clear()

    def iter_packets(
        self,
        start: int,
        end: int,
        cancelled: Optional[Callable[[], bool]] = None,
    ) -> Iterator[Packet]:
        """Walk packets in [start, end); `cancelled` is polled between packets."""
        address = start
        while address < end:
            if cancelled is not None and cancelled():
                logger.debug("packet walk cancelled at %#x", address)
                return
            try:
                packet = self.resolve_packet(address)
            except MalformedPacketError as e:
                logger.warning("%s", e)
                address = (address & ~(WORD_SIZE - 1)) + WORD_SIZE
                continue
            yield packet
            address = packet.next_address

    def get_cache_stats(self) -> tuple[int, int]:
        """(hits, misses) of packet lookups."""
        with self._lock:
            return self._hits, self._misses

    def __len__(self) -> int:
        with self._lock:
            return len(self._packets)


class AnalysisRegistry(Generic[S]):
    """
    Create-once map from a binary's key to its analysis state.

    The first caller for a key builds the state; concurrent callers for the
    same key wait on an event until it is installed, then share it.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._states: Dict[Hashable, S] = {}
        self._pending: Dict[Hashable, threading.Event] = {}

    def get(self, key: Hashable) -> Optional[S]:
        with self._lock:
            return self._states.get(key)

    def get_or_create(self, key: Hashable, factory: Callable[[], S]) -> S:
        while True:
            with self._lock:
                state = self._states.get(key)
                if state is not None:
                    return state
                event = self._pending.get(key)
                creator = event is None
                if creator:
                    event = threading.Event()
                    self._pending[key] = event
            assert event is not None
            if not creator:
                event.wait()
                # loop: either the state is installed now or the creator
                # failed and someone else has to build it
                continue
            try:
                state = factory()
            except BaseException:
                with self._lock:
                    del self._pending[key]
                event.set()
                raise
            with self._lock:
                self._states[key] = state
                del self._pending[key]
            event.set()
            return state

    def discard(self, key: Hashable) -> Optional[S]:
        with self._lock:
            return self._states.pop(key, None)

    def states(self) -> List[S]:
        """Snapshot of the installed states, oldest first."""
        with self._lock:
            return list(self._states.values())

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._states

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)


class ViewInvalidator:
    """
    Host notification callbacks that keep one state in step with its view.

    Mixed into the host's data-notification class at plugin load; a write
    drops the packets it can affect, an insert or removal shifts every
    address after it so the whole cache goes.
    """

    def __init__(self, state: HexagonAnalysisState) -> None:
        super().__init__()
        self.state = state

    def data_written(self, view, offset: int, length: int) -> None:
        self.state.invalidate(offset, offset + length)

    def data_inserted(self, view, offset: int, length: int) -> None:
        logger.debug("%d bytes inserted at %#x; dropping packet cache", length, offset)
        self.state.clear()

    def data_removed(self, view, offset: int, length: int) -> None:
        logger.debug("%d bytes removed at %#x; dropping packet cache", length, offset)
        self.state.clear()


__all__ = ["AnalysisRegistry", "HexagonAnalysisState", "ViewInvalidator"]
