from __future__ import annotations

from dataclasses import replace
import logging
from typing import Optional

from ..config import PacketConfig
from ..decoding.reader import InstructionSource
from ..trace import TraceBuffer, TraceEntry
from .boundary import BoundaryResolver
from .extender import apply_extension
from .model import Packet
from .newvalue import resolve_new_values

logger = logging.getLogger(__name__)


class PacketResolver:
    """Boundary scan, duplex split, extension and new-value binding for the
    packet containing one address."""

    def __init__(
        self,
        source: InstructionSource,
        config: Optional[PacketConfig] = None,
        trace: Optional[TraceBuffer] = None,
    ) -> None:
        self.source = source
        self.config = config or PacketConfig()
        self.trace = trace
        self.boundaries = BoundaryResolver(source, self.config.max_packet_words)

    def resolve(self, address: int) -> Packet:
        return self.finish(self.boundaries.resolve(address))

    def finish(self, packet: Packet) -> Packet:
        """Apply the extender and bind new-value consumers."""
        entries, extension, ext_diags = apply_extension(
            packet.entries, strict=self.config.strict_extenders
        )
        new_values, nv_diags = resolve_new_values(entries)
        diagnostics = packet.diagnostics + ext_diags + nv_diags
        resolved = replace(
            packet,
            entries=entries,
            extension=extension,
            new_values=new_values,
            diagnostics=diagnostics,
        )
        if self.trace is not None and self.config.trace:
            for error in diagnostics:
                self._record(resolved, type(error).__name__, error.address, error.detail)
        return resolved

    def _record(self, packet: Packet, event: str, address: int, detail: str) -> None:
        try:
            mnemonic = packet.entry_at(address).mnemonic
        except KeyError:
            mnemonic = ""
        assert self.trace is not None
        self.trace.record(TraceEntry(event, address, mnemonic, detail))


__all__ = ["PacketResolver"]
