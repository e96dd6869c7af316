"""
Parallel-semantics synthesis: one IR program per packet.

Every template reads packet-entry state into fresh temporaries (read epoch);
commits follow in a fixed order: register writes in program order, then
stores, then control transfer, then the hardware-loop back-edge. The last
two form one chain in which the first taken transfer wins.
"""

from __future__ import annotations

import itertools
import logging
import threading
from typing import List, Optional, Tuple

from ..errors import UnknownInstructionEncodingError
from ..packets.model import Packet
from . import ast
from .lift import TEMPLATES, PacketBuilder, UnboundNewValue

logger = logging.getLogger(__name__)

_namespaces = itertools.count(1)
_namespace_lock = threading.Lock()


def next_namespace() -> int:
    """Monotonic temporary namespace; never reused within a process."""
    with _namespace_lock:
        return next(_namespaces)


def _chain_transfers(ops: List[ast.EpochOp]) -> List[ast.EpochOp]:
    """Nest the control commits so at most one transfer is taken.

    A conditional transfer gets the transfers after it as its else branch;
    an unconditional one ends the chain, so nothing queued after it (a
    hardware-loop back-edge included) is reachable.
    """
    rest: Tuple[ast.Stmt, ...] = ()
    for op in reversed(ops):
        stmt = op.stmt
        if isinstance(stmt, ast.If) and not stmt.else_ops:
            stmt = ast.If(stmt.cond, stmt.then_ops, rest)
        rest = (stmt,)
    if not rest:
        return []
    return [ast.EpochOp(ast.COMMIT, rest[0], ops[0].owner)]


def synthesize(packet: Packet, namespace: Optional[int] = None) -> ast.PacketIR:
    """Combine the entries of a resolved packet into one PacketIR.

    Raises UnknownInstructionEncodingError, with no partial IR, when any
    entry lacks a template. A new-value consumer that cannot be bound gets an
    Unresolved marker instead of semantics.
    """
    for entry in packet.entries:
        if entry.mnemonic not in TEMPLATES:
            raise UnknownInstructionEncodingError(
                entry.address, f"No IR template for {entry.mnemonic}"
            )

    builder = PacketBuilder(packet, next_namespace() if namespace is None else namespace)
    for entry in packet.entries:
        builder.begin(entry)
        try:
            TEMPLATES[entry.mnemonic](builder, entry)
        except UnboundNewValue as e:
            builder.rollback()
            builder.unresolved(e.address, e.reason)
            logger.warning("No IR for %s at %#x: %s", entry.mnemonic, e.address, e.reason)

    builder.entry = packet.entries[-1]
    for loop in packet.end_loop.loops:
        builder.loop_end(loop)

    ops = (
        builder.reads
        + builder.reg_commits
        + builder.store_commits
        + _chain_transfers(builder.control_commits + builder.loop_commits)
    )
    ir = ast.PacketIR(
        start=packet.start,
        ops=tuple(ops),
        tmps=tuple(builder.tmps),
        namespace=builder.namespace,
        next_address=packet.next_address,
    )
    logger.debug(
        "packet %#x: %d ops, %d temporaries in namespace %d",
        ir.start,
        len(ir.ops),
        len(ir.tmps),
        ir.namespace,
    )
    return ir


__all__ = ["next_namespace", "synthesize"]
