"""
Packet Intermediate Language (PIL) for Hexagon.

One PacketIR per packet: a read epoch that captures packet-entry state into
packet-local temporaries, followed by a commit epoch that makes the writes
architecturally visible. ``backend_llil`` lowers it to Binary Ninja LLIL and
``backend_pyemu`` evaluates it directly; neither is imported here so the
core works without Binary Ninja.
"""

from .ast import (  # noqa: F401
    BinOp,
    COMMIT,
    Call,
    Cond,
    Const,
    EpochOp,
    Expr,
    Goto,
    If,
    Mem,
    PacketIR,
    READ,
    Reg,
    Ret,
    SetReg,
    SetTmp,
    Stmt,
    Store,
    Tmp,
    UnOp,
    Unresolved,
)
from .synth import synthesize  # noqa: F401
from . import validate  # noqa: F401
from . import serde  # noqa: F401

__all__ = [
    "PacketIR",
    "EpochOp",
    "Stmt",
    "Expr",
    "Const",
    "Tmp",
    "Reg",
    "Mem",
    "BinOp",
    "UnOp",
    "Cond",
    "SetTmp",
    "SetReg",
    "Store",
    "If",
    "Goto",
    "Call",
    "Ret",
    "Unresolved",
    "READ",
    "COMMIT",
    "synthesize",
    "validate",
    "serde",
]
