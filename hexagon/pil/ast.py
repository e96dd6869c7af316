from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional, Sequence, Tuple, Union

UnaryOp = Literal["neg", "not", "sext", "zext", "low_part"]
BinaryOp = Literal[
    "add", "sub", "and", "or", "xor", "shl", "shr", "sar",
    # comparisons yield 1 or 0
    "eq", "gts", "gtu",
]
CondKind = Literal["eq", "ne", "ltu", "gtu", "lts", "gts"]
Epoch = Literal["read", "commit"]

READ: Epoch = "read"
COMMIT: Epoch = "commit"

WORD_BITS = 32


def _as_tuple(items: Sequence["Stmt"]) -> Tuple["Stmt", ...]:
    return tuple(items) if not isinstance(items, tuple) else items


@dataclass(frozen=True, slots=True)
class Const:
    value: int
    size: int = WORD_BITS  # bits


@dataclass(frozen=True, slots=True)
class Tmp:
    """Packet-local temporary; never visible outside its packet's IR."""

    name: str
    size: int = WORD_BITS


@dataclass(frozen=True, slots=True)
class Reg:
    name: str
    size: int = WORD_BITS


@dataclass(frozen=True, slots=True)
class Mem:
    addr: "Expr"
    size: int  # bits


@dataclass(frozen=True, slots=True)
class UnOp:
    op: UnaryOp
    a: "Expr"
    out_size: int = WORD_BITS


@dataclass(frozen=True, slots=True)
class BinOp:
    op: BinaryOp
    a: "Expr"
    b: "Expr"
    out_size: int = WORD_BITS


Expr = Union[Const, Tmp, Reg, Mem, UnOp, BinOp]


@dataclass(frozen=True, slots=True)
class Cond:
    kind: CondKind
    a: Expr
    b: Expr


@dataclass(frozen=True, slots=True)
class SetTmp:
    tmp: Tmp
    value: Expr


@dataclass(frozen=True, slots=True)
class SetReg:
    reg: Reg
    value: Expr


@dataclass(frozen=True, slots=True)
class Store:
    dst: Mem
    value: Expr


@dataclass(frozen=True, slots=True)
class If:
    cond: Cond
    then_ops: Sequence["Stmt"]
    else_ops: Sequence["Stmt"] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "then_ops", _as_tuple(self.then_ops))
        object.__setattr__(self, "else_ops", _as_tuple(self.else_ops))


@dataclass(frozen=True, slots=True)
class Goto:
    target: Expr


@dataclass(frozen=True, slots=True)
class Call:
    target: Expr
    return_addr: int


@dataclass(frozen=True, slots=True)
class Ret:
    target: Expr


@dataclass(frozen=True, slots=True)
class Unresolved:
    """Placeholder for an instruction whose semantics could not be bound
    (e.g. an ambiguous new-value producer). Nothing is guessed."""

    address: int
    reason: str


Stmt = Union[SetTmp, SetReg, Store, If, Goto, Call, Ret, Unresolved]

CONTROL_STMTS = (Goto, Call, Ret)


@dataclass(frozen=True, slots=True)
class EpochOp:
    epoch: Epoch
    stmt: Stmt
    owner: int  # address of the instruction the op belongs to


@dataclass(frozen=True)
class PacketIR:
    start: int
    ops: Tuple[EpochOp, ...]
    tmps: Tuple[Tmp, ...]
    namespace: int
    next_address: int = 0

    @property
    def read_ops(self) -> Tuple[EpochOp, ...]:
        return tuple(op for op in self.ops if op.epoch == READ)

    @property
    def commit_ops(self) -> Tuple[EpochOp, ...]:
        return tuple(op for op in self.ops if op.epoch == COMMIT)

    @property
    def unresolved(self) -> Tuple[Unresolved, ...]:
        return tuple(op.stmt for op in self.ops if isinstance(op.stmt, Unresolved))

    def ops_for(self, owner: int) -> Tuple[EpochOp, ...]:
        return tuple(op for op in self.ops if op.owner == owner)

    def find_tmp(self, name: str) -> Optional[Tmp]:
        for tmp in self.tmps:
            if tmp.name == name:
                return tmp
        return None


__all__ = [
    "BinOp",
    "COMMIT",
    "CONTROL_STMTS",
    "Call",
    "Cond",
    "Const",
    "Epoch",
    "EpochOp",
    "Expr",
    "Goto",
    "If",
    "Mem",
    "PacketIR",
    "READ",
    "Reg",
    "Ret",
    "SetReg",
    "SetTmp",
    "Stmt",
    "Store",
    "Tmp",
    "UnOp",
    "Unresolved",
    "WORD_BITS",
]
