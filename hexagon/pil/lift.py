"""
Per-instruction IR templates and the builder they write through.

Templates never touch architectural state directly: every value they compute
is captured into a packet temporary during the read epoch, and every write is
queued as a commit. The synthesizer decides the final commit order.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from ..decoding.bind import RawInstruction
from ..decoding.decode_map import CMP_JUMPS, LOAD_SIZES, STORE_SIZES
from ..packets.model import Packet, Resolved
from . import ast

MASK32 = 0xFFFFFFFF

LR = "R31"
FP = "R30"
SP = "R29"

PRED_BITS = 8


class UnboundNewValue(Exception):
    """A new-value consumer whose producer value is not available."""

    def __init__(self, address: int, reason: str) -> None:
        super().__init__(f"{reason} at {address:#x}")
        self.address = address
        self.reason = reason


@dataclass
class _Checkpoint:
    owner: int
    counter: int
    lengths: Tuple[int, ...]


class PacketBuilder:
    """Collects the read-epoch ops and queued commits of one packet."""

    def __init__(self, packet: Packet, namespace: int) -> None:
        self.packet = packet
        self.namespace = namespace
        self.counter = 0
        self.tmps: List[ast.Tmp] = []
        self.reads: List[ast.EpochOp] = []
        self.reg_commits: List[ast.EpochOp] = []
        self.store_commits: List[ast.EpochOp] = []
        self.control_commits: List[ast.EpochOp] = []
        self.loop_commits: List[ast.EpochOp] = []
        # (producer address, register) -> temporary holding this packet's value
        self.produced: Dict[Tuple[int, str], ast.Tmp] = {}
        self.entry: Optional[RawInstruction] = None
        self._checkpoint: Optional[_Checkpoint] = None

    @property
    def owner(self) -> int:
        return self.entry.address if self.entry is not None else self.packet.start

    def _lists(self) -> Tuple[list, ...]:
        return (
            self.tmps,
            self.reads,
            self.reg_commits,
            self.store_commits,
            self.control_commits,
            self.loop_commits,
        )

    def begin(self, entry: RawInstruction) -> None:
        self.entry = entry
        self._checkpoint = _Checkpoint(
            owner=entry.address,
            counter=self.counter,
            lengths=tuple(len(items) for items in self._lists()),
        )

    def rollback(self) -> None:
        """Drop everything the current instruction emitted so far."""
        checkpoint = self._checkpoint
        if checkpoint is None:
            return
        for items, length in zip(self._lists(), checkpoint.lengths):
            del items[length:]
        self.counter = checkpoint.counter
        for key in [key for key in self.produced if key[0] == checkpoint.owner]:
            del self.produced[key]

    # -- expressions -------------------------------------------------------

    def new_tmp(self, size: int = ast.WORD_BITS) -> ast.Tmp:
        tmp = ast.Tmp(f"P{self.namespace}_T{self.counter}", size)
        self.counter += 1
        self.tmps.append(tmp)
        return tmp

    def capture(self, value: ast.Expr, size: int = ast.WORD_BITS) -> ast.Tmp:
        """Evaluate `value` against packet-entry state into a temporary."""
        tmp = self.new_tmp(size)
        self.reads.append(ast.EpochOp(ast.READ, ast.SetTmp(tmp, value), self.owner))
        return tmp

    def reg(self, key: str) -> ast.Reg:
        assert self.entry is not None
        return ast.Reg(self.entry.operand(key).reg_name)

    def imm(self, key: str) -> ast.Const:
        assert self.entry is not None
        return ast.Const(self.entry.operand(key).imm & MASK32)

    def pcrel(self, key: str) -> ast.Const:
        assert self.entry is not None
        return ast.Const((self.packet.start + self.entry.operand(key).imm) & MASK32)

    def predicate(self, key: str) -> ast.Tmp:
        """Bit 0 of a predicate register, as seen at packet entry."""
        pred = ast.Reg(self.reg(key).name, PRED_BITS)
        return self.capture(
            ast.BinOp("and", pred, ast.Const(1, PRED_BITS), PRED_BITS), PRED_BITS
        )

    def new_predicate(self, key: str) -> ast.Tmp:
        """Bit 0 of ``Pn.new``: the value an instruction earlier in this
        packet (or the current one) computes for the predicate."""
        assert self.entry is not None
        name = self.reg(key).name
        for (_, reg), tmp in reversed(list(self.produced.items())):
            if reg == name:
                return self.capture(
                    ast.BinOp("and", tmp, ast.Const(1, PRED_BITS), PRED_BITS), PRED_BITS
                )
        raise UnboundNewValue(self.entry.address, f"Nothing in the packet sets {name}")

    def new_value(self) -> ast.Tmp:
        """The value the bound producer computes in this packet."""
        entry = self.entry
        assert entry is not None
        resolution = self.packet.new_values.get(entry.address)
        if resolution is None:
            raise UnboundNewValue(entry.address, "New-value operand was not resolved")
        if not isinstance(resolution, Resolved):
            raise UnboundNewValue(entry.address, resolution.reason)
        binding = resolution.binding
        tmp = self.produced.get((binding.producer_address, binding.producer_register))
        if tmp is None:
            raise UnboundNewValue(
                entry.address,
                f"Producer at {binding.producer_address:#x} has no value for "
                f"{binding.producer_register}",
            )
        return tmp

    def load(self, addr: ast.Expr, size: int, signed: bool = False) -> ast.Expr:
        mem = ast.Mem(addr, size * 8)
        if size == 4:
            return mem
        return ast.UnOp("sext" if signed else "zext", mem, ast.WORD_BITS)

    # -- deferred writes ---------------------------------------------------

    def set_reg(self, name: str, value: ast.Expr, size: int = ast.WORD_BITS) -> ast.Tmp:
        tmp = self.capture(value, size)
        self.produced[(self.owner, name)] = tmp
        self.reg_commits.append(
            ast.EpochOp(ast.COMMIT, ast.SetReg(ast.Reg(name, size), tmp), self.owner)
        )
        return tmp

    def store(self, addr: ast.Expr, value: ast.Expr, size: int) -> None:
        bits = size * 8
        addr_tmp = self.capture(addr)
        if not isinstance(value, ast.Tmp) or value.size != bits:
            if bits != ast.WORD_BITS:
                value = ast.UnOp("low_part", value, bits)
            value = self.capture(value, bits)
        self.store_commits.append(
            ast.EpochOp(ast.COMMIT, ast.Store(ast.Mem(addr_tmp, bits), value), self.owner)
        )

    def _control(self, stmt: ast.Stmt, when: Optional[ast.Tmp], sense: bool) -> None:
        if when is not None:
            stmt = ast.If(
                ast.Cond("ne" if sense else "eq", when, ast.Const(0, when.size)),
                (stmt,),
            )
        self.control_commits.append(ast.EpochOp(ast.COMMIT, stmt, self.owner))

    def jump(
        self, target: ast.Expr, when: Optional[ast.Tmp] = None, sense: bool = True
    ) -> None:
        self._control(ast.Goto(self.capture(target)), when, sense)

    def call(
        self, target: ast.Expr, when: Optional[ast.Tmp] = None, sense: bool = True
    ) -> None:
        ret_addr = self.packet.next_address & MASK32
        target_tmp = self.capture(target)
        if when is None:
            self.set_reg(LR, ast.Const(ret_addr))
            self._control(ast.Call(target_tmp, ret_addr), None, sense)
            return
        # LR only changes when the call is taken
        lr_tmp = self.capture(ast.Const(ret_addr))
        self.produced[(self.owner, LR)] = lr_tmp
        stmt = ast.If(
            ast.Cond("ne" if sense else "eq", when, ast.Const(0, when.size)),
            (ast.SetReg(ast.Reg(LR), lr_tmp), ast.Call(target_tmp, ret_addr)),
        )
        self.control_commits.append(ast.EpochOp(ast.COMMIT, stmt, self.owner))

    def ret(self, target: ast.Expr) -> None:
        self._control(ast.Ret(self.capture(target)), None, True)

    def loop_end(self, loop: int) -> None:
        """Hardware-loop back-edge: if LCn > 1, decrement and jump to SAn."""
        lc, sa = f"LC{loop}", f"SA{loop}"
        count = self.capture(ast.Reg(lc))
        start = self.capture(ast.Reg(sa))
        stmt = ast.If(
            ast.Cond("gtu", count, ast.Const(1)),
            (
                ast.SetReg(ast.Reg(lc), ast.BinOp("sub", count, ast.Const(1))),
                ast.Goto(start),
            ),
        )
        self.loop_commits.append(ast.EpochOp(ast.COMMIT, stmt, self.owner))

    def unresolved(self, address: int, reason: str) -> None:
        self.reads.append(
            ast.EpochOp(ast.READ, ast.Unresolved(address, reason), address)
        )


Template = Callable[[PacketBuilder, RawInstruction], None]

TEMPLATES: Dict[str, Template] = {}


def template(*mnemonics: str) -> Callable[[Template], Template]:
    def register(func: Template) -> Template:
        for mnemonic in mnemonics:
            TEMPLATES[mnemonic] = func
        return func

    return register


def _add(a: ast.Expr, b: ast.Expr) -> ast.BinOp:
    return ast.BinOp("add", a, b)


def _sub(a: ast.Expr, b: ast.Expr) -> ast.BinOp:
    return ast.BinOp("sub", a, b)


def _dest(b: PacketBuilder, key: str = "d") -> str:
    return b.reg(key).name


# ---------------------------------------------------------------------------
# ALU32


@template("A4_ext", "A2_nop")
def _no_semantics(b: PacketBuilder, e: RawInstruction) -> None:
    return


@template("A2_add")
def _add_rr(b: PacketBuilder, e: RawInstruction) -> None:
    b.set_reg(_dest(b), _add(b.reg("s"), b.reg("t")))


@template("A2_sub")
def _sub_rr(b: PacketBuilder, e: RawInstruction) -> None:
    b.set_reg(_dest(b), _sub(b.reg("t"), b.reg("s")))


@template("A2_addi")
def _add_ri(b: PacketBuilder, e: RawInstruction) -> None:
    b.set_reg(_dest(b), _add(b.reg("s"), b.imm("imm")))


@template("A2_tfr", "SA1_tfr")
def _transfer(b: PacketBuilder, e: RawInstruction) -> None:
    b.set_reg(_dest(b), b.reg("s"))


@template("A2_tfrsi", "SA1_seti")
def _transfer_imm(b: PacketBuilder, e: RawInstruction) -> None:
    b.set_reg(_dest(b), b.imm("imm"))


@template("SA1_addi")
def _sub_addi(b: PacketBuilder, e: RawInstruction) -> None:
    b.set_reg(_dest(b, "x"), _add(b.reg("x"), b.imm("imm")))


@template("SA1_addsp")
def _sub_addsp(b: PacketBuilder, e: RawInstruction) -> None:
    b.set_reg(_dest(b), _add(ast.Reg(SP), b.imm("imm")))


@template("SA1_inc")
def _sub_inc(b: PacketBuilder, e: RawInstruction) -> None:
    b.set_reg(_dest(b), _add(b.reg("s"), ast.Const(1)))


@template("SA1_dec")
def _sub_dec(b: PacketBuilder, e: RawInstruction) -> None:
    b.set_reg(_dest(b), _sub(b.reg("s"), ast.Const(1)))


# ---------------------------------------------------------------------------
# CR: predicate compares


def _compare(kind: str, a: ast.Expr, b: ast.Expr) -> ast.UnOp:
    # a predicate is all ones when the compare holds
    test = ast.BinOp({"gt": "gts"}.get(kind, kind), a, b, PRED_BITS)
    return ast.UnOp("neg", test, PRED_BITS)


@template("C2_cmpeqi", "C2_cmpgti", "C2_cmpgtui")
def _compare_imm(b: PacketBuilder, e: RawInstruction) -> None:
    kind = e.mnemonic[len("C2_cmp") : -1]
    b.set_reg(_dest(b), _compare(kind, b.reg("s"), b.imm("imm")), PRED_BITS)


# ---------------------------------------------------------------------------
# J


@template("J2_jump")
def _jump(b: PacketBuilder, e: RawInstruction) -> None:
    b.jump(b.pcrel("target"))


@template("J2_call")
def _call(b: PacketBuilder, e: RawInstruction) -> None:
    b.call(b.pcrel("target"))


@template("J2_callt", "J2_callf")
def _call_cond(b: PacketBuilder, e: RawInstruction) -> None:
    b.call(b.pcrel("target"), when=b.predicate("u"), sense=e.mnemonic == "J2_callt")


@template("J2_jumpt", "J2_jumptpt", "J2_jumpf", "J2_jumpfpt")
def _jump_cond(b: PacketBuilder, e: RawInstruction) -> None:
    sense = e.mnemonic.startswith("J2_jumpt")
    b.jump(b.pcrel("target"), when=b.predicate("u"), sense=sense)


@template("J2_jumptnew", "J2_jumptnewpt", "J2_jumpfnew", "J2_jumpfnewpt")
def _jump_cond_new(b: PacketBuilder, e: RawInstruction) -> None:
    sense = e.mnemonic.startswith("J2_jumpt")
    b.jump(b.pcrel("target"), when=b.new_predicate("u"), sense=sense)


@template(*CMP_JUMPS)
def _compare_jump(b: PacketBuilder, e: RawInstruction) -> None:
    kind, sense = CMP_JUMPS[e.mnemonic]
    b.set_reg(_dest(b, "p"), _compare(kind, b.reg("s"), b.imm("imm")), PRED_BITS)
    b.jump(b.pcrel("target"), when=b.new_predicate("p"), sense=sense)


@template("J2_jumpr")
def _jump_reg(b: PacketBuilder, e: RawInstruction) -> None:
    target = b.reg("s")
    if target.name == LR:
        b.ret(target)
    else:
        b.jump(target)


@template("SL2_jumpr31")
def _sub_jumpr31(b: PacketBuilder, e: RawInstruction) -> None:
    b.ret(ast.Reg(LR))


@template("J2_loop0i", "J2_loop1i")
def _loop_setup(b: PacketBuilder, e: RawInstruction) -> None:
    loop = 1 if e.mnemonic == "J2_loop1i" else 0
    b.set_reg(f"SA{loop}", b.pcrel("start"))
    b.set_reg(f"LC{loop}", b.imm("count"))


# ---------------------------------------------------------------------------
# LD / ST


def _access(mnemonic: str, kind: str) -> str:
    # "S2_storerhnew_io" -> "rh", "L2_loadrub_pi" -> "rub"
    body = mnemonic.split(kind, 1)[1].rsplit("_", 1)[0]
    return body[:-3] if body.endswith("new") else body


def _load_io(b: PacketBuilder, e: RawInstruction) -> None:
    size, signed = LOAD_SIZES[e.mnemonic.rsplit("_", 1)[0]]
    b.set_reg(_dest(b), b.load(_add(b.reg("s"), b.imm("off")), size, signed))


def _load_pi(b: PacketBuilder, e: RawInstruction) -> None:
    size, signed = LOAD_SIZES[e.mnemonic.rsplit("_", 1)[0]]
    ptr = b.reg("x")
    b.set_reg(_dest(b), b.load(ptr, size, signed))
    b.set_reg(ptr.name, _add(ptr, b.imm("inc")))


def _store_io(b: PacketBuilder, e: RawInstruction) -> None:
    size = STORE_SIZES[_access(e.mnemonic, "store")]
    b.store(_add(b.reg("s"), b.imm("off")), b.reg("t"), size)


def _store_pi(b: PacketBuilder, e: RawInstruction) -> None:
    size = STORE_SIZES[_access(e.mnemonic, "store")]
    ptr = b.reg("x")
    b.store(ptr, b.reg("t"), size)
    b.set_reg(ptr.name, _add(ptr, b.imm("inc")))


def _store_new_io(b: PacketBuilder, e: RawInstruction) -> None:
    size = STORE_SIZES[_access(e.mnemonic, "store")]
    value = b.new_value()
    b.store(_add(b.reg("s"), b.imm("off")), value, size)


def _store_new_pi(b: PacketBuilder, e: RawInstruction) -> None:
    size = STORE_SIZES[_access(e.mnemonic, "store")]
    value = b.new_value()
    ptr = b.reg("x")
    b.store(ptr, value, size)
    b.set_reg(ptr.name, _add(ptr, b.imm("inc")))


def _store_imm_io(b: PacketBuilder, e: RawInstruction) -> None:
    size = STORE_SIZES[_access(e.mnemonic, "storei")]
    b.store(_add(b.reg("s"), b.imm("off")), b.imm("value"), size)


for _infix in ("rb", "rub", "rh", "ruh", "ri"):
    TEMPLATES[f"L2_load{_infix}_io"] = _load_io
    TEMPLATES[f"L2_load{_infix}_pi"] = _load_pi
for _infix in STORE_SIZES:
    TEMPLATES[f"S2_store{_infix}_io"] = _store_io
    TEMPLATES[f"S2_store{_infix}_pi"] = _store_pi
    TEMPLATES[f"S2_store{_infix}new_io"] = _store_new_io
    TEMPLATES[f"S2_store{_infix}new_pi"] = _store_new_pi
    TEMPLATES[f"S4_storei{_infix}_io"] = _store_imm_io


@template("SL1_loadri_io", "SL1_loadrub_io")
def _sub_load(b: PacketBuilder, e: RawInstruction) -> None:
    size = 1 if e.mnemonic == "SL1_loadrub_io" else 4
    b.set_reg(_dest(b), b.load(_add(b.reg("s"), b.imm("off")), size))


@template("SL2_loadri_sp")
def _sub_load_sp(b: PacketBuilder, e: RawInstruction) -> None:
    b.set_reg(_dest(b), b.load(_add(ast.Reg(SP), b.imm("off")), 4))


@template("SS1_storew_io", "SS1_storeb_io")
def _sub_store(b: PacketBuilder, e: RawInstruction) -> None:
    size = 1 if e.mnemonic == "SS1_storeb_io" else 4
    b.store(_add(b.reg("s"), b.imm("off")), b.reg("t"), size)


@template("SS2_storeh_io")
def _sub_store_half(b: PacketBuilder, e: RawInstruction) -> None:
    b.store(_add(b.reg("s"), b.imm("off")), b.reg("t"), 2)


@template("SS2_storew_sp")
def _sub_store_sp(b: PacketBuilder, e: RawInstruction) -> None:
    b.store(_add(ast.Reg(SP), b.imm("off")), b.reg("t"), 4)


@template("SS2_stored_sp")
def _sub_store_pair_sp(b: PacketBuilder, e: RawInstruction) -> None:
    # low register at the lower address
    low = e.operand("t").value
    addr = _add(ast.Reg(SP), b.imm("off"))
    b.store(addr, ast.Reg(f"R{low}"), 4)
    b.store(_add(addr, ast.Const(4)), ast.Reg(f"R{low + 1}"), 4)


@template("SS2_storewi0", "SS2_storewi1", "SS2_storebi0", "SS2_storebi1")
def _sub_store_imm(b: PacketBuilder, e: RawInstruction) -> None:
    size = 1 if e.mnemonic.startswith("SS2_storeb") else 4
    b.store(_add(b.reg("s"), b.imm("off")), ast.Const(int(e.mnemonic[-1])), size)


# ---------------------------------------------------------------------------
# Frames


@template("S2_allocframe", "SS2_allocframe")
def _allocframe(b: PacketBuilder, e: RawInstruction) -> None:
    # mem64[SP-8] = LR:FP; FP = SP-8; SP = SP-8-size
    frame = _sub(ast.Reg(SP), ast.Const(8))
    b.store(frame, ast.Reg(FP), 4)
    b.store(_sub(ast.Reg(SP), ast.Const(4)), ast.Reg(LR), 4)
    b.set_reg(FP, frame)
    b.set_reg(SP, _sub(frame, b.imm("size")))


@template("L4_return", "SL2_return")
def _dealloc_return(b: PacketBuilder, e: RawInstruction) -> None:
    # LR:FP = mem64[FP]; SP = FP+8; return to the restored LR
    saved_lr = b.load(_add(ast.Reg(FP), ast.Const(4)), 4)
    b.set_reg(FP, b.load(ast.Reg(FP), 4))
    lr = b.set_reg(LR, saved_lr)
    b.set_reg(SP, _add(ast.Reg(FP), ast.Const(8)))
    b.ret(lr)


__all__ = ["PacketBuilder", "TEMPLATES", "Template", "UnboundNewValue", "template"]
