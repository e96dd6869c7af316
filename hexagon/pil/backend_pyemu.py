from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Protocol, Tuple

from . import ast
from .validate import bits_to_bytes


class Bus(Protocol):
    def load(self, addr: int, size: int) -> int: ...
    def store(self, addr: int, value: int, size: int) -> None: ...


@dataclass
class ByteMemory:
    """Sparse little-endian byte-addressed memory; unset bytes read as 0."""

    data: Dict[int, int] = field(default_factory=dict)

    def load(self, addr: int, size: int) -> int:
        value = 0
        for offset in range(bits_to_bytes(size)):
            value |= self.data.get((addr + offset) & 0xFFFFFFFF, 0) << (8 * offset)
        return value

    def store(self, addr: int, value: int, size: int) -> None:
        for offset in range(bits_to_bytes(size)):
            self.data[(addr + offset) & 0xFFFFFFFF] = (value >> (8 * offset)) & 0xFF


@dataclass
class CPUState:
    regs: Dict[str, int] = field(default_factory=dict)
    pc: int = 0

    def get_reg(self, name: str, bits: int) -> int:
        return self.regs.get(name, 0) & _mask(bits)

    def set_reg(self, name: str, value: int, bits: int) -> None:
        self.regs[name] = value & _mask(bits)


@dataclass
class _Env:
    state: CPUState
    bus: Bus
    tmps: Dict[str, Tuple[int, int]] = field(default_factory=dict)
    transferred: bool = False

    def set_tmp(self, tmp: ast.Tmp, value: int) -> None:
        self.tmps[tmp.name] = (value & _mask(tmp.size), tmp.size)

    def get_tmp(self, tmp: ast.Tmp) -> Tuple[int, int]:
        if tmp.name not in self.tmps:
            raise KeyError(f"Temporary {tmp.name} not populated")
        return self.tmps[tmp.name]


def _mask(bits: int) -> int:
    return (1 << bits) - 1


def _to_signed(value: int, bits: int) -> int:
    value &= _mask(bits)
    sign_bit = 1 << (bits - 1)
    return value - (1 << bits) if value & sign_bit else value


def _eval_expr(expr: ast.Expr, env: _Env) -> Tuple[int, int]:
    if isinstance(expr, ast.Const):
        return expr.value & _mask(expr.size), expr.size
    if isinstance(expr, ast.Tmp):
        return env.get_tmp(expr)
    if isinstance(expr, ast.Reg):
        return env.state.get_reg(expr.name, expr.size), expr.size
    if isinstance(expr, ast.Mem):
        addr, _ = _eval_expr(expr.addr, env)
        return env.bus.load(addr, expr.size) & _mask(expr.size), expr.size
    if isinstance(expr, ast.UnOp):
        inner, inner_bits = _eval_expr(expr.a, env)
        out = _mask(expr.out_size)
        if expr.op == "neg":
            return (-inner) & out, expr.out_size
        if expr.op == "not":
            return (~inner) & out, expr.out_size
        if expr.op == "sext":
            return _to_signed(inner, inner_bits) & out, expr.out_size
        if expr.op in ("zext", "low_part"):
            return inner & out, expr.out_size
        raise NotImplementedError(f"Unary op {expr.op} not implemented")
    if isinstance(expr, ast.BinOp):
        left, left_bits = _eval_expr(expr.a, env)
        right, right_bits = _eval_expr(expr.b, env)
        out = _mask(expr.out_size)
        if expr.op == "eq":
            return int(left == right), expr.out_size
        if expr.op == "gtu":
            return int(left > right), expr.out_size
        if expr.op == "gts":
            return int(_to_signed(left, left_bits) > _to_signed(right, right_bits)), expr.out_size
        if expr.op == "add":
            return (left + right) & out, expr.out_size
        if expr.op == "sub":
            return (left - right) & out, expr.out_size
        if expr.op == "and":
            return left & right & out, expr.out_size
        if expr.op == "or":
            return (left | right) & out, expr.out_size
        if expr.op == "xor":
            return (left ^ right) & out, expr.out_size
        if expr.op == "shl":
            return (left << right) & out, expr.out_size
        if expr.op == "shr":
            return (left >> right) & out, expr.out_size
        if expr.op == "sar":
            return (_to_signed(left, expr.out_size) >> right) & out, expr.out_size
        raise NotImplementedError(f"Binary op {expr.op} not implemented")
    raise NotImplementedError(f"Expression {expr} not supported in emulator backend")


def _eval_condition(cond: ast.Cond, env: _Env) -> bool:
    lhs, lhs_bits = _eval_expr(cond.a, env)
    rhs, rhs_bits = _eval_expr(cond.b, env)
    if cond.kind == "eq":
        return lhs == rhs
    if cond.kind == "ne":
        return lhs != rhs
    if cond.kind == "ltu":
        return lhs < rhs
    if cond.kind == "gtu":
        return lhs > rhs
    if cond.kind == "lts":
        return _to_signed(lhs, lhs_bits) < _to_signed(rhs, rhs_bits)
    if cond.kind == "gts":
        return _to_signed(lhs, lhs_bits) > _to_signed(rhs, rhs_bits)
    raise NotImplementedError(f"Condition {cond.kind} unsupported")


def _transfer(env: _Env, target: ast.Expr) -> None:
    if env.transferred:
        # the first taken transfer of a packet wins
        return
    value, _ = _eval_expr(target, env)
    env.state.pc = value & 0xFFFFFFFF
    env.transferred = True


def _exec_stmt(stmt: ast.Stmt, env: _Env) -> None:
    if isinstance(stmt, ast.SetTmp):
        value, _ = _eval_expr(stmt.value, env)
        env.set_tmp(stmt.tmp, value)
        return
    if isinstance(stmt, ast.SetReg):
        value, _ = _eval_expr(stmt.value, env)
        env.state.set_reg(stmt.reg.name, value, stmt.reg.size)
        return
    if isinstance(stmt, ast.Store):
        addr, _ = _eval_expr(stmt.dst.addr, env)
        value, _ = _eval_expr(stmt.value, env)
        env.bus.store(addr, value, stmt.dst.size)
        return
    if isinstance(stmt, ast.If):
        if env.transferred:
            return
        block = stmt.then_ops if _eval_condition(stmt.cond, env) else stmt.else_ops
        for inner in block:
            _exec_stmt(inner, env)
        return
    if isinstance(stmt, (ast.Goto, ast.Call, ast.Ret)):
        _transfer(env, stmt.target)
        return
    if isinstance(stmt, ast.Unresolved):
        raise NotImplementedError(
            f"Unresolved semantics at {stmt.address:#x}: {stmt.reason}"
        )
    raise NotImplementedError(f"Statement {stmt} unsupported in emulator backend")


def execute_packet(state: CPUState, bus: Bus, ir: ast.PacketIR) -> None:
    """Run one packet; falls through to the next packet unless a transfer is taken."""
    env = _Env(state=state, bus=bus)
    for op in ir.ops:
        _exec_stmt(op.stmt, env)
    if not env.transferred:
        state.pc = ir.next_address & 0xFFFFFFFF


__all__ = ["Bus", "ByteMemory", "CPUState", "execute_packet"]
