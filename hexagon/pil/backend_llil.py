from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from binaryninja import RegisterName  # type: ignore
from binaryninja.lowlevelil import (  # type: ignore
    LLIL_TEMP,
    LowLevelILFunction,
    LowLevelILLabel,
)

from . import ast
from .validate import bits_to_bytes


def _mask(bits: int) -> int:
    return (1 << bits) - 1


@dataclass
class _Env:
    il: LowLevelILFunction
    ir: ast.PacketIR
    temps: Dict[str, int] = field(default_factory=dict)
    # temporaries captured from a constant, lowered as pointers in transfers
    consts: Dict[str, ast.Const] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for index, tmp in enumerate(self.ir.tmps):
            self.temps[tmp.name] = index

    def temp_reg(self, tmp: ast.Tmp):
        if tmp.name not in self.temps:
            raise KeyError(f"Temporary {tmp.name} not declared in packet {self.ir.start:#x}")
        return LLIL_TEMP(self.temps[tmp.name])


def _emit_expr(expr: ast.Expr, env: _Env) -> Tuple[int, int]:
    il = env.il
    if isinstance(expr, ast.Const):
        return il.const(bits_to_bytes(expr.size), expr.value & _mask(expr.size)), expr.size

    if isinstance(expr, ast.Tmp):
        return il.reg(bits_to_bytes(expr.size), env.temp_reg(expr)), expr.size

    if isinstance(expr, ast.Reg):
        return il.reg(bits_to_bytes(expr.size), RegisterName(expr.name)), expr.size

    if isinstance(expr, ast.Mem):
        addr, _ = _emit_expr(expr.addr, env)
        return il.load(bits_to_bytes(expr.size), addr), expr.size

    if isinstance(expr, ast.UnOp):
        inner, _ = _emit_expr(expr.a, env)
        width = bits_to_bytes(expr.out_size)
        if expr.op == "neg":
            return il.neg_expr(width, inner), expr.out_size
        if expr.op == "not":
            return il.not_expr(width, inner), expr.out_size
        if expr.op == "sext":
            return il.sign_extend(width, inner), expr.out_size
        if expr.op == "zext":
            return il.zero_extend(width, inner), expr.out_size
        if expr.op == "low_part":
            return il.low_part(width, inner), expr.out_size
        raise NotImplementedError(f"Unsupported unary op {expr.op}")

    if isinstance(expr, ast.BinOp):
        left, left_bits = _emit_expr(expr.a, env)
        right, right_bits = _emit_expr(expr.b, env)
        width = bits_to_bytes(expr.out_size)
        cmp_map = {
            "eq": il.compare_equal,
            "gts": il.compare_signed_greater_than,
            "gtu": il.compare_unsigned_greater_than,
        }
        if expr.op in cmp_map:
            operand_width = bits_to_bytes(max(left_bits, right_bits))
            return cmp_map[expr.op](operand_width, left, right), expr.out_size
        op_map = {
            "add": il.add,
            "sub": il.sub,
            "and": il.and_expr,
            "or": il.or_expr,
            "xor": il.xor_expr,
            "shl": il.shift_left,
            "shr": il.logical_shift_right,
            "sar": il.arith_shift_right,
        }
        if expr.op not in op_map:
            raise NotImplementedError(f"Unsupported binary op {expr.op}")
        return op_map[expr.op](width, left, right), expr.out_size

    raise NotImplementedError(f"Expression {expr} not supported yet")


def _emit_target(expr: ast.Expr, env: _Env) -> int:
    const: Optional[ast.Const] = None
    if isinstance(expr, ast.Tmp):
        const = env.consts.get(expr.name)
    elif isinstance(expr, ast.Const):
        const = expr
    if const is not None:
        return env.il.const_pointer(bits_to_bytes(const.size), const.value & _mask(const.size))
    target, _ = _emit_expr(expr, env)
    return target


def _emit_condition(cond: ast.Cond, env: _Env) -> int:
    il = env.il
    lhs, lhs_bits = _emit_expr(cond.a, env)
    rhs, rhs_bits = _emit_expr(cond.b, env)
    width = bits_to_bytes(max(lhs_bits, rhs_bits))
    op_map = {
        "eq": il.compare_equal,
        "ne": il.compare_not_equal,
        "ltu": il.compare_unsigned_less_than,
        "gtu": il.compare_unsigned_greater_than,
        "lts": il.compare_signed_less_than,
        "gts": il.compare_signed_greater_than,
    }
    if cond.kind not in op_map:
        raise NotImplementedError(f"Unsupported condition {cond.kind}")
    return op_map[cond.kind](width, lhs, rhs)


def _emit_if(stmt: ast.If, env: _Env) -> None:
    il = env.il
    cond_expr = _emit_condition(stmt.cond, env)
    true_label = LowLevelILLabel()
    false_label = LowLevelILLabel()
    end_label = LowLevelILLabel() if stmt.else_ops else None

    il.append(il.if_expr(cond_expr, true_label, false_label))
    il.mark_label(true_label)
    for inner in stmt.then_ops:
        _emit_stmt(inner, env)
    if end_label is not None:
        il.append(il.goto(end_label))
    il.mark_label(false_label)
    if end_label is not None:
        for inner in stmt.else_ops:
            _emit_stmt(inner, env)
        il.mark_label(end_label)


def _emit_stmt(stmt: ast.Stmt, env: _Env) -> None:
    il = env.il
    if isinstance(stmt, ast.SetTmp):
        if isinstance(stmt.value, ast.Const):
            env.consts[stmt.tmp.name] = stmt.value
        value, _ = _emit_expr(stmt.value, env)
        il.append(il.set_reg(bits_to_bytes(stmt.tmp.size), env.temp_reg(stmt.tmp), value))
        return

    if isinstance(stmt, ast.SetReg):
        value, _ = _emit_expr(stmt.value, env)
        il.append(
            il.set_reg(bits_to_bytes(stmt.reg.size), RegisterName(stmt.reg.name), value)
        )
        return

    if isinstance(stmt, ast.Store):
        addr, _ = _emit_expr(stmt.dst.addr, env)
        value, _ = _emit_expr(stmt.value, env)
        il.append(il.store(bits_to_bytes(stmt.dst.size), addr, value))
        return

    if isinstance(stmt, ast.If):
        _emit_if(stmt, env)
        return

    if isinstance(stmt, ast.Goto):
        il.append(il.jump(_emit_target(stmt.target, env)))
        return

    if isinstance(stmt, ast.Call):
        il.append(il.call(_emit_target(stmt.target, env)))
        return

    if isinstance(stmt, ast.Ret):
        il.append(il.ret(_emit_target(stmt.target, env)))
        return

    if isinstance(stmt, ast.Unresolved):
        il.append(il.unimplemented())
        return

    raise NotImplementedError(f"Statement {stmt} not supported")


def emit_llil(il: LowLevelILFunction, ir: ast.PacketIR) -> None:
    """Lower a whole packet, read epoch first, in IR order."""
    env = _Env(il=il, ir=ir)
    for op in ir.ops:
        _emit_stmt(op.stmt, env)


__all__ = ["emit_llil"]
