from __future__ import annotations

from typing import Iterable, List, Set

from . import ast

_ADDR_BITS = ast.WORD_BITS


def bits_to_bytes(bits: int) -> int:
    return (bits + 7) // 8


def expr_size(expr: ast.Expr) -> int:
    if isinstance(expr, (ast.Const, ast.Tmp, ast.Reg, ast.Mem)):
        return expr.size
    if isinstance(expr, (ast.UnOp, ast.BinOp)):
        return expr.out_size
    raise TypeError(f"Unsupported expression: {expr!r}")


def _iter_expr_children(expr: ast.Expr) -> Iterable[ast.Expr]:
    if isinstance(expr, ast.Mem):
        yield expr.addr
    elif isinstance(expr, ast.UnOp):
        yield expr.a
    elif isinstance(expr, ast.BinOp):
        yield expr.a
        yield expr.b


def iter_exprs(expr: ast.Expr) -> Iterable[ast.Expr]:
    yield expr
    for child in _iter_expr_children(expr):
        yield from iter_exprs(child)


def stmt_exprs(stmt: ast.Stmt) -> Iterable[ast.Expr]:
    """Top-level expressions read by a statement (recursing into If)."""
    if isinstance(stmt, ast.SetTmp):
        yield stmt.value
    elif isinstance(stmt, ast.SetReg):
        yield stmt.value
    elif isinstance(stmt, ast.Store):
        yield stmt.dst.addr
        yield stmt.value
    elif isinstance(stmt, ast.If):
        yield stmt.cond.a
        yield stmt.cond.b
        for inner in (*stmt.then_ops, *stmt.else_ops):
            yield from stmt_exprs(inner)
    elif isinstance(stmt, (ast.Goto, ast.Call, ast.Ret)):
        yield stmt.target


def _err(errors: List[str], op: ast.EpochOp, message: str) -> None:
    errors.append(f"{op.owner:#x}: {message}")


class _State:
    def __init__(self, ir: ast.PacketIR) -> None:
        self.prefix = f"P{ir.namespace}_"
        self.declared = {tmp.name: tmp for tmp in ir.tmps}
        self.written: Set[str] = set()
        self.in_commit = False


def _check_expr(expr: ast.Expr, op: ast.EpochOp, state: _State, errors: List[str]) -> None:
    for node in iter_exprs(expr):
        if isinstance(node, ast.Tmp):
            if node.name not in state.written:
                _err(errors, op, f"temporary {node.name} read before it is written")
            declared = state.declared.get(node.name)
            if declared is not None and declared.size != node.size:
                _err(errors, op, f"temporary {node.name} size mismatch")
        elif state.in_commit and isinstance(node, (ast.Reg, ast.Mem)):
            _err(errors, op, "commit epoch reads architectural state")
        if isinstance(node, ast.Mem) and expr_size(node.addr) != _ADDR_BITS:
            _err(errors, op, f"address must be {_ADDR_BITS} bits")


def _check_stmt(stmt: ast.Stmt, op: ast.EpochOp, state: _State, errors: List[str]) -> None:
    exprs = (stmt.cond.a, stmt.cond.b) if isinstance(stmt, ast.If) else stmt_exprs(stmt)
    for expr in exprs:
        _check_expr(expr, op, state, errors)

    if isinstance(stmt, ast.SetTmp):
        if state.in_commit:
            _err(errors, op, f"temporary {stmt.tmp.name} written in commit epoch")
        if not stmt.tmp.name.startswith(state.prefix):
            _err(errors, op, f"temporary {stmt.tmp.name} outside namespace {state.prefix}")
        if stmt.tmp.name not in state.declared:
            _err(errors, op, f"temporary {stmt.tmp.name} not declared")
        if stmt.tmp.name in state.written:
            _err(errors, op, f"temporary {stmt.tmp.name} written twice")
        if expr_size(stmt.value) != stmt.tmp.size:
            _err(errors, op, f"set_tmp {stmt.tmp.name} width mismatch")
        state.written.add(stmt.tmp.name)
        return

    if not state.in_commit and not isinstance(stmt, ast.Unresolved):
        _err(errors, op, f"{type(stmt).__name__} in read epoch")

    if isinstance(stmt, ast.SetReg):
        if expr_size(stmt.value) != stmt.reg.size:
            _err(errors, op, f"set_reg {stmt.reg.name} width mismatch")
    elif isinstance(stmt, ast.Store):
        if expr_size(stmt.value) != stmt.dst.size:
            _err(errors, op, "store width mismatch")
    elif isinstance(stmt, ast.If):
        if expr_size(stmt.cond.a) != expr_size(stmt.cond.b):
            _err(errors, op, f"{stmt.cond.kind} operands must match in size")
        for inner in (*stmt.then_ops, *stmt.else_ops):
            _check_stmt(inner, op, state, errors)


def validate(ir: ast.PacketIR) -> List[str]:
    """Structural checks of the epoch discipline; returns error strings."""
    errors: List[str] = []
    state = _State(ir)
    if len(state.declared) != len(ir.tmps):
        errors.append("duplicate temporary declarations")
    for op in ir.ops:
        if op.epoch == ast.COMMIT:
            state.in_commit = True
        elif state.in_commit:
            _err(errors, op, "read op after the commit epoch started")
        _check_stmt(op.stmt, op, state, errors)
    unwritten = set(state.declared) - state.written
    if unwritten:
        errors.append(f"temporaries never written: {', '.join(sorted(unwritten))}")
    return errors


__all__ = ["bits_to_bytes", "expr_size", "iter_exprs", "stmt_exprs", "validate"]
