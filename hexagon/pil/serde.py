from __future__ import annotations

import json
from typing import Any, Dict

from . import ast

_KIND = "type"


def _tmp_to_dict(tmp: ast.Tmp) -> Dict[str, Any]:
    return {_KIND: "tmp", "name": tmp.name, "size": tmp.size}


def _reg_to_dict(reg: ast.Reg) -> Dict[str, Any]:
    return {_KIND: "reg", "name": reg.name, "size": reg.size}


def _mem_to_dict(mem: ast.Mem) -> Dict[str, Any]:
    return {_KIND: "mem", "size": mem.size, "addr": expr_to_dict(mem.addr)}


def cond_to_dict(cond: ast.Cond) -> Dict[str, Any]:
    return {
        _KIND: "cond",
        "kind": cond.kind,
        "a": expr_to_dict(cond.a),
        "b": expr_to_dict(cond.b),
    }


def expr_to_dict(expr: ast.Expr) -> Dict[str, Any]:
    if isinstance(expr, ast.Const):
        return {_KIND: "const", "value": expr.value, "size": expr.size}
    if isinstance(expr, ast.Tmp):
        return _tmp_to_dict(expr)
    if isinstance(expr, ast.Reg):
        return _reg_to_dict(expr)
    if isinstance(expr, ast.Mem):
        return _mem_to_dict(expr)
    if isinstance(expr, ast.UnOp):
        return {
            _KIND: "unop",
            "op": expr.op,
            "a": expr_to_dict(expr.a),
            "out_size": expr.out_size,
        }
    if isinstance(expr, ast.BinOp):
        return {
            _KIND: "binop",
            "op": expr.op,
            "a": expr_to_dict(expr.a),
            "b": expr_to_dict(expr.b),
            "out_size": expr.out_size,
        }
    raise TypeError(f"Unsupported expression {expr!r}")


def stmt_to_dict(stmt: ast.Stmt) -> Dict[str, Any]:
    if isinstance(stmt, ast.SetTmp):
        return {
            _KIND: "set_tmp",
            "tmp": _tmp_to_dict(stmt.tmp),
            "value": expr_to_dict(stmt.value),
        }
    if isinstance(stmt, ast.SetReg):
        return {
            _KIND: "set_reg",
            "reg": _reg_to_dict(stmt.reg),
            "value": expr_to_dict(stmt.value),
        }
    if isinstance(stmt, ast.Store):
        return {
            _KIND: "store",
            "dst": _mem_to_dict(stmt.dst),
            "value": expr_to_dict(stmt.value),
        }
    if isinstance(stmt, ast.If):
        return {
            _KIND: "if",
            "cond": cond_to_dict(stmt.cond),
            "then": [stmt_to_dict(s) for s in stmt.then_ops],
            "else": [stmt_to_dict(s) for s in stmt.else_ops],
        }
    if isinstance(stmt, ast.Goto):
        return {_KIND: "goto", "target": expr_to_dict(stmt.target)}
    if isinstance(stmt, ast.Call):
        return {
            _KIND: "call",
            "target": expr_to_dict(stmt.target),
            "return_addr": stmt.return_addr,
        }
    if isinstance(stmt, ast.Ret):
        return {_KIND: "ret", "target": expr_to_dict(stmt.target)}
    if isinstance(stmt, ast.Unresolved):
        return {_KIND: "unresolved", "address": stmt.address, "reason": stmt.reason}
    raise TypeError(f"Unsupported statement {stmt!r}")


def packet_to_dict(ir: ast.PacketIR) -> Dict[str, Any]:
    return {
        "start": ir.start,
        "next_address": ir.next_address,
        "namespace": ir.namespace,
        "tmps": [_tmp_to_dict(tmp) for tmp in ir.tmps],
        "ops": [
            {"epoch": op.epoch, "owner": op.owner, "stmt": stmt_to_dict(op.stmt)}
            for op in ir.ops
        ],
    }


def to_json(ir: ast.PacketIR, *, indent: int = 2) -> str:
    return json.dumps(packet_to_dict(ir), indent=indent, sort_keys=True)


def _dict_to_tmp(data: Dict[str, Any]) -> ast.Tmp:
    return ast.Tmp(name=data["name"], size=data["size"])


def _dict_to_reg(data: Dict[str, Any]) -> ast.Reg:
    return ast.Reg(name=data["name"], size=data["size"])


def _dict_to_mem(data: Dict[str, Any]) -> ast.Mem:
    return ast.Mem(addr=dict_to_expr(data["addr"]), size=data["size"])


def dict_to_cond(data: Dict[str, Any]) -> ast.Cond:
    return ast.Cond(
        kind=data["kind"], a=dict_to_expr(data["a"]), b=dict_to_expr(data["b"])
    )


def dict_to_expr(data: Dict[str, Any]) -> ast.Expr:
    kind = data[_KIND]
    if kind == "const":
        return ast.Const(value=data["value"], size=data["size"])
    if kind == "tmp":
        return _dict_to_tmp(data)
    if kind == "reg":
        return _dict_to_reg(data)
    if kind == "mem":
        return _dict_to_mem(data)
    if kind == "unop":
        return ast.UnOp(op=data["op"], a=dict_to_expr(data["a"]), out_size=data["out_size"])
    if kind == "binop":
        return ast.BinOp(
            op=data["op"],
            a=dict_to_expr(data["a"]),
            b=dict_to_expr(data["b"]),
            out_size=data["out_size"],
        )
    raise ValueError(f"Unknown expression kind {kind}")


def dict_to_stmt(data: Dict[str, Any]) -> ast.Stmt:
    kind = data[_KIND]
    if kind == "set_tmp":
        return ast.SetTmp(tmp=_dict_to_tmp(data["tmp"]), value=dict_to_expr(data["value"]))
    if kind == "set_reg":
        return ast.SetReg(reg=_dict_to_reg(data["reg"]), value=dict_to_expr(data["value"]))
    if kind == "store":
        return ast.Store(dst=_dict_to_mem(data["dst"]), value=dict_to_expr(data["value"]))
    if kind == "if":
        return ast.If(
            cond=dict_to_cond(data["cond"]),
            then_ops=[dict_to_stmt(s) for s in data.get("then", ())],
            else_ops=[dict_to_stmt(s) for s in data.get("else", ())],
        )
    if kind == "goto":
        return ast.Goto(target=dict_to_expr(data["target"]))
    if kind == "call":
        return ast.Call(target=dict_to_expr(data["target"]), return_addr=data["return_addr"])
    if kind == "ret":
        return ast.Ret(target=dict_to_expr(data["target"]))
    if kind == "unresolved":
        return ast.Unresolved(address=data["address"], reason=data["reason"])
    raise ValueError(f"Unknown statement kind {kind}")


def dict_to_packet(data: Dict[str, Any]) -> ast.PacketIR:
    return ast.PacketIR(
        start=data["start"],
        ops=tuple(
            ast.EpochOp(epoch=op["epoch"], stmt=dict_to_stmt(op["stmt"]), owner=op["owner"])
            for op in data.get("ops", ())
        ),
        tmps=tuple(_dict_to_tmp(tmp) for tmp in data.get("tmps", ())),
        namespace=data["namespace"],
        next_address=data.get("next_address", 0),
    )


def from_json(payload: str) -> ast.PacketIR:
    return dict_to_packet(json.loads(payload))


__all__ = [
    "dict_to_expr",
    "dict_to_packet",
    "dict_to_stmt",
    "expr_to_dict",
    "from_json",
    "packet_to_dict",
    "stmt_to_dict",
    "to_json",
]
