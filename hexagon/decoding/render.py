from __future__ import annotations

from typing import List

from binja_test_mocks.tokens import TInstr, TInt, TReg, TSep, TText, Token

from .bind import Operand, RawInstruction


def _format_imm(op: Operand, packet_start: int) -> str:
    if op.kind == "pcrel":
        return f"{(packet_start + op.imm) & 0xFFFFFFFF:#x}"
    if op.signed and not op.extended and op.imm & 0x80000000:
        return f"-{(-op.imm) & 0xFFFFFFFF:#x}"
    return f"{op.imm:#x}"


def operand_token(op: Operand, packet_start: int) -> Token:
    if op.kind in ("reg", "pair", "pred"):
        return TReg(op.reg_name)
    if op.kind == "newval":
        return TText(f"N{op.value}.new")
    return TInt(_format_imm(op, packet_start))


def render(
    instr: RawInstruction,
    packet_start: int,
    prefix: str = "",
    suffix: str = "",
    new_value_reg: str | None = None,
) -> List[Token]:
    """Render as ``<prefix> MNEMONIC op op ... <suffix>`` tokens.

    ``new_value_reg`` replaces the raw new-value field with the resolved
    producer register.
    """
    parts: List[Token] = []
    if prefix:
        parts += [TText(prefix), TSep(" ")]
    parts.append(TInstr(instr.mnemonic))
    for op in instr.operands:
        if instr.is_extender:
            break
        parts.append(TSep(" "))
        if op.kind == "newval" and new_value_reg is not None:
            parts.append(TReg(new_value_reg))
        else:
            parts.append(operand_token(op, packet_start))
    if instr.is_extender:
        parts += [TSep(" "), TInt(f"{instr.extender_value:#x}")]
    if suffix:
        parts += [TSep(" "), TText(suffix)]
    return parts


__all__ = ["operand_token", "render"]
