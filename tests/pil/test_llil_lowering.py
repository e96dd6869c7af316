from binja_test_mocks import binja_api  # noqa: F401  # pyright: ignore
from binja_test_mocks.mock_llil import MockLowLevelILFunction, mreg  # type: ignore

from hexagon.decoding import BytesSource, HwLoop
from hexagon.decoding import encode as enc
from hexagon.packets import PacketResolver
from hexagon.pil import ast, synthesize
from hexagon.pil.backend_llil import emit_llil

BASE = 0x4000


def _lower(*words, duplex_word=None, end_loop=HwLoop.NONE):
    data = enc.assemble([enc.packet(words, duplex_word=duplex_word, end_loop=end_loop)])
    ir = synthesize(PacketResolver(BytesSource(BASE, bytearray(data))).resolve(BASE))
    il = MockLowLevelILFunction()
    emit_llil(il, ir)
    return il, ir


def _ops(il) -> list:
    # goto nodes only carry their label
    return [node.bare_op() if hasattr(node, "bare_op") else "GOTO" for node in il.ils]


def test_swap_reads_into_temps_then_commits() -> None:
    il, _ = _lower(enc.tfr(0, 1), enc.tfr(1, 0))
    assert _ops(il) == ["SET_REG"] * 4
    assert il.ils[0].ops[0] == mreg("TEMP0")
    assert il.ils[1].ops[0] == mreg("TEMP1")
    assert il.ils[2].ops[0] == mreg("R0")
    assert il.ils[3].ops[0] == mreg("R1")


def test_register_commits_precede_stores_precede_jumps() -> None:
    il, ir = _lower(enc.jump(0x40), enc.store_io("ri", 29, 0, 1), enc.tfrsi(0, 1))
    assert _ops(il)[-3:] == ["SET_REG", "STORE", "JUMP"]
    assert _ops(il)[: len(ir.read_ops)] == ["SET_REG"] * len(ir.read_ops)
    jump = il.ils[-1]
    assert jump.ops[0].bare_op() == "CONST_PTR"


def test_conditional_call_is_guarded() -> None:
    il, _ = _lower(enc.call_cond(0, 0x40))
    ops = _ops(il)
    assert "IF" in ops
    branch = ops[ops.index("IF") :]
    assert branch == ["IF", "LABEL", "SET_REG", "CALL", "LABEL"]


def test_return_lowers_to_ret() -> None:
    il, _ = _lower(duplex_word=0x48103FC0)
    assert _ops(il)[-1] == "RET"


def test_loop_back_edge() -> None:
    il, _ = _lower(enc.nop(), enc.nop(), end_loop=HwLoop.LOOP0)
    assert _ops(il) == [
        "SET_REG",
        "SET_REG",
        "IF",
        "LABEL",
        "SET_REG",
        "JUMP",
        "LABEL",
    ]


def test_unresolved_lowers_to_unimplemented() -> None:
    il, ir = _lower(enc.loopi(0, 8, 3), enc.store_new_io("ri", 29, 0, 1))
    assert ir.unresolved
    assert "UNIMPL" in _ops(il)


def test_loads_extend_to_word() -> None:
    il, _ = _lower(enc.load_io("rb", 0, 1, 0))
    value = il.ils[0].ops[1]
    assert value.bare_op() == "SX"
    assert value.ops[0].bare_op() == "LOAD"


def test_temps_are_indexed_by_declaration() -> None:
    _, ir = _lower(enc.tfrsi(0, 1))
    assert [tmp.name for tmp in ir.tmps] == [f"P{ir.namespace}_T0"]
    assert isinstance(ir.read_ops[0].stmt, ast.SetTmp)


def test_call_in_loop_body_has_no_back_edge() -> None:
    il, _ = _lower(enc.call(0x40), enc.nop(), end_loop=HwLoop.LOOP0)
    ops = _ops(il)
    assert ops[-1] == "CALL"
    assert "IF" not in ops


def test_conditional_call_falls_through_to_back_edge() -> None:
    il, _ = _lower(enc.call_cond(0, 0x40), enc.nop(), end_loop=HwLoop.LOOP0)
    ops = _ops(il)
    branch = ops[ops.index("IF") :]
    assert branch == [
        "IF",
        "LABEL",
        "SET_REG",
        "CALL",
        "GOTO",
        "LABEL",
        "IF",
        "LABEL",
        "SET_REG",
        "JUMP",
        "LABEL",
        "LABEL",
    ]


def test_compare_lowers_to_negated_compare() -> None:
    il, _ = _lower(enc.cmpi("gtu", 1, 2, 7))
    assert _ops(il) == ["SET_REG", "SET_REG"]
    value = il.ils[0].ops[1]
    assert value.bare_op() == "NEG"
    assert value.ops[0].bare_op() == "CMP_UGT"
    assert il.ils[1].ops[0] == mreg("P1")


def test_new_predicate_jump_is_guarded() -> None:
    il, _ = _lower(enc.cmpi("eq", 0, 1, 3), enc.jump_cond(0, 0x40, new=True))
    ops = _ops(il)
    assert ops[ops.index("IF") :] == ["IF", "LABEL", "JUMP", "LABEL"]
