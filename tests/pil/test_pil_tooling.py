from hexagon.decoding import BytesSource, HwLoop
from hexagon.decoding import encode as enc
from hexagon.packets import PacketResolver
from hexagon.pil import ast, serde, synthesize, validate

BASE = 0x4000


def _ir(*words, duplex_word=None, end_loop=HwLoop.NONE) -> ast.PacketIR:
    data = enc.assemble([enc.packet(words, duplex_word=duplex_word, end_loop=end_loop)])
    return synthesize(PacketResolver(BytesSource(BASE, bytearray(data))).resolve(BASE))


def _samples():
    return [
        _ir(enc.tfr(0, 1), enc.tfr(1, 0)),
        _ir(enc.add(3, 1, 2), enc.store_new_io("rh", 29, 2, 1)),
        _ir(enc.call_cond(1, 0x40), enc.load_io("rb", 0, 1, -1)),
        _ir(enc.nop(), enc.jump(0x40), enc.nop(), end_loop=HwLoop.LOOP01),
        _ir(enc.allocframe(8)),
        _ir(enc.dealloc_return()),
        _ir(enc.immext(0x40000000), enc.tfrsi(0, 1), duplex_word=0x48103FC0),
        _ir(enc.loopi(0, 8, 3), enc.store_new_io("ri", 29, 0, 1)),
    ]


def test_synthesized_packets_validate_cleanly() -> None:
    for ir in _samples():
        assert validate.validate(ir) == []


def test_round_trip_json_preserves_packet() -> None:
    for ir in _samples():
        payload = serde.to_json(ir, indent=0)
        restored = serde.from_json(payload)
        assert restored == ir
        assert serde.to_json(restored, indent=0) == payload


def test_read_after_commit_is_reported() -> None:
    tmp = ast.Tmp("P1_T0")
    ir = ast.PacketIR(
        start=0,
        ops=(
            ast.EpochOp(ast.COMMIT, ast.SetReg(ast.Reg("R0"), ast.Const(0)), 0),
            ast.EpochOp(ast.READ, ast.SetTmp(tmp, ast.Reg("R1")), 0),
        ),
        tmps=(tmp,),
        namespace=1,
    )
    errors = validate.validate(ir)
    assert any("after the commit epoch" in msg for msg in errors)


def test_commit_reading_registers_is_reported() -> None:
    ir = ast.PacketIR(
        start=0,
        ops=(ast.EpochOp(ast.COMMIT, ast.SetReg(ast.Reg("R0"), ast.Reg("R1")), 0),),
        tmps=(),
        namespace=1,
    )
    assert any("architectural state" in msg for msg in validate.validate(ir))


def test_temporary_written_twice_is_reported() -> None:
    tmp = ast.Tmp("P1_T0")
    ir = ast.PacketIR(
        start=0,
        ops=(
            ast.EpochOp(ast.READ, ast.SetTmp(tmp, ast.Const(1)), 0),
            ast.EpochOp(ast.READ, ast.SetTmp(tmp, ast.Const(2)), 4),
        ),
        tmps=(tmp,),
        namespace=1,
    )
    assert any("written twice" in msg for msg in validate.validate(ir))


def test_foreign_namespace_and_width_mismatch() -> None:
    tmp = ast.Tmp("P7_T0", 8)
    ir = ast.PacketIR(
        start=0,
        ops=(ast.EpochOp(ast.READ, ast.SetTmp(tmp, ast.Const(1)), 0),),
        tmps=(tmp,),
        namespace=1,
    )
    errors = validate.validate(ir)
    assert any("outside namespace" in msg for msg in errors)
    assert any("width mismatch" in msg for msg in errors)


def test_unwritten_temporary_is_reported() -> None:
    ir = ast.PacketIR(start=0, ops=(), tmps=(ast.Tmp("P1_T0"),), namespace=1)
    assert any("never written" in msg for msg in validate.validate(ir))
