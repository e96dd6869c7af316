import pytest

from hexagon.config import PacketConfig
from hexagon.decoding import BytesSource
from hexagon.decoding import encode as enc
from hexagon.decoding.render import render
from hexagon.errors import MisplacedExtensionError
from hexagon.packets import PacketResolver, Resolved, Unresolved, apply_extension
from hexagon.trace import TraceBuffer

from binja_test_mocks.tokens import asm_str

BASE = 0x2000


def _resolve(*words, duplex_word=None, config=None, trace=None):
    source = BytesSource(BASE, bytearray(enc.assemble([enc.packet(words, duplex_word=duplex_word)])))
    return PacketResolver(source, config, trace).resolve(BASE)


def test_scenario_d_extended_branch_is_not_rescaled() -> None:
    ext = 0x00012340
    packet = _resolve(enc.immext(ext), enc.jump(0x24))

    assert isinstance(packet.extension, Resolved)
    binding = packet.extension.binding
    assert binding.extender_address == BASE
    assert binding.target_address == BASE + 4
    assert binding.extender_value == ext

    target = packet.entry_at(BASE + 4).operand("target")
    assert target.extended
    assert target.shift == 0
    # 0x24 encodes as field 9; the extended value keeps those bits unshifted
    assert target.imm == 0x12349
    # the same jump without the extender is scaled as usual
    plain = _resolve(enc.jump(0x24)).entry_at(BASE).operand("target")
    assert not plain.extended
    assert (plain.imm, plain.shift) == (0x24, 2)
    assert target.imm != plain.imm
    assert target.imm & 0x3F == plain.value
    assert asm_str(render(packet.entry_at(BASE + 4), packet.start)) == (
        f"J2_jump {BASE + 0x12349:#x}"
    )


def test_extended_immediate_keeps_low_six_bits() -> None:
    packet = _resolve(enc.immext(0x40000000), enc.addi(0, 1, -1))
    imm = packet.entry_at(BASE + 4).operand("imm")
    assert imm.imm == 0x4000003F
    assert packet.diagnostics == ()


def test_packet_without_extender() -> None:
    packet = _resolve(enc.addi(0, 1, 5))
    assert packet.extension is None
    assert not packet.entry_at(BASE).operand("imm").extended


def test_duplex_target_binds_to_slot_one() -> None:
    word = enc.duplex(0x3, enc.sa1_tfr(0, 1), enc.sa1_seti(2, 5))
    packet = _resolve(enc.immext(0x1000), duplex_word=word)

    assert isinstance(packet.extension, Resolved)
    assert packet.extension.binding.target_address == BASE + 6
    assert packet.entry_at(BASE + 6).operand("imm").imm == 0x1005
    assert packet.entry_at(BASE + 4).mnemonic == "SA1_tfr"


def test_duplex_slot_one_without_operand_is_misplaced() -> None:
    word = enc.duplex(0x3, enc.sa1_seti(0, 1), enc.sa1_tfr(2, 3))
    packet = _resolve(enc.immext(0x1000), duplex_word=word)

    assert isinstance(packet.extension, Unresolved)
    assert isinstance(packet.extension.error, MisplacedExtensionError)
    assert len(packet.diagnostics) == 1
    # nothing was extended
    assert not packet.entry_at(BASE + 4).operand("imm").extended


def test_misplaced_extension_is_raised_in_strict_mode() -> None:
    with pytest.raises(MisplacedExtensionError):
        _resolve(enc.immext(0x1000), enc.nop(), config=PacketConfig(strict_extenders=True))


def test_target_without_extendable_operand() -> None:
    packet = _resolve(enc.immext(0x1000), enc.tfr(0, 1))
    assert isinstance(packet.extension, Unresolved)
    assert packet.extension.address == BASE + 4


def test_extender_as_last_entry_is_unresolved() -> None:
    packet = _resolve(enc.nop(), enc.immext(0x1000))
    assert isinstance(packet.extension, Unresolved)
    assert packet.extension.address == BASE + 4


def test_second_extender_is_a_diagnostic() -> None:
    entries, resolution, diagnostics = apply_extension(
        _resolve(enc.immext(0x1000), enc.immext(0x2000), enc.addi(0, 0, 1)).entries
    )
    assert isinstance(resolution, Unresolved)
    assert len(diagnostics) == 2
    assert all(isinstance(d, MisplacedExtensionError) for d in diagnostics)


def test_diagnostics_reach_the_trace() -> None:
    trace = TraceBuffer()
    _resolve(enc.immext(0x1000), enc.nop(), config=PacketConfig(trace=True), trace=trace)
    events = trace.snapshot()
    assert [e.event for e in events] == ["MisplacedExtensionError"]
    assert events[0].addr == BASE + 4
    assert events[0].mnemonic == "A2_nop"
