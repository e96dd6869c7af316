import pytest

from hexagon.decoding import (
    ContinuationTag,
    HwLoop,
    UNKNOWN_MNEMONIC,
    continuation_tag,
    decode_word,
    split_duplex,
)
from hexagon.decoding import encode as enc
from hexagon.decoding.bind import Operand, SubInstruction
from hexagon.decoding.decode_map import PARSE_END, parse_bits
from hexagon.decoding.duplex import duplex_iclass


def _decode(word: int, addr: int = 0x1000):
    return decode_word(enc.with_parse(word, PARSE_END), addr)


@pytest.mark.parametrize(
    "parse, position, tag",
    [
        (0b00, 0, ContinuationTag.DUPLEX),
        (0b11, 0, ContinuationTag.END),
        (0b11, 3, ContinuationTag.END),
        (0b01, 0, ContinuationTag.CONTINUE),
        (0b10, 0, ContinuationTag.END_HWLOOP0),
        (0b10, 1, ContinuationTag.END_HWLOOP1),
        (0b10, 2, ContinuationTag.CONTINUE),
    ],
)
def test_continuation_tags(parse: int, position: int, tag: ContinuationTag) -> None:
    word = enc.with_parse(enc.nop(), parse)
    assert continuation_tag(word, position) is tag


def test_only_end_and_duplex_close_a_packet() -> None:
    closing = {tag for tag in ContinuationTag if tag.closes_packet}
    assert closing == {ContinuationTag.END, ContinuationTag.DUPLEX}


def test_alu_operands() -> None:
    instr = _decode(enc.add(3, 1, 2))
    assert instr.mnemonic == "A2_add"
    assert [op.reg_name for op in instr.operands] == ["R3", "R1", "R2"]
    assert instr.reads == {"R1", "R2"}
    assert instr.writes == {"R3"}

    sub = _decode(enc.sub(4, 5, 6))
    assert sub.mnemonic == "A2_sub"
    assert sub.operand("t").value == 5
    assert sub.operand("s").value == 6


def test_signed_immediates_sign_extend() -> None:
    instr = _decode(enc.addi(0, 1, -4))
    assert instr.mnemonic == "A2_addi"
    assert instr.operand("imm").imm == 0xFFFFFFFC
    assert instr.extendable_operand is instr.operand("imm")

    tfrsi = _decode(enc.tfrsi(7, 0x1234))
    assert tfrsi.mnemonic == "A2_tfrsi"
    assert tfrsi.operand("imm").imm == 0x1234
    assert tfrsi.writes == {"R7"}


def test_scaled_branch_offsets() -> None:
    jump = _decode(enc.jump(-8))
    assert jump.mnemonic == "J2_jump"
    assert jump.operand("target").kind == "pcrel"
    assert jump.operand("target").shift == 2
    assert jump.operand("target").imm == 0xFFFFFFF8

    call = _decode(enc.call(0x100))
    assert call.mnemonic == "J2_call"
    assert call.operand("target").imm == 0x100
    assert call.writes == {"R31"}


def test_conditional_calls() -> None:
    callt = _decode(enc.call_cond(2, 0x40))
    assert callt.mnemonic == "J2_callt"
    assert callt.operand("u").reg_name == "P2"
    assert callt.operand("target").imm == 0x40
    assert callt.reads == {"P2"}

    callf = _decode(enc.call_cond(0, -0x20, sense=False))
    assert callf.mnemonic == "J2_callf"
    assert callf.operand("target").imm == 0xFFFFFFE0


@pytest.mark.parametrize(
    "kind, imm, mnemonic, value",
    [
        ("eq", -3, "C2_cmpeqi", 0xFFFFFFFD),
        ("gt", 511, "C2_cmpgti", 511),
        ("gtu", 511, "C2_cmpgtui", 511),
    ],
)
def test_predicate_compares(kind: str, imm: int, mnemonic: str, value: int) -> None:
    instr = _decode(enc.cmpi(kind, 3, 17, imm))
    assert instr.mnemonic == mnemonic
    assert instr.operand("d").reg_name == "P3"
    assert instr.operand("s").reg_name == "R17"
    assert instr.operand("imm").imm == value
    assert instr.operand("imm").extendable
    assert instr.writes == {"P3"}


def test_predicated_jumps() -> None:
    jumpt = _decode(enc.jump_cond(1, -0x10))
    assert jumpt.mnemonic == "J2_jumpt"
    assert jumpt.operand("u").reg_name == "P1"
    assert jumpt.operand("target").imm == 0xFFFFFFF0

    assert _decode(enc.jump_cond(1, 0x10, sense=False)).mnemonic == "J2_jumpf"
    assert _decode(enc.jump_cond(1, 0x10, new=True)).mnemonic == "J2_jumptnew"
    # bit 12 is the taken hint
    hinted = enc.jump_cond(0, 0x10, sense=False, new=True) | 1 << 12
    assert _decode(hinted).mnemonic == "J2_jumpfnewpt"


def test_compare_and_jump() -> None:
    # 08 62 03 10: p0 = cmp.eq(r3,#2); if (p0.new) jump:t +0x10
    instr = decode_word(0x10036208, 0x1000)
    assert instr.mnemonic == "J4_cmpeqi_tp0_jump_t"
    assert instr.operand("p").reg_name == "P0"
    assert instr.operand("s").reg_name == "R3"
    assert instr.operand("imm").imm == 2
    assert instr.operand("target").imm == 0x10
    assert not instr.operand("target").extendable
    assert instr.writes == {"P0"}

    word = enc.cmp_jump(1, "gt", False, 20, 31, -0x100)
    # without the taken hint
    instr = _decode(word & ~(1 << 13))
    assert instr.mnemonic == "J4_cmpgti_fp1_jump_nt"
    assert instr.operand("s").reg_name == "R20"
    assert instr.operand("imm").imm == 31
    assert instr.operand("target").imm == 0xFFFFFF00


def test_hardware_loop_setup() -> None:
    loop = _decode(enc.loopi(1, 0x10, 700))
    assert loop.mnemonic == "J2_loop1i"
    assert loop.operand("start").imm == 0x10
    assert loop.operand("count").imm == 700
    assert loop.writes == {"SA1", "LC1"}


@pytest.mark.parametrize(
    "kind, mnemonic, offset",
    [
        ("rb", "L2_loadrb_io", -3),
        ("rub", "L2_loadrub_io", 5),
        ("rh", "L2_loadrh_io", 6),
        ("ruh", "L2_loadruh_io", -2),
        ("ri", "L2_loadri_io", 0x40),
    ],
)
def test_load_offsets_are_scaled(kind: str, mnemonic: str, offset: int) -> None:
    instr = _decode(enc.load_io(kind, 0, 29, offset))
    assert instr.mnemonic == mnemonic
    assert instr.operand("off").imm == offset & 0xFFFFFFFF


def test_post_increment_load_reads_and_writes_pointer() -> None:
    instr = _decode(enc.load_pi("ri", 0, 1, 4))
    assert instr.mnemonic == "L2_loadri_pi"
    assert instr.writes == {"R0", "R1"}
    assert instr.write_only == {"R0"}
    assert instr.operand("inc").imm == 4


def test_stores() -> None:
    store = _decode(enc.store_io("ri", 29, -8, 3))
    assert store.mnemonic == "S2_storeri_io"
    assert store.stores
    assert store.operand("off").imm == 0xFFFFFFF8
    assert not store.writes

    store_pi = _decode(enc.store_pi("rh", 2, 2, 3))
    assert store_pi.mnemonic == "S2_storerh_pi"
    assert store_pi.writes == {"R2"}

    storei = _decode(enc.store_imm_io("ri", 29, 8, -1))
    assert storei.mnemonic == "S4_storeiri_io"
    assert storei.operand("off").imm == 8
    assert storei.operand("value").imm == 0xFFFFFFFF


def test_new_value_store_distance() -> None:
    instr = _decode(enc.store_new_io("ri", 29, 4, 2))
    assert instr.mnemonic == "S2_storerinew_io"
    assert instr.has_new_value
    assert instr.new_value_distance == 2
    assert instr.new_value_operand is not None

    post = _decode(enc.store_new_pi("rb", 3, 1, 1))
    assert post.mnemonic == "S2_storerbnew_pi"
    assert post.new_value_distance == 1
    assert post.writes == {"R3"}


def test_frames() -> None:
    alloc = _decode(enc.allocframe(0x20))
    assert alloc.mnemonic == "S2_allocframe"
    assert alloc.operand("size").imm == 0x20

    ret = _decode(enc.dealloc_return())
    assert ret.mnemonic == "L4_return"
    assert ret.writes == {"R29", "R30", "R31"}


def test_constant_extender_payload() -> None:
    instr = _decode(enc.immext(0x12345678))
    assert instr.mnemonic == "A4_ext"
    assert instr.is_extender
    assert instr.extender_value == 0x12345640


def test_unknown_words_still_decode() -> None:
    instr = _decode(0xE0000000)
    assert instr.mnemonic == UNKNOWN_MNEMONIC
    assert not instr.is_known
    assert instr.length == 4


def test_duplex_word_is_a_placeholder() -> None:
    instr = decode_word(0x48103FC0, 0x1000)
    assert instr.is_duplex
    assert parse_bits(instr.word) == 0


def test_duplex_split_places_slots() -> None:
    # c0 3f 10 48: slot 0 jumpr r31, slot 1 r0 = #1
    low, high = split_duplex(0x48103FC0, 0x1000)
    assert duplex_iclass(0x48103FC0) == 0x5
    assert isinstance(low, SubInstruction)
    assert (low.address, low.slot, low.length) == (0x1000, 0, 2)
    assert (high.address, high.slot, high.length) == (0x1002, 1, 2)
    assert low.parent_address == high.parent_address == 0x1000
    assert low.mnemonic == "SL2_jumpr31"
    assert high.mnemonic == "SA1_seti"
    assert high.operand("d").reg_name == "R0"
    assert high.operand("imm").imm == 1


def test_duplex_sub_registers() -> None:
    word = enc.duplex(0x3, enc.sa1_tfr(16, 7), enc.sa1_inc(23, 1))
    low, high = split_duplex(word, 0x2000)
    assert low.mnemonic == "SA1_tfr"
    assert low.operand("d").reg_name == "R16"
    assert low.operand("s").reg_name == "R7"
    assert high.mnemonic == "SA1_inc"
    assert high.operand("d").reg_name == "R23"


def test_duplex_store_group_two() -> None:
    low, high = split_duplex(enc.duplex(0x7, enc.ss2_storew_sp(0x7C, 23), enc.sa1_seti(1, 2)), 0)
    assert low.mnemonic == "SS2_storew_sp"
    assert low.operand("off").imm == 0x7C
    assert low.operand("t").reg_name == "R23"
    assert low.reads == {"R29", "R23"}
    assert low.stores
    assert high.mnemonic == "SA1_seti"

    low, high = split_duplex(enc.duplex(0xE, enc.ss2_stored_sp(-8, 20), enc.ss2_allocframe(0xF8)), 0)
    assert low.mnemonic == "SS2_stored_sp"
    assert low.operand("off").imm == 0xFFFFFFF8
    assert low.operand("t").reg_name == "R21:20"
    assert high.mnemonic == "SS2_allocframe"
    assert high.operand("size").imm == 0xF8
    assert high.writes == {"R29", "R30"}


@pytest.mark.parametrize(
    "slot, mnemonic, offset",
    [
        (enc.ss2_storeh(4, 14, 5), "SS2_storeh_io", 14),
        (enc.ss2_storewi(4, 60, 0), "SS2_storewi0", 60),
        (enc.ss2_storewi(4, 0, 1), "SS2_storewi1", 0),
        (enc.ss2_storebi(4, 15, 0), "SS2_storebi0", 15),
        (enc.ss2_storebi(4, 3, 1), "SS2_storebi1", 3),
    ],
)
def test_duplex_register_relative_stores(slot: int, mnemonic: str, offset: int) -> None:
    low, _ = split_duplex(enc.duplex(0xB, slot, enc.ss1_storew(0, 0, 1)), 0)
    assert low.mnemonic == mnemonic
    assert low.operand("s").reg_name == "R4"
    assert low.operand("off").imm == offset


def test_reserved_duplex_class_decodes_unknown() -> None:
    word = (0x7 << 29) | (1 << 13)
    low, high = split_duplex(word, 0)
    assert low.mnemonic == high.mnemonic == UNKNOWN_MNEMONIC


def test_split_rejects_non_duplex_words() -> None:
    with pytest.raises(ValueError):
        split_duplex(enc.with_parse(enc.nop(), PARSE_END), 0)


def test_extend_keeps_exact_bits() -> None:
    op = Operand("target", "pcrel", 0x1FFFFF, bits=22, signed=True, shift=2)
    extended = op.extend(0x12345640)
    assert extended.extended
    assert extended.shift == 0
    assert extended.imm == 0x1234567F


def test_operand_field_range_is_checked() -> None:
    with pytest.raises(ValueError):
        Operand("imm", "imm", 0x40, bits=6)


def test_encoder_rejects_unencodable_values() -> None:
    with pytest.raises(ValueError):
        enc.jump(2)
    with pytest.raises(ValueError):
        enc.tfrsi(0, 1 << 20)
    with pytest.raises(ValueError):
        enc.duplex(0xF, 0, 0)


def test_packet_parse_bits() -> None:
    words = enc.packet([enc.nop(), enc.nop(), enc.nop()], end_loop=HwLoop.LOOP01)
    assert [parse_bits(w) for w in words] == [0b10, 0b10, 0b11]
    with pytest.raises(ValueError):
        enc.packet([enc.nop(), enc.nop()], end_loop=HwLoop.LOOP1)
    with_duplex = enc.packet([enc.nop()], duplex_word=0x48103FC0)
    assert [parse_bits(w) for w in with_duplex] == [0b01, 0b00]
