from __future__ import annotations

from typing import Hashable, Optional

from binaryninja import (
    Architecture,
    RegisterInfo,
    InstructionInfo,
    CallingConvention,
)
from binaryninja.enums import BranchType, Endianness
from binaryninja.log import log_error
from binja_test_mocks.tokens import asm

from .analysis import AnalysisRegistry, HexagonAnalysisState
from .config import load_packet_config
from .decoding.bind import RawInstruction
from .decoding.reader import WORD_SIZE, BinaryViewSource, BytesSource, InstructionSource
from .decoding.render import render
from .errors import PacketError
from .packets.boundary import prefix_for, suffix_for
from .packets.model import Packet
from .pil.backend_llil import emit_llil

_RETURNS = {"L4_return", "SL2_return", "SL2_jumpr31"}
_CALLS = {"J2_call", "J2_callt", "J2_callf"}
_CONDITIONAL_JUMPS = ("J2_jumpt", "J2_jumpf", "J4_cmp")


def _regs() -> dict:
    regs = {f"R{n}": RegisterInfo(f"R{n}", 4) for n in range(32)}
    regs.update({f"P{n}": RegisterInfo(f"P{n}", 1) for n in range(4)})
    for loop in (0, 1):
        regs[f"SA{loop}"] = RegisterInfo(f"SA{loop}", 4)
        regs[f"LC{loop}"] = RegisterInfo(f"LC{loop}", 4)
    regs["PC"] = RegisterInfo("PC", 4)
    return regs


class Hexagon(Architecture):
    name = "hexagon"
    endianness = Endianness.LittleEndian
    address_size = 4
    default_int_size = 4
    instr_alignment = 2
    max_instr_length = 16

    regs = _regs()
    stack_pointer = "R29"
    link_reg = "R31"

    def __init__(self) -> None:
        super().__init__()
        self.registry: AnalysisRegistry[HexagonAnalysisState] = AnalysisRegistry()

    # -- analysis context --------------------------------------------------

    def attach(self, key: Hashable, source: InstructionSource) -> HexagonAnalysisState:
        """Bind the analysis state of one loaded binary."""
        return self.registry.get_or_create(
            key, lambda: HexagonAnalysisState(source, load_packet_config())
        )

    def attach_view(self, view) -> HexagonAnalysisState:
        return self.attach(view, BinaryViewSource(view))

    def detach(self, key: Hashable) -> None:
        self.registry.discard(key)

    def _state(self, data: bytes, addr: int, il=None) -> Optional[HexagonAnalysisState]:
        """
        State of the binary `data` was read from.

        The lifter knows its view. The other callbacks only get the bytes,
        so the first attached binary holding those bytes at `addr` is used;
        failing that the bytes are decoded on their own, as if `addr` began
        a region.
        """
        view = getattr(getattr(il, "source_function", None), "view", None)
        if view is not None:
            return self.attach_view(view)
        for state in self.registry.states():
            if _holds(state.source, addr, data):
                return state
        if addr % WORD_SIZE or len(data) < WORD_SIZE:
            return None
        whole = len(data) - len(data) % WORD_SIZE
        source = BytesSource(addr, bytearray(data[:whole]))
        return HexagonAnalysisState(source, load_packet_config())

    def _entry(
        self, data: bytes, addr: int, il=None
    ) -> Optional[tuple[HexagonAnalysisState, Packet, RawInstruction]]:
        state = self._state(data, addr, il)
        if state is None:
            return None
        packet = state.display_packet(addr)
        if addr not in packet:
            return None
        return state, packet, packet.entry_at(addr)

    # -- Architecture callbacks ---------------------------------------------

    def get_instruction_info(self, data, addr):
        try:
            found = self._entry(data, addr)
            if found is None:
                return None
            _, packet, entry = found
            info = InstructionInfo()
            info.length = entry.length
            if packet.is_last(addr):
                _add_branches(info, packet)
            return info
        except PacketError:
            return None
        except Exception as exc:
            log_error(f"Hexagon.get_instruction_info() failed at {addr:#x}: {exc}")
            raise

    def get_instruction_text(self, data, addr):
        try:
            found = self._entry(data, addr)
            if found is None:
                return None
            _, packet, entry = found
            tokens = render(
                entry,
                packet.start,
                prefix=prefix_for(packet, addr),
                suffix=suffix_for(packet, addr).strip(),
                new_value_reg=packet.new_value_register(addr),
            )
            return asm(tokens), entry.length
        except PacketError:
            return None
        except Exception as exc:
            log_error(f"Hexagon.get_instruction_text() failed at {addr:#x}: {exc}")
            raise

    def get_instruction_low_level_il(self, data, addr, il):
        try:
            found = self._entry(data, addr, il)
            if found is None:
                return None
            state, packet, entry = found
            if packet.malformed is not None:
                il.append(il.unimplemented())
                return entry.length
            # the whole packet is lifted at its first entry
            if packet.is_first(addr):
                emit_llil(il, state.packet_ir(addr))
            return entry.length
        except PacketError as exc:
            log_error(f"Hexagon.get_instruction_low_level_il() at {addr:#x}: {exc}")
            il.append(il.unimplemented())
            return None
        except Exception as exc:
            log_error(
                f"Hexagon.get_instruction_low_level_il() failed at {addr:#x}: {exc}"
            )
            raise


def _add_branches(info, packet: Packet) -> None:
    conditional = False
    for entry in packet:
        if entry.mnemonic == "J2_jump":
            info.add_branch(BranchType.UnconditionalBranch, _target(packet, entry))
        elif entry.mnemonic.startswith(_CONDITIONAL_JUMPS):
            info.add_branch(BranchType.TrueBranch, _target(packet, entry))
            conditional = True
        elif entry.mnemonic in _CALLS:
            info.add_branch(BranchType.CallDestination, _target(packet, entry))
        elif entry.mnemonic in _RETURNS or (
            entry.mnemonic == "J2_jumpr" and entry.operand("s").value == 31
        ):
            info.add_branch(BranchType.FunctionReturn)
        # other register jumps are left to the lifted JUMP
    if conditional:
        info.add_branch(BranchType.FalseBranch, packet.next_address)


def _holds(source: InstructionSource, addr: int, data: bytes) -> bool:
    """Whether `source` reads back `data` at `addr` (as far as both go)."""
    skip = addr % WORD_SIZE
    address = addr - skip
    expected = bytearray()
    while len(expected) < skip + min(len(data), Hexagon.max_instr_length):
        word = source.read_word(address)
        if word is None:
            break
        expected += word.to_bytes(WORD_SIZE, "little")
        address += WORD_SIZE
    expected = expected[skip:]
    compared = min(len(expected), len(data))
    return compared > 0 and bytes(expected[:compared]) == bytes(data[:compared])


def _target(packet: Packet, entry: RawInstruction) -> int:
    return (packet.start + entry.operand("target").imm) & 0xFFFFFFFF


class HexagonCallingConvention(CallingConvention):
    caller_saved_regs = [f"R{n}" for n in range(16)]
    int_arg_regs = ["R0", "R1", "R2", "R3", "R4", "R5"]
    int_return_reg = "R0"


__all__ = ["Hexagon", "HexagonCallingConvention"]
