"""
Constant-extender propagation.

An ``A4_ext`` word supplies the upper 26 bits of the immediate of the next
instruction in the packet. The extended operand takes the exact bit pattern
``ext | field[5:0]``; scaled immediates are not scaled again. A duplex can
only carry an extended instruction in slot 1.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

from ..decoding.bind import RawInstruction, SubInstruction
from ..errors import MisplacedExtensionError, PacketError
from .model import ExtensionBinding, Resolution, Resolved, Unresolved

logger = logging.getLogger(__name__)

EXTENSION_SLOT = 1


def _extension_target(
    entries: Sequence[RawInstruction], ext_index: int
) -> Tuple[Optional[int], Optional[MisplacedExtensionError]]:
    """Index of the entry an extender at `ext_index` binds to."""
    extender = entries[ext_index]
    if ext_index + 1 >= len(entries):
        return None, MisplacedExtensionError(
            extender.address, "Constant extender is the last entry of its packet"
        )
    index = ext_index + 1
    target = entries[index]
    if target.is_extender:
        return None, MisplacedExtensionError(
            target.address, "Constant extender followed by another extender"
        )
    if not isinstance(target, SubInstruction):
        if target.extendable_operand is None:
            return None, MisplacedExtensionError(
                target.address, f"{target.mnemonic} has no extendable operand"
            )
        return index, None

    # duplex: bind to the slot-1 sub-instruction of the same word
    for candidate in range(index, min(index + 2, len(entries))):
        sub = entries[candidate]
        if (
            isinstance(sub, SubInstruction)
            and sub.parent_address == target.parent_address
            and sub.slot == EXTENSION_SLOT
        ):
            if sub.extendable_operand is not None:
                return candidate, None
            break
    return None, MisplacedExtensionError(
        target.address,
        "Duplex can only carry a constant-extended instruction in slot 1",
    )


def apply_extension(
    entries: Sequence[RawInstruction], strict: bool = False
) -> Tuple[
    Tuple[RawInstruction, ...],
    Optional[Resolution[ExtensionBinding]],
    Tuple[PacketError, ...],
]:
    """Apply the packet's constant extender to its target.

    Returns the (possibly rewritten) entries, the extension resolution (None
    when the packet has no extender) and non-fatal diagnostics.
    """
    resolved: List[RawInstruction] = list(entries)
    diagnostics: List[PacketError] = []
    extenders = [i for i, entry in enumerate(entries) if entry.is_extender]
    if not extenders:
        return tuple(resolved), None, ()

    for extra in extenders[1:]:
        diagnostics.append(
            MisplacedExtensionError(
                entries[extra].address, "More than one constant extender in packet"
            )
        )

    ext_index = extenders[0]
    extender = entries[ext_index]
    target_index, error = _extension_target(entries, ext_index)
    resolution: Resolution[ExtensionBinding]
    if target_index is None:
        assert error is not None
        if strict:
            raise error
        logger.warning("%s", error)
        diagnostics.append(error)
        resolution = Unresolved(error.address, error.detail, error)
    else:
        target = entries[target_index]
        operand = target.extendable_operand
        assert operand is not None
        resolved[target_index] = target.with_operand(
            operand.extend(extender.extender_value)
        )
        resolution = Resolved(
            ExtensionBinding(
                extender_value=extender.extender_value,
                extender_address=extender.address,
                target_address=target.address,
            )
        )
        logger.debug(
            "immext %#x -> %s at %#x", extender.extender_value, target.mnemonic, target.address
        )
    if strict and diagnostics:
        raise diagnostics[0]
    return tuple(resolved), resolution, tuple(diagnostics)


__all__ = ["EXTENSION_SLOT", "apply_extension"]
