"""
New-value operand resolution.

A new-value consumer names its producer by distance: ``Nt[2:1]`` counts the
register-writing entries back from the consumer inside the same packet.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Sequence, Tuple

from ..decoding.bind import RawInstruction
from ..errors import AmbiguousNewValueError, PacketError
from .model import NewValueBinding, Resolution, Resolved, Unresolved

logger = logging.getLogger(__name__)


def producer_register(producer: RawInstruction, consumer_address: int) -> str:
    """Pick the register a producer hands to a new-value consumer.

    Write-only destinations win over read-modify-write ones; more than one
    candidate left after that is ambiguous.
    """
    writes = sorted(producer.writes)
    if len(writes) == 1:
        return writes[0]
    write_only = sorted(producer.write_only)
    if len(write_only) == 1:
        return write_only[0]
    candidates = write_only or writes
    raise AmbiguousNewValueError(
        consumer_address,
        f"Producer {producer.mnemonic} at {producer.address:#x} writes "
        f"{', '.join(candidates)}",
    )


def find_producer(
    entries: Sequence[RawInstruction], consumer_index: int, distance: int
) -> RawInstruction | None:
    seen = 0
    for index in range(consumer_index - 1, -1, -1):
        entry = entries[index]
        if not entry.writes:
            continue
        seen += 1
        if seen == distance:
            return entry
    return None


def _resolve_one(
    entries: Sequence[RawInstruction], index: int
) -> Resolution[NewValueBinding]:
    consumer = entries[index]
    distance = consumer.new_value_distance
    if distance == 0:
        return Unresolved(consumer.address, "New-value distance 0 is reserved")
    producer = find_producer(entries, index, distance)
    if producer is None:
        return Unresolved(
            consumer.address,
            f"No register-writing entry {distance} back in the packet",
        )
    try:
        register = producer_register(producer, consumer.address)
    except AmbiguousNewValueError as e:
        return Unresolved(consumer.address, e.detail, e)
    return Resolved(
        NewValueBinding(
            consumer_address=consumer.address,
            producer_address=producer.address,
            producer_register=register,
        )
    )


def resolve_new_values(
    entries: Sequence[RawInstruction],
) -> Tuple[Dict[int, Resolution[NewValueBinding]], Tuple[PacketError, ...]]:
    """Resolve every new-value consumer of a packet.

    Returns consumer address -> resolution, plus the errors behind any
    unresolved consumer.
    """
    bindings: Dict[int, Resolution[NewValueBinding]] = {}
    diagnostics: List[PacketError] = []
    for index, entry in enumerate(entries):
        if not entry.has_new_value:
            continue
        resolution = _resolve_one(entries, index)
        bindings[entry.address] = resolution
        if isinstance(resolution, Unresolved):
            logger.warning(
                "Unresolved new-value at %#x: %s", entry.address, resolution.reason
            )
            if resolution.error is not None:
                diagnostics.append(resolution.error)
        else:
            logger.debug(
                "new-value %#x <- %s@%#x",
                entry.address,
                resolution.binding.producer_register,
                resolution.binding.producer_address,
            )
    return bindings, tuple(diagnostics)


__all__ = ["find_producer", "producer_register", "resolve_new_values"]
