"""
Front end for Hexagon words: parse-bit classification, the decoded
instruction model, and duplex splitting.
"""

from .bind import (  # noqa: F401
    ContinuationTag,
    HwLoop,
    Operand,
    RawInstruction,
    SubInstruction,
    UNKNOWN_MNEMONIC,
)
from .reader import BinaryViewSource, BytesSource, InstructionSource  # noqa: F401
from .decode_map import continuation_tag, decode_word, parse_bits  # noqa: F401
from .duplex import split_duplex  # noqa: F401

__all__ = [
    "BinaryViewSource",
    "BytesSource",
    "ContinuationTag",
    "HwLoop",
    "InstructionSource",
    "Operand",
    "RawInstruction",
    "SubInstruction",
    "UNKNOWN_MNEMONIC",
    "continuation_tag",
    "decode_word",
    "parse_bits",
    "split_duplex",
]
