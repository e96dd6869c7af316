from __future__ import annotations

from dataclasses import dataclass
import os

MAX_PACKET_WORDS = 4


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    normalized = raw.strip().casefold()
    return normalized not in {"0", "false", "off", ""}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip(), 0)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


@dataclass(frozen=True)
class PacketConfig:
    max_packet_words: int = MAX_PACKET_WORDS
    # record packet diagnostics into the trace ring buffer
    trace: bool = False
    # raise MisplacedExtensionError instead of recording a diagnostic
    strict_extenders: bool = False


def load_packet_config() -> PacketConfig:
    return PacketConfig(
        max_packet_words=_env_int("HEXAGON_MAX_PACKET_WORDS", MAX_PACKET_WORDS),
        trace=_env_flag("HEXAGON_PACKET_TRACE", default=False),
        strict_extenders=_env_flag("HEXAGON_STRICT_EXTENDERS", default=False),
    )


__all__ = ["MAX_PACKET_WORDS", "PacketConfig", "load_packet_config"]
