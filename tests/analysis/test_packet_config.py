import pytest

from hexagon import config
from hexagon.trace import TraceBuffer, TraceEntry


@pytest.fixture(autouse=True)
def _clear_env(monkeypatch):
    for name in (
        "HEXAGON_MAX_PACKET_WORDS",
        "HEXAGON_PACKET_TRACE",
        "HEXAGON_STRICT_EXTENDERS",
    ):
        monkeypatch.delenv(name, raising=False)
    yield


def test_defaults() -> None:
    cfg = config.load_packet_config()
    assert cfg.max_packet_words == config.MAX_PACKET_WORDS == 4
    assert cfg.trace is False
    assert cfg.strict_extenders is False


def test_flags_parse(monkeypatch) -> None:
    monkeypatch.setenv("HEXAGON_PACKET_TRACE", "1")
    monkeypatch.setenv("HEXAGON_STRICT_EXTENDERS", "off")
    monkeypatch.setenv("HEXAGON_MAX_PACKET_WORDS", "0x8")
    cfg = config.load_packet_config()
    assert cfg.trace is True
    assert cfg.strict_extenders is False
    assert cfg.max_packet_words == 8


@pytest.mark.parametrize("raw", ["zero", "0", "-2"])
def test_bad_packet_length_is_rejected(monkeypatch, raw: str) -> None:
    monkeypatch.setenv("HEXAGON_MAX_PACKET_WORDS", raw)
    with pytest.raises(ValueError):
        config.load_packet_config()


def test_trace_buffer_keeps_latest_entries() -> None:
    trace = TraceBuffer(capacity=2)
    for addr in range(3):
        trace.record(TraceEntry("MisplacedExtensionError", addr, "A2_nop", "x"))
    assert [e.addr for e in trace.snapshot()] == [1, 2]
    trace.clear()
    assert trace.snapshot() == []
