import pytest

from harness_jsolex.bridge.emission import EmissionChannel
from harness_jsolex.bridge.protocol import MarshalError
from harness_jsolex.bridge.values import ValueMarshaler


def test_emissions_keep_call_order_and_reach_sink() -> None:
    received = []
    channel = EmissionChannel(ValueMarshaler(), received.append)
    channel.emit(1, "first")
    channel.emit([2, 3], "second", identifier="s", category="stats", description="pair")
    assert [e.display_name for e in channel.emissions] == ["first", "second"]
    assert received == channel.emissions
    assert received[1].category == "stats"
    assert received[1].value == [2, 3]


def test_marshal_failure_keeps_earlier_emissions() -> None:
    received = []
    channel = EmissionChannel(ValueMarshaler(), received.append)
    channel.emit("ok", "first")
    with pytest.raises(MarshalError):
        channel.emit(object(), "second")
    assert [e.display_name for e in channel.emissions] == ["first"]
    assert len(received) == 1


def test_sequence_survives_drain() -> None:
    channel = EmissionChannel(ValueMarshaler())
    channel.emit(1, "a")
    assert [e.sequence for e in channel.drain()] == [0]
    channel.emit(2, "b")
    assert [e.sequence for e in channel.emissions] == [1]
