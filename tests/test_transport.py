import io
import json

import pytest

from errors import TransportFailure
from scheduler import ManualScheduler
from transport import StreamChannel, TransportAdapter, build_move_envelope, parse_position_message


class RecordingChannel:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.payloads = []

    def send(self, payload: str) -> None:
        if self.fail:
            raise ConnectionError("socket closed")
        self.payloads.append(payload)


class BoardSurface:
    def __init__(self, squares, fail_on=None) -> None:
        self.squares = set(squares)
        self.fail_on = fail_on
        self.triggered = []

    def resolve_endpoint(self, label: str):
        return f"square-{label}" if label in self.squares else None

    def trigger_interaction(self, handle) -> None:
        if handle == self.fail_on:
            raise RuntimeError("detached")
        self.triggered.append(handle)


def test_build_move_envelope_passes_aux_fields_through() -> None:
    assert build_move_envelope("e2e4", {"b": 1, "a": 1}) == {"t": "move", "d": {"u": "e2e4", "b": 1, "a": 1}}
    assert build_move_envelope("e7e8q") == {"t": "move", "d": {"u": "e7e8q"}}


def test_parse_position_message_variants() -> None:
    fen = "rnbqkbnr/pppppppp/8/8/4P3/8/PPPP1PPP/RNBQKBNR"
    assert parse_position_message(json.dumps({"t": "fen", "d": {"fen": fen, "ply": 1}})) == (fen, 1)
    assert parse_position_message({"t": "move", "v": 3, "d": {"fen": fen}}) == (fen, 3)
    assert parse_position_message({"t": "fen", "fen": fen}) == (fen, None)
    assert parse_position_message({"fen": fen}) is None
    assert parse_position_message({"t": "crowd", "d": {"white": True}}) is None
    assert parse_position_message("not json") is None
    assert parse_position_message("[1, 2]") is None
    assert parse_position_message({"t": "fen", "d": {"fen": fen, "ply": True}}) == (fen, None)


def test_primary_send_serialises_envelope() -> None:
    channel = RecordingChannel()
    adapter = TransportAdapter(ManualScheduler(), primary=channel, aux_fields={"l": 25})
    adapter.send_primary("g1f3")
    assert json.loads(channel.payloads[0]) == {"t": "move", "d": {"u": "g1f3", "l": 25}}


def test_primary_send_fault_raises_transport_failure() -> None:
    adapter = TransportAdapter(ManualScheduler(), primary=RecordingChannel(fail=True))
    with pytest.raises(TransportFailure):
        adapter.send_primary("g1f3")

    detached = TransportAdapter(ManualScheduler())
    with pytest.raises(TransportFailure):
        detached.send_primary("g1f3")
    detached.attach_primary(RecordingChannel())
    detached.send_primary("g1f3")


def test_stream_channel_writes_lines() -> None:
    stream = io.StringIO()
    StreamChannel(stream).send('{"t":"move"}')
    assert stream.getvalue() == '{"t":"move"}\n'


def test_secondary_triggers_origin_then_destination_after_delay() -> None:
    scheduler = ManualScheduler()
    surface = BoardSurface({"e2", "e4"})
    adapter = TransportAdapter(scheduler, surface=surface, interaction_delay_ms=100)
    outcomes = []

    adapter.send_secondary("e2e4", outcomes.append)
    assert surface.triggered == ["square-e2"]
    assert outcomes == []

    scheduler.advance(100)
    assert surface.triggered == ["square-e2", "square-e4"]
    assert outcomes == [None]


def test_secondary_unresolved_endpoint_fails_immediately() -> None:
    surface = BoardSurface({"e2"})
    adapter = TransportAdapter(ManualScheduler(), surface=surface)
    with pytest.raises(TransportFailure):
        adapter.send_secondary("e2e4", lambda error: None)
    assert surface.triggered == []

    with pytest.raises(TransportFailure):
        TransportAdapter(ManualScheduler()).send_secondary("e2e4", lambda error: None)


def test_secondary_destination_fault_is_reported_to_callback() -> None:
    scheduler = ManualScheduler()
    surface = BoardSurface({"e2", "e4"}, fail_on="square-e4")
    adapter = TransportAdapter(scheduler, surface=surface)
    outcomes = []
    adapter.send_secondary("e2e4", outcomes.append)
    scheduler.advance(100)
    assert len(outcomes) == 1
    assert isinstance(outcomes[0], TransportFailure)


def test_secondary_destination_skipped_when_no_longer_current() -> None:
    scheduler = ManualScheduler()
    surface = BoardSurface({"e2", "e4"})
    adapter = TransportAdapter(scheduler, surface=surface)
    outcomes = []
    current = {"value": True}

    adapter.send_secondary("e2e4", outcomes.append, lambda: current["value"])
    current["value"] = False
    scheduler.advance(100)
    assert surface.triggered == ["square-e2"]
    assert outcomes == []
