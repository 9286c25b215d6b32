"""Transport Adapter: a primary message channel and a secondary interaction surface."""

from __future__ import annotations

import json
from typing import Any, Callable, Dict, Mapping, Optional, Protocol, TextIO, Tuple, Union

from errors import TransportFailure
from scheduler import Scheduler
from utils import BotLogger, get_logger


class PrimaryChannel(Protocol):
    def send(self, payload: str) -> None: ...


class InteractionSurface(Protocol):
    def resolve_endpoint(self, label: str) -> Optional[Any]: ...

    def trigger_interaction(self, handle: Any) -> None: ...


CompletionCallback = Callable[[Optional[TransportFailure]], None]


def build_move_envelope(move: str, aux_fields: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    data: Dict[str, Any] = {"u": move}
    if aux_fields:
        data.update(aux_fields)
    return {"t": "move", "d": data}


def parse_position_message(raw: Union[str, bytes, Mapping[str, Any]]) -> Optional[Tuple[str, Optional[int]]]:
    """Extract ``(fen, ply)`` from an inbound envelope, or ``None`` if it carries no position."""
    if isinstance(raw, (str, bytes)):
        try:
            message = json.loads(raw)
        except ValueError:
            return None
    else:
        message = raw
    if not isinstance(message, Mapping):
        return None

    data = message.get("d")
    if not isinstance(data, Mapping):
        data = message
    fen = data.get("fen")
    if not isinstance(fen, str) or not fen.strip():
        return None
    if message.get("t") != "fen" and data is message:
        return None

    ply = data.get("ply", message.get("v"))
    if isinstance(ply, bool) or not isinstance(ply, int):
        ply = None
    return fen, ply


class StreamChannel:
    """Primary channel writing one JSON document per line to a text stream."""

    def __init__(self, stream: TextIO) -> None:
        self._stream = stream

    def send(self, payload: str) -> None:
        self._stream.write(payload + "\n")
        self._stream.flush()


class TransportAdapter:
    def __init__(
        self,
        scheduler: Scheduler,
        *,
        primary: Optional[PrimaryChannel] = None,
        surface: Optional[InteractionSurface] = None,
        aux_fields: Optional[Mapping[str, Any]] = None,
        interaction_delay_ms: int = 100,
        logger: Optional[BotLogger] = None,
    ) -> None:
        self._scheduler = scheduler
        self._primary = primary
        self._surface = surface
        self._aux_fields = dict(aux_fields or {})
        self._interaction_delay_ms = interaction_delay_ms
        self._log = logger or get_logger()

    def attach_primary(self, channel: Optional[PrimaryChannel]) -> None:
        self._primary = channel
        self._log.info("Primary channel " + ("attached" if channel is not None else "detached"))

    def attach_surface(self, surface: Optional[InteractionSurface]) -> None:
        self._surface = surface

    def send_primary(self, move: str) -> None:
        """Hand *move* to the primary channel; raises TransportFailure on a send fault."""
        if self._primary is None:
            raise TransportFailure("no primary channel attached")
        payload = json.dumps(build_move_envelope(move, self._aux_fields), separators=(",", ":"))
        try:
            self._primary.send(payload)
        except Exception as exc:
            raise TransportFailure(f"primary send failed: {exc}") from exc
        self._log.debug(f"Primary sent: {payload}")

    def send_secondary(
        self,
        move: str,
        on_complete: CompletionCallback,
        still_current: Optional[Callable[[], bool]] = None,
    ) -> None:
        """Trigger origin then destination endpoints for *move*.

        Raises TransportFailure immediately if either endpoint cannot be
        resolved. Otherwise ``on_complete`` fires once both interactions have
        been triggered (or with the error if triggering failed). If
        ``still_current`` returns False when the delay expires, the destination
        is never triggered and ``on_complete`` is not called.
        """
        if self._surface is None:
            raise TransportFailure("no interaction surface attached")
        origin_label, target_label = move[0:2], move[2:4]
        origin = self._surface.resolve_endpoint(origin_label)
        target = self._surface.resolve_endpoint(target_label)
        if origin is None or target is None:
            raise TransportFailure(f"cannot resolve endpoints {origin_label}, {target_label}")

        self._log.info(f"Secondary transport: {origin_label} -> {target_label}")
        try:
            self._surface.trigger_interaction(origin)
        except Exception as exc:
            raise TransportFailure(f"origin interaction failed: {exc}") from exc
        self._scheduler.call_later(
            self._interaction_delay_ms, self._finish_secondary, target, on_complete, still_current
        )

    def _finish_secondary(
        self,
        target: Any,
        on_complete: CompletionCallback,
        still_current: Optional[Callable[[], bool]],
    ) -> None:
        if still_current is not None and not still_current():
            self._log.debug("Secondary interaction abandoned; move no longer pending")
            return
        if self._surface is None:
            on_complete(TransportFailure("interaction surface detached"))
            return
        try:
            self._surface.trigger_interaction(target)
        except Exception as exc:
            on_complete(TransportFailure(f"destination interaction failed: {exc}"))
            return
        on_complete(None)
