"""Move Delivery Queue: single-flight sending with fallback, retry and ack detection."""

from __future__ import annotations

import itertools
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Deque, Optional, Tuple

from config import BotConfig
from errors import AcknowledgmentTimeout, BotError, InvalidTransition, TransportFailure
from game_tracker import Position
from scheduler import Scheduler
from transport import TransportAdapter
from utils import BotLogger, get_logger


class DeliveryStatus(Enum):
    PENDING = "pending"
    SENDING_PRIMARY = "sending_primary"
    SENDING_SECONDARY = "sending_secondary"
    AWAITING_ACK = "awaiting_ack"
    RETRYING = "retrying"
    FAILED = "failed"
    ACKNOWLEDGED = "acknowledged"


IN_FLIGHT = frozenset(
    {DeliveryStatus.SENDING_PRIMARY, DeliveryStatus.SENDING_SECONDARY, DeliveryStatus.AWAITING_ACK}
)

_TRANSITIONS = {
    DeliveryStatus.PENDING: {DeliveryStatus.SENDING_PRIMARY},
    DeliveryStatus.SENDING_PRIMARY: {DeliveryStatus.AWAITING_ACK, DeliveryStatus.SENDING_SECONDARY},
    DeliveryStatus.SENDING_SECONDARY: {DeliveryStatus.AWAITING_ACK, DeliveryStatus.RETRYING},
    DeliveryStatus.AWAITING_ACK: {DeliveryStatus.ACKNOWLEDGED, DeliveryStatus.RETRYING},
    DeliveryStatus.RETRYING: {DeliveryStatus.PENDING, DeliveryStatus.FAILED},
    DeliveryStatus.FAILED: set(),
    DeliveryStatus.ACKNOWLEDGED: set(),
}


@dataclass(eq=False)
class QueueEntry:
    entry_id: int
    move: str
    position: Position
    created_at: float
    retry_count: int = 0
    status: DeliveryStatus = DeliveryStatus.PENDING
    last_attempt_at: Optional[float] = None
    attempt: int = 0
    last_error: Optional[BotError] = None

    def transition(self, target: DeliveryStatus) -> None:
        if target not in _TRANSITIONS[self.status]:
            raise InvalidTransition(
                f"entry {self.entry_id} cannot go from {self.status.value} to {target.value}"
            )
        self.status = target


class DeliveryQueue:
    """FIFO of moves to deliver; only the head entry is ever in flight."""

    def __init__(
        self,
        scheduler: Scheduler,
        transport: TransportAdapter,
        current_position: Callable[[], Optional[Position]],
        config: BotConfig,
        *,
        on_failed: Optional[Callable[[QueueEntry], None]] = None,
        on_stuck: Optional[Callable[[], None]] = None,
        logger: Optional[BotLogger] = None,
    ) -> None:
        self._scheduler = scheduler
        self._transport = transport
        self._current_position = current_position
        self._config = config
        self._on_failed = on_failed
        self._on_stuck = on_stuck
        self._log = logger or get_logger()
        self._entries: Deque[QueueEntry] = deque()
        self._ids = itertools.count(1)
        self.consecutive_failures = 0
        self.acknowledged = 0
        self.failed = 0

    @property
    def entries(self) -> Tuple[QueueEntry, ...]:
        return tuple(self._entries)

    @property
    def head(self) -> Optional[QueueEntry]:
        return self._entries[0] if self._entries else None

    def __len__(self) -> int:
        return len(self._entries)

    def in_flight(self) -> Tuple[QueueEntry, ...]:
        return tuple(entry for entry in self._entries if entry.status in IN_FLIGHT)

    def enqueue(self, move: str, position: Position) -> QueueEntry:
        self.purge_stale()
        entry = QueueEntry(next(self._ids), move, position, self._scheduler.now())
        self._entries.append(entry)
        self._log.info(f"Queued move: {move} (queue size: {len(self._entries)})")
        self._process()
        return entry

    def purge_stale(self) -> int:
        """Drop entries computed against a position other than the current one."""
        current = self._current_position()
        if current is None or not self._entries:
            return 0
        kept = deque(entry for entry in self._entries if entry.position.fen == current.fen)
        removed = len(self._entries) - len(kept)
        if removed:
            self._log.warn(f"Clearing {removed} stale queued move(s)")
            self._entries = kept
            self._process()
        return removed

    def clear(self) -> None:
        self._entries.clear()

    # ── State machine ────────────────────────────────────────────────────

    def _process(self) -> None:
        head = self.head
        if head is None or head.status != DeliveryStatus.PENDING:
            return
        head.attempt += 1
        head.last_attempt_at = self._scheduler.now()
        head.transition(DeliveryStatus.SENDING_PRIMARY)
        self._log.info(f"Sending move: {head.move} (attempt {head.retry_count + 1})")
        try:
            self._transport.send_primary(head.move)
        except TransportFailure as exc:
            head.last_error = exc
            self._log.warn(f"Primary send failed ({exc}) - trying secondary transport")
            self._scheduler.call_later(
                self._config.secondary_delay_ms, self._send_secondary, head, head.attempt
            )
            return
        self._await_ack(head)

    def _is_current(self, entry: QueueEntry, attempt: int, status: DeliveryStatus) -> bool:
        return (
            bool(self._entries)
            and self._entries[0] is entry
            and entry.attempt == attempt
            and entry.status == status
        )

    def _send_secondary(self, entry: QueueEntry, attempt: int) -> None:
        if not self._is_current(entry, attempt, DeliveryStatus.SENDING_PRIMARY):
            return
        entry.transition(DeliveryStatus.SENDING_SECONDARY)
        try:
            self._transport.send_secondary(
                entry.move,
                lambda error: self._secondary_done(entry, attempt, error),
                lambda: self._is_current(entry, attempt, DeliveryStatus.SENDING_SECONDARY),
            )
        except TransportFailure as exc:
            entry.last_error = exc
            self._log.error(f"Secondary send failed: {exc}")
            self._retry(entry)

    def _secondary_done(
        self, entry: QueueEntry, attempt: int, error: Optional[TransportFailure]
    ) -> None:
        if not self._is_current(entry, attempt, DeliveryStatus.SENDING_SECONDARY):
            return
        if error is not None:
            entry.last_error = error
            self._log.error(f"Secondary send failed: {error}")
            self._retry(entry)
            return
        self._await_ack(entry)

    def _await_ack(self, entry: QueueEntry) -> None:
        entry.transition(DeliveryStatus.AWAITING_ACK)
        self._scheduler.call_later(
            self._config.ack_delay_ms, self._check_ack, entry, entry.attempt
        )

    def _check_ack(self, entry: QueueEntry, attempt: int) -> None:
        if not self._is_current(entry, attempt, DeliveryStatus.AWAITING_ACK):
            return
        current = self._current_position()
        if current is not None and current.fen != entry.position.fen:
            entry.transition(DeliveryStatus.ACKNOWLEDGED)
            self._entries.popleft()
            self.consecutive_failures = 0
            self.acknowledged += 1
            self._log.info(f"Move acknowledged: {entry.move}")
            if self._entries:
                self._scheduler.call_later(self._config.advance_delay_ms, self._process)
            return

        entry.last_error = AcknowledgmentTimeout(f"move {entry.move} not acknowledged")
        self._log.warn(f"Move {entry.move} not acknowledged")
        self._retry(entry)

    def _retry(self, entry: QueueEntry) -> None:
        entry.transition(DeliveryStatus.RETRYING)
        entry.retry_count += 1

        if entry.retry_count >= self._config.max_retries:
            entry.transition(DeliveryStatus.FAILED)
            self._entries.popleft()
            self.consecutive_failures += 1
            self.failed += 1
            self._log.error(
                f"Move {entry.move} failed after {entry.retry_count} attempts - giving up"
            )
            if self.consecutive_failures > self._config.consecutive_failure_threshold:
                self._log.error("Too many consecutive delivery failures - restarting engine")
                if self._on_stuck is not None:
                    self._on_stuck()
            if self._on_failed is not None:
                self._on_failed(entry)
            if self._entries:
                self._scheduler.call_soon(self._process)
            return

        delay = self._config.backoff_delay_ms(entry.retry_count)
        self._log.info(f"Retrying {entry.move} in {delay}ms...")
        self._scheduler.call_later(delay, self._resume, entry, entry.attempt)

    def _resume(self, entry: QueueEntry, attempt: int) -> None:
        if not self._is_current(entry, attempt, DeliveryStatus.RETRYING):
            return
        entry.transition(DeliveryStatus.PENDING)
        self._process()
