# src/tradeledger/notifications/dispatcher.py
from __future__ import annotations

import logging
import queue
import threading
from typing import Any

from tradeledger.core.read_model import ReadModel
from tradeledger.notifications.events import EventKind, LedgerEvent
from tradeledger.notifications.transports import PushTransport

logger = logging.getLogger(__name__)


class NotificationDispatcher(threading.Thread):
    """
    Drains LedgerEvents from a queue and pushes fresh snapshots.

    emit() never blocks a writer: when the queue is full the event is dropped
    and logged. Clients can always re-read through the read path.
    """

    def __init__(
        self,
        *,
        transport: PushTransport,
        reads: ReadModel,
        maxsize: int = 10_000,
        poll_sec: float = 0.5,
    ):
        super().__init__(daemon=True, name="NotificationDispatcher")
        self.transport = transport
        self.reads = reads
        self.poll_sec = float(poll_sec)
        self._queue: queue.Queue[LedgerEvent] = queue.Queue(maxsize=int(maxsize))
        self._stop_event = threading.Event()
        self.dropped = 0

    # ------------------------------------------------------------------
    def emit(self, event: LedgerEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            self.dropped += 1
            logger.warning("[NOTIFY] queue full, dropping %s event user=%s", event.kind.value, event.user_id)

    def stop(self) -> None:
        self._stop_event.set()

    def run(self) -> None:
        logger.info("[NOTIFY] dispatcher started")
        while not self._stop_event.is_set():
            try:
                event = self._queue.get(timeout=self.poll_sec)
            except queue.Empty:
                continue
            self.dispatch(event)
        self.drain()
        logger.info("[NOTIFY] dispatcher stopped")

    def drain(self) -> int:
        """Dispatch everything currently queued in the calling thread."""
        n = 0
        while True:
            try:
                event = self._queue.get_nowait()
            except queue.Empty:
                return n
            self.dispatch(event)
            n += 1

    # ------------------------------------------------------------------
    def dispatch(self, event: LedgerEvent) -> None:
        try:
            if event.kind is EventKind.PRICE:
                self.transport.broadcast(EventKind.PRICE.value, dict(event.payload))
                return

            if event.user_id is not None:
                self.transport.push_to_user(
                    event.user_id,
                    event.kind.value,
                    {"action": event.action, "data": self._user_snapshot(event)},
                )

            self.transport.push_to_admins(
                f"admin_{event.kind.value}",
                {"action": event.action, "data": self._admin_snapshot(event.kind)},
            )
            if event.primary:
                self.transport.push_to_admins("activity", dict(event.payload))
        except Exception:
            logger.exception("[NOTIFY] push failed for %s event user=%s", event.kind.value, event.user_id)

    def _user_snapshot(self, event: LedgerEvent) -> Any:
        uid = int(event.user_id)  # type: ignore[arg-type]
        if event.kind is EventKind.BALANCE:
            return self.reads.balance(uid).to_dict()
        if event.kind is EventKind.ORDERS:
            return [o.to_dict() for o in self.reads.recent_orders(uid)]
        return [p.to_dict() for p in self.reads.user_plans(uid)]

    def _admin_snapshot(self, kind: EventKind) -> Any:
        if kind is EventKind.BALANCE:
            return self.reads.admin_totals()
        if kind is EventKind.ORDERS:
            return [o.to_dict() for o in self.reads.admin_pending_orders()]
        return [p.to_dict() for p in self.reads.admin_plans()]
