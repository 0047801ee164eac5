"""Tests for event fan-out, the dispatcher and admin Telegram alerts."""

from typing import Any, List

import pytest
import requests

from tradeledger.core.models.enums import Currency
from tradeledger.notifications.dispatcher import NotificationDispatcher
from tradeledger.notifications.events import EventKind, LedgerEvent, emit_user_change
from tradeledger.notifications.telegram import (
    TelegramAdminTransport,
    TelegramTarget,
    format_admin_alert,
    send_telegram_message,
    split_long_message,
)
from tradeledger.notifications.transports import FanoutTransport, PushTransport


class ListSink:
    def __init__(self) -> None:
        self.events: List[LedgerEvent] = []

    def emit(self, event: LedgerEvent) -> None:
        self.events.append(event)


class FakeResponse:
    def __init__(self, status_code: int = 200, text: str = "ok"):
        self.status_code = status_code
        self.text = text


class FakeSession:
    """Records requests.post calls."""

    def __init__(self, status_code: int = 200, error: Exception = None):
        self.posts: List[dict] = []
        self.status_code = status_code
        self.error = error

    def post(self, url: str, json: Any = None, timeout: float = None) -> FakeResponse:
        if self.error is not None:
            raise self.error
        self.posts.append({"url": url, "json": json})
        return FakeResponse(self.status_code)


TARGET = TelegramTarget(name="admin", bot_token="123:abc", chat_id="-100")


class TestEvents:
    def test_only_first_event_is_primary(self):
        sink = ListSink()
        emit_user_change(sink, 5, action="deposit", orders=True, plans=True, amount=10)

        assert [e.kind for e in sink.events] == [EventKind.BALANCE, EventKind.ORDERS, EventKind.PLANS]
        assert [e.primary for e in sink.events] == [True, False, False]
        assert all(e.action == "deposit" and e.payload["amount"] == 10 for e in sink.events)

    def test_plans_only(self):
        sink = ListSink()
        emit_user_change(sink, 5, action="plan_paused", balance=False, plans=True)
        assert [(e.kind, e.primary) for e in sink.events] == [(EventKind.PLANS, True)]

    def test_action_defaults_to_kind(self):
        assert LedgerEvent(EventKind.PRICE).action == "price"


class TestDispatcher:
    """Snapshots are read at dispatch time."""

    def test_deposit_pushes_snapshots(self, app, fund, transport):
        fund(1)
        app.orders.deposit(1, Currency.B, 700)

        assert app.dispatcher.drain() == 2

        user = {(t, p["action"]) for uid, t, p in transport.user if uid == 1}
        assert user == {("balance", "deposit"), ("orders", "deposit")}
        balance = [p["data"] for _, t, p in transport.user if t == "balance"][0]
        assert balance["available_b"] == 700

        admin_types = [t for t, _ in transport.admin]
        assert admin_types.count("activity") == 1
        assert "admin_balance" in admin_types and "admin_orders" in admin_types
        totals = [p["data"] for t, p in transport.admin if t == "admin_balance"][0]
        assert totals["available_b"] == 700

    def test_price_is_broadcast_only(self, app, transport, set_price):
        set_price(100_000)
        app.dispatcher.drain()
        assert transport.user == [] and transport.admin == []
        assert transport.broadcasts[0][0] == "price"
        assert transport.broadcasts[0][1]["reference_price"] == 100_000

    def test_full_queue_drops(self, app, transport):
        dispatcher = NotificationDispatcher(transport=transport, reads=app.reads, maxsize=1)
        dispatcher.emit(LedgerEvent(EventKind.PRICE, payload={"buy": 1}))
        dispatcher.emit(LedgerEvent(EventKind.PRICE, payload={"buy": 2}))
        assert dispatcher.dropped == 1
        assert dispatcher.drain() == 1

    def test_transport_failure_is_contained(self, app, fund):
        class Exploding(PushTransport):
            def push_to_user(self, user_id, event_type, payload):
                raise RuntimeError("socket closed")

            def push_to_admins(self, event_type, payload):
                raise RuntimeError("socket closed")

        fund(1)
        dispatcher = NotificationDispatcher(transport=Exploding(), reads=app.reads)
        dispatcher.emit(LedgerEvent(EventKind.BALANCE, 1, {"action": "deposit"}))
        assert dispatcher.drain() == 1

    def test_thread_drains_on_stop(self, app, transport):
        dispatcher = NotificationDispatcher(transport=transport, reads=app.reads, poll_sec=0.05)
        dispatcher.start()
        dispatcher.emit(LedgerEvent(EventKind.PRICE, payload={"buy": 1}))
        dispatcher.stop()
        dispatcher.join(timeout=5)
        assert not dispatcher.is_alive()
        assert transport.broadcasts == [("price", {"buy": 1})]


class TestFanout:
    def test_one_failing_transport_does_not_block_others(self, transport):
        class Broken(PushTransport):
            def push_to_user(self, user_id, event_type, payload):
                raise RuntimeError("down")

            def push_to_admins(self, event_type, payload):
                raise RuntimeError("down")

        fan = FanoutTransport(Broken(), transport)
        fan.push_to_user(1, "balance", {"action": "x"})
        fan.push_to_admins("activity", {"action": "x"})
        fan.broadcast("price", {})
        assert len(transport.user) == 1 and len(transport.admin) == 1 and len(transport.broadcasts) == 1


class TestTelegram:
    def test_split_short(self):
        assert split_long_message("  hi  ") == ["hi"]
        assert split_long_message("") == []

    def test_split_prefers_paragraphs(self):
        text = "a" * 30 + "\n\n" + "b" * 30
        assert split_long_message(text, max_len=40) == ["a" * 30, "b" * 30]

    def test_split_long_lines(self):
        text = "\n".join(["x" * 20] * 5)
        parts = split_long_message(text, max_len=45)
        assert all(len(p) <= 45 for p in parts)
        assert "".join(parts).replace("\n", "") == "x" * 100

    def test_send_posts_each_part(self):
        session = FakeSession()
        assert send_telegram_message("hello", target=TARGET, session=session) is True
        assert session.posts[0]["url"] == "https://api.telegram.org/bot123:abc/sendMessage"
        assert session.posts[0]["json"]["chat_id"] == "-100"

    def test_send_failures(self):
        assert send_telegram_message("x", target=TARGET, session=FakeSession(status_code=500)) is False
        assert send_telegram_message("x", target=TARGET, session=FakeSession(error=requests.ConnectionError())) is False
        assert send_telegram_message("   ", target=TARGET, session=FakeSession()) is False

    def test_alert_format(self):
        text = format_admin_alert("activity", {"action": "withdraw", "user_id": 3, "currency": "A", "amount": 5})
        assert text.splitlines() == ["[tradeledger] withdraw", "user: 3", "currency: A", "amount: 5"]

    @pytest.mark.parametrize(
        "event_type, action, sent",
        [
            ("activity", "withdraw", True),
            ("activity", "market_order", False),
            ("admin_balance", "withdraw", False),
        ],
    )
    def test_forwards_selected_activity_only(self, event_type, action, sent):
        session = FakeSession()
        t = TelegramAdminTransport(target=TARGET, actions=["withdraw", "limit_executed"], session=session)
        t.push_to_admins(event_type, {"action": action, "user_id": 1})
        t.push_to_user(1, "balance", {"action": action})
        assert bool(session.posts) is sent

    def test_end_to_end_through_dispatcher(self, app, fund):
        session = FakeSession()
        dispatcher = NotificationDispatcher(
            transport=TelegramAdminTransport(target=TARGET, actions=["deposit"], session=session),
            reads=app.reads,
        )
        fund(1)
        app.orders.events = dispatcher
        app.orders.deposit(1, Currency.A, 10)
        dispatcher.drain()
        assert len(session.posts) == 1
        assert "deposit" in session.posts[0]["json"]["text"]
