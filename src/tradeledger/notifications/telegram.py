# src/tradeledger/notifications/telegram.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional

import requests

from tradeledger.notifications.transports import PushTransport

log = logging.getLogger("tradeledger.notifications.telegram")

TELEGRAM_MAX_LEN = 3900  # below the 4096 hard limit


# -------------------------
# models
# -------------------------
@dataclass(frozen=True)
class TelegramTarget:
    name: str
    bot_token: str
    chat_id: str


# -------------------------
# message split
# -------------------------
def split_long_message(text: str, max_len: int = TELEGRAM_MAX_LEN) -> List[str]:
    """
    Splits text under the Telegram limit, preferring blank lines, then line breaks.
    """
    s = (text or "").strip()
    if not s:
        return []

    if len(s) <= max_len:
        return [s]

    parts: List[str] = []
    buf = ""

    for chunk in s.split("\n\n"):
        cand = (buf + "\n\n" + chunk).strip() if buf else chunk.strip()
        if len(cand) <= max_len:
            buf = cand
            continue

        if buf:
            parts.append(buf)
            buf = ""

        if len(chunk) <= max_len:
            buf = chunk.strip()
            continue

        line_buf = ""
        for line in chunk.splitlines():
            cand2 = (line_buf + "\n" + line).strip() if line_buf else line
            if len(cand2) <= max_len:
                line_buf = cand2
            else:
                if line_buf:
                    parts.append(line_buf)
                line_buf = line[:max_len]
        if line_buf:
            parts.append(line_buf)

    if buf:
        parts.append(buf)

    return [p for p in parts if p.strip()]


# -------------------------
# send
# -------------------------
def send_telegram_message(
    text: str,
    *,
    target: TelegramTarget,
    session: Optional[requests.Session] = None,
    timeout_sec: float = 15.0,
) -> bool:
    text = (text or "").strip()
    if not text:
        return False

    url = f"https://api.telegram.org/bot{target.bot_token}/sendMessage"
    http = session or requests
    ok = True
    for part in split_long_message(text):
        payload = {
            "chat_id": target.chat_id,
            "text": part,
            "disable_web_page_preview": True,
        }
        try:
            r = http.post(url, json=payload, timeout=timeout_sec)
        except requests.RequestException:
            log.exception("Telegram send exception (target=%s)", target.name)
            return False
        if r.status_code != 200:
            log.error("Telegram send failed: %s %s", r.status_code, r.text[:300])
            ok = False
    return ok


def format_admin_alert(event_type: str, payload: dict[str, Any]) -> str:
    lines = [f"[tradeledger] {payload.get('action', event_type)}"]
    if payload.get("user_id") is not None:
        lines.append(f"user: {payload['user_id']}")
    for key in ("order_id", "plan_id", "kind", "currency", "quantity_a", "quantity_b", "price", "amount", "reason"):
        if payload.get(key) is not None:
            lines.append(f"{key}: {payload[key]}")
    return "\n".join(lines)


# -------------------------
# admin transport
# -------------------------
class TelegramAdminTransport(PushTransport):
    """
    Forwards selected administrator pushes to a Telegram chat.

    Only admin "activity" pushes whose action is in `actions` are sent; user pushes and
    broadcasts are ignored. Failures are logged and dropped.
    """

    def __init__(
        self,
        *,
        target: TelegramTarget,
        actions: Iterable[str],
        session: Optional[requests.Session] = None,
    ):
        self.target = target
        self.actions = frozenset(actions)
        self.session = session or requests.Session()

    def push_to_user(self, user_id: int, event_type: str, payload: dict[str, Any]) -> None:
        return None

    def push_to_admins(self, event_type: str, payload: dict[str, Any]) -> None:
        if event_type != "activity" or payload.get("action") not in self.actions:
            return
        send_telegram_message(
            format_admin_alert(event_type, payload),
            target=self.target,
            session=self.session,
        )
