"""
taskledger.services.notifications — Messaging & Membership Collaborators
=========================================================================

The ledger never talks to the chat platform itself.  The API layer uses
two small collaborators, always outside a database transaction:

* :class:`Notifier` — delivers a text message (admin withdrawal alerts,
  decision notices to members).  Delivery failures are logged, never
  raised.
* :class:`MembershipChecker` — answers "has this user joined that chat?"
  before claims, joins and withdrawals.

The Telegram implementations call the Bot API over ``httpx``; the others
are for development and tests.
"""

from __future__ import annotations

import logging
from typing import Protocol

import httpx

from taskledger.config import DEFAULT_TELEGRAM_API_BASE
from taskledger.constants import MEMBER_STATUSES

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def send(self, chat_id: int | str, text: str) -> bool: ...


class MembershipChecker(Protocol):
    async def is_member(self, chat: str, user_id: int) -> bool: ...


# ---------------------------------------------------------------------------
# Development implementations
# ---------------------------------------------------------------------------
class LogNotifier:
    """Writes messages to the log instead of delivering them."""

    async def send(self, chat_id: int | str, text: str) -> bool:
        logger.info("Notify %s: %s", chat_id, text)
        return True


class AllowAllMembership:
    """Treats every user as a member of every chat."""

    async def is_member(self, chat: str, user_id: int) -> bool:
        return True


# ---------------------------------------------------------------------------
# Telegram Bot API
# ---------------------------------------------------------------------------
def _chat_param(chat: int | str) -> int | str:
    """Numeric ids pass through; public usernames get an ``@`` prefix."""
    if isinstance(chat, int):
        return chat
    text = str(chat).strip()
    if text.lstrip("-").isdigit():
        return int(text)
    return text if text.startswith("@") else f"@{text}"


class _TelegramClient:
    def __init__(
        self,
        token: str,
        *,
        api_base: str = DEFAULT_TELEGRAM_API_BASE,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 10,
    ) -> None:
        self._base = f"{api_base.rstrip('/')}/bot{token}"
        self._transport = transport
        self._timeout = timeout

    async def _call(self, method: str, payload: dict) -> dict | None:
        transport = self._transport or httpx.AsyncHTTPTransport(retries=1)
        async with httpx.AsyncClient(timeout=self._timeout, transport=transport) as client:
            resp = await client.post(f"{self._base}/{method}", json=payload)
        if resp.status_code != 200:
            logger.warning("Telegram %s failed: HTTP %d", method, resp.status_code)
            return None
        body = resp.json()
        if not body.get("ok"):
            logger.warning("Telegram %s failed: %s", method, body.get("description"))
            return None
        return body.get("result")


class TelegramNotifier(_TelegramClient):
    """Sends messages with ``sendMessage``."""

    async def send(self, chat_id: int | str, text: str) -> bool:
        try:
            result = await self._call(
                "sendMessage", {"chat_id": _chat_param(chat_id), "text": text},
            )
        except httpx.HTTPError as exc:
            logger.warning("Failed to notify %s: %s", chat_id, exc)
            return False
        return result is not None


class TelegramMembershipChecker(_TelegramClient):
    """Membership via ``getChatMember``.

    Any error counts as "not a member" so the member can retry once the
    platform is reachable again.
    """

    async def is_member(self, chat: str, user_id: int) -> bool:
        try:
            result = await self._call(
                "getChatMember", {"chat_id": _chat_param(chat), "user_id": user_id},
            )
        except httpx.HTTPError as exc:
            logger.warning("Membership check for %s in %s failed: %s", user_id, chat, exc)
            return False
        if result is None:
            return False
        return result.get("status") in MEMBER_STATUSES


async def is_member_of_all(checker: MembershipChecker, chats, user_id: int) -> bool:
    """True if *user_id* belongs to every chat in *chats* (vacuously for none)."""
    for chat in chats:
        if not await checker.is_member(chat, user_id):
            return False
    return True
