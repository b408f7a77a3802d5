"""
HTTP client for the WhatsApp bridge.

The bridge is the process that owns the WhatsApp session. It exposes the chat
directory over HTTP:

    GET /api/chats                              -> {"chats": [{"id": ...}, ...]}
    GET /api/groups/{chat_id}/participants      -> {"participants": [{"id", "name", "admin"}]}
    GET /api/chats/{chat_id}/messages?limit=N   -> {"messages": [{"sender", "pushName", "timestamp", "fromMe"}]}

Implements the ChatDirectory protocol used by the backfill scanner.
"""
import logging
from typing import Optional
from urllib.parse import quote

import httpx

from api.services.directory import ChatFetchError, ChatMessage, RosterEntry
from api.services.resilience import (
    BRIDGE_API_RETRY,
    RetryableBridgeError,
    ServiceUnavailableError,
    is_retryable_status,
    retry_async,
)
from api.utils.datetime_utils import parse_message_timestamp

logger = logging.getLogger(__name__)


class BridgeDirectoryClient:
    """ChatDirectory backed by the bridge's HTTP API."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            base_url: Bridge base URL (e.g. http://localhost:8192)
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @retry_async(config=BRIDGE_API_RETRY)
    async def _get_json(self, path: str, params: Optional[dict] = None) -> dict:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                resp = await client.get(path, params=params)
        except httpx.TransportError as e:
            raise RetryableBridgeError("bridge", f"GET {path} failed: {e}") from e

        if resp.status_code != 200:
            message = f"GET {path} returned {resp.status_code}: {resp.text[:200]}"
            if is_retryable_status(resp.status_code):
                raise RetryableBridgeError("bridge", message, resp.status_code)
            raise ServiceUnavailableError("bridge", message, resp.status_code)

        try:
            data = resp.json()
        except ValueError as e:
            raise ServiceUnavailableError("bridge", f"GET {path} returned invalid JSON") from e
        if not isinstance(data, dict):
            raise ServiceUnavailableError("bridge", f"GET {path} returned {type(data).__name__}")
        return data

    async def list_chat_ids(self) -> Optional[list[str]]:
        """
        Enumerate chats known to the bridge.

        Returns None when the bridge has no chat store (HTTP 404/501), so the
        scanner can fall back to chats seen through live events.
        """
        try:
            data = await self._get_json("/api/chats")
        except ServiceUnavailableError as e:
            if e.status_code in (404, 501):
                logger.info("Bridge has no chat store, chat enumeration unavailable")
                return None
            raise

        chat_ids = []
        for chat in data.get("chats") or []:
            chat_id = chat.get("id") if isinstance(chat, dict) else chat
            if chat_id:
                chat_ids.append(str(chat_id))
        return chat_ids

    async def fetch_roster(self, chat_id: str) -> list[RosterEntry]:
        try:
            data = await self._get_json(f"/api/groups/{quote(chat_id, safe='')}/participants")
        except ServiceUnavailableError as e:
            raise ChatFetchError(chat_id, f"roster fetch failed: {e}") from e

        entries = []
        for participant in data.get("participants") or []:
            participant_id = participant.get("id")
            if not participant_id:
                continue
            entries.append(RosterEntry(
                participant_id=participant_id,
                display_name=participant.get("notify") or participant.get("name"),
                is_admin=bool(participant.get("admin")),
            ))
        return entries

    async def fetch_recent_messages(self, chat_id: str, limit: int) -> list[ChatMessage]:
        try:
            data = await self._get_json(
                f"/api/chats/{quote(chat_id, safe='')}/messages",
                params={"limit": limit},
            )
        except ServiceUnavailableError as e:
            raise ChatFetchError(chat_id, f"message fetch failed: {e}") from e

        messages = []
        for message in (data.get("messages") or [])[:limit]:
            sender = message.get("participant") or message.get("sender")
            if not sender:
                continue
            messages.append(ChatMessage(
                sender_id=sender,
                chat_id=chat_id,
                push_name=message.get("pushName") or message.get("verifiedBizName"),
                timestamp=parse_message_timestamp(message.get("timestamp")),
                from_me=bool(message.get("fromMe")),
            ))
        return messages
