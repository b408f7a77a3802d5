"""
Chat directory collaborator interface.

The backfill scanner needs three read-only operations from whatever owns the
WhatsApp session: enumerate chats, fetch a group roster, fetch recent messages.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol


@dataclass(frozen=True)
class RosterEntry:
    """A participant of a multi-party chat."""
    participant_id: str
    display_name: Optional[str] = None
    is_admin: bool = False


@dataclass(frozen=True)
class ChatMessage:
    """Sender details of a message fetched from chat history."""
    sender_id: str
    chat_id: str
    push_name: Optional[str] = None
    timestamp: Optional[datetime] = None
    from_me: bool = False


class ChatFetchError(Exception):
    """Raised when a roster or message fetch fails for one chat."""

    def __init__(self, chat_id: str, message: str):
        self.chat_id = chat_id
        super().__init__(f"{chat_id}: {message}")


class ChatDirectory(Protocol):
    """Read-only view of the chats known to the WhatsApp session."""

    async def list_chat_ids(self) -> Optional[list[str]]:
        """All known chat ids, or None when enumeration is unavailable."""
        ...

    async def fetch_roster(self, chat_id: str) -> list[RosterEntry]:
        ...

    async def fetch_recent_messages(self, chat_id: str, limit: int) -> list[ChatMessage]:
        ...
