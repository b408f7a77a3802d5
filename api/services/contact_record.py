"""
ContactRecord - resolved WhatsApp identity records.

One ContactRecord exists per observed identifier. Observations (from live
events and backfill scans) are merged into records by ContactStore.
"""
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from api.utils.datetime_utils import make_aware as _make_aware


class ContactSource(str, Enum):
    """Where an observation came from."""

    ROSTER_SCAN = "roster_scan"
    MESSAGE_EVENT = "message"
    CONTACT_EVENT = "contact_event"
    MANUAL_SEED = "manual_seed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Observation:
    """
    One normalized appearance of an identity.

    Built from a raw JID by ContactStore.observation_for(), or directly when
    the caller already knows the phone/LID pair (e.g. seeds).
    """

    id: str
    source: ContactSource
    phone_number: Optional[str] = None
    linked_id: Optional[str] = None
    display_name: Optional[str] = None
    origin_group: Optional[str] = None
    origin_chat: Optional[str] = None
    observed_at: datetime = field(default_factory=_utcnow)


@dataclass
class ContactRecord:
    """
    The resolved identity for one primary id.

    ``id`` never changes after creation. ``linked_id`` is never reset to None
    once learned. ``source`` is the source that established ``display_name``.
    """

    id: str
    phone_number: Optional[str] = None
    linked_id: Optional[str] = None
    display_name: Optional[str] = None
    source: ContactSource = ContactSource.CONTACT_EVENT
    origin_group: Optional[str] = None
    origin_chat: Optional[str] = None
    last_seen: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict:
        """Convert to dict for JSON serialization."""
        data = asdict(self)
        data["source"] = self.source.value
        data["last_seen"] = self.last_seen.isoformat() if self.last_seen else None
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ContactRecord":
        """Create ContactRecord from dict."""
        data = dict(data)
        if not data.get("id"):
            raise ValueError("contact record without id")
        data["source"] = ContactSource(data.get("source") or ContactSource.CONTACT_EVENT.value)
        last_seen = data.get("last_seen")
        if isinstance(last_seen, str):
            data["last_seen"] = _make_aware(datetime.fromisoformat(last_seen))
        elif last_seen is None:
            data["last_seen"] = _utcnow()
        known = set(cls.__dataclass_fields__)
        return cls(**{k: v for k, v in data.items() if k in known})
