"""
WhatsApp JID utilities for lidmap.

A contact shows up under several identifier shapes:

    6285712612218@s.whatsapp.net     phone-routed
    80444922015783@lid               linked id (LID)
    6285712612218:12@s.whatsapp.net  phone with device suffix
    6285712612218.0:12@...           phone with agent/device suffix
    6285712612218                    bare digits

Provides extraction of the phone and LID parts and a small classifier that the
merge path consumes instead of re-parsing strings.
"""
import re
from dataclasses import dataclass
from typing import Mapping, Optional, Union

PHONE_SERVER = "s.whatsapp.net"
LID_SERVER = "lid"
GROUP_SERVER = "g.us"

_LEADING_DIGITS = re.compile(r"^(\d+)[:.]")


@dataclass(frozen=True)
class PhoneJid:
    """Identifier that resolves to a phone number."""
    raw: str
    phone: str


@dataclass(frozen=True)
class LinkedJid:
    """Identifier carrying a linked id, plus the phone-equivalent key if any."""
    raw: str
    linked_id: str
    phone: Optional[str] = None


@dataclass(frozen=True)
class AmbiguousJid:
    """Identifier that is neither; ``key`` is the opaque server-stripped form."""
    raw: str
    key: str


JidClass = Union[PhoneJid, LinkedJid, AmbiguousJid]


def strip_server(jid: str) -> str:
    """Remove the ``@server`` suffix."""
    return jid.split("@", 1)[0]


def has_lid_marker(jid: str) -> bool:
    """Check if the JID is routed through the LID server."""
    return jid.endswith(f"@{LID_SERVER}")


def is_group_jid(jid: str) -> bool:
    """Check if the JID is a multi-party chat."""
    return bool(jid) and jid.endswith(f"@{GROUP_SERVER}")


def phone_jid(phone: str) -> str:
    """Build the phone-suffixed JID for a phone number."""
    return f"{phone}@{PHONE_SERVER}"


def lid_jid(linked_id: str) -> str:
    """Build the LID-suffixed JID for a linked id."""
    return f"{linked_id}@{LID_SERVER}"


def extract_phone(jid: str, cache: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """
    Extract the phone number (or phone-equivalent key) from a JID.

    Args:
        jid: Raw WhatsApp identifier
        cache: Previously learned id -> phone mapping, checked first

    Returns:
        Phone digits, the stripped id when it cannot be resolved, or None for
        an empty id

    Examples:
        >>> extract_phone("6285712612218@s.whatsapp.net")
        '6285712612218'
        >>> extract_phone("6285712612218:12@s.whatsapp.net")
        '6285712612218'
        >>> extract_phone("80444922015783@lid", {"80444922015783": "6285712612218"})
        '6285712612218'
    """
    if not jid:
        return None

    if cache and jid in cache:
        return cache[jid]

    clean = strip_server(jid)

    if cache and clean in cache:
        return cache[clean]

    if ":" in clean or "." in clean:
        match = _LEADING_DIGITS.match(clean)
        if match:
            return match.group(1)
        return clean

    # Bare digits are a phone number. A bare LID is usable as a phone-equivalent
    # key until a real mapping is learned. Anything else is an opaque key.
    return clean


def extract_linked_id(jid: str) -> Optional[str]:
    """
    Extract the linked id from a JID.

    Returns:
        The server-stripped id when it has a device/agent separator or the JID
        carries the LID marker, else None
    """
    if not jid:
        return None

    clean = strip_server(jid)
    if ":" in clean or "." in clean:
        return clean
    if has_lid_marker(jid):
        return clean
    return None


def classify_jid(jid: str, cache: Optional[Mapping[str, str]] = None) -> Optional[JidClass]:
    """
    Classify a JID into PhoneJid, LinkedJid or AmbiguousJid.

    Returns None for an empty identifier.
    """
    if not jid:
        return None

    phone = extract_phone(jid, cache)
    linked_id = extract_linked_id(jid)

    if linked_id:
        return LinkedJid(raw=jid, linked_id=linked_id, phone=phone)
    if phone and phone.isdigit():
        return PhoneJid(raw=jid, phone=phone)
    return AmbiguousJid(raw=jid, key=phone or strip_server(jid))
