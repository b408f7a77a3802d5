"""
Tests for WhatsApp JID utilities.
"""
import pytest

from api.services.jid_utils import (
    AmbiguousJid,
    LinkedJid,
    PhoneJid,
    classify_jid,
    extract_linked_id,
    extract_phone,
    has_lid_marker,
    is_group_jid,
    lid_jid,
    phone_jid,
    strip_server,
)

pytestmark = pytest.mark.unit

PHONE = "6285712612218"
LID = "80444922015783"


class TestExtractPhone:
    """Tests for extract_phone function."""

    def test_phone_jid(self):
        assert extract_phone(f"{PHONE}@s.whatsapp.net") == PHONE

    def test_device_suffix_colon(self):
        assert extract_phone(f"{PHONE}:12@s.whatsapp.net") == PHONE

    def test_device_suffix_dot(self):
        """Agent/device forms use '.' as well as ':'."""
        assert extract_phone(f"{PHONE}.0:12@s.whatsapp.net") == PHONE

    def test_bare_digits(self):
        assert extract_phone(PHONE) == PHONE

    def test_bare_lid_is_phone_equivalent_key(self):
        """Without a learned mapping the LID digits stand in for the phone."""
        assert extract_phone(f"{LID}@lid") == LID

    def test_empty_id(self):
        assert extract_phone("") is None
        assert extract_phone(None) is None

    def test_unresolvable_returns_stripped(self):
        assert extract_phone("status@broadcast") == "status"
        assert extract_phone("abc:def@s.whatsapp.net") == "abc:def"

    def test_cache_hit_on_raw_id(self):
        cache = {f"{LID}@lid": PHONE}
        assert extract_phone(f"{LID}@lid", cache) == PHONE

    def test_cache_hit_on_stripped_id(self):
        cache = {LID: PHONE}
        assert extract_phone(f"{LID}@lid", cache) == PHONE

    def test_cache_miss_falls_through(self):
        cache = {"999": "111"}
        assert extract_phone(f"{PHONE}@s.whatsapp.net", cache) == PHONE


class TestExtractLinkedId:
    """Tests for extract_linked_id function."""

    def test_lid_marker(self):
        assert extract_linked_id(f"{LID}@lid") == LID

    def test_plain_phone_jid_has_no_linked_id(self):
        assert extract_linked_id(f"{PHONE}@s.whatsapp.net") is None

    def test_device_suffix_is_linked_id(self):
        assert extract_linked_id(f"{PHONE}:12@s.whatsapp.net") == f"{PHONE}:12"

    def test_empty(self):
        assert extract_linked_id("") is None


class TestClassifyJid:
    """Tests for classify_jid function."""

    def test_phone(self):
        kind = classify_jid(f"{PHONE}@s.whatsapp.net")
        assert isinstance(kind, PhoneJid)
        assert kind.phone == PHONE

    def test_lid_without_mapping(self):
        kind = classify_jid(f"{LID}@lid")
        assert isinstance(kind, LinkedJid)
        assert kind.linked_id == LID
        assert kind.phone == LID

    def test_lid_with_mapping(self):
        kind = classify_jid(f"{LID}@lid", {LID: PHONE})
        assert isinstance(kind, LinkedJid)
        assert kind.linked_id == LID
        assert kind.phone == PHONE

    def test_ambiguous(self):
        kind = classify_jid("status@broadcast")
        assert isinstance(kind, AmbiguousJid)
        assert kind.key == "status"

    def test_empty(self):
        assert classify_jid("") is None


class TestHelpers:
    """Tests for JID construction helpers."""

    def test_builders(self):
        assert phone_jid(PHONE) == f"{PHONE}@s.whatsapp.net"
        assert lid_jid(LID) == f"{LID}@lid"

    def test_strip_server(self):
        assert strip_server(f"{PHONE}@s.whatsapp.net") == PHONE
        assert strip_server(PHONE) == PHONE

    def test_markers(self):
        assert has_lid_marker(f"{LID}@lid")
        assert not has_lid_marker(f"{PHONE}@s.whatsapp.net")
        assert is_group_jid("120363041234567890@g.us")
        assert not is_group_jid(f"{PHONE}@s.whatsapp.net")
        assert not is_group_jid("")
