"""
Tests for push-name conflict arbitration and duplicate-name cleanup planning.
"""
import pytest

from api.services.contact_arbiter import arbitrate_display_name, plan_duplicate_cleanup
from api.services.contact_record import ContactRecord, ContactSource

pytestmark = pytest.mark.unit


def _record(contact_id="x@s.whatsapp.net", name=None, source=ContactSource.CONTACT_EVENT, **kwargs):
    return ContactRecord(id=contact_id, display_name=name, source=source, **kwargs)


class TestArbitrateDisplayName:
    """Tests for arbitrate_display_name."""

    def test_new_identity_takes_incoming(self):
        decision = arbitrate_display_name(None, "Bob", ContactSource.CONTACT_EVENT)
        assert decision.name == "Bob"
        assert decision.source == ContactSource.CONTACT_EVENT
        assert not decision.conflict

    def test_new_identity_without_name(self):
        decision = arbitrate_display_name(None, None, ContactSource.ROSTER_SCAN)
        assert decision.name is None

    def test_incoming_null_never_clears(self):
        existing = _record(name="Bob", source=ContactSource.CONTACT_EVENT)
        decision = arbitrate_display_name(existing, None, ContactSource.MESSAGE_EVENT)
        assert decision.name == "Bob"
        assert decision.source == ContactSource.CONTACT_EVENT
        assert decision.kept_existing

    def test_message_beats_contact_event(self):
        existing = _record(name="Robert", source=ContactSource.MESSAGE_EVENT)
        decision = arbitrate_display_name(existing, "Bobby", ContactSource.CONTACT_EVENT)
        assert decision.name == "Robert"
        assert decision.conflict
        assert decision.kept_existing

    def test_message_replaces_contact_event(self):
        existing = _record(name="Bob", source=ContactSource.CONTACT_EVENT)
        decision = arbitrate_display_name(existing, "Robert", ContactSource.MESSAGE_EVENT)
        assert decision.name == "Robert"
        assert decision.source == ContactSource.MESSAGE_EVENT
        assert decision.conflict

    def test_newer_message_name_wins(self):
        existing = _record(name="Robert", source=ContactSource.MESSAGE_EVENT)
        decision = arbitrate_display_name(existing, "Rob", ContactSource.MESSAGE_EVENT)
        assert decision.name == "Rob"

    def test_roster_scan_can_replace_message_name(self):
        existing = _record(name="Robert", source=ContactSource.MESSAGE_EVENT)
        decision = arbitrate_display_name(existing, "Rob", ContactSource.ROSTER_SCAN)
        assert decision.name == "Rob"
        assert decision.source == ContactSource.ROSTER_SCAN

    @pytest.mark.parametrize("source", list(ContactSource))
    def test_manual_seed_is_terminal(self, source):
        existing = _record(name="Widji", source=ContactSource.MANUAL_SEED)
        decision = arbitrate_display_name(existing, "Someone Else", source)
        assert decision.name == "Widji"
        assert decision.source == ContactSource.MANUAL_SEED

    def test_equal_names_keep_stronger_source(self):
        existing = _record(name="Bob", source=ContactSource.MESSAGE_EVENT)
        decision = arbitrate_display_name(existing, "Bob", ContactSource.CONTACT_EVENT)
        assert decision.source == ContactSource.MESSAGE_EVENT

        existing = _record(name="Bob", source=ContactSource.CONTACT_EVENT)
        decision = arbitrate_display_name(existing, "Bob", ContactSource.MESSAGE_EVENT)
        assert decision.source == ContactSource.MESSAGE_EVENT
        assert not decision.conflict


class TestPlanDuplicateCleanup:
    """Tests for plan_duplicate_cleanup."""

    def test_unique_names_produce_nothing(self):
        records = [_record("a@s.whatsapp.net", "Ann"), _record("b@s.whatsapp.net", "Ben")]
        assert plan_duplicate_cleanup(records) == []

    def test_message_holder_keeps_name(self):
        records = [
            _record("a@s.whatsapp.net", "Ann", ContactSource.CONTACT_EVENT, phone_number="1"),
            _record("b@s.whatsapp.net", "Ann", ContactSource.MESSAGE_EVENT, phone_number="2"),
            _record("c@s.whatsapp.net", "Ann", ContactSource.ROSTER_SCAN, phone_number="3"),
        ]
        groups = plan_duplicate_cleanup(records)
        assert len(groups) == 1
        assert groups[0].name == "Ann"
        assert groups[0].keeper_id == "b@s.whatsapp.net"
        assert groups[0].cleared_ids == ["a@s.whatsapp.net", "c@s.whatsapp.net"]

    def test_no_message_holder_is_skipped(self):
        records = [
            _record("a@s.whatsapp.net", "Ann", ContactSource.CONTACT_EVENT, phone_number="1"),
            _record("b@s.whatsapp.net", "Ann", ContactSource.CONTACT_EVENT, phone_number="2"),
        ]
        assert plan_duplicate_cleanup(records) == []

    def test_paired_views_are_not_cleared(self):
        """The phone record and LID record of one contact legitimately share a name."""
        records = [
            _record("628@s.whatsapp.net", "Widji", ContactSource.MESSAGE_EVENT,
                    phone_number="628", linked_id="804"),
            _record("804@lid", "Widji", ContactSource.CONTACT_EVENT,
                    phone_number="628", linked_id="804"),
        ]
        assert plan_duplicate_cleanup(records) == []
