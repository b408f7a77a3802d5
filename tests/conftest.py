"""
Pytest configuration and shared fixtures for lidmap tests.

Test Categories:
- unit: Fast tests with no external dependencies (< 100ms each)
- integration: Tests requiring a running bridge or API server

Run categories:
- pytest -m unit              # Fast unit tests only
- pytest -m "not integration" # Skip integration tests
- pytest                      # All tests
"""
import pytest

from api.services.contact_store import ContactStore
from api.services.directory import ChatFetchError, ChatMessage, RosterEntry


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Fast unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (bridge or server required)")


@pytest.fixture
def contacts_file(tmp_path):
    """Snapshot path inside a temp directory."""
    return tmp_path / "data" / "contacts.json"


@pytest.fixture
def store(contacts_file):
    """Loaded, empty contact store backed by a temp file."""
    store = ContactStore(contacts_file)
    store.load()
    return store


class FakeDirectory:
    """In-memory ChatDirectory for scanner tests."""

    def __init__(self, chats=None, rosters=None, messages=None, failing=()):
        self.chats = chats
        self.rosters = rosters or {}
        self.messages = messages or {}
        self.failing = set(failing)
        self.roster_calls = []
        self.message_calls = []

    async def list_chat_ids(self):
        return None if self.chats is None else list(self.chats)

    async def fetch_roster(self, chat_id):
        self.roster_calls.append(chat_id)
        if chat_id in self.failing:
            raise ChatFetchError(chat_id, "roster unavailable")
        return [RosterEntry(participant_id=pid, display_name=name)
                for pid, name in self.rosters.get(chat_id, [])]

    async def fetch_recent_messages(self, chat_id, limit):
        self.message_calls.append((chat_id, limit))
        if chat_id in self.failing:
            raise ChatFetchError(chat_id, "history unavailable")
        return [ChatMessage(sender_id=sender, chat_id=chat_id, push_name=name)
                for sender, name in self.messages.get(chat_id, [])][:limit]


@pytest.fixture
def fake_directory():
    return FakeDirectory
