"""
Tests for the WhatsApp bridge HTTP client.

Uses httpx.MockTransport; no bridge needs to be running.
"""
import pytest
from datetime import datetime, timezone

import httpx

from api.services.bridge_client import BridgeDirectoryClient
from api.services.directory import ChatFetchError
from api.services.resilience import ServiceUnavailableError
from api.utils.datetime_utils import parse_message_timestamp

pytestmark = pytest.mark.unit

GROUP = "120363041234567890@g.us"


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    """Skip retry sleeps."""
    async def instant(delay):
        return None
    monkeypatch.setattr("api.services.resilience.asyncio.sleep", instant)


def _client(handler) -> BridgeDirectoryClient:
    return BridgeDirectoryClient("http://bridge.test/", transport=httpx.MockTransport(handler))


class TestListChatIds:
    """Tests for chat enumeration."""

    @pytest.mark.asyncio
    async def test_parses_chat_ids(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/chats"
            return httpx.Response(200, json={"chats": [{"id": GROUP}, "628111@s.whatsapp.net", {"name": "x"}]})

        assert await _client(handler).list_chat_ids() == [GROUP, "628111@s.whatsapp.net"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [404, 501])
    async def test_no_chat_store_returns_none(self, status):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status, text="no store")

        assert await _client(handler).list_chat_ids() is None

    @pytest.mark.asyncio
    async def test_retries_server_errors(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(503, text="busy")
            return httpx.Response(200, json={"chats": [{"id": GROUP}]})

        assert await _client(handler).list_chat_ids() == [GROUP]
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_connection_error_after_retries(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ServiceUnavailableError):
            await _client(handler).list_chat_ids()
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_read_error_after_retries(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            raise httpx.ReadError("connection reset", request=request)

        with pytest.raises(ServiceUnavailableError):
            await _client(handler).list_chat_ids()
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>")

        with pytest.raises(ServiceUnavailableError):
            await _client(handler).list_chat_ids()


class TestFetchRoster:
    """Tests for group participant fetches."""

    @pytest.mark.asyncio
    async def test_parses_participants(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path.endswith("/participants")
            assert "120363041234567890" in str(request.url)
            return httpx.Response(200, json={"participants": [
                {"id": "80444922015783@lid", "notify": "Widji", "admin": "admin"},
                {"id": "628111@s.whatsapp.net", "name": "Ann"},
                {"notify": "No id"},
            ]})

        roster = await _client(handler).fetch_roster(GROUP)

        assert [e.participant_id for e in roster] == ["80444922015783@lid", "628111@s.whatsapp.net"]
        assert roster[0].display_name == "Widji"
        assert roster[0].is_admin
        assert roster[1].display_name == "Ann"
        assert not roster[1].is_admin

    @pytest.mark.asyncio
    async def test_failure_becomes_chat_fetch_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(403, text="forbidden")

        with pytest.raises(ChatFetchError) as exc_info:
            await _client(handler).fetch_roster(GROUP)
        assert exc_info.value.chat_id == GROUP


class TestFetchRecentMessages:
    """Tests for message history fetches."""

    @pytest.mark.asyncio
    async def test_parses_messages(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["limit"] == "2"
            return httpx.Response(200, json={"messages": [
                {"participant": "628111@s.whatsapp.net", "pushName": "Ann", "timestamp": 1714557600},
                {"sender": "628222@s.whatsapp.net", "fromMe": True},
                {"pushName": "No sender"},
                {"sender": "628333@s.whatsapp.net"},
            ]})

        messages = await _client(handler).fetch_recent_messages(GROUP, limit=2)

        assert [m.sender_id for m in messages] == ["628111@s.whatsapp.net", "628222@s.whatsapp.net"]
        assert messages[0].push_name == "Ann"
        assert messages[0].chat_id == GROUP
        assert messages[0].timestamp == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
        assert messages[1].from_me

    @pytest.mark.asyncio
    async def test_failure_becomes_chat_fetch_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(ChatFetchError):
            await _client(handler).fetch_recent_messages(GROUP, limit=10)


class TestParseMessageTimestamp:
    """Tests for parse_message_timestamp."""

    def test_unix_seconds(self):
        expected = datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
        assert parse_message_timestamp(1714557600) == expected
        assert parse_message_timestamp("1714557600") == expected

    def test_iso_string(self):
        assert parse_message_timestamp("2024-05-01T10:00:00Z") == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
        assert parse_message_timestamp("2024-05-01T10:00:00").tzinfo is not None

    def test_invalid(self):
        assert parse_message_timestamp(None) is None
        assert parse_message_timestamp("") is None
        assert parse_message_timestamp("yesterday") is None
