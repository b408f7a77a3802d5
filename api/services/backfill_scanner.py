"""
Backfill scanner: bulk reconciliation over the chat directory.

For every chat the directory knows about (or, when it cannot enumerate, every
chat seen through live events):

1. Group chats: fetch the roster, merge each participant as a roster_scan
   observation.
2. Fetch up to ``message_limit`` recent messages, merge each sender as a
   message observation.

Chats whose fetch fails are logged and skipped. Coverage is best-effort. A
completed (or cancelled) scan ends with a durable save.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Optional

from api.services.contact_record import ContactSource
from api.services.contact_store import ContactStore, NotInitializedError
from api.services.directory import ChatDirectory, ChatFetchError
from api.services.jid_utils import is_group_jid
from api.services.resilience import ServiceUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_MESSAGE_LIMIT = 50
DEFAULT_CHAT_DELAY = 0.1  # seconds


@dataclass
class ScanReport:
    """Aggregate counters of one scan."""
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    chats_total: int = 0
    chats_scanned: int = 0
    chats_failed: int = 0
    failed_chat_ids: list[str] = field(default_factory=list)
    observations: int = 0
    contacts_total: int = 0
    links_mapped: int = 0
    cancelled: bool = False

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "chats_total": self.chats_total,
            "chats_scanned": self.chats_scanned,
            "chats_failed": self.chats_failed,
            "failed_chat_ids": list(self.failed_chat_ids),
            "observations": self.observations,
            "contacts_total": self.contacts_total,
            "links_mapped": self.links_mapped,
            "cancelled": self.cancelled,
        }


class BackfillScanner:
    """Drives ContactStore merges from the chat directory."""

    def __init__(
        self,
        store: ContactStore,
        directory: Optional[ChatDirectory] = None,
        message_limit: int = DEFAULT_MESSAGE_LIMIT,
        chat_delay: float = DEFAULT_CHAT_DELAY,
        save_timeout: Optional[float] = None,
    ):
        self.store = store
        self.directory = directory
        self.message_limit = message_limit
        self.chat_delay = chat_delay
        self.save_timeout = save_timeout

    async def _enumerate_chats(self, known_chat_ids: Iterable[str]) -> list[str]:
        chat_ids = None
        if self.directory is not None:
            try:
                chat_ids = await self.directory.list_chat_ids()
            except ServiceUnavailableError as e:
                logger.warning(f"Chat enumeration failed, falling back to chats seen in events: {e}")

        if chat_ids is None:
            chat_ids = list(known_chat_ids)
            logger.info(f"Found {len(chat_ids)} chats from events to scan")
        else:
            logger.info(f"Found {len(chat_ids)} chats in directory to scan")

        # Deduplicate, keep order
        return list(dict.fromkeys(chat_ids))

    async def scan_chat(self, chat_id: str) -> int:
        """
        Scan one chat. Raises ChatFetchError if a fetch fails.

        Returns:
            Number of observations merged
        """
        if self.directory is None:
            raise ChatFetchError(chat_id, "no chat directory attached")

        merged = 0
        if is_group_jid(chat_id):
            roster = await self.directory.fetch_roster(chat_id)
            for entry in roster:
                self.store.observe_jid(
                    entry.participant_id,
                    ContactSource.ROSTER_SCAN,
                    display_name=entry.display_name,
                    origin_group=chat_id,
                )
                merged += 1
            logger.info(f"Scanned {len(roster)} participants in group {chat_id}")

        messages = await self.directory.fetch_recent_messages(chat_id, self.message_limit)
        for message in messages[:self.message_limit]:
            if not message.sender_id or message.from_me:
                continue
            self.store.observe_jid(
                message.sender_id,
                ContactSource.MESSAGE_EVENT,
                display_name=message.push_name,
                origin_group=chat_id if is_group_jid(chat_id) else None,
                origin_chat=chat_id,
                observed_at=message.timestamp,
            )
            merged += 1
        return merged

    async def scan_all(
        self,
        known_chat_ids: Iterable[str] = (),
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ScanReport:
        """
        Scan every chat and save the store.

        Args:
            known_chat_ids: Chats seen through live events (fallback enumeration)
            cancel_event: Set to stop the scan at the next chat boundary

        Returns:
            ScanReport with aggregate counters
        """
        if not self.store.is_loaded:
            raise NotInitializedError("Contact store not loaded. Call load() first.")

        report = ScanReport()
        logger.info("Starting comprehensive chat scan...")

        chat_ids = await self._enumerate_chats(known_chat_ids)
        report.chats_total = len(chat_ids)
        if not chat_ids:
            logger.warning("No chats found. Chat scanning will happen as messages are received.")
            report.finished_at = datetime.now(timezone.utc)
            return report

        for index, chat_id in enumerate(chat_ids):
            if cancel_event is not None and cancel_event.is_set():
                logger.info(f"Chat scan cancelled after {index} of {len(chat_ids)} chats")
                report.cancelled = True
                break

            try:
                report.observations += await self.scan_chat(chat_id)
                report.chats_scanned += 1
            except NotInitializedError:
                raise
            except (ChatFetchError, ServiceUnavailableError) as e:
                logger.warning(f"Error scanning chat {chat_id}, skipping: {e}")
                report.chats_failed += 1
                report.failed_chat_ids.append(chat_id)
            except Exception as e:
                # Unknown directory errors skip the chat too
                logger.error(f"Unexpected error scanning chat {chat_id}, skipping: {e}")
                report.chats_failed += 1
                report.failed_chat_ids.append(chat_id)

            if self.chat_delay > 0 and index < len(chat_ids) - 1:
                await asyncio.sleep(self.chat_delay)

        report.finished_at = datetime.now(timezone.utc)
        self.store.record_scan(report.chats_scanned, report.started_at)
        stats = self.store.stats()
        report.contacts_total = stats["total_contacts"]
        report.links_mapped = stats["mapped_links"]

        await self.store.save_async(timeout=self.save_timeout)

        logger.info(
            f"Chat scan completed: {report.chats_scanned} chats scanned, "
            f"{report.chats_failed} failed, {report.contacts_total} contacts, "
            f"{report.links_mapped} mapped LIDs"
        )
        return report
