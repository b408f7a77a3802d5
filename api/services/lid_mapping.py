"""
LID mapping service.

Owns one ContactStore plus its collaborators (chat directory, seeds) and the
lifecycle around them:

    service = LidMappingService(store, directory=client)
    await service.start()        # load snapshot, apply seeds
    service.ingest_message(...)  # called by the host's event consumer
    await service.scan_all()
    await service.close()

Live events reach the store only through the ingest_* entry points. There is
no listener registration here; the host decides how events are delivered.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from api.services.backfill_scanner import (
    BackfillScanner,
    DEFAULT_CHAT_DELAY,
    DEFAULT_MESSAGE_LIMIT,
    ScanReport,
)
from api.services.contact_record import ContactRecord, ContactSource
from api.services.contact_store import ContactStore, NotInitializedError, PersistenceError
from api.services.directory import ChatDirectory
from api.services.jid_utils import is_group_jid
from config.seed_config import SeedContact

logger = logging.getLogger(__name__)


class ScanInProgressError(RuntimeError):
    """Raised when a scan is requested while another one is running."""


@dataclass(frozen=True)
class ContactUpdate:
    """One entry of a contacts upsert/update batch."""
    id: str
    display_name: Optional[str] = None


@dataclass(frozen=True)
class MessageNotification:
    """Sender details of a received message."""
    sender_id: str
    chat_id: str
    push_name: Optional[str] = None
    timestamp: Optional[datetime] = None


class LidMappingService:
    """Lifecycle, ingestion and scanning around a ContactStore."""

    def __init__(
        self,
        store: ContactStore,
        directory: Optional[ChatDirectory] = None,
        seeds: Iterable[SeedContact] = (),
        auto_save: bool = True,
        save_timeout: Optional[float] = 10.0,
        message_limit: int = DEFAULT_MESSAGE_LIMIT,
        chat_delay: float = DEFAULT_CHAT_DELAY,
    ):
        self.store = store
        self.directory = directory
        self.seeds = list(seeds)
        self.auto_save = auto_save
        self.save_timeout = save_timeout
        self.scanner = BackfillScanner(
            store,
            directory,
            message_limit=message_limit,
            chat_delay=chat_delay,
            save_timeout=save_timeout,
        )

        self._known_chats: set[str] = set()
        self._pending_saves: set[asyncio.Task] = set()
        self._scan_cancel: Optional[asyncio.Event] = None
        self._initialized = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise NotInitializedError("LID mapping service not started. Call start() first.")

    async def start(self) -> None:
        """
        Load the snapshot and apply seed mappings.

        Raises SnapshotLoadError if the snapshot file is corrupt.
        """
        if self._initialized:
            return
        if not self.store.is_loaded:
            await asyncio.to_thread(self.store.load)

        for seed in self.seeds:
            self.store.apply_seed(seed.phone, seed.linked_id, seed.display_name)

        self._initialized = True
        logger.info(
            f"LID mapping service initialized ({self.store.count()} contacts, "
            f"{len(self.seeds)} seeds)"
        )

    async def close(self) -> None:
        """Stop any running scan and wait for pending automatic saves."""
        if self._scan_cancel is not None:
            self._scan_cancel.set()
        if self._pending_saves:
            await asyncio.gather(*self._pending_saves, return_exceptions=True)
        self._initialized = False
        logger.info("LID mapping service closed")

    # ------------------------------------------------------------------
    # Ingestion entry points
    # ------------------------------------------------------------------

    def ingest_contacts(self, updates: Iterable[ContactUpdate]) -> list[ContactRecord]:
        """Merge a contacts upsert/update batch from the event source."""
        self._require_initialized()
        records = []
        for update in updates:
            if not update.id:
                continue
            records.append(self.store.observe_jid(
                update.id,
                ContactSource.CONTACT_EVENT,
                display_name=update.display_name,
            ))
        if records:
            self._schedule_save()
        return records

    def ingest_message(self, message: MessageNotification) -> Optional[ContactRecord]:
        """Merge the sender of a received message."""
        self._require_initialized()
        if not message.sender_id or not message.chat_id:
            return None

        self._known_chats.add(message.chat_id)
        record = self.store.observe_jid(
            message.sender_id,
            ContactSource.MESSAGE_EVENT,
            display_name=message.push_name,
            origin_group=message.chat_id if is_group_jid(message.chat_id) else None,
            origin_chat=message.chat_id,
            observed_at=message.timestamp,
        )
        self._schedule_save()
        return record

    def ingest_chats(self, chat_ids: Iterable[str]) -> int:
        """Remember chats announced by the event source for fallback scanning."""
        self._require_initialized()
        before = len(self._known_chats)
        self._known_chats.update(c for c in chat_ids if c)
        return len(self._known_chats) - before

    @property
    def known_chat_ids(self) -> list[str]:
        return sorted(self._known_chats)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _schedule_save(self) -> None:
        if not self.auto_save:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Called outside an event loop (scripts); save inline
            try:
                self.store.save()
            except PersistenceError as e:
                logger.error(f"Automatic save failed, keeping in-memory state: {e}")
            return

        task = loop.create_task(self._auto_save())
        self._pending_saves.add(task)
        task.add_done_callback(self._pending_saves.discard)

    async def _auto_save(self) -> None:
        try:
            await self.store.save_async(timeout=self.save_timeout)
        except PersistenceError as e:
            logger.error(f"Automatic save failed, keeping in-memory state: {e}")

    async def save(self) -> None:
        """Explicit save. PersistenceError propagates to the caller."""
        self._require_initialized()
        await self.store.save_async(timeout=self.save_timeout)

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    async def scan_all(self, cancel_event: Optional[asyncio.Event] = None) -> ScanReport:
        """
        Run a full backfill scan, then save.

        Raises:
            ScanInProgressError: another scan has not finished yet
        """
        self._require_initialized()
        if self._scan_cancel is not None:
            raise ScanInProgressError("A chat scan is already running")

        cancel = cancel_event or asyncio.Event()
        self._scan_cancel = cancel
        try:
            return await self.scanner.scan_all(self._known_chats, cancel_event=cancel)
        finally:
            if self._scan_cancel is cancel:
                self._scan_cancel = None

    def cancel_scan(self) -> bool:
        """Ask a running scan to stop at the next chat boundary."""
        if self._scan_cancel is None:
            return False
        self._scan_cancel.set()
        return True

    # ------------------------------------------------------------------
    # Queries and maintenance
    # ------------------------------------------------------------------

    def get(self, contact_id: str) -> Optional[ContactRecord]:
        self._require_initialized()
        return self.store.get(contact_id)

    def get_by_phone(self, phone: str) -> Optional[ContactRecord]:
        self._require_initialized()
        return self.store.get_by_phone(phone)

    def search_by_phone(self, phone: str) -> list[ContactRecord]:
        self._require_initialized()
        return self.store.search_by_phone(phone)

    def search_by_name(self, query: str) -> list[ContactRecord]:
        self._require_initialized()
        return self.store.search_by_name(query)

    def get_all(self) -> list[ContactRecord]:
        self._require_initialized()
        return self.store.get_all()

    def resolve_display_name(self, contact_id: str, fallback: Optional[str] = None) -> Optional[str]:
        self._require_initialized()
        return self.store.resolve_display_name(contact_id, fallback)

    def stats(self) -> dict:
        self._require_initialized()
        stats = self.store.stats()
        stats["known_chats"] = len(self._known_chats)
        return stats

    def export_csv(self, filename: Optional[str] = None):
        self._require_initialized()
        return self.store.export_csv(filename)

    def to_csv(self) -> str:
        self._require_initialized()
        return self.store.to_csv()

    def cleanup_duplicate_names(self) -> list:
        self._require_initialized()
        groups = self.store.cleanup_duplicate_names()
        if groups:
            self._schedule_save()
        return groups

    def link_lid_to_phone_contacts(self) -> int:
        self._require_initialized()
        linked = self.store.link_lid_to_phone_contacts()
        if linked:
            self._schedule_save()
        return linked
