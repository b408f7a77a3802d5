"""
ContactStore - in-memory identity indices with JSON snapshot persistence.

Holds every ContactRecord plus three mapping tables:

- linked_id_to_phone: LID (and aliased raw ids) -> phone
- phone_to_linked_id: phone -> LID
- display_name_by_key: raw id / LID / paired JID -> push name

All observations, whether from live events or backfill scans, go through
observe(). Queries read only from the store.

The snapshot is a single JSON document written atomically (temp file +
rename). Writers are serialized by a dedicated lock so that an automatic save
and an explicit save can never interleave on the same file.
"""
import asyncio
import csv
import io
import json
import logging
import os
import shutil
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from api.services.contact_arbiter import arbitrate_display_name, plan_duplicate_cleanup
from api.services.contact_record import ContactRecord, ContactSource, Observation
from api.services.jid_utils import (
    AmbiguousJid,
    LinkedJid,
    PhoneJid,
    PHONE_SERVER,
    classify_jid,
    extract_phone,
    lid_jid,
    phone_jid,
)
from api.utils.datetime_utils import make_aware as _make_aware

logger = logging.getLogger(__name__)

CSV_HEADER = "ID,Phone Number,LinkedID,Display Name,Source,Last Seen"


class NotInitializedError(RuntimeError):
    """Raised when the store is used before load() (or the service before start())."""


class PersistenceError(Exception):
    """Raised when the snapshot cannot be written."""


class SnapshotLoadError(Exception):
    """Raised when an existing snapshot file cannot be parsed."""


class ContactStore:
    """
    Storage layer for ContactRecord objects and the LID/phone/name mappings.

    Lifecycle: construct, load() once at startup, then observe()/query.
    """

    def __init__(
        self,
        storage_path,
        backup_path: Optional[str] = None,
        backup_keep: int = 2,
    ):
        """
        Initialize the contact store.

        Args:
            storage_path: Path to the JSON snapshot
            backup_path: Directory for rolling backups (None/empty disables)
            backup_keep: Number of backups to retain
        """
        self.storage_path = Path(storage_path)
        self.backup_path = Path(backup_path) if backup_path else None
        self.backup_keep = backup_keep

        self._records: dict[str, ContactRecord] = {}
        self.linked_id_to_phone: dict[str, str] = {}
        self.phone_to_linked_id: dict[str, str] = {}
        self.display_name_by_key: dict[str, str] = {}

        # Secondary indices (derived from records, rebuilt on load)
        self._phone_index: dict[str, set[str]] = {}
        self._linked_index: dict[str, set[str]] = {}

        self.chats_scanned = 0
        self.last_scan_time: Optional[datetime] = None

        self._loaded = False
        self._write_lock = threading.Lock()
        self._save_lock = asyncio.Lock()
        # Snapshot sequence numbers; an older snapshot never replaces a newer file
        self._snapshot_seq = 0
        self._written_seq = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    def _require_loaded(self) -> None:
        if not self._loaded:
            raise NotInitializedError("Contact store not loaded. Call load() first.")

    def load(self) -> None:
        """
        Merge the snapshot file into the (empty) in-memory indices.

        A missing or empty file is a fresh start. A malformed file raises
        SnapshotLoadError.
        """
        if not self.storage_path.exists():
            logger.info(f"No existing contacts file at {self.storage_path}, starting fresh")
            self._loaded = True
            return

        if self.storage_path.stat().st_size == 0:
            logger.warning(f"Empty contacts file at {self.storage_path}, starting fresh")
            self._loaded = True
            return

        try:
            with open(self.storage_path, "r", encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("snapshot root must be an object")

            records = [ContactRecord.from_dict(item) for item in data.get("records") or []]
            linked_to_phone = dict(data.get("linked_id_to_phone") or {})
            phone_to_linked = dict(data.get("phone_to_linked_id") or {})
            names = dict(data.get("display_name_by_key") or {})
            metadata = data.get("metadata") or {}
            last_scan = metadata.get("last_scan_time")
            last_scan_time = _make_aware(datetime.fromisoformat(last_scan)) if last_scan else None
            chats_scanned = int(metadata.get("chats_scanned") or 0)
        except (json.JSONDecodeError, ValueError, TypeError, KeyError, AttributeError) as e:
            raise SnapshotLoadError(f"Malformed contacts file {self.storage_path}: {e}") from e

        for record in records:
            self._records[record.id] = record
            self._index_record(record)
        self.linked_id_to_phone.update(linked_to_phone)
        self.phone_to_linked_id.update(phone_to_linked)
        self.display_name_by_key.update(names)
        self.chats_scanned = chats_scanned
        self.last_scan_time = last_scan_time

        self._loaded = True
        logger.info(f"Loaded {len(self._records)} contacts from {self.storage_path}")

    # ------------------------------------------------------------------
    # Indices
    # ------------------------------------------------------------------

    def _index_record(self, record: ContactRecord) -> None:
        if record.phone_number:
            self._phone_index.setdefault(record.phone_number, set()).add(record.id)
        if record.linked_id:
            self._linked_index.setdefault(record.linked_id, set()).add(record.id)

    def _unindex_record(self, record: ContactRecord) -> None:
        if record.phone_number:
            ids = self._phone_index.get(record.phone_number)
            if ids:
                ids.discard(record.id)
                if not ids:
                    del self._phone_index[record.phone_number]
        if record.linked_id:
            ids = self._linked_index.get(record.linked_id)
            if ids:
                ids.discard(record.id)
                if not ids:
                    del self._linked_index[record.linked_id]

    # ------------------------------------------------------------------
    # Merge path
    # ------------------------------------------------------------------

    def extract_phone(self, jid: str) -> Optional[str]:
        """Extract a phone using learned LID mappings as a direct-hit cache."""
        return extract_phone(jid, self.linked_id_to_phone)

    def observation_for(
        self,
        jid: str,
        source: ContactSource,
        display_name: Optional[str] = None,
        origin_group: Optional[str] = None,
        origin_chat: Optional[str] = None,
        observed_at: Optional[datetime] = None,
    ) -> Observation:
        """Build an Observation for a raw JID using the identifier classifier."""
        kind = classify_jid(jid, self.linked_id_to_phone)
        if kind is None:
            raise ValueError("observation requires an identifier")

        phone = None
        linked_id = None
        if isinstance(kind, PhoneJid):
            phone = kind.phone
        elif isinstance(kind, LinkedJid):
            phone = kind.phone
            linked_id = kind.linked_id
        elif isinstance(kind, AmbiguousJid):
            phone = kind.key

        return Observation(
            id=jid,
            source=source,
            phone_number=phone,
            linked_id=linked_id,
            display_name=(display_name or "").strip() or None,
            origin_group=origin_group,
            origin_chat=origin_chat,
            observed_at=_make_aware(observed_at) if observed_at else datetime.now(timezone.utc),
        )

    def observe_jid(self, jid: str, source: ContactSource, **kwargs) -> ContactRecord:
        """Classify a JID and merge it. See observation_for() for kwargs."""
        return self.observe(self.observation_for(jid, source, **kwargs))

    def observe(self, obs: Observation) -> ContactRecord:
        """
        Merge one observation into the store.

        Idempotent: applying the same observation twice yields the same state.

        Returns:
            The created or updated record
        """
        self._require_loaded()
        if not obs.id:
            raise ValueError("observation requires an identifier")

        existing = self._records.get(obs.id)
        phone = obs.phone_number or (existing.phone_number if existing else None)

        linked_id = obs.linked_id
        if not linked_id and existing and existing.linked_id:
            linked_id = existing.linked_id
        elif not linked_id and phone and phone in self.phone_to_linked_id:
            linked_id = self.phone_to_linked_id[phone]
            logger.debug(f"Applied existing phone-to-LID mapping: {phone} -> {linked_id}")

        decision = arbitrate_display_name(existing, obs.display_name, obs.source)

        if existing is None:
            record = ContactRecord(
                id=obs.id,
                phone_number=phone,
                linked_id=linked_id,
                display_name=decision.name,
                source=decision.source,
                origin_group=obs.origin_group,
                origin_chat=obs.origin_chat,
                last_seen=obs.observed_at,
            )
            self._records[record.id] = record
        else:
            record = existing
            self._unindex_record(record)
            record.phone_number = phone
            record.linked_id = linked_id
            record.display_name = decision.name
            record.source = decision.source
            record.origin_group = obs.origin_group or record.origin_group
            record.origin_chat = obs.origin_chat or record.origin_chat
            if obs.observed_at and (record.last_seen is None or obs.observed_at > record.last_seen):
                record.last_seen = obs.observed_at
        self._index_record(record)

        if linked_id and phone:
            self.linked_id_to_phone[linked_id] = phone
            self.linked_id_to_phone[record.id] = phone
            self.phone_to_linked_id[phone] = linked_id
            logger.debug(f"Updated LID mappings: {phone} <-> {linked_id}")

        if record.display_name:
            self._write_name_keys(record)

        logger.debug(
            f"Stored contact {record.id}: {record.phone_number} "
            f"({record.display_name or 'No name'}) [{record.linked_id or 'No LID'}]"
        )
        return record

    def _write_name_keys(self, record: ContactRecord) -> None:
        name = record.display_name
        self.display_name_by_key[record.id] = name
        if not record.linked_id:
            return
        self.display_name_by_key[record.linked_id] = name

        # Keep the phone view and the LID view of the same contact in sync
        if record.phone_number:
            paired = (phone_jid(record.phone_number), lid_jid(record.linked_id))
            if record.id in paired:
                for key in paired:
                    self.display_name_by_key[key] = name

    def apply_seed(self, phone: str, linked_id: str, display_name: Optional[str] = None) -> ContactRecord:
        """Merge a manually confirmed phone <-> LID pairing."""
        record = self.observe(Observation(
            id=lid_jid(linked_id),
            source=ContactSource.MANUAL_SEED,
            phone_number=phone,
            linked_id=linked_id,
            display_name=display_name,
        ))
        logger.info(f"Applied seed mapping: {phone} <-> {linked_id} ({display_name or 'No name'})")
        return record

    def record_scan(self, chats_scanned: int, scan_time: datetime) -> None:
        """Record the counters of the most recent backfill scan."""
        self.chats_scanned = chats_scanned
        self.last_scan_time = scan_time

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, contact_id: str) -> Optional[ContactRecord]:
        """Get a record by its primary id."""
        self._require_loaded()
        return self._records.get(contact_id)

    def get_all(self) -> list[ContactRecord]:
        """Get all records."""
        self._require_loaded()
        return list(self._records.values())

    def count(self) -> int:
        return len(self._records)

    def get_by_phone(self, phone: str) -> Optional[ContactRecord]:
        """
        Get a record by phone number.

        Tries the phone-suffixed JID first, then the LID-suffixed JID reached
        through phone_to_linked_id.
        """
        self._require_loaded()
        direct = self._records.get(phone_jid(phone))
        if direct:
            return direct

        linked_id = self.phone_to_linked_id.get(phone)
        if linked_id:
            return self._records.get(lid_jid(linked_id))
        return None

    def get_phone_for_lid(self, linked_id: str) -> Optional[str]:
        """Phone number learned for a LID (bare or @lid form)."""
        self._require_loaded()
        return self.linked_id_to_phone.get(linked_id) or self.linked_id_to_phone.get(lid_jid(linked_id))

    def get_lid_for_phone(self, phone: str) -> Optional[str]:
        """LID learned for a phone number."""
        self._require_loaded()
        return self.phone_to_linked_id.get(phone)

    def search_by_phone(self, phone: str) -> list[ContactRecord]:
        """All records whose phone number matches exactly."""
        self._require_loaded()
        ids = self._phone_index.get(phone, set())
        return [self._records[i] for i in sorted(ids)]

    def search_by_name(self, query: str) -> list[ContactRecord]:
        """All records whose display name contains the query (case-insensitive)."""
        self._require_loaded()
        query_lower = query.lower()
        return [
            record for record in self._records.values()
            if record.display_name and query_lower in record.display_name.lower()
        ]

    def resolve_display_name(self, contact_id: str, fallback: Optional[str] = None) -> Optional[str]:
        """
        Best-known display name for an identifier.

        Chain: record name -> display_name_by_key[id] -> phone -> LID ->
        LID record name -> display_name_by_key[LID JID] -> fallback.
        """
        self._require_loaded()
        if not contact_id:
            return fallback

        record = self._records.get(contact_id)
        if record and record.display_name:
            return record.display_name

        if contact_id in self.display_name_by_key:
            return self.display_name_by_key[contact_id]

        phone = self.extract_phone(contact_id)
        if phone and phone in self.phone_to_linked_id:
            linked_key = lid_jid(self.phone_to_linked_id[phone])
            linked_record = self._records.get(linked_key)
            if linked_record and linked_record.display_name:
                return linked_record.display_name
            if linked_key in self.display_name_by_key:
                return self.display_name_by_key[linked_key]

        return fallback

    def stats(self) -> dict:
        """Aggregate counters for the store."""
        self._require_loaded()
        return {
            "total_contacts": len(self._records),
            "mapped_links": len(self.phone_to_linked_id),
            "named_contacts": sum(1 for r in self._records.values() if r.display_name),
            "chats_scanned": self.chats_scanned,
            "last_scan_time": self.last_scan_time.isoformat() if self.last_scan_time else None,
            "linked_id_mappings_count": len(self.linked_id_to_phone),
            "phone_mappings_count": len(self.phone_to_linked_id),
            "display_name_mappings_count": len(self.display_name_by_key),
        }

    # ------------------------------------------------------------------
    # Maintenance passes
    # ------------------------------------------------------------------

    def cleanup_duplicate_names(self) -> list:
        """
        Clear push names that look falsely shared between contacts.

        Operator-invoked only. See contact_arbiter.plan_duplicate_cleanup.

        Returns:
            The applied DuplicateNameGroup list
        """
        self._require_loaded()
        groups = plan_duplicate_cleanup(self._records.values())
        for group in groups:
            logger.warning(
                f"Push name '{group.name}' shared by {len(group.cleared_ids) + 1} contacts, "
                f"keeping it on {group.keeper_id}"
            )
            for contact_id in group.cleared_ids:
                record = self._records[contact_id]
                record.display_name = None
                self.display_name_by_key.pop(contact_id, None)
                if record.linked_id:
                    self.display_name_by_key.pop(record.linked_id, None)
                logger.info(f"Removed push name '{group.name}' from {contact_id}")
        return groups

    def link_lid_to_phone_contacts(self) -> int:
        """
        Back-fill LID and push name onto phone-suffixed records.

        Uses phone_to_linked_id and the paired LID record learned since those
        phone records were last observed.

        Returns:
            Number of records that gained a linked id
        """
        self._require_loaded()
        linked_count = 0
        suffix = f"@{PHONE_SERVER}"

        for contact_id, record in list(self._records.items()):
            if not contact_id.endswith(suffix) or not record.phone_number:
                continue
            mapped_lid = self.phone_to_linked_id.get(record.phone_number)
            if not mapped_lid:
                continue

            gains_link = not record.linked_id
            name, source = None, record.source
            if not record.display_name:
                lid_record = self._records.get(lid_jid(mapped_lid))
                if lid_record and lid_record.display_name:
                    name, source = lid_record.display_name, lid_record.source
                elif contact_id in self.display_name_by_key:
                    name = self.display_name_by_key[contact_id]

            if not gains_link and not name:
                continue

            # Goes through the normal merge path
            self.observe(Observation(
                id=contact_id,
                source=source,
                phone_number=record.phone_number,
                linked_id=record.linked_id or mapped_lid,
                display_name=name,
                origin_group=record.origin_group,
                origin_chat=record.origin_chat,
                observed_at=record.last_seen,
            ))
            if gains_link:
                linked_count += 1
                logger.info(f"Applied LID mapping: {record.phone_number} -> {mapped_lid}")

        logger.info(f"LID linking completed. Linked {linked_count} contacts.")
        return linked_count

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def snapshot(self) -> dict:
        """Serialize metadata, records and mapping tables."""
        return {
            "metadata": {
                "last_updated": datetime.now(timezone.utc).isoformat(),
                "total_contacts": len(self._records),
                "mapped_links": len(self.phone_to_linked_id),
                "chats_scanned": self.chats_scanned,
                "last_scan_time": self.last_scan_time.isoformat() if self.last_scan_time else None,
            },
            "records": [record.to_dict() for record in self._records.values()],
            "linked_id_to_phone": dict(self.linked_id_to_phone),
            "phone_to_linked_id": dict(self.phone_to_linked_id),
            "display_name_by_key": dict(self.display_name_by_key),
        }

    def _next_snapshot(self) -> tuple[int, dict]:
        self._snapshot_seq += 1
        return self._snapshot_seq, self.snapshot()

    def save(self) -> None:
        """Persist the store to disk. Raises PersistenceError on failure."""
        self._require_loaded()
        seq, data = self._next_snapshot()
        self._write_snapshot(data, seq)

    async def save_async(self, timeout: Optional[float] = None) -> None:
        """
        Persist without blocking the event loop.

        Concurrent calls are written in call order: the snapshot is taken
        under an asyncio lock, then the file write runs in a worker thread
        under the writer lock.

        Raises:
            PersistenceError: write failed or exceeded ``timeout`` seconds
        """
        self._require_loaded()
        async with self._save_lock:
            seq, data = self._next_snapshot()
            try:
                await asyncio.wait_for(
                    asyncio.to_thread(self._write_snapshot, data, seq), timeout=timeout
                )
            except asyncio.TimeoutError as e:
                raise PersistenceError(
                    f"Saving {self.storage_path} timed out after {timeout}s"
                ) from e

    def _write_snapshot(self, data: dict, seq: Optional[int] = None) -> None:
        with self._write_lock:
            if seq is not None and seq < self._written_seq:
                logger.debug(f"Skipping stale snapshot {seq} (already wrote {self._written_seq})")
                return
            try:
                self.storage_path.parent.mkdir(parents=True, exist_ok=True)
                self._backup_current()

                # Write to temp file first (atomic write pattern)
                temp_fd, temp_path = tempfile.mkstemp(
                    suffix=".json", dir=self.storage_path.parent
                )
                try:
                    with os.fdopen(temp_fd, "w", encoding="utf-8") as f:
                        json.dump(data, f, indent=2, ensure_ascii=False)

                    with open(temp_path, encoding="utf-8") as f:
                        validated = json.load(f)
                    if len(validated.get("records", [])) != len(data["records"]):
                        raise ValueError(
                            f"Write validation failed: expected {len(data['records'])} records, "
                            f"got {len(validated.get('records', []))}"
                        )

                    shutil.move(temp_path, self.storage_path)
                    if seq is not None:
                        self._written_seq = seq
                except Exception:
                    if os.path.exists(temp_path):
                        os.unlink(temp_path)
                    raise
            except (OSError, ValueError, TypeError) as e:
                logger.error(f"Error saving contacts to {self.storage_path}: {e}")
                raise PersistenceError(str(e)) from e

        logger.info(
            f"Contacts saved to {self.storage_path} "
            f"({data['metadata']['total_contacts']} contacts, "
            f"{data['metadata']['mapped_links']} mapped LIDs)"
        )

    def _backup_current(self) -> None:
        if not self.backup_path or not self.storage_path.exists():
            return
        try:
            self.backup_path.mkdir(parents=True, exist_ok=True)
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
            stem = self.storage_path.stem
            shutil.copy(self.storage_path, self.backup_path / f"{stem}.{timestamp}.json")

            backups = sorted(self.backup_path.glob(f"{stem}.*.json"))
            keep = max(self.backup_keep, 1)
            for old_backup in backups[:-keep]:
                old_backup.unlink()
                logger.debug(f"Removed old backup: {old_backup}")
        except OSError as e:
            # Backup failure shouldn't block saves
            logger.warning(f"Could not create backup: {e}")

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def to_csv(self) -> str:
        """Render all records as delimited text with every field quoted."""
        self._require_loaded()
        buffer = io.StringIO()
        buffer.write(CSV_HEADER + "\n")
        writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
        for record in self._records.values():
            writer.writerow([
                record.id or "",
                record.phone_number or "",
                record.linked_id or "",
                record.display_name or "",
                record.source.value,
                record.last_seen.isoformat() if record.last_seen else "",
            ])
        return buffer.getvalue()

    def export_csv(self, filename: Optional[str] = None) -> Path:
        """
        Write the CSV export next to the snapshot file.

        Args:
            filename: Bare file name (no directories); defaults to a timestamped name

        Returns:
            Path of the written file

        Raises:
            ValueError: filename contains a path component
        """
        if not filename:
            timestamp = datetime.now(timezone.utc).isoformat().replace(":", "-").replace(".", "-")
            filename = f"contacts-export-{timestamp}.csv"
        if (
            Path(filename).name != filename
            or "/" in filename
            or "\\" in filename
            or filename in (".", "..")
        ):
            raise ValueError(f"Export filename must be a bare file name: {filename!r}")

        csv_path = self.storage_path.parent / filename
        csv_path.parent.mkdir(parents=True, exist_ok=True)
        csv_path.write_text(self.to_csv(), encoding="utf-8")
        logger.info(f"Contacts exported to CSV: {csv_path}")
        return csv_path
