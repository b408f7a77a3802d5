"""
lidmap Services Package.

Example:
    from api.services import ContactStore, LidMappingService

Key service modules:
- jid_utils: JID parsing and classification
- contact_arbiter: push-name conflict rules and duplicate cleanup planning
- contact_store: ContactRecord indices and JSON snapshot persistence
- backfill_scanner: bulk reconciliation over the chat directory
- lid_mapping: service lifecycle and live-event ingestion
"""

from api.services.contact_record import (
    ContactRecord,
    ContactSource,
    Observation,
)

from api.services.contact_store import (
    ContactStore,
    NotInitializedError,
    PersistenceError,
    SnapshotLoadError,
)

from api.services.lid_mapping import (
    ContactUpdate,
    LidMappingService,
    MessageNotification,
    ScanInProgressError,
)

from api.services.backfill_scanner import BackfillScanner, ScanReport

from api.utils import make_aware


__all__ = [
    "ContactRecord",
    "ContactSource",
    "Observation",
    "ContactStore",
    "NotInitializedError",
    "PersistenceError",
    "SnapshotLoadError",
    "ContactUpdate",
    "LidMappingService",
    "MessageNotification",
    "ScanInProgressError",
    "BackfillScanner",
    "ScanReport",
    "make_aware",
]
