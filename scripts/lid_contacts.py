#!/usr/bin/env python3
"""
Offline maintenance for the LID contacts snapshot.

Works directly on the JSON snapshot (LIDMAP_CONTACTS_FILE), so stop the API
server first or its next automatic save will overwrite your changes.

Usage:
    python scripts/lid_contacts.py stats
    python scripts/lid_contacts.py export [--filename contacts.csv]
    python scripts/lid_contacts.py resolve 80444922015783@lid
    python scripts/lid_contacts.py link [--execute]
    python scripts/lid_contacts.py cleanup [--execute]
"""
import sys
import json
import logging
import argparse
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from api.services.contact_store import ContactStore
from config.seed_config import load_seed_contacts
from config.settings import settings

logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')
logger = logging.getLogger(__name__)


def open_store(contacts_file: Path, apply_seeds: bool = True) -> ContactStore:
    """Load the snapshot (and seeds) into a fresh store."""
    store = ContactStore(
        contacts_file,
        backup_path=settings.backup_path or None,
        backup_keep=settings.backup_keep,
    )
    store.load()
    if apply_seeds:
        for seed in load_seed_contacts(settings.resolved_seed_file):
            store.apply_seed(seed.phone, seed.linked_id, seed.display_name)
    return store


def show_stats(store: ContactStore):
    stats = store.stats()
    print(f"\nContacts file: {store.storage_path}\n")
    print(json.dumps(stats, indent=2))


def export_csv(store: ContactStore, filename: str = None):
    try:
        path = store.export_csv(filename)
    except ValueError as e:
        logger.error(str(e))
        sys.exit(1)
    print(f"\nExported {store.count()} contacts to {path}")


def resolve(store: ContactStore, contact_id: str):
    record = store.get(contact_id)
    print(f"\n  ID: {contact_id}")
    print(f"  Phone: {store.extract_phone(contact_id)}")
    print(f"  LID: {record.linked_id if record else None}")
    print(f"  Name: {store.resolve_display_name(contact_id)}")
    if record:
        print(f"  Source: {record.source.value}")
        print(f"  Last seen: {record.last_seen.isoformat() if record.last_seen else None}")


def link(store: ContactStore, dry_run: bool = True):
    linked = store.link_lid_to_phone_contacts()
    if dry_run:
        print(f"\nDRY RUN: would link {linked} phone contacts. Use --execute to save.")
        return
    store.save()
    print(f"\nLinked {linked} phone contacts and saved {store.storage_path}")


def cleanup(store: ContactStore, dry_run: bool = True):
    if not settings.dedupe_enabled and not dry_run:
        logger.error("Duplicate-name cleanup is disabled. Set LIDMAP_DEDUPE_ENABLED=true to apply it.")
        sys.exit(1)

    groups = store.cleanup_duplicate_names()
    print(f"\nFound {len(groups)} duplicate push names:\n")
    for group in groups:
        print(f"  '{group.name}' kept on {group.keeper_id}")
        for contact_id in group.cleared_ids:
            print(f"     - cleared from {contact_id}")

    if dry_run:
        print("\nDRY RUN: nothing saved. Use --execute to apply.")
        return
    store.save()
    print(f"\nSaved {store.storage_path}")


def main():
    parser = argparse.ArgumentParser(description='Maintain the LID contacts snapshot')
    parser.add_argument('command', choices=['stats', 'export', 'resolve', 'link', 'cleanup'])
    parser.add_argument('contact_id', nargs='?', help='JID for the resolve command')
    parser.add_argument('--contacts-file', type=Path, default=settings.contacts_file,
                        help='Snapshot to operate on (default: LIDMAP_CONTACTS_FILE)')
    parser.add_argument('--filename', help='CSV file name for export')
    parser.add_argument('--no-seeds', action='store_true', help='Do not apply seed contacts')
    parser.add_argument('--execute', action='store_true', help='Actually save changes')
    args = parser.parse_args()

    store = open_store(args.contacts_file, apply_seeds=not args.no_seeds)

    if args.command == 'stats':
        show_stats(store)
    elif args.command == 'export':
        export_csv(store, args.filename)
    elif args.command == 'resolve':
        if not args.contact_id:
            parser.error("resolve requires a contact id")
        resolve(store, args.contact_id)
    elif args.command == 'link':
        link(store, dry_run=not args.execute)
    elif args.command == 'cleanup':
        cleanup(store, dry_run=not args.execute)


if __name__ == '__main__':
    main()
