"""
Push-name conflict arbitration.

Push names are self-reported and unverified, and the same contact can reach
us with different names from different sources. Rules:

- A manual seed name is terminal.
- A name seen on an actual message beats a passive contact-list sync.
- Otherwise the incoming name wins. An observation without a name never
  clears a known one.

Also plans the operator-invoked duplicate-name cleanup.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable, Optional

from api.services.contact_record import ContactRecord, ContactSource

logger = logging.getLogger(__name__)

# Used only to pick the source label when both sides carry the same name
_SOURCE_STRENGTH = {
    ContactSource.MANUAL_SEED: 3,
    ContactSource.MESSAGE_EVENT: 2,
    ContactSource.CONTACT_EVENT: 1,
    ContactSource.ROSTER_SCAN: 1,
}


@dataclass(frozen=True)
class NameDecision:
    """Outcome of arbitrating a display name."""
    name: Optional[str]
    source: ContactSource
    conflict: bool = False
    kept_existing: bool = False


@dataclass
class DuplicateNameGroup:
    """A display name shared by several records and what the cleanup will do."""
    name: str
    keeper_id: str
    cleared_ids: list[str] = field(default_factory=list)


def _existing_wins(existing_source: ContactSource, incoming_source: ContactSource) -> bool:
    if existing_source == ContactSource.MANUAL_SEED:
        return True
    return (
        existing_source == ContactSource.MESSAGE_EVENT
        and incoming_source == ContactSource.CONTACT_EVENT
    )


def arbitrate_display_name(
    existing: Optional[ContactRecord],
    incoming_name: Optional[str],
    incoming_source: ContactSource,
) -> NameDecision:
    """
    Decide which display name (and source label) a record should carry.

    Args:
        existing: Current record, or None for a new identity
        incoming_name: Name carried by the observation (may be None)
        incoming_source: Source of the observation

    Returns:
        NameDecision with the winning name and source
    """
    if existing is None or not existing.display_name:
        return NameDecision(name=incoming_name or None, source=incoming_source)

    if not incoming_name:
        return NameDecision(name=existing.display_name, source=existing.source, kept_existing=True)

    if incoming_name == existing.display_name:
        stronger = existing.source
        if _SOURCE_STRENGTH[incoming_source] > _SOURCE_STRENGTH[existing.source]:
            stronger = incoming_source
        return NameDecision(name=incoming_name, source=stronger)

    if _existing_wins(existing.source, incoming_source):
        logger.info(
            f"Push name conflict for {existing.id}: keeping {existing.source.value} "
            f"name '{existing.display_name}' over {incoming_source.value} '{incoming_name}'"
        )
        return NameDecision(
            name=existing.display_name,
            source=existing.source,
            conflict=True,
            kept_existing=True,
        )

    logger.info(
        f"Push name conflict for {existing.id}: '{existing.display_name}' -> '{incoming_name}' "
        f"({incoming_source.value})"
    )
    return NameDecision(name=incoming_name, source=incoming_source, conflict=True)


def plan_duplicate_cleanup(records: Iterable[ContactRecord]) -> list[DuplicateNameGroup]:
    """
    Find display names carried by more than one record.

    For each such name, the first message-sourced record keeps it and the
    records that did not learn the name from a message lose it.

    Deliberate deviation from clearing every other holder: records that share
    the keeper's phone number or linked id are the phone and LID views of the
    same contact and keep the name. Names with no message-sourced holder are
    left alone.

    This is a heuristic: two different people can legitimately share a push
    name, and the cleanup will erase one of them.
    """
    by_name: dict[str, list[ContactRecord]] = defaultdict(list)
    for record in records:
        if record.display_name:
            by_name[record.display_name].append(record)

    groups = []
    for name, holders in by_name.items():
        if len(holders) < 2:
            continue

        keeper = next((r for r in holders if r.source == ContactSource.MESSAGE_EVENT), None)
        if keeper is None:
            logger.debug(f"Duplicate push name '{name}' has no message-sourced holder, skipping")
            continue

        group = DuplicateNameGroup(name=name, keeper_id=keeper.id)
        for record in holders:
            if record.id == keeper.id or record.source == ContactSource.MESSAGE_EVENT:
                continue
            same_person = (
                (record.phone_number and record.phone_number == keeper.phone_number)
                or (record.linked_id and record.linked_id == keeper.linked_id)
            )
            if same_person:
                continue
            group.cleared_ids.append(record.id)

        if group.cleared_ids:
            groups.append(group)

    return groups
