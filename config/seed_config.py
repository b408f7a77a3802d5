"""
Seed contact configuration for lidmap.

Known phone <-> LID pairs that cannot be learned from traffic are loaded from
config/seed_contacts.yaml (gitignored - see config/seed_contacts.example.yaml
for template) and merged into the contact store as manual seeds at startup.
"""
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
import logging

import yaml

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SeedContact:
    """A manually confirmed phone <-> LID pairing."""
    phone: str
    linked_id: str
    display_name: Optional[str] = None


def _clean_digits(value) -> str:
    text = str(value or "").strip()
    if text.startswith("+"):
        text = text[1:]
    return text


def load_seed_contacts(path: Path) -> list[SeedContact]:
    """
    Load seed contacts from a YAML file.

    Args:
        path: Path to the YAML file

    Returns:
        List of SeedContact (empty when the file does not exist)
    """
    path = Path(path)
    if not path.exists():
        logger.info(f"No seed file at {path}, starting without seed contacts")
        return []

    try:
        with open(path) as f:
            config = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        logger.warning(f"Failed to parse {path}: {e}, ignoring seed contacts")
        return []

    seeds: list[SeedContact] = []
    for entry in config.get("seed_contacts", []) or []:
        if not isinstance(entry, dict):
            logger.warning(f"Skipping malformed seed entry: {entry!r}")
            continue
        phone = _clean_digits(entry.get("phone"))
        linked_id = _clean_digits(entry.get("lid"))
        if not phone.isdigit() or not linked_id:
            logger.warning(f"Skipping seed entry without phone/lid: {entry!r}")
            continue
        name = entry.get("name")
        seeds.append(SeedContact(
            phone=phone,
            linked_id=linked_id,
            display_name=str(name).strip() if name else None,
        ))

    logger.info(f"Loaded {len(seeds)} seed contacts from {path}")
    return seeds
