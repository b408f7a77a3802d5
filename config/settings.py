"""
lidmap Configuration Settings
"""
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Paths (use LIDMAP_ prefix)
    contacts_file: Path = Field(
        default=Path("./data/contacts.json"),
        alias="LIDMAP_CONTACTS_FILE",
        description="JSON snapshot holding contact records and mapping tables"
    )
    backup_path: str = Field(
        default="",
        alias="LIDMAP_BACKUP_PATH",
        description="Directory for rolling snapshot backups (empty disables backups)"
    )
    backup_keep: int = Field(default=2, alias="LIDMAP_BACKUP_KEEP")
    seed_file: Optional[Path] = Field(
        default=None,
        alias="LIDMAP_SEED_FILE",
        description="YAML file with known phone <-> LID mappings (defaults to config/seed_contacts.yaml)"
    )

    # Server
    port: int = Field(default=8000, alias="LIDMAP_PORT")
    host: str = Field(default="0.0.0.0", alias="LIDMAP_HOST")

    # Transport bridge (chat directory collaborator)
    bridge_url: str = Field(
        default="http://localhost:8192",
        alias="LIDMAP_BRIDGE_URL",
        description="Base URL of the WhatsApp bridge exposing chats, rosters and messages"
    )
    bridge_timeout: float = Field(default=10.0, alias="LIDMAP_BRIDGE_TIMEOUT")

    # Backfill scan
    scan_message_limit: int = Field(
        default=50,
        alias="LIDMAP_SCAN_MESSAGE_LIMIT",
        description="Recent messages fetched per chat during a scan"
    )
    scan_chat_delay_ms: int = Field(
        default=100,
        alias="LIDMAP_SCAN_CHAT_DELAY_MS",
        description="Pause between chats to stay under the bridge rate limit"
    )

    # Persistence
    save_timeout: float = Field(default=10.0, alias="LIDMAP_SAVE_TIMEOUT")  # seconds
    auto_save: bool = Field(
        default=True,
        alias="LIDMAP_AUTO_SAVE",
        description="Save the snapshot after every live contact/message batch"
    )

    # Duplicate push-name cleanup is a heuristic that can erase a legitimate
    # name when two real contacts share it. Operators must opt in.
    dedupe_enabled: bool = Field(default=False, alias="LIDMAP_DEDUPE_ENABLED")

    @property
    def scan_chat_delay(self) -> float:
        """Delay between chats in seconds."""
        return max(self.scan_chat_delay_ms, 0) / 1000.0

    @property
    def resolved_seed_file(self) -> Path:
        """Seed file path, falling back to config/seed_contacts.yaml."""
        if self.seed_file:
            return Path(self.seed_file)
        return Path(__file__).parent / "seed_contacts.yaml"


settings = Settings()
