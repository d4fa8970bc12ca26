"""Runtime settings, read from ``CUMULUS_*`` environment variables or ``.env``."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

GIGABYTE = 1024 * 1024 * 1024
DEFAULT_SIGNING_SECRET = "change-me"


class CumulusSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="CUMULUS_", env_file=".env", extra="ignore")

    # Database
    database_url: str = "sqlite+aiosqlite:///./cumulus.db"
    db_schema: str | None = None

    # Blob storage
    blob_root: Path = Path("./data/blobs")
    signing_secret: str = DEFAULT_SIGNING_SECRET
    public_base_url: str = "http://localhost:8000"
    blob_url_path: str = "/blobs"
    signed_url_ttl: int = Field(default=300, gt=0)
    preview_url_ttl: int = Field(default=3600, gt=0)

    # Share links
    share_base_url: str | None = None
    share_path: str = "/share"
    bcrypt_rounds: int = Field(default=10, ge=4, le=31)
    enforce_scope_on_claim: bool = False

    # Uploads / reporting
    max_upload_size_mb: int = 100
    storage_limit_bytes: int = 15 * GIGABYTE

    @property
    def max_upload_size_bytes(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024

    @property
    def link_base_url(self) -> str:
        """Prefix of share URLs handed back to clients."""
        return (self.share_base_url or self.public_base_url).rstrip("/")
