"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from backend.legacy.encoding import decodes_every_byte

_DEFAULT_DEPLOYMENT_ROOTS = [
    "D:/Apicommerce/PdV",
    "C:/Apicommerce/PdV",
    "D:/ApiCommerce/PdV",
    "C:/ApiCommerce/PdV",
    "D:/API_Commerce/PdV",
    "C:/API_Commerce/PdV",
    "D:/Pharmacie/Data",
    "C:/Pharmacie/Data",
    "D:/Pharmacie/PdV",
    "C:/Pharmacie/PdV",
    "D:/Database",
    "C:/Database",
    "D:/Data",
    "C:/Data",
]


class Settings(BaseSettings):
    """Point-of-sale bridge settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    debug: bool = False
    expose_docs: bool = False

    # Database
    database_url: str = "sqlite+aiosqlite:///data/db/pharmapos.db"

    # Paths
    data_dir: Path = Path("./data")
    cache_dir: Path = Path("./data/database_cache")
    upload_dir: Path = Path("./data/uploads")

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)

    # CORS
    cors_origins: list[str] = Field(default_factory=list)

    # Legacy connection pool
    pool_max_connections: int = Field(default=10, ge=1)
    pool_idle_timeout_seconds: float = Field(default=300.0, gt=0)
    pool_retry_attempts: int = Field(default=3, ge=1)
    pool_retry_delay_seconds: float = Field(default=1.0, ge=0)

    # File watcher
    watcher_ttl_seconds: float = Field(default=24 * 3600, gt=0)

    # Sync
    sync_enabled: bool = True
    sync_interval_seconds: float = Field(default=10.0, gt=0)
    sync_batch_size: int = Field(default=1000, ge=1)

    # Locator
    locator_deployment_roots: list[str] = Field(
        default_factory=lambda: list(_DEFAULT_DEPLOYMENT_ROOTS)
    )
    locator_primary_namespace: str = "apicommerce"
    locator_search_env_vars: list[str] = Field(
        default_factory=lambda: [f"CAISS_SEARCH_PATH_{i}" for i in range(1, 6)]
    )
    locator_drive_roots: list[str] = Field(default_factory=lambda: ["C:/", "D:/", "E:/", "F:/"])
    global_search_roots: list[str] = Field(default_factory=lambda: ["C:/", "D:/", "E:/"])
    global_search_max_depth: int = Field(default=4, ge=0)

    # Legacy extraction
    legacy_code_pages: list[str] = Field(default_factory=lambda: ["cp1252", "cp850"])
    mdbtools_dir: Path | None = None

    # Uploads
    max_upload_size: int = Field(default=50 * 1024 * 1024, ge=1)

    def validate_runtime(self) -> None:
        """Reject settings combinations that cannot work at runtime."""
        violations: list[str] = []
        if self.pool_idle_timeout_seconds < self.sync_interval_seconds:
            violations.append(
                "POOL_IDLE_TIMEOUT_SECONDS must not be shorter than SYNC_INTERVAL_SECONDS"
            )
        if not self.legacy_code_pages:
            violations.append("LEGACY_CODE_PAGES must list at least one code page")
        for position, code_page in enumerate(self.legacy_code_pages, start=1):
            try:
                "".encode(code_page)
            except LookupError:
                violations.append(f"Unknown legacy code page: {code_page}")
                continue
            if position < len(self.legacy_code_pages) and decodes_every_byte(code_page):
                violations.append(
                    f"Legacy code page {code_page} decodes every byte, "
                    "so the code pages listed after it are never tried"
                )

        if violations:
            joined = "; ".join(violations)
            raise ValueError(f"Invalid configuration: {joined}")
