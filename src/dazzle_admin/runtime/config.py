"""
Runtime configuration for the admin.

Groups every setting in one dataclass. Values come from keyword arguments
in code and tests, or from ``DAZZLE_ADMIN_*`` environment variables in
deployments.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

ITEMS_PER_PAGE = 10


@dataclass
class AdminConfig:
    """
    Configuration for the admin application.

    Environment Variables:
        DAZZLE_ADMIN_ENV: Environment name (development/test/production)
        DAZZLE_ADMIN_BASE_PATH: URL prefix of the admin (default "/admin")
        DAZZLE_ADMIN_DB_PATH: SQLite database file
        DAZZLE_ADMIN_UPLOADS_PATH: Directory for uploaded files
        DAZZLE_ADMIN_UPLOADS_URL: Public URL prefix for uploaded files
        DAZZLE_ADMIN_ITEMS_PER_PAGE: Default page size of list views
        DAZZLE_ADMIN_MAX_ITEMS_PER_PAGE: Upper bound for itemsPerPage
        DAZZLE_ADMIN_LOG_DIR: Directory for JSONL log files
        DAZZLE_ADMIN_LOG_LEVEL: Minimum log level name
    """

    environment: str = "production"
    base_path: str = "/admin"

    # Store
    db_path: Path = field(default_factory=lambda: Path(".dazzle/admin.db"))

    # File uploads
    uploads_path: Path = field(default_factory=lambda: Path(".dazzle/uploads"))
    uploads_url: str = "/files"

    # List views
    items_per_page: int = ITEMS_PER_PAGE
    max_items_per_page: int = 100

    # Logging
    log_dir: Path | None = None
    log_level: int = logging.INFO

    def __post_init__(self) -> None:
        self.base_path = "/" + self.base_path.strip("/") if self.base_path.strip("/") else ""

    @property
    def debug(self) -> bool:
        """Development mode: store errors are re-raised with full diagnostics."""
        return self.environment == "development"

    @classmethod
    def from_env(cls) -> AdminConfig:
        """Build a config from ``DAZZLE_ADMIN_*`` environment variables."""
        env = os.environ
        log_dir = env.get("DAZZLE_ADMIN_LOG_DIR")
        level_name = env.get("DAZZLE_ADMIN_LOG_LEVEL", "INFO").upper()
        return cls(
            environment=env.get("DAZZLE_ADMIN_ENV", "production"),
            base_path=env.get("DAZZLE_ADMIN_BASE_PATH", "/admin"),
            db_path=Path(env.get("DAZZLE_ADMIN_DB_PATH", ".dazzle/admin.db")),
            uploads_path=Path(env.get("DAZZLE_ADMIN_UPLOADS_PATH", ".dazzle/uploads")),
            uploads_url=env.get("DAZZLE_ADMIN_UPLOADS_URL", "/files"),
            items_per_page=int(env.get("DAZZLE_ADMIN_ITEMS_PER_PAGE", str(ITEMS_PER_PAGE))),
            max_items_per_page=int(env.get("DAZZLE_ADMIN_MAX_ITEMS_PER_PAGE", "100")),
            log_dir=Path(log_dir) if log_dir else None,
            log_level=logging.getLevelName(level_name)
            if isinstance(logging.getLevelName(level_name), int)
            else logging.INFO,
        )
