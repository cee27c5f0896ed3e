"""
Runtime configuration for the Sales Tracker API.

Everything is read from environment variables once at startup. Missing
connection settings are fatal: the server refuses to start without a store.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

LEAVE_STATUSES = ("pending", "approved", "rejected")


@dataclass(frozen=True)
class AppConfig:
    database_url: str
    database_name: str
    port: int = 8000
    secret_key: str = "dev-secret-key-change"
    access_token_expire_minutes: int = 60 * 8
    leave_default_status: str = "approved"
    upload_dir: Path = Path("uploads")
    default_admin_username: str = "admin"
    default_admin_password: Optional[str] = None
    default_admin_name: str = "Administrator"


def split_origins(raw: str) -> List[str]:
    origins = [item.strip() for item in raw.split(",") if item.strip()]
    return origins or ["*"]


def load_config() -> AppConfig:
    """Build an :class:`AppConfig` from the process environment.

    Raises:
        RuntimeError: when ``DATABASE_URL`` or ``DATABASE_NAME`` is unset, or
            when ``LEAVE_DEFAULT_STATUS`` is not a known leave status.
    """
    database_url = os.getenv("DATABASE_URL")
    database_name = os.getenv("DATABASE_NAME")
    if not database_url or not database_name:
        raise RuntimeError("DATABASE_URL and DATABASE_NAME must be set")

    leave_status = os.getenv("LEAVE_DEFAULT_STATUS", "approved").strip().lower()
    if leave_status not in LEAVE_STATUSES:
        raise RuntimeError(
            f"LEAVE_DEFAULT_STATUS must be one of {', '.join(LEAVE_STATUSES)}, got '{leave_status}'"
        )

    return AppConfig(
        database_url=database_url,
        database_name=database_name,
        port=int(os.getenv("PORT", 8000)),
        secret_key=os.getenv("SECRET_KEY", "dev-secret-key-change"),
        access_token_expire_minutes=int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 8)),
        leave_default_status=leave_status,
        upload_dir=Path(os.getenv("UPLOAD_DIR", "uploads")),
        default_admin_username=os.getenv("DEFAULT_ADMIN_USERNAME", "admin"),
        default_admin_password=os.getenv("DEFAULT_ADMIN_PASSWORD") or None,
        default_admin_name=os.getenv("DEFAULT_ADMIN_NAME", "Administrator"),
    )
