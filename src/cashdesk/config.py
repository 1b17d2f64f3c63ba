"""Runtime configuration for cashdesk.

Settings are read from the environment once, at startup. The storage
backend is chosen here and injected; request handlers never branch on it.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

# Can be overridden via CASHDESK_DATA_DIR environment variable
_default_data_dir = Path(__file__).parent.parent.parent / "data"

DEFAULT_CORS_ORIGINS = [
    "http://localhost:5173",
    "http://localhost:3000",
    "http://127.0.0.1:5173",
    "http://127.0.0.1:3000",
]


@dataclass
class Settings:
    data_dir: Path = _default_data_dir
    storage: str = "json"  # "json" | "mongo"
    mongodb_uri: str = "mongodb://localhost:27017"
    db_name: str = "pos_system"
    cors_origins: list[str] = field(default_factory=lambda: list(DEFAULT_CORS_ORIGINS))
    log_level: str = "INFO"
    admin_email: str = "admin@pos.local"
    admin_password: str = "Admin123"
    admin_name: str = "System Administrator"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if environ is None else environ
        settings = cls()
        if "CASHDESK_DATA_DIR" in env:
            settings.data_dir = Path(env["CASHDESK_DATA_DIR"])
        settings.storage = env.get("CASHDESK_STORAGE", settings.storage).lower()
        settings.mongodb_uri = env.get("MONGODB_URI", settings.mongodb_uri)
        settings.db_name = env.get("CASHDESK_DB_NAME", settings.db_name)
        if env.get("CASHDESK_CORS_ORIGINS"):
            settings.cors_origins = [
                o.strip() for o in env["CASHDESK_CORS_ORIGINS"].split(",") if o.strip()
            ]
        settings.log_level = env.get("CASHDESK_LOG_LEVEL", settings.log_level).upper()
        settings.admin_email = env.get("CASHDESK_ADMIN_EMAIL", settings.admin_email)
        settings.admin_password = env.get("CASHDESK_ADMIN_PASSWORD", settings.admin_password)
        return settings
