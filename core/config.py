"""Application configuration.

Reads settings from environment variables, loading a ``.env`` file at the
repository root first when one exists.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


REPO_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_DB_PATH = REPO_ROOT / "dilovod_bridge.db"


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    return int(value)


@dataclass
class AppConfig:
    """Runtime configuration for the export bridge."""
    # Dilovod (ERP)
    dilovod_api_url: str = "https://api.dilovod.ua"
    dilovod_api_key: Optional[str] = None
    dilovod_timeout_seconds: int = 30

    # SalesDrive (storefront)
    salesdrive_api_url: Optional[str] = None
    salesdrive_api_key: Optional[str] = None

    # Storage
    db_path: Path = DEFAULT_DB_PATH

    # Caches
    payload_token_ttl_seconds: int = 600
    directory_cache_ttl_seconds: int = 3600

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # Temporal
    temporal_endpoint: Optional[str] = None
    temporal_namespace: str = "default"
    temporal_api_key: Optional[str] = None
    temporal_cert_path: Optional[str] = None
    temporal_task_queue: str = "dilovod-export"

    @property
    def log_level_value(self) -> int:
        level = logging.getLevelName(self.log_level.upper())
        return level if isinstance(level, int) else logging.INFO


def load_config(env_path: Optional[Path] = None) -> AppConfig:
    """Build an AppConfig from the environment.

    Args:
        env_path: Optional path to a .env file (defaults to <repo>/.env)

    Returns:
        Populated AppConfig
    """
    env_path = env_path or REPO_ROOT / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    return AppConfig(
        dilovod_api_url=os.getenv("DILOVOD_API_URL", "https://api.dilovod.ua"),
        dilovod_api_key=os.getenv("DILOVOD_API_KEY"),
        dilovod_timeout_seconds=_env_int("DILOVOD_TIMEOUT_SECONDS", 30),
        salesdrive_api_url=os.getenv("SALESDRIVE_API_URL"),
        salesdrive_api_key=os.getenv("SALESDRIVE_API_KEY"),
        db_path=Path(os.getenv("APP_DB_PATH", str(DEFAULT_DB_PATH))),
        payload_token_ttl_seconds=_env_int("PAYLOAD_TOKEN_TTL_SECONDS", 600),
        directory_cache_ttl_seconds=_env_int("DIRECTORY_CACHE_TTL_SECONDS", 3600),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_json=_env_bool("LOG_JSON"),
        temporal_endpoint=os.getenv("TEMPORAL_ENDPOINT"),
        temporal_namespace=os.getenv("TEMPORAL_NAMESPACE", "default"),
        temporal_api_key=os.getenv("TEMPORAL_API_KEY"),
        temporal_cert_path=os.getenv("TEMPORAL_CERT_PATH"),
        temporal_task_queue=os.getenv("TEMPORAL_TASK_QUEUE", "dilovod-export"),
    )
