"""Mapping Store Database Operations.

The Mapping Store is kept as plain key/value JSON rows in the settings_base
table. This module only reads and writes those rows; all rules live in
channel_mapping.store and channel_mapping.validator.
"""

import json
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import ValidationError

from channel_mapping.models import MappingSettings
from core.config import DEFAULT_DB_PATH
from core.observability import get_logger


logger = get_logger(__name__)

SETTINGS_CATEGORY = "dilovod"

# settings_base key -> MappingSettings alias
SETTINGS_KEYS = {
    "dilovod_channel_payment_mapping": "channelPaymentMapping",
    "dilovod_delivery_mappings": "deliveryMappings",
    "dilovod_default_firm_id": "defaultFirmId",
    "dilovod_storage_id": "storageId",
}


def init_settings_db(db_path: Path = DEFAULT_DB_PATH) -> None:
    """Initialize the settings_base table.

    Args:
        db_path: Path to SQLite database file
    """
    conn = sqlite3.connect(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS settings_base (
                key TEXT PRIMARY KEY,
                value TEXT,
                category TEXT,
                is_active INTEGER DEFAULT 1,
                updated_at TEXT NOT NULL
            )
        """)
        conn.commit()
    finally:
        conn.close()


def _read_rows(db_path: Path) -> Dict[str, Any]:
    conn = sqlite3.connect(db_path)
    try:
        placeholders = ",".join("?" for _ in SETTINGS_KEYS)
        rows = conn.execute(
            f"SELECT key, value FROM settings_base WHERE is_active = 1 AND key IN ({placeholders})",
            list(SETTINGS_KEYS),
        ).fetchall()
    finally:
        conn.close()

    values = {}
    for key, raw in rows:
        if raw is None:
            continue
        try:
            values[key] = json.loads(raw)
        except json.JSONDecodeError:
            # Scalar ids may be stored unquoted
            values[key] = raw
    return values


def load_settings(db_path: Path = DEFAULT_DB_PATH) -> MappingSettings:
    """Load the Mapping Store; missing keys fall back to empty defaults.

    Raises:
        ValueError: Stored JSON does not match the Mapping Store shape
    """
    rows = _read_rows(db_path)
    data = {alias: rows[key] for key, alias in SETTINGS_KEYS.items() if key in rows}

    # Older rows may lack the denormalized channelId on nested entries
    channels = data.get("channelPaymentMapping") or {}
    for channel_id, channel in channels.items():
        if isinstance(channel, dict):
            channel.setdefault("channelId", channel_id)
            for mapping in channel.get("mappings") or []:
                if isinstance(mapping, dict):
                    mapping.setdefault("channelId", channel_id)

    try:
        return MappingSettings.model_validate(data)
    except ValidationError as e:
        logger.error(f"Stored mapping settings are invalid: {e}")
        raise ValueError(f"Invalid mapping settings in settings_base: {e}") from e


def save_settings(settings: MappingSettings, db_path: Path = DEFAULT_DB_PATH) -> None:
    """Persist the whole Mapping Store, one row per key."""
    stored = settings.to_storage()
    now = datetime.utcnow().isoformat()

    conn = sqlite3.connect(db_path)
    try:
        for key, alias in SETTINGS_KEYS.items():
            conn.execute("""
                INSERT INTO settings_base (key, value, category, is_active, updated_at)
                VALUES (?, ?, ?, 1, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    is_active = 1,
                    updated_at = excluded.updated_at
            """, (key, json.dumps(stored.get(alias), ensure_ascii=False), SETTINGS_CATEGORY, now))
        conn.commit()
    finally:
        conn.close()

    logger.info(
        "Mapping settings saved",
        extra_fields={"channels": len(settings.channel_payment_mapping)},
    )


def get_setting(key: str, db_path: Path = DEFAULT_DB_PATH) -> Optional[Any]:
    """Read one raw settings_base value (decoded JSON when possible)."""
    conn = sqlite3.connect(db_path)
    try:
        row = conn.execute(
            "SELECT value FROM settings_base WHERE key = ? AND is_active = 1", (key,)
        ).fetchone()
    finally:
        conn.close()

    if row is None or row[0] is None:
        return None
    try:
        return json.loads(row[0])
    except json.JSONDecodeError:
        return row[0]
