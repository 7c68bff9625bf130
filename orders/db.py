"""Order Database Operations.

This module handles all database operations for local order records:
- Schema initialization
- Upsert of storefront orders (export state untouched)
- The incomplete-order query that feeds the Reconciliation Checker
- Export state writes used by the Export Orchestrator and the Reconciliation Checker

Export state columns are created NULL when an order is first synced and are
only ever written through record_export, record_shipment and
apply_export_state.
"""

import json
import sqlite3
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from core.config import DEFAULT_DB_PATH
from orders.models import OrderExportState, OrderItem, StorefrontOrder


EXPORT_STATE_COLUMNS = (
    "dilovod_doc_id",
    "dilovod_export_date",
    "dilovod_sale_export_date",
    "dilovod_cash_in_date",
    "dilovod_cash_in_checked_at",
)

# Storefront statuses that never need ERP documents: new, refused, returned, deleted
INACTIVE_STATUS_IDS = (1, 6, 7, 8)

# Columns added after the first release; added in place on older databases
_ADDED_COLUMNS = (
    ("status_id", "INTEGER"),
    ("dilovod_cash_in_checked_at", "TEXT"),
)


def _connect(db_path: Path) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn


def _to_text(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)


def init_orders_db(db_path: Path = DEFAULT_DB_PATH) -> None:
    """Initialize the orders table.

    Args:
        db_path: Path to SQLite database file
    """
    conn = sqlite3.connect(db_path)
    try:
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS orders (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                external_id TEXT UNIQUE,
                order_number TEXT NOT NULL,
                channel_id TEXT NOT NULL,
                payment_method INTEGER,
                shipping_method TEXT,
                status TEXT,
                status_id INTEGER,
                customer_name TEXT,
                customer_phone TEXT,
                customer_email TEXT,
                delivery_address TEXT,
                order_date TEXT,
                items TEXT DEFAULT '[]',
                raw_data TEXT DEFAULT '{}',
                dilovod_doc_id TEXT,
                dilovod_export_date TEXT,
                dilovod_sale_export_date TEXT,
                dilovod_cash_in_date TEXT,
                dilovod_cash_in_checked_at TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_orders_order_number
            ON orders(order_number)
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_orders_channel
            ON orders(channel_id)
        """)
        for column, column_type in _ADDED_COLUMNS:
            try:
                cursor.execute(f"ALTER TABLE orders ADD COLUMN {column} {column_type}")
            except sqlite3.OperationalError:
                pass  # Column already exists
        conn.commit()
    finally:
        conn.close()


def _row_to_order(row: sqlite3.Row) -> StorefrontOrder:
    return StorefrontOrder(
        id=row["id"],
        external_id=row["external_id"],
        order_number=row["order_number"],
        channel_id=row["channel_id"],
        payment_method=row["payment_method"],
        shipping_method=row["shipping_method"],
        status=row["status"],
        status_id=row["status_id"],
        customer_name=row["customer_name"],
        customer_phone=row["customer_phone"],
        customer_email=row["customer_email"],
        delivery_address=row["delivery_address"],
        order_date=_parse_datetime(row["order_date"]),
        items=[OrderItem(**item) for item in json.loads(row["items"] or "[]")],
        raw_data=json.loads(row["raw_data"] or "{}"),
        export_state=OrderExportState(
            dilovod_doc_id=row["dilovod_doc_id"],
            dilovod_export_date=_parse_datetime(row["dilovod_export_date"]),
            dilovod_sale_export_date=_parse_datetime(row["dilovod_sale_export_date"]),
            dilovod_cash_in_date=_parse_datetime(row["dilovod_cash_in_date"]),
            dilovod_cash_in_checked_at=_parse_datetime(row["dilovod_cash_in_checked_at"]),
        ),
    )


# =============================================================================
# Storefront sync
# =============================================================================

def upsert_order(order: StorefrontOrder, db_path: Path = DEFAULT_DB_PATH) -> int:
    """Insert or refresh an order from the storefront.

    Orders are matched on external_id. Export state is never written here.

    Returns:
        Local order id
    """
    now = datetime.utcnow().isoformat()
    values = (
        order.order_number,
        str(order.channel_id),
        order.payment_method,
        order.shipping_method,
        order.status,
        order.status_id,
        order.customer_name,
        order.customer_phone,
        order.customer_email,
        order.delivery_address,
        _to_text(order.order_date),
        json.dumps([item.model_dump() for item in order.items], ensure_ascii=False),
        json.dumps(order.raw_data, ensure_ascii=False, default=str),
    )

    conn = _connect(db_path)
    try:
        cursor = conn.cursor()
        existing = None
        if order.external_id:
            existing = cursor.execute(
                "SELECT id FROM orders WHERE external_id = ?", (order.external_id,)
            ).fetchone()

        if existing:
            cursor.execute("""
                UPDATE orders SET
                    order_number = ?, channel_id = ?, payment_method = ?, shipping_method = ?,
                    status = ?, status_id = ?, customer_name = ?, customer_phone = ?, customer_email = ?,
                    delivery_address = ?, order_date = ?, items = ?, raw_data = ?, updated_at = ?
                WHERE id = ?
            """, values + (now, existing["id"]))
            order_id = existing["id"]
        else:
            cursor.execute("""
                INSERT INTO orders (
                    order_number, channel_id, payment_method, shipping_method,
                    status, status_id, customer_name, customer_phone, customer_email,
                    delivery_address, order_date, items, raw_data,
                    external_id, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, values + (order.external_id, now, now))
            order_id = cursor.lastrowid

        conn.commit()
        return order_id
    finally:
        conn.close()


# =============================================================================
# Reads
# =============================================================================

def get_order(order_id: int, db_path: Path = DEFAULT_DB_PATH) -> Optional[StorefrontOrder]:
    conn = _connect(db_path)
    try:
        row = conn.execute("SELECT * FROM orders WHERE id = ?", (order_id,)).fetchone()
        return _row_to_order(row) if row else None
    finally:
        conn.close()


def get_orders(order_ids: Iterable[int], db_path: Path = DEFAULT_DB_PATH) -> List[StorefrontOrder]:
    """Fetch orders preserving the requested order; unknown ids are skipped."""
    order_ids = list(order_ids)
    if not order_ids:
        return []

    conn = _connect(db_path)
    try:
        placeholders = ",".join("?" for _ in order_ids)
        rows = conn.execute(
            f"SELECT * FROM orders WHERE id IN ({placeholders})", order_ids
        ).fetchall()
    finally:
        conn.close()

    by_id = {row["id"]: _row_to_order(row) for row in rows}
    return [by_id[order_id] for order_id in order_ids if order_id in by_id]


def list_orders(
    channel_id: Optional[str] = None,
    limit: int = 100,
    db_path: Path = DEFAULT_DB_PATH,
) -> List[StorefrontOrder]:
    conn = _connect(db_path)
    try:
        if channel_id is not None:
            rows = conn.execute(
                "SELECT * FROM orders WHERE channel_id = ? ORDER BY id DESC LIMIT ?",
                (str(channel_id), limit),
            ).fetchall()
        else:
            rows = conn.execute(
                "SELECT * FROM orders ORDER BY id DESC LIMIT ?", (limit,)
            ).fetchall()
        return [_row_to_order(row) for row in rows]
    finally:
        conn.close()


def list_incomplete_orders(
    limit: int = 100,
    cash_in_recheck_hours: int = 24,
    now: Optional[datetime] = None,
    db_path: Path = DEFAULT_DB_PATH,
) -> List[StorefrontOrder]:
    """Orders whose ERP evidence may still be missing, newest first.

    Only confirmed (status 2) and later orders that are not refused,
    returned or deleted. An order qualifies when it has no sale order
    (doc id or export date), when it is ready to ship (status 3+) without a
    shipment date, or when it has no cash-in date and the last cash-in
    lookup is older than cash_in_recheck_hours.
    """
    now = now or datetime.utcnow()
    threshold = (now - timedelta(hours=cash_in_recheck_hours)).isoformat()
    inactive = ",".join("?" for _ in INACTIVE_STATUS_IDS)

    conn = _connect(db_path)
    try:
        rows = conn.execute(f"""
            SELECT * FROM orders
            WHERE status_id >= 2
              AND status_id NOT IN ({inactive})
              AND (
                dilovod_doc_id IS NULL
                OR dilovod_export_date IS NULL
                OR (status_id >= 3 AND dilovod_sale_export_date IS NULL)
                OR (
                    dilovod_cash_in_date IS NULL
                    AND (dilovod_cash_in_checked_at IS NULL OR dilovod_cash_in_checked_at < ?)
                )
              )
            ORDER BY order_date IS NULL, order_date DESC, id DESC
            LIMIT ?
        """, (*INACTIVE_STATUS_IDS, threshold, limit)).fetchall()
        return [_row_to_order(row) for row in rows]
    finally:
        conn.close()


# =============================================================================
# Export state writes
# =============================================================================

def apply_export_state(
    order_id: int,
    changes: Dict[str, object],
    db_path: Path = DEFAULT_DB_PATH,
) -> int:
    """Write export state fields for one order.

    Args:
        order_id: Local order id
        changes: Column -> value, limited to the export state columns

    Returns:
        Number of rows updated (0 if the order does not exist)
    """
    unknown = set(changes) - set(EXPORT_STATE_COLUMNS)
    if unknown:
        raise ValueError(f"Not export state columns: {sorted(unknown)}")
    if not changes:
        return 0

    columns = list(changes)
    assignments = ", ".join(f"{column} = ?" for column in columns)
    params = [_to_text(changes[column]) for column in columns]
    params.extend([datetime.utcnow().isoformat(), order_id])

    conn = _connect(db_path)
    try:
        cursor = conn.execute(
            f"UPDATE orders SET {assignments}, updated_at = ? WHERE id = ?", params
        )
        conn.commit()
        return cursor.rowcount
    finally:
        conn.close()


def record_export(
    order_id: int,
    dilovod_doc_id: str,
    exported_at: Optional[datetime] = None,
    db_path: Path = DEFAULT_DB_PATH,
) -> int:
    """Record a created (or discovered) sale-order document."""
    return apply_export_state(
        order_id,
        {
            "dilovod_doc_id": dilovod_doc_id,
            "dilovod_export_date": exported_at or datetime.utcnow(),
        },
        db_path=db_path,
    )


def record_shipment(
    order_id: int,
    shipped_at: Optional[datetime] = None,
    db_path: Path = DEFAULT_DB_PATH,
) -> int:
    """Record a created shipment (sale) document."""
    return apply_export_state(
        order_id,
        {"dilovod_sale_export_date": shipped_at or datetime.utcnow()},
        db_path=db_path,
    )
