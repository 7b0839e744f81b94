"""Read access to placed orders, plus the placement write used by the orders router."""
import sqlite3
from datetime import datetime, timedelta
from typing import List, Optional

from orderguard.database import from_iso, get_connection, to_iso, utcnow
from orderguard.models.orders import (
    INACTIVE_STATUSES,
    NEGATIVE_OUTCOME_STATUSES,
    OrderRecord,
    OrderRequest,
)
from orderguard.models.signals import IdentifierType
from orderguard.services.normalize import (
    normalize_address,
    normalize_device,
    normalize_ip,
    normalize_name,
    normalize_phone,
)

_IDENTIFIER_COLUMNS = {
    IdentifierType.PHONE: "phone",
    IdentifierType.IP: "ip",
    IdentifierType.DEVICE: "device_id",
}

_INACTIVE_PLACEHOLDERS = ", ".join("?" for _ in INACTIVE_STATUSES)


def _row_to_order(row) -> OrderRecord:
    return OrderRecord(
        id=row["id"],
        phone=row["phone"],
        ip=row["ip"],
        device_id=row["device_id"],
        customer_name=row["customer_name"],
        name_key=row["name_key"],
        address_1=row["address_1"],
        city=row["city"],
        postcode=row["postcode"],
        address_key=row["address_key"],
        status=row["status"],
        created_at=from_iso(row["created_at"]),
        fraud_score=row["fraud_score"],
        risk_tier=row["risk_tier"],
    )


class OrderHistory:
    def __init__(self, conn: Optional[sqlite3.Connection] = None):
        self.conn = conn or get_connection()

    def add_order(self, order: OrderRequest) -> OrderRecord:
        created_at = order.created_at or utcnow()
        cur = self.conn.execute(
            """INSERT INTO orders
               (phone, ip, device_id, customer_name, name_key, address_1, city,
                postcode, address_key, status, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                normalize_phone(order.phone),
                normalize_ip(order.ip),
                normalize_device(order.device_id),
                order.customer_name,
                normalize_name(order.customer_name),
                order.address_1,
                order.city,
                order.postcode,
                normalize_address(order.address_1, order.city, order.postcode),
                order.status,
                to_iso(created_at),
            ),
        )
        self.conn.commit()
        return self.get_order(cur.lastrowid)

    def get_order(self, order_id: int) -> Optional[OrderRecord]:
        row = self.conn.execute("SELECT * FROM orders WHERE id = ?", (order_id,)).fetchone()
        return _row_to_order(row) if row else None

    def latest_order_for_phone(self, phone: str) -> Optional[OrderRecord]:
        row = self.conn.execute(
            "SELECT * FROM orders WHERE phone = ? ORDER BY created_at DESC, id DESC LIMIT 1",
            (phone,),
        ).fetchone()
        return _row_to_order(row) if row else None

    def recent_orders(
        self, window_hours: int, limit: int, until: Optional[datetime] = None
    ) -> List[OrderRecord]:
        """Active orders placed in (until - window_hours, until], newest first, capped at limit."""
        until = until or utcnow()
        cutoff = until - timedelta(hours=window_hours)
        rows = self.conn.execute(
            f"""SELECT * FROM orders
                WHERE created_at > ? AND created_at <= ?
                AND status NOT IN ({_INACTIVE_PLACEHOLDERS})
                ORDER BY created_at DESC, id DESC
                LIMIT ?""",
            (to_iso(cutoff), to_iso(until), *INACTIVE_STATUSES, limit),
        ).fetchall()
        return [_row_to_order(r) for r in rows]

    def orders_for(self, identifier_type: IdentifierType, value: str, limit: int = 100) -> List[int]:
        column = _IDENTIFIER_COLUMNS[identifier_type]
        rows = self.conn.execute(
            f"SELECT id FROM orders WHERE {column} = ? ORDER BY created_at DESC, id DESC LIMIT ?",
            (value, limit),
        ).fetchall()
        return [r["id"] for r in rows]

    def orders_page(self, offset: int, limit: int) -> List[OrderRecord]:
        rows = self.conn.execute(
            "SELECT * FROM orders ORDER BY id ASC LIMIT ? OFFSET ?", (limit, offset)
        ).fetchall()
        return [_row_to_order(r) for r in rows]

    def count_orders(self) -> int:
        return self.conn.execute("SELECT COUNT(*) as cnt FROM orders").fetchone()["cnt"]

    def last_order_at(
        self,
        identifier_type: IdentifierType,
        value: str,
        until: datetime,
        exclude_order_id: Optional[int] = None,
    ) -> Optional[datetime]:
        column = _IDENTIFIER_COLUMNS[identifier_type]
        row = self.conn.execute(
            f"""SELECT MAX(created_at) as last_at FROM orders
                WHERE {column} = ? AND created_at <= ? AND id != ?
                AND status NOT IN ({_INACTIVE_PLACEHOLDERS})""",
            (value, to_iso(until), exclude_order_id or -1, *INACTIVE_STATUSES),
        ).fetchone()
        return from_iso(row["last_at"]) if row["last_at"] else None

    def cancellation_ratio(self, phone: str) -> float:
        """Share of this phone's orders that ended cancelled, failed, refunded or returned."""
        placeholders = ", ".join("?" for _ in NEGATIVE_OUTCOME_STATUSES)
        row = self.conn.execute(
            f"""SELECT COUNT(*) as total,
                       SUM(CASE WHEN status IN ({placeholders}) THEN 1 ELSE 0 END) as negative
                FROM orders WHERE phone = ?""",
            (*NEGATIVE_OUTCOME_STATUSES, phone),
        ).fetchone()
        if not row["total"]:
            return 0.0
        return (row["negative"] or 0) / row["total"]

    def save_score(self, order_id: int, score: int, risk_tier: str) -> None:
        self.conn.execute(
            "UPDATE orders SET fraud_score = ?, risk_tier = ? WHERE id = ?",
            (score, risk_tier, order_id),
        )
        self.conn.commit()

    def set_status(self, order_id: int, status: str) -> None:
        self.conn.execute("UPDATE orders SET status = ? WHERE id = ?", (status, order_id))
        self.conn.commit()
