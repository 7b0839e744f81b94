"""Durable key-value persistence for cooldowns, blocklist entries and cached scores.

Writes are upserts; concurrent writers resolve last-writer-wins, except cooldown
times, which only move forward.
"""
import json
import sqlite3
from datetime import datetime
from typing import List, Optional

from orderguard.database import from_iso, get_connection, to_iso
from orderguard.models.scoring import FraudScoreCache, RiskTier, SignalKind
from orderguard.models.signals import BlocklistEntry, IdentifierType


class SignalStore:
    def __init__(self, conn: Optional[sqlite3.Connection] = None):
        self.conn = conn or get_connection()

    # Cooldowns

    def get_last_order_at(self, identifier_type: IdentifierType, value: str) -> Optional[datetime]:
        row = self.conn.execute(
            "SELECT last_order_at FROM cooldowns WHERE identifier_type = ? AND identifier_value = ?",
            (identifier_type.value, value),
        ).fetchone()
        return from_iso(row["last_order_at"]) if row else None

    def put_last_order_at(self, identifier_type: IdentifierType, value: str, at: datetime) -> None:
        self.conn.execute(
            """INSERT INTO cooldowns (identifier_type, identifier_value, last_order_at)
               VALUES (?, ?, ?)
               ON CONFLICT (identifier_type, identifier_value)
               DO UPDATE SET last_order_at = MAX(last_order_at, excluded.last_order_at)""",
            (identifier_type.value, value, to_iso(at)),
        )
        self.conn.commit()

    def prune_cooldowns(self, older_than: datetime) -> int:
        cur = self.conn.execute(
            "DELETE FROM cooldowns WHERE last_order_at < ?", (to_iso(older_than),)
        )
        self.conn.commit()
        return cur.rowcount

    # Blocklist

    def has_blocklist_entry(self, identifier_type: IdentifierType, value: str) -> bool:
        row = self.conn.execute(
            "SELECT 1 FROM blocklist WHERE identifier_type = ? AND identifier_value = ?",
            (identifier_type.value, value),
        ).fetchone()
        return row is not None

    def insert_blocklist_entry(
        self, identifier_type: IdentifierType, value: str, reason: Optional[str], at: datetime
    ) -> bool:
        """Insert an entry; returns False when it was already present."""
        cur = self.conn.execute(
            """INSERT OR IGNORE INTO blocklist (identifier_type, identifier_value, reason, added_at)
               VALUES (?, ?, ?, ?)""",
            (identifier_type.value, value, reason, to_iso(at)),
        )
        self.conn.commit()
        return cur.rowcount > 0

    def delete_blocklist_entry(self, identifier_type: IdentifierType, value: str) -> bool:
        cur = self.conn.execute(
            "DELETE FROM blocklist WHERE identifier_type = ? AND identifier_value = ?",
            (identifier_type.value, value),
        )
        self.conn.commit()
        return cur.rowcount > 0

    def list_blocklist(self, identifier_type: Optional[IdentifierType] = None) -> List[BlocklistEntry]:
        if identifier_type is None:
            rows = self.conn.execute(
                "SELECT * FROM blocklist ORDER BY added_at DESC"
            ).fetchall()
        else:
            rows = self.conn.execute(
                "SELECT * FROM blocklist WHERE identifier_type = ? ORDER BY added_at DESC",
                (identifier_type.value,),
            ).fetchall()
        return [
            BlocklistEntry(
                identifier_type=IdentifierType(r["identifier_type"]),
                identifier_value=r["identifier_value"],
                added_at=from_iso(r["added_at"]),
                reason=r["reason"],
            )
            for r in rows
        ]

    # Fraud score cache

    def get_score(self, phone: str) -> Optional[FraudScoreCache]:
        row = self.conn.execute(
            "SELECT * FROM fraud_scores WHERE phone = ?", (phone,)
        ).fetchone()
        if row is None:
            return None
        snapshot = json.loads(row["signals"])
        return FraudScoreCache(
            phone=row["phone"],
            score=row["score"],
            risk_tier=RiskTier(row["risk_tier"]),
            computed_at=from_iso(row["computed_at"]),
            signals_snapshot={SignalKind(k): v for k, v in snapshot.items()},
        )

    def put_score(self, entry: FraudScoreCache) -> None:
        self.conn.execute(
            """INSERT INTO fraud_scores (phone, score, risk_tier, computed_at, signals)
               VALUES (?, ?, ?, ?, ?)
               ON CONFLICT (phone) DO UPDATE SET
                   score = excluded.score,
                   risk_tier = excluded.risk_tier,
                   computed_at = excluded.computed_at,
                   signals = excluded.signals""",
            (
                entry.phone,
                entry.score,
                entry.risk_tier.value,
                to_iso(entry.computed_at),
                json.dumps({k.value: v for k, v in entry.signals_snapshot.items()}),
            ),
        )
        self.conn.commit()
