"""Log of non-allowed checkout decisions, with daily statistics."""
import json
import sqlite3
from collections import Counter
from datetime import datetime, timedelta
from typing import List, Optional

from orderguard.database import from_iso, get_connection, to_iso, utcnow
from orderguard.models.decision import Action, AttemptStats, BlockedAttempt, Decision

MAX_LOG_ENTRIES = 500


class AttemptLog:
    def __init__(self, conn: Optional[sqlite3.Connection] = None):
        self.conn = conn or get_connection()

    def record(
        self,
        decision: Decision,
        phone: str = "",
        ip: str = "",
        customer_name: str = "",
        now: Optional[datetime] = None,
    ) -> None:
        if decision.action == Action.ALLOW:
            return
        self.conn.execute(
            """INSERT INTO blocked_attempts (action, reasons, phone, ip, customer_name, created_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                decision.action.value,
                json.dumps(decision.reasons),
                phone,
                ip,
                customer_name,
                to_iso(now or utcnow()),
            ),
        )
        # Keep only the newest entries
        self.conn.execute(
            """DELETE FROM blocked_attempts WHERE id NOT IN
               (SELECT id FROM blocked_attempts ORDER BY id DESC LIMIT ?)""",
            (MAX_LOG_ENTRIES,),
        )
        self.conn.commit()

    def recent(self, limit: int = 20) -> List[BlockedAttempt]:
        rows = self.conn.execute(
            "SELECT * FROM blocked_attempts ORDER BY id DESC LIMIT ?", (limit,)
        ).fetchall()
        return [
            BlockedAttempt(
                id=r["id"],
                action=Action(r["action"]),
                reasons=json.loads(r["reasons"]),
                phone=r["phone"],
                ip=r["ip"],
                customer_name=r["customer_name"],
                created_at=from_iso(r["created_at"]),
            )
            for r in rows
        ]

    def stats(self, days: int = 7, now: Optional[datetime] = None) -> AttemptStats:
        """Totals over the last `days` days, by reason kind and by UTC day."""
        now = now or utcnow()
        start = (now - timedelta(days=days - 1)).date()
        by_day = {
            (start + timedelta(days=i)).isoformat(): 0 for i in range(days)
        }
        by_reason: Counter = Counter()

        rows = self.conn.execute(
            "SELECT reasons, created_at FROM blocked_attempts WHERE created_at >= ?",
            (start.isoformat(),),
        ).fetchall()
        total = 0
        for row in rows:
            day = from_iso(row["created_at"]).date().isoformat()
            if day not in by_day:
                continue
            total += 1
            by_day[day] += 1
            for reason in json.loads(row["reasons"]):
                by_reason[reason.split(":", 1)[0]] += 1

        return AttemptStats(total=total, by_reason=dict(by_reason), by_day=by_day)
